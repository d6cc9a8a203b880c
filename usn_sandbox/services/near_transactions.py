"""NEAR transaction encoding.

Only the actions the sandbox provisioner sends are supported. Layouts follow the
Borsh schema of `near-primitives`:

    Transaction = signer_id, public_key, nonce: u64, receiver_id, block_hash: [u8; 32], actions
    SignedTransaction = Transaction, signature

Enum variants are written as a one-byte tag followed by the variant's fields.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Union

import base58

from usn_sandbox.services.credential_service import ED25519_KEY_TYPE, KeyPair

_U64_MAX = 2**64 - 1
_U128_MAX = 2**128 - 1

# 30 TGas, the default attached gas of near-api-js function calls.
DEFAULT_FUNCTION_CALL_GAS = 30_000_000_000_000


class BorshWriter:
    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, value: int) -> "BorshWriter":
        self._buf += struct.pack("<B", value)
        return self

    def u32(self, value: int) -> "BorshWriter":
        self._buf += struct.pack("<I", value)
        return self

    def u64(self, value: int) -> "BorshWriter":
        if not 0 <= value <= _U64_MAX:
            raise ValueError(f"u64 out of range: {value}")
        self._buf += struct.pack("<Q", value)
        return self

    def u128(self, value: int) -> "BorshWriter":
        if not 0 <= value <= _U128_MAX:
            raise ValueError(f"u128 out of range: {value}")
        self._buf += value.to_bytes(16, "little")
        return self

    def fixed(self, data: bytes) -> "BorshWriter":
        self._buf += data
        return self

    def vec(self, data: bytes) -> "BorshWriter":
        return self.u32(len(data)).fixed(data)

    def string(self, value: str) -> "BorshWriter":
        return self.vec(value.encode("utf-8"))

    def public_key(self, raw: bytes) -> "BorshWriter":
        if len(raw) != 32:
            raise ValueError("ed25519 public key must be 32 bytes")
        return self.u8(ED25519_KEY_TYPE).fixed(raw)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


@dataclass(frozen=True)
class CreateAccount:
    TAG = 0

    def write(self, w: BorshWriter) -> None:
        w.u8(self.TAG)


@dataclass(frozen=True)
class DeployContract:
    TAG = 1
    code: bytes = field(repr=False)

    def write(self, w: BorshWriter) -> None:
        w.u8(self.TAG).vec(self.code)


@dataclass(frozen=True)
class FunctionCall:
    TAG = 2
    method_name: str
    args: bytes
    gas: int = DEFAULT_FUNCTION_CALL_GAS
    deposit: int = 0

    def write(self, w: BorshWriter) -> None:
        w.u8(self.TAG).string(self.method_name).vec(self.args).u64(self.gas).u128(self.deposit)


@dataclass(frozen=True)
class Transfer:
    TAG = 3
    deposit: int

    def write(self, w: BorshWriter) -> None:
        w.u8(self.TAG).u128(self.deposit)


@dataclass(frozen=True)
class AddFullAccessKey:
    TAG = 5
    # `AccessKeyPermission::FullAccess`
    PERMISSION_FULL_ACCESS = 1
    public_key: bytes

    def write(self, w: BorshWriter) -> None:
        w.u8(self.TAG).public_key(self.public_key).u64(0).u8(self.PERMISSION_FULL_ACCESS)


@dataclass(frozen=True)
class DeleteAccount:
    TAG = 7
    beneficiary_id: str

    def write(self, w: BorshWriter) -> None:
        w.u8(self.TAG).string(self.beneficiary_id)


Action = Union[CreateAccount, DeployContract, FunctionCall, Transfer, AddFullAccessKey, DeleteAccount]


@dataclass(frozen=True)
class Transaction:
    signer_id: str
    public_key: bytes
    nonce: int
    receiver_id: str
    block_hash: bytes
    actions: tuple[Action, ...]

    def serialize(self) -> bytes:
        if len(self.block_hash) != 32:
            raise ValueError("block_hash must be 32 bytes")
        w = BorshWriter()
        w.string(self.signer_id).public_key(self.public_key).u64(self.nonce)
        w.string(self.receiver_id).fixed(self.block_hash)
        w.u32(len(self.actions))
        for action in self.actions:
            action.write(w)
        return w.getvalue()

    def digest(self) -> bytes:
        return hashlib.sha256(self.serialize()).digest()


def sign_transaction(transaction: Transaction, key_pair: KeyPair) -> bytes:
    """Return the Borsh-encoded `SignedTransaction`."""

    if transaction.public_key != key_pair.public_bytes:
        raise ValueError("transaction public_key does not match the signing key")
    body = transaction.serialize()
    signature = key_pair.sign(hashlib.sha256(body).digest())
    return BorshWriter().fixed(body).u8(ED25519_KEY_TYPE).fixed(signature).getvalue()


def decode_block_hash(text: str) -> bytes:
    raw = base58.b58decode(text)
    if len(raw) != 32:
        raise ValueError(f"block hash must decode to 32 bytes (got {len(raw)})")
    return raw
