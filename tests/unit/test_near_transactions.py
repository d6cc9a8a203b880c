import hashlib

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from usn_sandbox.services.credential_service import KeyPair
from usn_sandbox.services.near_transactions import (
    AddFullAccessKey,
    BorshWriter,
    CreateAccount,
    DeleteAccount,
    FunctionCall,
    Transaction,
    Transfer,
    decode_block_hash,
    sign_transaction,
)


class TestBorshLayout:
    def test_transfer_transaction(self):
        tx = Transaction(
            signer_id="a",
            public_key=b"\x01" * 32,
            nonce=1,
            receiver_id="b",
            block_hash=b"\x02" * 32,
            actions=(Transfer(deposit=1),),
        )

        expected = (
            b"\x01\x00\x00\x00a"
            + b"\x00" + b"\x01" * 32
            + (1).to_bytes(8, "little")
            + b"\x01\x00\x00\x00b"
            + b"\x02" * 32
            + b"\x01\x00\x00\x00"
            + b"\x03" + (1).to_bytes(16, "little")
        )
        assert tx.serialize() == expected
        assert tx.digest() == hashlib.sha256(expected).digest()

    def test_action_tags(self):
        w = BorshWriter()
        CreateAccount().write(w)
        AddFullAccessKey(public_key=b"\x07" * 32).write(w)
        DeleteAccount(beneficiary_id="test.near").write(w)

        assert w.getvalue() == (
            b"\x00"
            + b"\x05" + b"\x00" + b"\x07" * 32 + (0).to_bytes(8, "little") + b"\x01"
            + b"\x07" + b"\x09\x00\x00\x00test.near"
        )

    def test_function_call(self):
        w = BorshWriter()
        FunctionCall(method_name="new", args=b"{}", gas=5, deposit=7).write(w)

        assert w.getvalue() == (
            b"\x02"
            + b"\x03\x00\x00\x00new"
            + b"\x02\x00\x00\x00{}"
            + (5).to_bytes(8, "little")
            + (7).to_bytes(16, "little")
        )

    def test_integer_ranges(self):
        with pytest.raises(ValueError):
            BorshWriter().u64(-1)
        with pytest.raises(ValueError):
            BorshWriter().u128(2**128)

    def test_block_hash_length(self):
        assert decode_block_hash(base58.b58encode(b"\x09" * 32).decode("ascii")) == b"\x09" * 32
        with pytest.raises(ValueError):
            decode_block_hash(base58.b58encode(b"\x09" * 31).decode("ascii"))


class TestSigning:
    def _tx(self, public_key: bytes) -> Transaction:
        return Transaction(
            signer_id="test.near",
            public_key=public_key,
            nonce=42,
            receiver_id="usn.test.near",
            block_hash=b"\x03" * 32,
            actions=(CreateAccount(), Transfer(deposit=10)),
        )

    def test_signed_transaction_verifies(self):
        key_pair = KeyPair.generate()
        tx = self._tx(key_pair.public_bytes)

        signed = sign_transaction(tx, key_pair)

        body = tx.serialize()
        assert signed[: len(body)] == body
        assert signed[len(body)] == 0
        signature = signed[len(body) + 1 :]
        assert len(signature) == 64
        Ed25519PublicKey.from_public_bytes(key_pair.public_bytes).verify(signature, hashlib.sha256(body).digest())

    def test_rejects_foreign_key(self):
        with pytest.raises(ValueError, match="does not match"):
            sign_transaction(self._tx(KeyPair.generate().public_bytes), KeyPair.generate())
