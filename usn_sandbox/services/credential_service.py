from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import base58
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from pydantic import ValidationError

from usn_sandbox.models.near import KeyFile

logger = logging.getLogger(__name__)

ED25519_PREFIX = "ed25519:"
# Borsh enum tag of `KeyType::ED25519`.
ED25519_KEY_TYPE = 0


class CredentialLoadError(RuntimeError):
    pass


def _decode_key(text: str, *, what: str) -> bytes:
    if not text or not text.startswith(ED25519_PREFIX):
        raise ValueError(f"{what} must start with {ED25519_PREFIX!r}")
    try:
        return base58.b58decode(text[len(ED25519_PREFIX):])
    except ValueError as exc:
        raise ValueError(f"{what} is not valid base58") from exc


def decode_public_key(text: str) -> bytes:
    """Parse an `ed25519:<base58>` public key into its 32 raw bytes."""

    raw = _decode_key(text, what="public key")
    if len(raw) != 32:
        raise ValueError(f"public key must be 32 bytes (got {len(raw)})")
    return raw


def encode_public_key(raw: bytes) -> str:
    return ED25519_PREFIX + base58.b58encode(raw).decode("ascii")


@dataclass(frozen=True)
class KeyPair:
    """ed25519 keypair in NEAR's string encoding."""

    seed: bytes = field(repr=False)
    public_bytes: bytes

    @staticmethod
    def from_secret_key(text: str) -> "KeyPair":
        raw = _decode_key(text, what="secret key")
        # NEAR stores the 32-byte seed followed by the 32-byte public key.
        if len(raw) not in (32, 64):
            raise ValueError(f"secret key must be 32 or 64 bytes (got {len(raw)})")
        seed = raw[:32]
        public_bytes = (
            Ed25519PrivateKey.from_private_bytes(seed)
            .public_key()
            .public_bytes(Encoding.Raw, PublicFormat.Raw)
        )
        if len(raw) == 64 and raw[32:] != public_bytes:
            raise ValueError("secret key does not embed its own public key")
        return KeyPair(seed=seed, public_bytes=public_bytes)

    @staticmethod
    def generate() -> "KeyPair":
        private_key = Ed25519PrivateKey.generate()
        seed = private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        public_bytes = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return KeyPair(seed=seed, public_bytes=public_bytes)

    @property
    def public_key(self) -> str:
        return encode_public_key(self.public_bytes)

    @property
    def secret_key(self) -> str:
        return ED25519_PREFIX + base58.b58encode(self.seed + self.public_bytes).decode("ascii")

    def sign(self, message: bytes) -> bytes:
        return Ed25519PrivateKey.from_private_bytes(self.seed).sign(message)


@dataclass(frozen=True)
class SigningCredential:
    """A keypair together with the network it is valid for."""

    network_id: str
    key_pair: KeyPair
    account_id: Optional[str] = None

    @property
    def public_key(self) -> str:
        return self.key_pair.public_key


class CredentialService:
    """Reads the sandbox validator key from local storage."""

    def __init__(self, *, key_path: Path, network_id: str) -> None:
        self._key_path = key_path
        self._network_id = network_id

    def load(self) -> SigningCredential:
        """Parse the JSON key file into a `SigningCredential`.

        Raises:
            CredentialLoadError: if the file is missing, is not JSON, lacks the key
                fields, or its public key does not belong to its secret key.
        """

        path = self._key_path
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise CredentialLoadError(f"Key file not found: {path}") from exc
        except (OSError, ValueError) as exc:
            raise CredentialLoadError(f"Key file is not readable JSON: {path}") from exc

        try:
            key_file = KeyFile.model_validate(payload)
        except ValidationError as exc:
            raise CredentialLoadError(f"Key file is missing secret_key/public_key: {path}") from exc

        try:
            key_pair = KeyPair.from_secret_key(key_file.secret_key)
            declared_public = decode_public_key(key_file.public_key)
        except ValueError as exc:
            raise CredentialLoadError(f"Malformed key in {path}: {exc}") from exc

        if declared_public != key_pair.public_bytes:
            raise CredentialLoadError(f"public_key does not match secret_key in {path}")

        logger.info("Loaded signing key %s from %s", key_pair.public_key, path)
        return SigningCredential(
            network_id=self._network_id,
            key_pair=key_pair,
            account_id=key_file.account_id,
        )
