from __future__ import annotations

import base64
import json
from typing import Any, Optional

from pydantic import BaseModel, Field

# base58 of 32 zero bytes: the code hash of an account with no contract.
EMPTY_CODE_HASH = "11111111111111111111111111111111"


class KeyFile(BaseModel):
    """On-disk key file as written by `near-sandbox init` (validator_key.json)."""

    account_id: Optional[str] = None
    public_key: str = Field(..., description="ed25519:<base58> public key")
    secret_key: str = Field(..., description="ed25519:<base58> 64-byte secret key")


class AccountView(BaseModel):
    account_id: str
    amount: int
    locked: int = 0
    code_hash: str = EMPTY_CODE_HASH
    storage_usage: int = 0

    @property
    def has_contract(self) -> bool:
        return self.code_hash != EMPTY_CODE_HASH

    @staticmethod
    def from_rpc(account_id: str, result: dict[str, Any]) -> "AccountView":
        return AccountView(
            account_id=account_id,
            amount=int(result.get("amount", 0)),
            locked=int(result.get("locked", 0)),
            code_hash=str(result.get("code_hash") or EMPTY_CODE_HASH),
            storage_usage=int(result.get("storage_usage", 0)),
        )


class AccessKeyView(BaseModel):
    nonce: int
    block_hash: str
    permission: Any = None

    @staticmethod
    def from_rpc(result: dict[str, Any]) -> "AccessKeyView":
        return AccessKeyView(
            nonce=int(result.get("nonce", 0)),
            block_hash=str(result.get("block_hash", "")),
            permission=result.get("permission"),
        )


class ExecutionOutcome(BaseModel):
    """Final status of a committed transaction (`broadcast_tx_commit`)."""

    transaction_hash: Optional[str] = None
    success_value: Optional[str] = None
    failure: Optional[Any] = None
    logs: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    def value(self) -> Any:
        """Decoded return value of the last receipt.

        JSON payloads are parsed; anything else is returned as text. Empty results
        (e.g. `new`, `add_asset`) decode to None.
        """

        if not self.success_value:
            return None
        raw = base64.b64decode(self.success_value)
        if not raw:
            return None
        text = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except ValueError:
            return text

    def failure_message(self) -> str:
        if self.failure is None:
            return ""
        return json.dumps(self.failure, separators=(",", ":"), sort_keys=True)

    @staticmethod
    def from_rpc(result: dict[str, Any]) -> "ExecutionOutcome":
        status = result.get("status") or {}
        tx_outcome = result.get("transaction_outcome") or {}

        logs: list[str] = []
        for receipt in result.get("receipts_outcome") or []:
            logs.extend((receipt.get("outcome") or {}).get("logs") or [])

        success_value: Optional[str] = None
        failure: Optional[Any] = None
        if isinstance(status, dict):
            if "Failure" in status:
                failure = status["Failure"]
            elif "SuccessValue" in status:
                success_value = status["SuccessValue"]

        return ExecutionOutcome(
            transaction_hash=tx_outcome.get("id"),
            success_value=success_value,
            failure=failure,
            logs=logs,
        )
