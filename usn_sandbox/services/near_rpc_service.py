from __future__ import annotations

import asyncio
import base64
import json
import logging
from http import HTTPStatus
from typing import Any, Optional

import aiohttp

from usn_sandbox.models.near import AccessKeyView, AccountView, ExecutionOutcome

logger = logging.getLogger(__name__)


class NearRpcError(RuntimeError):
    pass


class NearTransactionError(NearRpcError):
    """A committed transaction finished with a `Failure` status."""

    def __init__(self, message: str, *, outcome: Optional[ExecutionOutcome] = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class NearRpcService:
    """Minimal NEAR JSON-RPC client over a shared aiohttp session.

    Covers the handful of calls the provisioner needs (status, view queries, and
    `broadcast_tx_commit`); signing happens in the caller.
    """

    def __init__(self, *, node_url: str, session: aiohttp.ClientSession, timeout_seconds: float = 30.0) -> None:
        self._node_url = node_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def node_url(self) -> str:
        return self._node_url

    async def _request(self, *, method: str, params: Any) -> Any:
        body = {"jsonrpc": "2.0", "id": "dontcare", "method": method, "params": params}
        try:
            async with self._session.post(self._node_url, json=body, timeout=self._timeout) as resp:
                status = resp.status
                payload = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.exception("NEAR RPC request failed (method=%s)", method)
            raise NearRpcError(f"NEAR RPC request failed (method={method}): {exc}") from exc

        try:
            parsed = json.loads(payload.decode("utf-8")) if payload else {}
        except ValueError:
            parsed = {}

        error = parsed.get("error") if isinstance(parsed, dict) else None
        if error:
            raise NearRpcError(f"NEAR RPC error (method={method}): {self._describe_error(error)}")

        if status != HTTPStatus.OK or "result" not in parsed:
            details = payload.decode("utf-8", errors="replace") if payload else ""
            raise NearRpcError(f"Unexpected NEAR RPC response (method={method}) HTTP {status} {details}".strip())

        return parsed["result"]

    @staticmethod
    def _describe_error(error: Any) -> str:
        if not isinstance(error, dict):
            return str(error)
        # Structured errors carry the useful part in `data` (e.g. an InvalidTxError).
        data = error.get("data")
        cause = error.get("cause") or {}
        name = cause.get("name") if isinstance(cause, dict) else None
        parts = [str(p) for p in (name or error.get("name"), error.get("message")) if p]
        if data:
            parts.append(data if isinstance(data, str) else json.dumps(data, separators=(",", ":")))
        return ": ".join(parts) or json.dumps(error)

    async def status(self) -> dict[str, Any]:
        return await self._request(method="status", params=[])

    async def query(self, *, request_type: str, finality: str = "optimistic", **params: Any) -> dict[str, Any]:
        result = await self._request(
            method="query",
            params={"request_type": request_type, "finality": finality, **params},
        )
        # Older nodes report query failures inside a successful result.
        if isinstance(result, dict) and result.get("error"):
            raise NearRpcError(f"NEAR query failed (request_type={request_type}): {result['error']}")
        return result

    async def view_account(self, *, account_id: str) -> AccountView:
        result = await self.query(request_type="view_account", account_id=account_id)
        return AccountView.from_rpc(account_id, result)

    async def view_access_key(self, *, account_id: str, public_key: str) -> AccessKeyView:
        result = await self.query(request_type="view_access_key", account_id=account_id, public_key=public_key)
        return AccessKeyView.from_rpc(result)

    async def call_function(self, *, account_id: str, method_name: str, args: Optional[dict[str, Any]] = None) -> Any:
        """Run a view method and return its JSON-decoded result."""

        args_base64 = base64.b64encode(json.dumps(args or {}).encode("utf-8")).decode("ascii")
        result = await self.query(
            request_type="call_function",
            account_id=account_id,
            method_name=method_name,
            args_base64=args_base64,
        )
        raw = bytes(result.get("result") or [])
        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError:
            return raw.decode("utf-8", errors="replace")

    async def broadcast_tx_commit(self, *, signed_transaction: bytes) -> ExecutionOutcome:
        encoded = base64.b64encode(signed_transaction).decode("ascii")
        result = await self._request(method="broadcast_tx_commit", params=[encoded])
        return ExecutionOutcome.from_rpc(result)
