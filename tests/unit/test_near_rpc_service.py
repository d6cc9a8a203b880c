import asyncio
import base64
import hashlib
import json
import struct

import aiohttp
import base58
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from usn_sandbox.services.config import REF_ABI, SandboxConfig
from usn_sandbox.services.credential_service import KeyPair
from usn_sandbox.services.key_registry import KeyRegistry, KeyRegistryError
from usn_sandbox.services.near_rpc_service import NearRpcError, NearRpcService, NearTransactionError
from usn_sandbox.services.near_session import AccountDeletedError, NearSession
from usn_sandbox.services.readiness_service import ReadinessService, SandboxUnreachableError

BLOCK_HASH = base58.b58encode(b"\x05" * 32).decode("ascii")


class FakeNode:
    """JSON-RPC endpoint answering the calls the provisioner makes."""

    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.signed: list[bytes] = []
        self.access_key_nonce = 7
        self.tx_status: dict = {"SuccessValue": base64.b64encode(b"0").decode("ascii")}
        self.errors: dict[str, dict] = {}

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/", self.handle)
        app.router.add_get("/status", self.handle_status)
        return app

    async def handle_status(self, request: web.Request) -> web.Response:
        return web.json_response({"chain_id": "sandbox"})

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        method = body["method"]
        params = body["params"]

        key = params.get("request_type") if isinstance(params, dict) else method
        if key in self.errors:
            return web.json_response({"jsonrpc": "2.0", "id": body["id"], "error": self.errors[key]})

        if method == "status":
            result = {"chain_id": "sandbox"}
        elif method == "broadcast_tx_commit":
            self.signed.append(base64.b64decode(params[0]))
            result = {
                "status": self.tx_status,
                "transaction_outcome": {"id": "tx-hash"},
                "receipts_outcome": [{"outcome": {"logs": ["pool added"]}}],
            }
        elif params["request_type"] == "view_account":
            result = {"amount": "1000", "locked": "0", "code_hash": "11111111111111111111111111111111"}
        elif params["request_type"] == "view_access_key":
            result = {"nonce": self.access_key_nonce, "block_hash": BLOCK_HASH, "permission": "FullAccess"}
        elif params["request_type"] == "call_function":
            args = json.loads(base64.b64decode(params["args_base64"]))
            payload = json.dumps({"pool_id": args["pool_id"], "amp": 240}).encode("utf-8")
            result = {"result": list(payload), "logs": []}
        else:
            result = {}
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": result})


def _run_with_node(node: FakeNode, scenario):
    async def _main():
        server = TestServer(node.app())
        await server.start_server()
        try:
            async with aiohttp.ClientSession() as http_session:
                return await scenario(f"http://{server.host}:{server.port}", http_session)
        finally:
            await server.close()

    return asyncio.run(_main())


def _session(url, http_session, key_registry):
    rpc = NearRpcService(node_url=url, session=http_session)
    return NearSession(network_id="sandbox", rpc=rpc, key_registry=key_registry)


def _nonce_of(signed: bytes, signer_id: str) -> int:
    offset = 4 + len(signer_id) + 33
    return struct.unpack("<Q", signed[offset : offset + 8])[0]


@pytest.fixture
def key_registry():
    registry = KeyRegistry()
    registry.set_key("sandbox", "test.near", KeyPair.generate())
    return registry


class TestNearRpcService:
    def test_view_account(self):
        async def scenario(url, http_session):
            return await NearRpcService(node_url=url, session=http_session).view_account(account_id="usn.test.near")

        view = _run_with_node(FakeNode(), scenario)

        assert view.account_id == "usn.test.near"
        assert view.amount == 1000
        assert not view.has_contract

    def test_call_function_decodes_json_bytes(self):
        node = FakeNode()

        async def scenario(url, http_session):
            rpc = NearRpcService(node_url=url, session=http_session)
            return await rpc.call_function(account_id="ref.test.near", method_name="get_stable_pool", args={"pool_id": 1})

        assert _run_with_node(node, scenario) == {"pool_id": 1, "amp": 240}
        assert node.requests[0]["params"]["method_name"] == "get_stable_pool"

    def test_error_object_becomes_rpc_error(self):
        node = FakeNode()
        node.errors["view_account"] = {
            "name": "HANDLER_ERROR",
            "cause": {"name": "UNKNOWN_ACCOUNT"},
            "message": "Server error",
            "data": "account usn.test.near does not exist while viewing",
        }

        async def scenario(url, http_session):
            return await NearRpcService(node_url=url, session=http_session).view_account(account_id="usn.test.near")

        with pytest.raises(NearRpcError, match="UNKNOWN_ACCOUNT"):
            _run_with_node(node, scenario)

    def test_connection_failure_becomes_rpc_error(self):
        async def _main():
            server = TestServer(web.Application())
            await server.start_server()
            url = f"http://{server.host}:{server.port}"
            await server.close()
            async with aiohttp.ClientSession() as http_session:
                await NearRpcService(node_url=url, session=http_session, timeout_seconds=2).status()

        with pytest.raises(NearRpcError, match="method=status"):
            asyncio.run(_main())


class TestAccountHandle:
    def test_function_call_signs_with_registered_key(self, key_registry):
        node = FakeNode()

        async def scenario(url, http_session):
            master = _session(url, http_session, key_registry).account("test.near")
            first = await master.function_call(contract_id="ref.test.near", method_name="add_stable_swap_pool", amount=5)
            second = await master.function_call(contract_id="ref.test.near", method_name="add_stable_swap_pool", amount=5)
            return first, second

        first, second = _run_with_node(node, scenario)

        assert (first, second) == (0, 0)
        key_pair = key_registry.get_key("sandbox", "test.near")
        for signed in node.signed:
            body, key_type, signature = signed[:-65], signed[-65], signed[-64:]
            assert key_type == 0
            Ed25519PublicKey.from_public_bytes(key_pair.public_bytes).verify(signature, hashlib.sha256(body).digest())
        # The node keeps reporting the old nonce; the handle still never reuses one.
        assert [_nonce_of(s, "test.near") for s in node.signed] == [8, 9]

    def test_failed_transaction_raises_with_outcome(self, key_registry):
        node = FakeNode()
        node.tx_status = {"Failure": {"ActionError": {"kind": {"FunctionCallError": "E10: account not registered"}}}}

        async def scenario(url, http_session):
            master = _session(url, http_session, key_registry).account("test.near")
            await master.function_call(contract_id="ref.test.near", method_name="register_tokens", amount=1)

        with pytest.raises(NearTransactionError, match="E10") as excinfo:
            _run_with_node(node, scenario)
        assert excinfo.value.outcome is not None
        assert excinfo.value.outcome.logs == ["pool added"]

    def test_deleted_handle_is_unusable(self, key_registry):
        async def scenario(url, http_session):
            session = _session(url, http_session, key_registry)
            await session.account("test.near").delete_account("near")
            await session.account("test.near").state()

        with pytest.raises(AccountDeletedError):
            _run_with_node(FakeNode(), scenario)

    def test_unregistered_signer_is_rejected_before_sending(self, key_registry):
        node = FakeNode()

        async def scenario(url, http_session):
            await _session(url, http_session, key_registry).account("bob.test.near").deploy_contract(b"\x00asm")

        with pytest.raises(KeyRegistryError, match="No signing key"):
            _run_with_node(node, scenario)
        assert node.signed == []

    def test_contract_view_goes_through_query(self, key_registry):
        async def scenario(url, http_session):
            session = _session(url, http_session, key_registry)
            ref = session.contract(session.account("test.near"), "ref.test.near", REF_ABI)
            return await ref.get_stable_pool(args={"pool_id": 0})

        assert _run_with_node(FakeNode(), scenario) == {"pool_id": 0, "amp": 240}

    def test_connect_reads_node_status(self, key_registry):
        async def scenario(url, http_session):
            session = await NearSession.connect(
                config=SandboxConfig(node_url=url),
                key_registry=key_registry,
                http_session=http_session,
            )
            return session.network_id

        assert _run_with_node(FakeNode(), scenario) == "sandbox"


class TestReadinessService:
    def test_any_http_response_is_reachable(self):
        async def scenario(url, http_session):
            return await ReadinessService(node_url=url, session=http_session).is_reachable()

        assert _run_with_node(FakeNode(), scenario) is True

    def test_closed_port_fails_with_remediation(self):
        async def _main():
            server = TestServer(web.Application())
            await server.start_server()
            url = f"http://{server.host}:{server.port}"
            await server.close()
            async with aiohttp.ClientSession() as http_session:
                await ReadinessService(node_url=url, session=http_session, timeout_seconds=2).ensure_reachable()

        with pytest.raises(SandboxUnreachableError, match="npm run sandbox"):
            asyncio.run(_main())
