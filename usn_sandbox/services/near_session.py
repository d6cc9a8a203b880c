from __future__ import annotations

import asyncio
import json
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from usn_sandbox.models.near import AccountView, ExecutionOutcome
from usn_sandbox.services.config import ContractAbi, SandboxConfig
from usn_sandbox.services.credential_service import decode_public_key
from usn_sandbox.services.key_registry import KeyRegistry
from usn_sandbox.services.near_rpc_service import NearRpcError, NearRpcService, NearTransactionError
from usn_sandbox.services.near_transactions import (
    DEFAULT_FUNCTION_CALL_GAS,
    Action,
    AddFullAccessKey,
    CreateAccount,
    DeleteAccount,
    DeployContract,
    FunctionCall,
    Transaction,
    Transfer,
    decode_block_hash,
    sign_transaction,
)

logger = logging.getLogger(__name__)


class AccountDeletedError(NearRpcError):
    pass


class ContractMethodError(AttributeError):
    pass


class NearSession:
    """Connected client bound to a key registry.

    Handles derived from the session sign with whatever key the registry holds for
    their account at call time.
    """

    def __init__(self, *, network_id: str, rpc: NearRpcService, key_registry: KeyRegistry) -> None:
        self._network_id = network_id
        self._rpc = rpc
        self._key_registry = key_registry
        self._deleted: set[str] = set()

    @staticmethod
    async def connect(
        *,
        config: SandboxConfig,
        key_registry: KeyRegistry,
        http_session: aiohttp.ClientSession,
    ) -> "NearSession":
        rpc = NearRpcService(
            node_url=config.node_url,
            session=http_session,
            timeout_seconds=config.rpc_timeout_seconds,
        )
        status = await rpc.status()
        chain_id = status.get("chain_id")
        if chain_id and chain_id != config.network_id:
            logger.warning("Node reports chain_id=%r, configured network_id=%r", chain_id, config.network_id)
        logger.info("Connected to NEAR node %s (chain_id=%s)", config.node_url, chain_id)
        return NearSession(network_id=config.network_id, rpc=rpc, key_registry=key_registry)

    @property
    def network_id(self) -> str:
        return self._network_id

    @property
    def rpc(self) -> NearRpcService:
        return self._rpc

    @property
    def key_registry(self) -> KeyRegistry:
        return self._key_registry

    def account(self, account_id: str) -> "AccountHandle":
        return AccountHandle(account_id=account_id, session=self)

    def contract(self, account: "AccountHandle", contract_id: str, abi: ContractAbi) -> "ContractHandle":
        """Bind `abi` on `contract_id`, signing change calls as `account`."""

        return ContractHandle(account=account, contract_id=contract_id, abi=abi)

    def is_deleted(self, account_id: str) -> bool:
        return account_id in self._deleted

    def mark_deleted(self, account_id: str) -> None:
        self._deleted.add(account_id)


class AccountHandle:
    def __init__(self, *, account_id: str, session: NearSession) -> None:
        self._account_id = account_id
        self._session = session
        self._last_nonce = 0
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"AccountHandle({self._account_id!r})"

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def session(self) -> NearSession:
        return self._session

    @property
    def deleted(self) -> bool:
        return self._session.is_deleted(self._account_id)

    def _ensure_usable(self) -> None:
        if self.deleted:
            raise AccountDeletedError(f"Account {self._account_id} was deleted; its handle is no longer usable")

    async def state(self) -> AccountView:
        self._ensure_usable()
        return await self._session.rpc.view_account(account_id=self._account_id)

    async def sign_and_send(self, *, receiver_id: str, actions: list[Action]) -> ExecutionOutcome:
        self._ensure_usable()
        session = self._session
        key_pair = session.key_registry.get_key(session.network_id, self._account_id)

        async with self._lock:
            access_key = await session.rpc.view_access_key(
                account_id=self._account_id,
                public_key=key_pair.public_key,
            )
            nonce = max(access_key.nonce, self._last_nonce) + 1
            transaction = Transaction(
                signer_id=self._account_id,
                public_key=key_pair.public_bytes,
                nonce=nonce,
                receiver_id=receiver_id,
                block_hash=decode_block_hash(access_key.block_hash),
                actions=tuple(actions),
            )
            outcome = await session.rpc.broadcast_tx_commit(signed_transaction=sign_transaction(transaction, key_pair))
            self._last_nonce = nonce

        if not outcome.succeeded:
            raise NearTransactionError(
                f"Transaction from {self._account_id} to {receiver_id} failed: {outcome.failure_message()}",
                outcome=outcome,
            )
        return outcome

    async def create_account(self, new_account_id: str, public_key: str, amount: int) -> ExecutionOutcome:
        """Create `new_account_id` as a sub-account funded with `amount` yoctoNEAR."""

        return await self.sign_and_send(
            receiver_id=new_account_id,
            actions=[
                CreateAccount(),
                Transfer(deposit=amount),
                AddFullAccessKey(public_key=decode_public_key(public_key)),
            ],
        )

    async def deploy_contract(self, code: bytes) -> ExecutionOutcome:
        return await self.sign_and_send(receiver_id=self._account_id, actions=[DeployContract(code=code)])

    async def delete_account(self, beneficiary_id: str) -> ExecutionOutcome:
        outcome = await self.sign_and_send(
            receiver_id=self._account_id,
            actions=[DeleteAccount(beneficiary_id=beneficiary_id)],
        )
        self._session.mark_deleted(self._account_id)
        return outcome

    async def function_call(
        self,
        *,
        contract_id: str,
        method_name: str,
        args: Optional[dict[str, Any]] = None,
        amount: int = 0,
        gas: int = DEFAULT_FUNCTION_CALL_GAS,
    ) -> Any:
        outcome = await self.sign_and_send(
            receiver_id=contract_id,
            actions=[
                FunctionCall(
                    method_name=method_name,
                    args=json.dumps(args or {}).encode("utf-8"),
                    gas=gas,
                    deposit=int(amount),
                )
            ],
        )
        return outcome.value()

    async def view_function(
        self,
        *,
        contract_id: str,
        method_name: str,
        args: Optional[dict[str, Any]] = None,
    ) -> Any:
        self._ensure_usable()
        return await self._session.rpc.call_function(account_id=contract_id, method_name=method_name, args=args)


class ContractHandle:
    """Typed entry points of `contract_id`, invoked as `account`.

    Every ABI method is available as an attribute, mirroring near-api-js:

        await usdt.mint(args={"account_id": "ref.test.near", "amount": "0"})
        await ref.storage_deposit(args={}, amount=10**22)
    """

    def __init__(self, *, account: AccountHandle, contract_id: str, abi: ContractAbi) -> None:
        self._account = account
        self._contract_id = contract_id
        self._abi = abi

    def __repr__(self) -> str:
        return f"ContractHandle({self._contract_id!r}, as={self._account.account_id!r})"

    @property
    def account(self) -> AccountHandle:
        return self._account

    @property
    def contract_id(self) -> str:
        return self._contract_id

    @property
    def abi(self) -> ContractAbi:
        return self._abi

    async def call(
        self,
        method_name: str,
        *,
        args: Optional[dict[str, Any]] = None,
        amount: int = 0,
        gas: int = DEFAULT_FUNCTION_CALL_GAS,
    ) -> Any:
        if not self._abi.is_change(method_name):
            raise ContractMethodError(f"{method_name!r} is not a change method of {self._contract_id}")
        return await self._account.function_call(
            contract_id=self._contract_id,
            method_name=method_name,
            args=args,
            amount=amount,
            gas=gas,
        )

    async def view(self, method_name: str, *, args: Optional[dict[str, Any]] = None) -> Any:
        if not self._abi.is_view(method_name):
            raise ContractMethodError(f"{method_name!r} is not a view method of {self._contract_id}")
        return await self._account.view_function(contract_id=self._contract_id, method_name=method_name, args=args)

    def __getattr__(self, name: str) -> Callable[..., Awaitable[Any]]:
        if name.startswith("_"):
            raise AttributeError(name)
        if self._abi.is_change(name):
            return partial(self.call, name)
        if self._abi.is_view(name):
            return partial(self.view, name)
        raise ContractMethodError(f"{self._contract_id} has no method {name!r}")
