from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from usn_sandbox.services.near_session import AccountHandle, ContractHandle

logger = logging.getLogger(__name__)


class ContractDeploymentError(RuntimeError):
    pass


class ContractInitializationError(RuntimeError):
    pass


class ContractNotDeployedError(ContractInitializationError):
    pass


class DuplicateInitializationError(ContractInitializationError):
    pass


class ContractState(str, Enum):
    PENDING = "pending"
    DEPLOYED = "deployed"
    INITIALIZED = "initialized"


class ContractSetupService:
    """Deploys contract binaries and runs each contract's `new` exactly once.

    The service tracks `pending -> deployed -> initialized` per contract account and
    refuses to initialize out of order instead of relying on the contract to reject
    a second `new`.
    """

    def __init__(self) -> None:
        self._states: dict[str, ContractState] = {}

    def state_of(self, contract_id: str) -> ContractState:
        return self._states.get(contract_id, ContractState.PENDING)

    def forget(self, contract_id: str) -> None:
        """Drop the lifecycle state of a contract whose account was deleted."""

        self._states.pop(contract_id, None)

    def reset(self) -> None:
        self._states.clear()

    @staticmethod
    def read_binary(path: Path) -> bytes:
        try:
            code = path.read_bytes()
        except FileNotFoundError as exc:
            raise ContractDeploymentError(f"Contract binary not found: {path}") from exc
        except OSError as exc:
            raise ContractDeploymentError(f"Contract binary not readable: {path}") from exc
        if not code:
            raise ContractDeploymentError(f"Contract binary is empty: {path}")
        return code

    async def deploy(self, *, account: AccountHandle, wasm_path: Path) -> None:
        code = self.read_binary(wasm_path)
        try:
            await account.deploy_contract(code)
        except Exception as exc:
            raise ContractDeploymentError(f"Failed deploying {wasm_path} to {account.account_id}: {exc}") from exc

        # Redeploying replaces the code but not the contract state.
        if self.state_of(account.account_id) is ContractState.PENDING:
            self._states[account.account_id] = ContractState.DEPLOYED
        logger.info("Deployed %s to %s (%d bytes)", wasm_path.name, account.account_id, len(code))

    async def initialize(self, *, contract: ContractHandle, args: Optional[dict[str, Any]] = None) -> Any:
        contract_id = contract.contract_id
        state = self.state_of(contract_id)
        if state is ContractState.PENDING:
            raise ContractNotDeployedError(f"Cannot initialize {contract_id}: no contract deployed")
        if state is ContractState.INITIALIZED:
            raise DuplicateInitializationError(f"Contract {contract_id} is already initialized")

        try:
            result = await contract.call("new", args=args or {})
        except Exception as exc:
            raise ContractInitializationError(f"Failed initializing {contract_id}: {exc}") from exc

        self._states[contract_id] = ContractState.INITIALIZED
        logger.info("Initialized %s", contract_id)
        return result
