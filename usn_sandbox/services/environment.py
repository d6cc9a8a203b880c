from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Optional

from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.key_registry import KeyRegistry
from usn_sandbox.services.near_session import AccountHandle, ContractHandle, NearSession
from usn_sandbox.services.setup.wiring_setup_service import PoolReference

logger = logging.getLogger(__name__)


class EnvironmentNotReadyError(RuntimeError):
    pass


@dataclass(frozen=True)
class SandboxEnvironment:
    """Live handles of a fully provisioned sandbox.

    Only a setup run that completed every step produces one of these, so holding an
    instance means the whole environment exists.
    """

    config: SandboxConfig
    session: NearSession
    key_registry: KeyRegistry
    master_account: AccountHandle
    usn_account: AccountHandle
    usn_contract: ContractHandle
    usdt_contract: ContractHandle
    ref_contract: ContractHandle
    oracle_contract: ContractHandle
    alice_account: AccountHandle
    alice_contract: ContractHandle
    bob_account: AccountHandle
    bob_contract: ContractHandle
    bob_usdt: ContractHandle
    pools: tuple[PoolReference, ...]

    @classmethod
    def handle_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def get(self, name: str) -> Any:
        if name not in self.handle_names():
            raise KeyError(f"Unknown sandbox handle: {name!r}")
        return getattr(self, name)

    def pool(self, name: str) -> PoolReference:
        for ref in self.pools:
            if ref.name == name:
                return ref
        raise KeyError(f"Unknown stable pool: {name!r}")

    def teardown_accounts(self) -> list[AccountHandle]:
        return [self.session.account(account_id) for account_id in self.config.teardown_account_ids]


class RegistryState(str, Enum):
    UNINITIALIZED = "uninitialized"
    POPULATED = "populated"
    TORN_DOWN = "torn_down"


class EnvironmentRegistry:
    """Visibility gate for a `SandboxEnvironment`.

    Populated once with a complete environment, readable until `clear()`.
    """

    def __init__(self) -> None:
        self._state = RegistryState.UNINITIALIZED
        self._environment: Optional[SandboxEnvironment] = None

    @property
    def state(self) -> RegistryState:
        return self._state

    def populate(self, environment: SandboxEnvironment) -> None:
        if self._state is not RegistryState.UNINITIALIZED:
            raise EnvironmentNotReadyError(f"Environment registry cannot be populated from state {self._state.value}")
        self._environment = environment
        self._state = RegistryState.POPULATED
        logger.info("Sandbox environment registered (%d pools)", len(environment.pools))

    @property
    def environment(self) -> SandboxEnvironment:
        if self._state is not RegistryState.POPULATED or self._environment is None:
            raise EnvironmentNotReadyError(f"Sandbox environment is not available (state={self._state.value})")
        return self._environment

    def get(self, name: str) -> Any:
        return self.environment.get(name)

    def clear(self) -> None:
        self._environment = None
        self._state = RegistryState.TORN_DOWN
