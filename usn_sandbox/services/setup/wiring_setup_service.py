from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from usn_sandbox.services.config import SandboxConfig, StablePoolSpec
from usn_sandbox.services.near_session import ContractHandle

logger = logging.getLogger(__name__)


class WiringError(RuntimeError):
    pass


@dataclass(frozen=True)
class PoolReference:
    """Explicit handle to a stable-swap pool on the exchange."""

    index: int
    name: str
    spec: StablePoolSpec


class StablePoolFactory:
    """Creates exchange pools and hands out their indices.

    Ref.Finance numbers pools in creation order starting at 0. When the exchange
    returns the new pool id it must agree with that order.
    """

    def __init__(self, *, exchange: ContractHandle, deposit: int) -> None:
        self._exchange = exchange
        self._deposit = deposit
        self._pools: list[PoolReference] = []

    @property
    def pools(self) -> tuple[PoolReference, ...]:
        return tuple(self._pools)

    async def create(self, spec: StablePoolSpec) -> PoolReference:
        expected = len(self._pools)
        returned = await self._exchange.call("add_stable_swap_pool", args=spec.as_args(), amount=self._deposit)

        if isinstance(returned, int) and not isinstance(returned, bool) and returned != expected:
            raise WiringError(
                f"Exchange returned pool id {returned} for {spec.name!r}, expected {expected}; "
                "the exchange already held pools before setup"
            )

        ref = PoolReference(index=expected, name=spec.name, spec=spec)
        self._pools.append(ref)
        logger.info("Created stable pool %s (pool_id=%d, tokens=%s)", spec.name, ref.index, list(spec.tokens))
        return ref


class WiringSetupService:
    """Cross-contract choreography between the token, exchange and oracle contracts."""

    def __init__(self, *, config: SandboxConfig) -> None:
        self._config = config

    async def _call(self, contract: ContractHandle, method_name: str, **kwargs: Any) -> Any:
        try:
            return await contract.call(method_name, **kwargs)
        except Exception as exc:
            raise WiringError(
                f"{contract.contract_id}.{method_name} (as {contract.account.account_id}) failed: {exc}"
            ) from exc

    async def register_token_holders(self, *, usdt: ContractHandle) -> None:
        """Mint the USDT treasury and open zero-balance ledger entries.

        Transfers of USDT to the exchange and to USN fail without a storage slot, so
        both get a zero mint before either is used.
        """

        config = self._config
        await self._call(usdt, "mint", args={"account_id": config.usdt_id, "amount": config.usdt_treasury_amount})
        for holder in (config.ref_id, config.usn_id):
            await self._call(usdt, "mint", args={"account_id": holder, "amount": "0"})
        logger.info("Registered USDT holders %s", [config.ref_id, config.usn_id])

    async def register_exchange_depositor(self, *, depositor_on_exchange: ContractHandle) -> None:
        await self._call(depositor_on_exchange, "storage_deposit", args={}, amount=self._config.storage_deposit_amount)

    async def register_exchange_tokens(self, *, depositor_on_exchange: ContractHandle) -> None:
        config = self._config
        await self._call(
            depositor_on_exchange,
            "register_tokens",
            args={"token_ids": [config.usdt_id, config.usn_id]},
            amount=config.register_tokens_amount,
        )

    async def create_stable_pools(
        self,
        *,
        factory: StablePoolFactory,
        specs: Sequence[StablePoolSpec],
    ) -> list[PoolReference]:
        refs: list[PoolReference] = []
        for spec in specs:
            try:
                refs.append(await factory.create(spec))
            except WiringError:
                raise
            except Exception as exc:
                raise WiringError(f"Failed creating stable pool {spec.name!r}: {exc}") from exc
        return refs

    async def add_price_reporter(self, *, oracle: ContractHandle) -> None:
        await self._call(oracle, "add_oracle", args={"account_id": self._config.oracle_id})

    async def add_price_asset(self, *, oracle: ContractHandle) -> None:
        await self._call(oracle, "add_asset", args={"asset_id": self._config.oracle_asset_id})

    async def report_price(self, *, oracle: ContractHandle) -> None:
        config = self._config
        await self._call(
            oracle,
            "report_prices",
            args={
                "prices": [
                    {
                        "asset_id": config.oracle_asset_id,
                        "price": {
                            "multiplier": config.oracle_price_multiplier,
                            "decimals": config.oracle_price_decimals,
                        },
                    }
                ]
            },
        )
        logger.info(
            "Reported %s price %s/1e%d",
            config.oracle_asset_id,
            config.oracle_price_multiplier,
            config.oracle_price_decimals,
        )
