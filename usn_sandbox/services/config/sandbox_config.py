from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import ClassVar, Optional

ONE_NEAR = 10**24


@dataclass(frozen=True)
class StablePoolSpec:
    """Parameters for one Ref.Finance stable-swap pool."""

    name: str
    tokens: tuple[str, ...]
    decimals: tuple[int, ...]
    fee: int = 25
    amp_factor: int = 240

    def __post_init__(self) -> None:
        if len(self.tokens) < 2:
            raise ValueError(f"Stable pool {self.name!r} needs at least two tokens")
        if len(self.tokens) != len(self.decimals):
            raise ValueError(f"Stable pool {self.name!r}: tokens and decimals differ in length")

    def as_args(self) -> dict[str, object]:
        return {
            "tokens": list(self.tokens),
            "decimals": list(self.decimals),
            "fee": self.fee,
            "amp_factor": self.amp_factor,
        }


@dataclass(frozen=True)
class SandboxConfig:
    """Environment descriptor for a throwaway sandbox deployment.

    Defaults match a locally started `near-sandbox` with the validator key written to
    `/tmp/near-usn-test-sandbox`. Every field can be overridden from the environment,
    see `from_env`.
    """

    network_id: str = "sandbox"
    node_url: str = "http://0.0.0.0:3030"
    key_path: Path = Path("/tmp/near-usn-test-sandbox/validator_key.json")

    usn_wasm_path: Path = Path("./target/wasm32-unknown-unknown/sandbox/usn.wasm")
    usdt_wasm_path: Path = Path("./tests/test_token.wasm")
    ref_wasm_path: Path = Path("./tests/ref_exchange.wasm")
    oracle_wasm_path: Path = Path("./tests/price_oracle.wasm")

    master_id: str = "test.near"
    usn_id: str = "usn.test.near"
    usdt_id: str = "usdt.test.near"
    ref_id: str = "ref.test.near"
    oracle_id: str = "priceoracle.test.near"
    alice_id: str = "alice.test.near"
    bob_id: str = "bob.test.near"

    # yoctoNEAR attached to every created account.
    amount: int = 300 * ONE_NEAR
    share_master_key: bool = True

    exchange_fee: int = 1600
    referral_fee: int = 400
    usdt_treasury_amount: str = "10000000000000"
    storage_deposit_amount: int = 10**22
    register_tokens_amount: int = 1
    pool_creation_amount: int = 3540000000000000000000
    # None means the default pair of USN/USDT pools.
    stable_pools: Optional[tuple[StablePoolSpec, ...]] = None

    oracle_recency_duration_sec: int = 360
    oracle_asset_id: str = "wrap.test.near"
    oracle_price_multiplier: str = "111439"
    oracle_price_decimals: int = 28

    _DEFAULT_SETUP_TIMEOUT_SECONDS: ClassVar[float] = 60.0
    _DEFAULT_TEARDOWN_TIMEOUT_SECONDS: ClassVar[float] = 10.0
    _DEFAULT_RPC_TIMEOUT_SECONDS: ClassVar[float] = 30.0
    setup_timeout_seconds: float = _DEFAULT_SETUP_TIMEOUT_SECONDS
    teardown_timeout_seconds: float = _DEFAULT_TEARDOWN_TIMEOUT_SECONDS
    teardown_concurrency: int = 4
    rpc_timeout_seconds: float = _DEFAULT_RPC_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.stable_pools is None:
            object.__setattr__(self, "stable_pools", self.default_stable_pools(count=2))
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if self.teardown_concurrency <= 0:
            raise ValueError("teardown_concurrency must be positive")

    def default_stable_pools(self, *, count: int) -> tuple[StablePoolSpec, ...]:
        """USN/USDT pools with identical parameters.

        The sandbox tests address the second pool separately from the first, so the
        default keeps two of them. Names only differ to keep log lines readable.
        """

        if count < 0:
            raise ValueError("stable pool count must not be negative")

        def _name(i: int) -> str:
            if i == 0:
                return "usn_usdt"
            if i == 1:
                return "usn_usdt_secondary"
            return f"usn_usdt_{i}"

        return tuple(
            StablePoolSpec(name=_name(i), tokens=(self.usn_id, self.usdt_id), decimals=(18, 6))
            for i in range(count)
        )

    @property
    def pools(self) -> tuple[StablePoolSpec, ...]:
        return self.stable_pools or ()

    @property
    def provisioned_account_ids(self) -> tuple[str, ...]:
        """Accounts created under the master account, in creation order."""

        return (self.usn_id, self.usdt_id, self.ref_id, self.oracle_id, self.alice_id, self.bob_id)

    @property
    def teardown_account_ids(self) -> tuple[str, ...]:
        """Accounts deleted on teardown. The token and exchange accounts are kept."""

        return (self.alice_id, self.bob_id, self.usn_id, self.oracle_id)

    @staticmethod
    def _env_int(name: str, default: int) -> int:
        raw = os.getenv(name)
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid {name}; must be an integer") from exc

    @staticmethod
    def _env_float(name: str, default: float) -> float:
        raw = os.getenv(name)
        if not raw:
            return default
        try:
            return float(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid {name}; must be a number") from exc

    @staticmethod
    def _env_bool(name: str, default: bool) -> bool:
        raw = (os.getenv(name) or "").strip().lower()
        if not raw:
            return default
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Invalid {name}; must be a boolean")

    @staticmethod
    def _env_path(name: str, default: Path) -> Path:
        raw = os.getenv(name)
        return Path(raw) if raw else default

    @staticmethod
    def from_env(*, stable_pool_count: Optional[int] = None) -> "SandboxConfig":
        defaults = SandboxConfig()

        config = SandboxConfig(
            network_id=os.getenv("NEAR_SANDBOX_NETWORK_ID") or defaults.network_id,
            node_url=(os.getenv("NEAR_SANDBOX_NODE_URL") or defaults.node_url).rstrip("/"),
            key_path=SandboxConfig._env_path("NEAR_SANDBOX_KEY_PATH", defaults.key_path),
            usn_wasm_path=SandboxConfig._env_path("USN_WASM_PATH", defaults.usn_wasm_path),
            usdt_wasm_path=SandboxConfig._env_path("USDT_WASM_PATH", defaults.usdt_wasm_path),
            ref_wasm_path=SandboxConfig._env_path("REF_WASM_PATH", defaults.ref_wasm_path),
            oracle_wasm_path=SandboxConfig._env_path("PRICEORACLE_WASM_PATH", defaults.oracle_wasm_path),
            master_id=os.getenv("NEAR_SANDBOX_MASTER_ID") or defaults.master_id,
            amount=SandboxConfig._env_int("SANDBOX_ACCOUNT_AMOUNT", defaults.amount),
            share_master_key=SandboxConfig._env_bool("SANDBOX_SHARE_MASTER_KEY", defaults.share_master_key),
            setup_timeout_seconds=SandboxConfig._env_float(
                "SANDBOX_SETUP_TIMEOUT_SECONDS", SandboxConfig._DEFAULT_SETUP_TIMEOUT_SECONDS
            ),
            teardown_timeout_seconds=SandboxConfig._env_float(
                "SANDBOX_TEARDOWN_TIMEOUT_SECONDS", SandboxConfig._DEFAULT_TEARDOWN_TIMEOUT_SECONDS
            ),
            teardown_concurrency=SandboxConfig._env_int("SANDBOX_TEARDOWN_CONCURRENCY", defaults.teardown_concurrency),
            rpc_timeout_seconds=SandboxConfig._env_float(
                "NEAR_RPC_TIMEOUT_SECONDS", SandboxConfig._DEFAULT_RPC_TIMEOUT_SECONDS
            ),
        )

        pool_count = stable_pool_count
        if pool_count is None:
            pool_count = SandboxConfig._env_int("SANDBOX_STABLE_POOL_COUNT", len(config.pools))
        if pool_count != len(config.pools):
            config = replace(config, stable_pools=config.default_stable_pools(count=pool_count))
        return config
