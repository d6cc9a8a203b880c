from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

import aiohttp

from usn_sandbox.services.config import ORACLE_ABI, REF_ABI, USDT_ABI, USN_ABI, SandboxConfig
from usn_sandbox.services.credential_service import CredentialService
from usn_sandbox.services.environment import SandboxEnvironment
from usn_sandbox.services.key_registry import KeyRegistry
from usn_sandbox.services.near_session import NearSession
from usn_sandbox.services.readiness_service import ReadinessService
from usn_sandbox.services.setup.account_setup_service import AccountSetupService
from usn_sandbox.services.setup.contract_setup_service import ContractSetupService
from usn_sandbox.services.setup.pipeline import SetupContext, SetupPipeline, SetupStep
from usn_sandbox.services.setup.teardown_service import DeletionOutcome, TeardownService
from usn_sandbox.services.setup.wiring_setup_service import StablePoolFactory, WiringSetupService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[KeyRegistry], Awaitable[NearSession]]


class SandboxSetupService:
    """Provisions and tears down the USN sandbox environment.

    Setup is a `SetupPipeline` of named steps run strictly in order; the first failing
    step aborts the run with a `SandboxSetupError` naming it. Only a run that
    finishes every step returns a `SandboxEnvironment`.
    """

    def __init__(
        self,
        *,
        config: SandboxConfig,
        readiness: ReadinessService,
        credentials: CredentialService,
        connect: SessionFactory,
        accounts: Optional[AccountSetupService] = None,
        contracts: Optional[ContractSetupService] = None,
        wiring: Optional[WiringSetupService] = None,
        teardown: Optional[TeardownService] = None,
    ) -> None:
        self._config = config
        self._readiness = readiness
        self._credentials = credentials
        self._connect = connect
        self._accounts = accounts or AccountSetupService(config=config)
        self._contracts = contracts or ContractSetupService()
        self._wiring = wiring or WiringSetupService(config=config)
        self._teardown = teardown or TeardownService(
            beneficiary_id=config.master_id,
            concurrency=config.teardown_concurrency,
        )
        self._ctx: Optional[SetupContext] = None

    @staticmethod
    def from_config(config: SandboxConfig, *, http_session: aiohttp.ClientSession) -> "SandboxSetupService":
        async def _connect(key_registry: KeyRegistry) -> NearSession:
            return await NearSession.connect(config=config, key_registry=key_registry, http_session=http_session)

        return SandboxSetupService(
            config=config,
            readiness=ReadinessService(node_url=config.node_url, session=http_session),
            credentials=CredentialService(key_path=config.key_path, network_id=config.network_id),
            connect=_connect,
        )

    @property
    def config(self) -> SandboxConfig:
        return self._config

    @property
    def contracts(self) -> ContractSetupService:
        return self._contracts

    @property
    def current_step(self) -> Optional[str]:
        """Name of the setup step running (or last failed) in the latest `setup()` run."""

        return self._ctx.current_step if self._ctx is not None else None

    def build_pipeline(self) -> SetupPipeline:
        return SetupPipeline(
            [
                SetupStep("readiness", self._check_readiness, provides="node endpoint accepts connections"),
                SetupStep("load_credential", self._load_credential, ("readiness",), "master key loaded"),
                SetupStep("connect", self._open_session, ("load_credential",), "session bound to key registry"),
                SetupStep("create_accounts", self._create_accounts, ("connect",), "accounts funded and keyed"),
                SetupStep("deploy_usn", self._deploy_usn, ("create_accounts",)),
                SetupStep("init_usn", self._init_usn, ("deploy_usn",)),
                SetupStep("deploy_usdt", self._deploy_usdt, ("create_accounts",)),
                SetupStep("init_usdt", self._init_usdt, ("deploy_usdt",)),
                SetupStep("register_usdt_holders", self._register_usdt_holders, ("init_usdt",)),
                SetupStep("deploy_ref", self._deploy_ref, ("create_accounts",)),
                SetupStep("init_ref", self._init_ref, ("deploy_ref",)),
                SetupStep(
                    "ref_storage_deposit",
                    self._ref_storage_deposit,
                    ("init_ref", "create_accounts"),
                    "USN registered as exchange depositor",
                ),
                SetupStep(
                    "ref_register_tokens",
                    self._ref_register_tokens,
                    ("ref_storage_deposit", "init_usn", "register_usdt_holders"),
                    "USN and USDT whitelisted for USN on the exchange",
                ),
                SetupStep("create_stable_pools", self._create_stable_pools, ("ref_register_tokens",)),
                SetupStep("deploy_oracle", self._deploy_oracle, ("create_accounts",)),
                SetupStep("init_oracle", self._init_oracle, ("deploy_oracle",)),
                SetupStep("oracle_add_reporter", self._oracle_add_reporter, ("init_oracle",)),
                SetupStep("oracle_add_asset", self._oracle_add_asset, ("oracle_add_reporter",)),
                SetupStep("oracle_report_price", self._oracle_report_price, ("oracle_add_asset",), "price seeded"),
                SetupStep("bind_participants", self._bind_participants, ("init_usn", "init_usdt")),
            ]
        )

    async def setup(self) -> SandboxEnvironment:
        ctx = SetupContext(config=self._config)
        self._ctx = ctx
        # Every run provisions fresh accounts, so no contract starts out deployed.
        self._contracts.reset()
        logger.info("Sandbox setup: provisioning %s on %s", self._config.network_id, self._config.node_url)
        await self.build_pipeline().run(ctx)
        ctx.key_registry.freeze()
        environment = self._build_environment(ctx)
        logger.info("Sandbox setup complete: pools=%s", [p.index for p in environment.pools])
        return environment

    async def teardown(self, environment: SandboxEnvironment) -> list[DeletionOutcome]:
        """Delete the provisioned accounts that are not kept between runs.

        Raises:
            TeardownError: after all deletions were attempted, if any failed.
        """

        logger.info("Sandbox teardown: deleting %s", list(self._config.teardown_account_ids))
        try:
            return await self._teardown.teardown(environment.teardown_accounts())
        finally:
            for account_id in self._config.teardown_account_ids:
                if environment.session.is_deleted(account_id):
                    self._contracts.forget(account_id)

    # -----------------
    # Steps
    # -----------------

    async def _check_readiness(self, ctx: SetupContext) -> None:
        await self._readiness.ensure_reachable()

    async def _load_credential(self, ctx: SetupContext) -> None:
        ctx.credential = self._credentials.load()

    async def _open_session(self, ctx: SetupContext) -> None:
        config = self._config
        ctx.key_registry.set_key(config.network_id, config.master_id, ctx.credential.key_pair)
        ctx.session = await self._connect(ctx.key_registry)
        ctx.master = ctx.session.account(config.master_id)

    async def _create_accounts(self, ctx: SetupContext) -> None:
        ctx.accounts = await self._accounts.provision(
            session=ctx.session,
            master=ctx.master,
            credential=ctx.credential,
            key_registry=ctx.key_registry,
        )

    async def _deploy_usn(self, ctx: SetupContext) -> None:
        await self._contracts.deploy(account=ctx.account(self._config.usn_id), wasm_path=self._config.usn_wasm_path)

    async def _init_usn(self, ctx: SetupContext) -> None:
        config = self._config
        usn = ctx.session.contract(ctx.account(config.usn_id), config.usn_id, USN_ABI)
        await self._contracts.initialize(contract=usn, args={"owner_id": config.usn_id})
        ctx.contracts["usn"] = usn

    async def _deploy_usdt(self, ctx: SetupContext) -> None:
        await self._contracts.deploy(account=ctx.account(self._config.usdt_id), wasm_path=self._config.usdt_wasm_path)

    async def _init_usdt(self, ctx: SetupContext) -> None:
        config = self._config
        usdt = ctx.session.contract(ctx.account(config.usdt_id), config.usdt_id, USDT_ABI)
        await self._contracts.initialize(contract=usdt, args={})
        ctx.contracts["usdt"] = usdt

    async def _register_usdt_holders(self, ctx: SetupContext) -> None:
        await self._wiring.register_token_holders(usdt=ctx.contract("usdt"))

    async def _deploy_ref(self, ctx: SetupContext) -> None:
        await self._contracts.deploy(account=ctx.account(self._config.ref_id), wasm_path=self._config.ref_wasm_path)

    async def _init_ref(self, ctx: SetupContext) -> None:
        config = self._config
        ref = ctx.session.contract(ctx.account(config.ref_id), config.ref_id, REF_ABI)
        await self._contracts.initialize(
            contract=ref,
            args={
                "owner_id": config.ref_id,
                "exchange_fee": config.exchange_fee,
                "referral_fee": config.referral_fee,
            },
        )
        ctx.contracts["ref"] = ref

    async def _ref_storage_deposit(self, ctx: SetupContext) -> None:
        config = self._config
        # The USN account acts on the exchange contract.
        usn_on_ref = ctx.session.contract(ctx.account(config.usn_id), config.ref_id, REF_ABI)
        await self._wiring.register_exchange_depositor(depositor_on_exchange=usn_on_ref)
        ctx.contracts["usn_on_ref"] = usn_on_ref

    async def _ref_register_tokens(self, ctx: SetupContext) -> None:
        await self._wiring.register_exchange_tokens(depositor_on_exchange=ctx.contract("usn_on_ref"))

    async def _create_stable_pools(self, ctx: SetupContext) -> None:
        factory = StablePoolFactory(exchange=ctx.contract("ref"), deposit=self._config.pool_creation_amount)
        ctx.pools = await self._wiring.create_stable_pools(factory=factory, specs=self._config.pools)

    async def _deploy_oracle(self, ctx: SetupContext) -> None:
        config = self._config
        await self._contracts.deploy(account=ctx.account(config.oracle_id), wasm_path=config.oracle_wasm_path)

    async def _init_oracle(self, ctx: SetupContext) -> None:
        config = self._config
        oracle = ctx.session.contract(ctx.account(config.oracle_id), config.oracle_id, ORACLE_ABI)
        await self._contracts.initialize(
            contract=oracle,
            args={"recency_duration_sec": config.oracle_recency_duration_sec},
        )
        ctx.contracts["oracle"] = oracle

    async def _oracle_add_reporter(self, ctx: SetupContext) -> None:
        await self._wiring.add_price_reporter(oracle=ctx.contract("oracle"))

    async def _oracle_add_asset(self, ctx: SetupContext) -> None:
        await self._wiring.add_price_asset(oracle=ctx.contract("oracle"))

    async def _oracle_report_price(self, ctx: SetupContext) -> None:
        await self._wiring.report_price(oracle=ctx.contract("oracle"))

    async def _bind_participants(self, ctx: SetupContext) -> None:
        config = self._config
        session = ctx.session
        alice = ctx.account(config.alice_id)
        bob = ctx.account(config.bob_id)
        ctx.contracts["alice_usn"] = session.contract(alice, config.usn_id, USN_ABI)
        ctx.contracts["bob_usn"] = session.contract(bob, config.usn_id, USN_ABI)
        ctx.contracts["bob_usdt"] = session.contract(bob, config.usdt_id, USDT_ABI)

    def _build_environment(self, ctx: SetupContext) -> SandboxEnvironment:
        config = self._config
        return SandboxEnvironment(
            config=config,
            session=ctx.session,
            key_registry=ctx.key_registry,
            master_account=ctx.master,
            usn_account=ctx.account(config.usn_id),
            usn_contract=ctx.contract("usn"),
            usdt_contract=ctx.contract("usdt"),
            ref_contract=ctx.contract("ref"),
            oracle_contract=ctx.contract("oracle"),
            alice_account=ctx.account(config.alice_id),
            alice_contract=ctx.contract("alice_usn"),
            bob_account=ctx.account(config.bob_id),
            bob_contract=ctx.contract("bob_usn"),
            bob_usdt=ctx.contract("bob_usdt"),
            pools=tuple(ctx.pools),
        )
