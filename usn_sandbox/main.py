from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

import aiohttp

from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.dependencies import get_sandbox_config, get_sandbox_setup_service
from usn_sandbox.services.environment import EnvironmentNotReadyError, EnvironmentRegistry, SandboxEnvironment
from usn_sandbox.services.setup.pipeline import SandboxSetupError
from usn_sandbox.services.setup.sandbox_setup_service import SandboxSetupService

logger = logging.getLogger(__name__)

T = TypeVar("T")

ServiceFactory = Callable[[SandboxConfig, aiohttp.ClientSession], SandboxSetupService]


class SandboxPhaseTimeoutError(RuntimeError):
    pass


def _ensure_logging() -> None:
    formatter = logging.Formatter("%(levelname)s: %(message)s")
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    else:
        root.setLevel(logging.INFO)
        for handler in root.handlers:
            handler.setFormatter(formatter)


async def _within(phase: str, awaitable: Awaitable[T], timeout_seconds: float) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise SandboxPhaseTimeoutError(f"Sandbox {phase} did not finish within {timeout_seconds:g}s") from exc



async def _setup_within(service: SandboxSetupService, config: SandboxConfig) -> SandboxEnvironment:
    """Run setup under the coarse timeout; a timeout names the step that was still running."""

    try:
        return await _within("setup", service.setup(), config.setup_timeout_seconds)
    except SandboxPhaseTimeoutError as exc:
        raise SandboxSetupError(step=service.current_step or "setup", message=str(exc)) from exc

@asynccontextmanager
async def sandbox_lifespan(
    config: Optional[SandboxConfig] = None,
    *,
    service_factory: ServiceFactory = get_sandbox_setup_service,
) -> AsyncIterator[EnvironmentRegistry]:
    """Provision the sandbox on enter, tear it down on exit.

    Setup and teardown each run under the coarse timeouts from the config. The
    yielded registry is populated only if setup finished every step, and is
    cleared after teardown even when some deletions failed.
    """

    _ensure_logging()
    config = config or get_sandbox_config()

    async with aiohttp.ClientSession() as http_session:
        service = service_factory(config, http_session)
        registry = EnvironmentRegistry()

        environment = await _setup_within(service, config)
        registry.populate(environment)
        try:
            yield registry
        finally:
            try:
                await _within("teardown", service.teardown(environment), config.teardown_timeout_seconds)
            finally:
                registry.clear()


class SandboxHarness:
    """Synchronous driver for `sandbox_lifespan`, for test runners without asyncio support.

    The environment's handles are bound to the harness' own event loop, so coroutines
    using them must go through `run`.
    """

    def __init__(
        self,
        config: Optional[SandboxConfig] = None,
        *,
        service_factory: ServiceFactory = get_sandbox_setup_service,
    ) -> None:
        self._loop = asyncio.new_event_loop()
        self._lifespan = sandbox_lifespan(config, service_factory=service_factory)
        self._registry: Optional[EnvironmentRegistry] = None

    @property
    def environment(self) -> SandboxEnvironment:
        if self._registry is None:
            raise EnvironmentNotReadyError("Sandbox harness has not been started")
        return self._registry.environment

    def run(self, awaitable: Awaitable[T]) -> T:
        return self._loop.run_until_complete(awaitable)

    def start(self) -> EnvironmentRegistry:
        try:
            self._registry = self.run(self._lifespan.__aenter__())
        except BaseException:
            self._loop.close()
            raise
        return self._registry

    def stop(self) -> None:
        if self._loop.is_closed():
            return
        try:
            self.run(self._lifespan.__aexit__(None, None, None))
        finally:
            self._loop.close()


async def _provision(*, keep: bool) -> None:
    config = get_sandbox_config()
    if keep:
        async with aiohttp.ClientSession() as http_session:
            service = get_sandbox_setup_service(config, http_session)
            environment = await _setup_within(service, config)
            logger.info("Sandbox kept: pools=%s", [(p.name, p.index) for p in environment.pools])
        return

    async with sandbox_lifespan(config) as registry:
        environment = registry.environment
        logger.info("Sandbox ready: pools=%s", [(p.name, p.index) for p in environment.pools])


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Provision the USN sandbox environment.")
    parser.add_argument(
        "--keep",
        action="store_true",
        help="Leave the provisioned accounts in place instead of tearing them down.",
    )
    args = parser.parse_args(argv)
    _ensure_logging()
    asyncio.run(_provision(keep=args.keep))


if __name__ == "__main__":
    main()
