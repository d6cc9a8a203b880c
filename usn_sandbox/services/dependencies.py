from __future__ import annotations

import aiohttp

from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.setup.sandbox_setup_service import SandboxSetupService


def get_sandbox_config() -> SandboxConfig:
    """Provider for the sandbox descriptor (defaults overridden from the environment)."""

    return SandboxConfig.from_env()


def get_sandbox_setup_service(config: SandboxConfig, http_session: aiohttp.ClientSession) -> SandboxSetupService:
    """Provider wiring the setup orchestrator to the real node adapters."""

    return SandboxSetupService.from_config(config, http_session=http_session)
