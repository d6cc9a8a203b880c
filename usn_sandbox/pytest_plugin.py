"""pytest plugin providing a provisioned sandbox to a test session.

Enable it from a `conftest.py`:

    pytest_plugins = ["usn_sandbox.pytest_plugin"]

    def test_version(sandbox):
        env = sandbox.environment
        assert sandbox.run(env.usn_contract.version())

Setup runs once before the first test that asks for `sandbox` and aborts the whole
session when it fails; teardown runs once at session end.
"""

from __future__ import annotations

from typing import Iterator

import pytest

from usn_sandbox.main import SandboxHarness
from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.dependencies import get_sandbox_config
from usn_sandbox.services.setup.pipeline import SandboxSetupError


@pytest.fixture(scope="session")
def sandbox_config() -> SandboxConfig:
    return get_sandbox_config()


@pytest.fixture(scope="session")
def sandbox(sandbox_config: SandboxConfig) -> Iterator[SandboxHarness]:
    harness = SandboxHarness(sandbox_config)
    try:
        harness.start()
    except SandboxSetupError as exc:
        pytest.exit(f"Sandbox setup failed: {exc}", returncode=1)
    try:
        yield harness
    finally:
        harness.stop()
