from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable

import pytest

from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.credential_service import CredentialService, KeyPair
from usn_sandbox.services.key_registry import KeyRegistry
from usn_sandbox.services.setup.sandbox_setup_service import SandboxSetupService

from tests.fakes import FakeChain, FakeSession, StubReadiness

WASM_HEADER = b"\x00asm\x01\x00\x00\x00"


@pytest.fixture(autouse=True)
def capture_service_logs(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.INFO, logger="usn_sandbox")
    yield


@pytest.fixture
def master_key() -> KeyPair:
    return KeyPair.generate()


@pytest.fixture
def key_file(tmp_path: Path, master_key: KeyPair) -> Path:
    path = tmp_path / "validator_key.json"
    path.write_text(
        json.dumps(
            {
                "account_id": "test.near",
                "public_key": master_key.public_key,
                "secret_key": master_key.secret_key,
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def wasm_dir(tmp_path: Path) -> Path:
    wasm = tmp_path / "wasm"
    wasm.mkdir()
    for name in ("usn", "test_token", "ref_exchange", "price_oracle"):
        (wasm / f"{name}.wasm").write_bytes(WASM_HEADER + name.encode("ascii"))
    return wasm


@pytest.fixture
def config(key_file: Path, wasm_dir: Path) -> SandboxConfig:
    return SandboxConfig(
        key_path=key_file,
        usn_wasm_path=wasm_dir / "usn.wasm",
        usdt_wasm_path=wasm_dir / "test_token.wasm",
        ref_wasm_path=wasm_dir / "ref_exchange.wasm",
        oracle_wasm_path=wasm_dir / "price_oracle.wasm",
    )


@pytest.fixture
def chain(config: SandboxConfig) -> FakeChain:
    return FakeChain(master_id=config.master_id)


@pytest.fixture
def build_service(chain: FakeChain) -> Callable[..., tuple[SandboxSetupService, StubReadiness]]:
    """Factory for a setup service wired to the fake chain.

    Returns the service and its readiness stub so tests can inspect probes.
    """

    def _build(config: SandboxConfig, *, reachable: bool = True) -> tuple[SandboxSetupService, StubReadiness]:
        readiness = StubReadiness(reachable=reachable, node_url=config.node_url)

        async def _connect(key_registry: KeyRegistry) -> FakeSession:
            return FakeSession(chain=chain, key_registry=key_registry, network_id=config.network_id)

        service = SandboxSetupService(
            config=config,
            readiness=readiness,
            credentials=CredentialService(key_path=config.key_path, network_id=config.network_id),
            connect=_connect,  # type: ignore[arg-type]
        )
        return service, readiness

    return _build
