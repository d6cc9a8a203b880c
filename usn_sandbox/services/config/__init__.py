"""Configuration package (Facade).

This package re-exports the public configuration types so callers can import them
from a single, stable path instead of knowing which module defines each one:

	from usn_sandbox.services.config import SandboxConfig, USN_ABI

The sandbox descriptor lives in ``sandbox_config.py``; contract entry-point lists
(ABIs) live in ``contracts_config.py``.
"""

from usn_sandbox.services.config.contracts_config import (
	ORACLE_ABI,
	REF_ABI,
	USDT_ABI,
	USN_ABI,
	ContractAbi,
)
from usn_sandbox.services.config.sandbox_config import ONE_NEAR, SandboxConfig, StablePoolSpec

__all__ = [
	"ContractAbi",
	"ONE_NEAR",
	"ORACLE_ABI",
	"REF_ABI",
	"SandboxConfig",
	"StablePoolSpec",
	"USDT_ABI",
	"USN_ABI",
]
