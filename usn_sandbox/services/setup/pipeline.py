from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.key_registry import KeyRegistry

logger = logging.getLogger(__name__)


class SandboxSetupError(RuntimeError):
    """Setup aborted. `step` names the pipeline step that failed."""

    def __init__(self, *, step: str, message: str) -> None:
        super().__init__(f"sandbox setup failed at step {step!r}: {message}")
        self.step = step


class StepPreconditionError(SandboxSetupError):
    pass


@dataclass
class SetupContext:
    """Mutable state threaded through the setup steps of a single run."""

    config: SandboxConfig
    key_registry: KeyRegistry = field(default_factory=KeyRegistry)
    credential: Any = None
    session: Any = None
    master: Any = None
    accounts: dict[str, Any] = field(default_factory=dict)
    contracts: dict[str, Any] = field(default_factory=dict)
    pools: list[Any] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    # Step currently running; stays set when that step is cancelled.
    current_step: Optional[str] = None

    def account(self, account_id: str) -> Any:
        try:
            return self.accounts[account_id]
        except KeyError:
            raise KeyError(f"Account {account_id} has not been provisioned") from None

    def contract(self, name: str) -> Any:
        try:
            return self.contracts[name]
        except KeyError:
            raise KeyError(f"Contract handle {name!r} has not been bound") from None


@dataclass(frozen=True)
class SetupStep:
    """One named unit of the provisioning sequence.

    `requires` lists steps that must have completed first; `provides` describes the
    state the step establishes (used in logs and for inspecting the graph).
    """

    name: str
    run: Callable[[SetupContext], Awaitable[None]]
    requires: tuple[str, ...] = ()
    provides: str = ""


class SetupPipeline:
    def __init__(self, steps: Sequence[SetupStep]) -> None:
        seen: set[str] = set()
        for step in steps:
            if step.name in seen:
                raise ValueError(f"Duplicate setup step: {step.name}")
            unknown = [r for r in step.requires if r not in seen]
            if unknown:
                raise ValueError(f"Setup step {step.name!r} requires steps not scheduled before it: {unknown}")
            seen.add(step.name)
        self._steps = tuple(steps)

    @property
    def steps(self) -> tuple[SetupStep, ...]:
        return self._steps

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    def dependency_graph(self) -> dict[str, tuple[str, ...]]:
        return {step.name: step.requires for step in self._steps}

    def step(self, name: str) -> SetupStep:
        for step in self._steps:
            if step.name == name:
                return step
        raise KeyError(f"Unknown setup step: {name}")

    async def run_step(self, ctx: SetupContext, name: str) -> None:
        """Run a single step after checking its preconditions against `ctx`."""

        step = self.step(name)
        missing = [r for r in step.requires if r not in ctx.completed]
        if missing:
            raise StepPreconditionError(step=step.name, message=f"required steps not completed: {missing}")
        if step.name in ctx.completed:
            raise StepPreconditionError(step=step.name, message="step already completed in this run")

        started = time.monotonic()
        ctx.current_step = step.name
        logger.info("Setup step %s: starting", step.name)
        try:
            await step.run(ctx)
        except asyncio.CancelledError:
            logger.warning("Setup step %s cancelled after %.2fs", step.name, time.monotonic() - started)
            raise
        except Exception as exc:
            logger.exception("Setup step %s failed", step.name)
            raise SandboxSetupError(step=step.name, message=str(exc)) from exc

        ctx.completed.append(step.name)
        ctx.current_step = None
        logger.info(
            "Setup step %s: done in %.2fs%s",
            step.name,
            time.monotonic() - started,
            f" ({step.provides})" if step.provides else "",
        )

    async def run(self, ctx: SetupContext, *, stop_after: Optional[str] = None) -> SetupContext:
        if stop_after is not None:
            self.step(stop_after)

        for step in self._steps:
            await self.run_step(ctx, step.name)
            if step.name == stop_after:
                break
        return ctx
