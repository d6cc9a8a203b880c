import asyncio

import pytest

from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.setup.pipeline import (
    SandboxSetupError,
    SetupContext,
    SetupPipeline,
    SetupStep,
    StepPreconditionError,
)


def _recorder(log, name, *, fail=False):
    async def _run(ctx):
        log.append(name)
        if fail:
            raise RuntimeError(f"{name} exploded")

    return _run


@pytest.fixture
def ctx():
    return SetupContext(config=SandboxConfig())


class TestGraph:
    def test_rejects_duplicates(self):
        log = []
        with pytest.raises(ValueError, match="Duplicate"):
            SetupPipeline([SetupStep("a", _recorder(log, "a")), SetupStep("a", _recorder(log, "a"))])

    def test_rejects_requirement_scheduled_later(self):
        log = []
        with pytest.raises(ValueError, match="not scheduled before"):
            SetupPipeline(
                [
                    SetupStep("deploy", _recorder(log, "deploy"), ("create",)),
                    SetupStep("create", _recorder(log, "create")),
                ]
            )

    def test_dependency_graph(self):
        log = []
        pipeline = SetupPipeline(
            [SetupStep("create", _recorder(log, "create")), SetupStep("deploy", _recorder(log, "deploy"), ("create",))]
        )

        assert pipeline.step_names == ["create", "deploy"]
        assert pipeline.dependency_graph() == {"create": (), "deploy": ("create",)}


class TestRun:
    def test_runs_in_order_and_records_completion(self, ctx):
        log = []
        pipeline = SetupPipeline(
            [
                SetupStep("create", _recorder(log, "create")),
                SetupStep("deploy", _recorder(log, "deploy"), ("create",)),
                SetupStep("init", _recorder(log, "init"), ("deploy",)),
            ]
        )

        asyncio.run(pipeline.run(ctx))

        assert log == ["create", "deploy", "init"]
        assert ctx.completed == ["create", "deploy", "init"]

    def test_failure_names_the_step_and_stops(self, ctx):
        log = []
        pipeline = SetupPipeline(
            [
                SetupStep("create", _recorder(log, "create")),
                SetupStep("deploy", _recorder(log, "deploy", fail=True), ("create",)),
                SetupStep("init", _recorder(log, "init"), ("deploy",)),
            ]
        )

        with pytest.raises(SandboxSetupError) as excinfo:
            asyncio.run(pipeline.run(ctx))

        assert excinfo.value.step == "deploy"
        assert str(excinfo.value) == "sandbox setup failed at step 'deploy': deploy exploded"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert log == ["create", "deploy"]
        assert ctx.completed == ["create"]

    def test_step_out_of_order_is_a_precondition_error(self, ctx):
        log = []
        pipeline = SetupPipeline(
            [SetupStep("create", _recorder(log, "create")), SetupStep("deploy", _recorder(log, "deploy"), ("create",))]
        )

        with pytest.raises(StepPreconditionError) as excinfo:
            asyncio.run(pipeline.run_step(ctx, "deploy"))

        assert excinfo.value.step == "deploy"
        assert log == []

    def test_step_cannot_run_twice(self, ctx):
        log = []
        pipeline = SetupPipeline([SetupStep("create", _recorder(log, "create"))])
        asyncio.run(pipeline.run_step(ctx, "create"))

        with pytest.raises(StepPreconditionError, match="already completed"):
            asyncio.run(pipeline.run_step(ctx, "create"))
        assert log == ["create"]

    def test_stop_after(self, ctx):
        log = []
        pipeline = SetupPipeline(
            [SetupStep("create", _recorder(log, "create")), SetupStep("deploy", _recorder(log, "deploy"), ("create",))]
        )

        asyncio.run(pipeline.run(ctx, stop_after="create"))

        assert log == ["create"]
        with pytest.raises(KeyError):
            asyncio.run(pipeline.run(SetupContext(config=SandboxConfig()), stop_after="missing"))

    def test_cancelled_step_stays_current(self, ctx):
        log = []

        async def _hang(ctx):
            log.append("deploy")
            await asyncio.sleep(5)

        pipeline = SetupPipeline(
            [SetupStep("create", _recorder(log, "create")), SetupStep("deploy", _hang, ("create",))]
        )

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(asyncio.wait_for(pipeline.run(ctx), timeout=0.1))

        assert ctx.current_step == "deploy"
        assert ctx.completed == ["create"]

    def test_current_step_cleared_after_success(self, ctx):
        pipeline = SetupPipeline([SetupStep("create", _recorder([], "create"))])

        asyncio.run(pipeline.run(ctx))

        assert ctx.current_step is None
