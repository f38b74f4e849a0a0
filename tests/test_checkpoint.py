"""Tests for the checkpoint registry and the predefined checkpoints."""

import pytest

from stack_migration.config import MigrationConfig
from stack_migration.exceptions import CheckpointError
from stack_migration.migration.checkpoint import (
    Checkpoint,
    CheckpointRegistry,
    default_checkpoints,
    register_default_checkpoints,
)
from stack_migration.migration.phases import MigrationPhase, MigrationStatus
from stack_migration.migration.schemas import (
    CheckpointAction,
    CheckpointResult,
    MigrationState,
    StepResult,
    utcnow,
)
from stack_migration.migration.state import StateStore


def make_state(config: MigrationConfig, phase: MigrationPhase = MigrationPhase.DISCOVERY) -> MigrationState:
    return MigrationState(id="migration-test", current_phase=phase, config=config)


def completed(phase: MigrationPhase, **data) -> StepResult:
    now = utcnow()
    return StepResult(
        phase=phase, status=MigrationStatus.COMPLETED, started_at=now, completed_at=now, data=data
    )


def checkpoint(
    checkpoint_id: str,
    phase: MigrationPhase = MigrationPhase.DISCOVERY,
    condition=lambda state: True,
    handler=lambda state: CheckpointResult.proceed(),
) -> Checkpoint:
    return Checkpoint(
        id=checkpoint_id,
        phase=phase,
        name=checkpoint_id.title(),
        description="test checkpoint",
        condition=condition,
        handler=handler,
    )


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.executions = []

    def append_checkpoint_execution(self, execution) -> None:
        if self.fail:
            raise OSError("disk full")
        self.executions.append(execution)


class TestRegistration:
    def test_duplicate_id_rejected(self) -> None:
        registry = CheckpointRegistry()
        registry.register(checkpoint("review"))

        with pytest.raises(CheckpointError):
            registry.register(checkpoint("review"))

    def test_checkpoints_by_phase_in_registration_order(self) -> None:
        registry = CheckpointRegistry()
        registry.register(checkpoint("b"))
        registry.register(checkpoint("other", phase=MigrationPhase.COMPARISON))
        registry.register(checkpoint("a"))

        assert [cp.id for cp in registry.checkpoints(MigrationPhase.DISCOVERY)] == ["b", "a"]
        assert registry.get("other").phase == MigrationPhase.COMPARISON
        assert registry.get("missing") is None


class TestShouldTrigger:
    @pytest.mark.asyncio
    async def test_first_matching_checkpoint_wins(self, migration_config: MigrationConfig) -> None:
        registry = CheckpointRegistry()
        registry.register(checkpoint("never", condition=lambda state: False))
        registry.register(checkpoint("first"))
        registry.register(checkpoint("second"))

        triggered = await registry.should_trigger(make_state(migration_config), MigrationPhase.DISCOVERY)

        assert triggered.id == "first"

    @pytest.mark.asyncio
    async def test_other_phases_ignored(self, migration_config: MigrationConfig) -> None:
        registry = CheckpointRegistry()
        registry.register(checkpoint("later", phase=MigrationPhase.VERIFICATION))

        assert await registry.should_trigger(make_state(migration_config), MigrationPhase.DISCOVERY) is None

    @pytest.mark.asyncio
    async def test_failing_condition_does_not_trigger(self, migration_config: MigrationConfig) -> None:
        def explode(state):
            raise ValueError("bad condition")

        registry = CheckpointRegistry()
        registry.register(checkpoint("broken", condition=explode))
        registry.register(checkpoint("fallback"))

        triggered = await registry.should_trigger(make_state(migration_config), MigrationPhase.DISCOVERY)

        assert triggered.id == "fallback"

    @pytest.mark.asyncio
    async def test_async_condition(self, migration_config: MigrationConfig) -> None:
        async def condition(state):
            return True

        registry = CheckpointRegistry()
        registry.register(checkpoint("async", condition=condition))

        triggered = await registry.should_trigger(make_state(migration_config), MigrationPhase.DISCOVERY)
        assert triggered.id == "async"

    @pytest.mark.asyncio
    async def test_excluded_checkpoint_skipped(self, migration_config: MigrationConfig) -> None:
        registry = CheckpointRegistry()
        registry.register(checkpoint("paused-me"))

        state = make_state(migration_config)
        assert await registry.should_trigger(state, MigrationPhase.DISCOVERY, exclude=["paused-me"]) is None


class TestExecute:
    @pytest.mark.asyncio
    async def test_result_recorded(self, migration_config: MigrationConfig) -> None:
        sink = RecordingSink()
        registry = CheckpointRegistry(recorder=sink)
        cp = checkpoint("review", handler=lambda state: CheckpointResult.pause("look at this", items=3))
        registry.register(cp)

        result = await registry.execute(cp, make_state(migration_config))

        assert result.action == CheckpointAction.PAUSE
        assert result.context == {"items": 3}
        assert len(registry.history) == 1
        assert sink.executions == list(registry.history)
        assert registry.history[0].checkpoint_id == "review"
        assert registry.history[0].state_snapshot["phase"] == "discovery"

    @pytest.mark.asyncio
    async def test_handler_error_becomes_abort(self, migration_config: MigrationConfig) -> None:
        def explode(state):
            raise RuntimeError("handler blew up")

        sink = RecordingSink()
        registry = CheckpointRegistry(recorder=sink)
        cp = checkpoint("fragile", handler=explode)
        registry.register(cp)

        result = await registry.execute(cp, make_state(migration_config))

        assert result.action == CheckpointAction.ABORT
        assert result.message == "Checkpoint 'Fragile' failed: handler blew up"
        assert sink.executions[0].checkpoint_id == "fragile"
        assert sink.executions[0].result.action == CheckpointAction.ABORT

    @pytest.mark.asyncio
    async def test_wrong_return_type_becomes_abort(self, migration_config: MigrationConfig) -> None:
        registry = CheckpointRegistry()
        cp = checkpoint("sloppy", handler=lambda state: "continue")
        registry.register(cp)

        result = await registry.execute(cp, make_state(migration_config))

        assert result.action == CheckpointAction.ABORT

    @pytest.mark.asyncio
    async def test_async_handler(self, migration_config: MigrationConfig) -> None:
        async def handler(state):
            return CheckpointResult.proceed("ok", approved=True)

        registry = CheckpointRegistry()
        cp = checkpoint("async", handler=handler)
        registry.register(cp)

        result = await registry.execute(cp, make_state(migration_config))

        assert result.action == CheckpointAction.CONTINUE
        assert result.modifications == {"approved": True}

    @pytest.mark.asyncio
    async def test_recorder_failure_keeps_in_memory_history(
        self, migration_config: MigrationConfig
    ) -> None:
        registry = CheckpointRegistry(recorder=RecordingSink(fail=True))
        cp = checkpoint("review")
        registry.register(cp)

        result = await registry.execute(cp, make_state(migration_config))

        assert result.action == CheckpointAction.CONTINUE
        assert len(registry.history) == 1

    @pytest.mark.asyncio
    async def test_history_is_append_only(self, migration_config: MigrationConfig) -> None:
        registry = CheckpointRegistry()
        cp = checkpoint("review")
        registry.register(cp)
        state = make_state(migration_config)

        await registry.execute(cp, state)
        snapshot = registry.history
        await registry.execute(cp, state)

        assert len(snapshot) == 1
        assert len(registry.history) == 2
        assert registry.history[0] == snapshot[0]
        assert len(registry.history_for("migration-test")) == 2
        assert registry.history_for("someone-else") == ()

    @pytest.mark.asyncio
    async def test_store_as_recorder(self, migration_config: MigrationConfig, store: StateStore) -> None:
        state = store.initialize_state(migration_config)
        registry = CheckpointRegistry(recorder=store)
        cp = checkpoint("review")
        registry.register(cp)

        await registry.execute(cp, state)

        history = store.load_checkpoint_history(state.id)
        assert [e.checkpoint_id for e in history] == ["review"]


class TestDefaultCheckpoints:
    @pytest.fixture
    def registry(self) -> CheckpointRegistry:
        return register_default_checkpoints(CheckpointRegistry())

    def test_registered_ids(self, registry: CheckpointRegistry) -> None:
        assert [cp.id for cp in registry.checkpoints()] == [cp.id for cp in default_checkpoints()]
        assert [cp.id for cp in registry.checkpoints(MigrationPhase.TEMPLATE_MODIFICATION)] == [
            "critical-differences",
            "drift-detection",
        ]

    @pytest.mark.asyncio
    async def test_physical_id_resolution(
        self, registry: CheckpointRegistry, migration_config: MigrationConfig
    ) -> None:
        state = make_state(migration_config, MigrationPhase.CLASSIFICATION)
        assert await registry.should_trigger(state, MigrationPhase.CLASSIFICATION) is None

        state.step_results[MigrationPhase.DISCOVERY] = completed(
            MigrationPhase.DISCOVERY, missing_physical_ids=["UsersTable"]
        )
        cp = await registry.should_trigger(state, MigrationPhase.CLASSIFICATION)
        result = await registry.execute(cp, state)

        assert cp.id == "physical-id-resolution"
        assert result.action == CheckpointAction.CONTINUE
        assert result.modifications == {"unresolved_physical_ids": ["UsersTable"]}

    @pytest.mark.asyncio
    async def test_critical_differences_pause(
        self, registry: CheckpointRegistry, migration_config: MigrationConfig
    ) -> None:
        state = make_state(migration_config, MigrationPhase.TEMPLATE_MODIFICATION)
        differences = [
            {"resource_id": f"R{i}", "severity": "critical", "message": "changed"} for i in range(7)
        ]
        differences.append({"resource_id": "X", "severity": "warning", "message": "meh"})
        state.step_results[MigrationPhase.COMPARISON] = completed(
            MigrationPhase.COMPARISON, report={"differences": differences}
        )

        cp = await registry.should_trigger(state, MigrationPhase.TEMPLATE_MODIFICATION)
        result = await registry.execute(cp, state)

        assert cp.id == "critical-differences"
        assert result.action == CheckpointAction.PAUSE
        assert result.context["critical_count"] == 7
        assert len(result.context["critical_differences"]) == 5

    @pytest.mark.asyncio
    async def test_drift_detection_skipped_in_dry_run(
        self, registry: CheckpointRegistry, migration_options: dict
    ) -> None:
        dry = make_state(MigrationConfig(**migration_options, dry_run=True), MigrationPhase.TEMPLATE_MODIFICATION)
        live = make_state(MigrationConfig(**migration_options), MigrationPhase.TEMPLATE_MODIFICATION)

        assert await registry.should_trigger(dry, MigrationPhase.TEMPLATE_MODIFICATION) is None
        cp = await registry.should_trigger(live, MigrationPhase.TEMPLATE_MODIFICATION)
        result = await registry.execute(cp, live)

        assert cp.id == "drift-detection"
        assert result.modifications == {"drift_check": "skipped"}

    @pytest.mark.asyncio
    async def test_pre_import_verification(
        self, registry: CheckpointRegistry, migration_config: MigrationConfig
    ) -> None:
        state = make_state(migration_config, MigrationPhase.IMPORT_PREPARATION)
        cp = await registry.should_trigger(state, MigrationPhase.IMPORT_PREPARATION)

        aborted = await registry.execute(cp, state)
        assert aborted.action == CheckpointAction.ABORT
        assert aborted.context["missing_phases"] == [
            "classification",
            "template_modification",
            "code_generation",
        ]

        for phase in (
            MigrationPhase.CLASSIFICATION,
            MigrationPhase.TEMPLATE_MODIFICATION,
            MigrationPhase.CODE_GENERATION,
        ):
            state.step_results[phase] = completed(phase)

        passed = await registry.execute(cp, state)
        assert passed.action == CheckpointAction.CONTINUE
        assert passed.modifications == {"pre_import_verified": True}
