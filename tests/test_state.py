"""Tests for the durable state store."""

import json
import os
import time
from datetime import timedelta

import pytest

from stack_migration.config import MigrationConfig, StateConfig
from stack_migration.exceptions import (
    ConfigurationError,
    InvalidRollbackError,
    StateCorruptedError,
    StateError,
    StateNotFoundError,
)
from stack_migration.migration.database import get_session
from stack_migration.migration.models import MigrationRecord
from stack_migration.migration.phases import PHASE_ORDER, MigrationPhase, MigrationStatus
from stack_migration.migration.schemas import (
    CheckpointExecution,
    CheckpointResult,
    MigrationState,
    StepError,
    StepResult,
    utcnow,
)
from stack_migration.migration.state import StateStore


def result_for(phase: MigrationPhase, succeeded: bool = True, **data) -> StepResult:
    now = utcnow()
    return StepResult(
        phase=phase,
        status=MigrationStatus.COMPLETED if succeeded else MigrationStatus.FAILED,
        started_at=now - timedelta(seconds=2),
        completed_at=now,
        data=data,
        error=None if succeeded else StepError(type="RuntimeError", message="boom"),
    )


def advance_to(store: StateStore, state: MigrationState, phase: MigrationPhase) -> MigrationState:
    """Record successful results until ``phase`` is current."""
    while state.current_phase != phase:
        state = store.update_step_result(state, result_for(state.current_phase, step=state.current_phase.value))
    return state


class TestInitializeAndLoad:
    def test_initialize_state(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = store.initialize_state(migration_config)

        assert state.id.startswith("migration-")
        assert state.status == MigrationStatus.PENDING
        assert state.current_phase == PHASE_ORDER[0]
        assert store.load_state() == state
        assert store.load_state(state.id) == state

    def test_ids_are_unique(self, store: StateStore, migration_config: MigrationConfig) -> None:
        ids = {store.initialize_state(migration_config).id for _ in range(20)}
        assert len(ids) == 20

    def test_invalid_config_creates_nothing(self, store: StateStore) -> None:
        with pytest.raises(ConfigurationError):
            store.initialize_state({"source_dir": "src", "target_dir": "", "stack_name": "x"})
        assert store.list_states() == []

    def test_missing_state_fails_loudly(self, store: StateStore) -> None:
        with pytest.raises(StateNotFoundError):
            store.load_state()
        with pytest.raises(StateNotFoundError):
            store.load_state("migration-0-deadbeef")

    def test_corrupted_record_fails_loudly(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)
        with get_session(store.database_url) as session:
            session.get(MigrationRecord, state.id).state_json = '{"id": 42}'

        with pytest.raises(StateCorruptedError):
            store.load_state(state.id)

    def test_round_trip_with_nested_results(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)
        state = advance_to(store, state, MigrationPhase.COMPARISON)
        state.context = {"drift_check": "skipped", "nested": {"ids": [1, 2]}}
        state.skipped_phases = [MigrationPhase.DISCOVERY]
        store.save_state(state)

        loaded = store.load_state(state.id)

        assert loaded == state
        assert loaded.step_results[MigrationPhase.INITIAL_SCAN].started_at == (
            state.step_results[MigrationPhase.INITIAL_SCAN].started_at
        )

    def test_current_pointer_follows_latest_save(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        first = store.initialize_state(migration_config)
        second = store.initialize_state(migration_config)

        assert store.current_migration_id() == second.id
        store.save_state(first)
        assert store.load_state().id == first.id

    def test_state_survives_new_store_instance(
        self, state_config: StateConfig, migration_config: MigrationConfig
    ) -> None:
        state = StateStore(state_config).initialize_state(migration_config)
        assert StateStore(state_config).load_state(state.id) == state


class TestUpdateStepResult:
    def test_success_advances(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = store.initialize_state(migration_config)

        state = store.update_step_result(state, result_for(MigrationPhase.INITIAL_SCAN))

        assert state.current_phase == MigrationPhase.DISCOVERY
        assert state.status == MigrationStatus.IN_PROGRESS
        assert store.load_state(state.id).current_phase == MigrationPhase.DISCOVERY

    def test_failure_marks_failed_and_keeps_phase(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)

        state = store.update_step_result(state, result_for(MigrationPhase.INITIAL_SCAN, succeeded=False))

        assert state.current_phase == MigrationPhase.INITIAL_SCAN
        assert state.status == MigrationStatus.FAILED
        assert state.error.message == "boom"

    def test_failure_can_advance_in_dry_run(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)

        state = store.update_step_result(
            state, result_for(MigrationPhase.INITIAL_SCAN, succeeded=False), advance_on_failure=True
        )

        assert state.current_phase == MigrationPhase.DISCOVERY
        assert state.status == MigrationStatus.IN_PROGRESS
        assert state.error.message == "boom"

    def test_result_for_other_phase_rejected(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)

        with pytest.raises(StateError):
            store.update_step_result(state, result_for(MigrationPhase.VERIFICATION))

    def test_last_phase_completes(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = advance_to(store, store.initialize_state(migration_config), MigrationPhase.COMPLETE)

        state = store.update_step_result(state, result_for(MigrationPhase.COMPLETE))

        assert state.status == MigrationStatus.COMPLETED
        assert state.completed_at is not None


class TestBackups:
    def test_create_and_restore(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = advance_to(store, store.initialize_state(migration_config), MigrationPhase.CLASSIFICATION)
        backup = store.create_backup(state, "initial")

        payload = json.loads(backup.read_text())
        assert backup.parent == store.backup_dir
        assert payload["migration_id"] == state.id
        assert payload["label"] == "initial"

        advance_to(store, state, MigrationPhase.VERIFICATION)
        restored = store.restore_from_backup(backup)

        assert restored.current_phase == MigrationPhase.CLASSIFICATION
        assert store.load_state(state.id).current_phase == MigrationPhase.CLASSIFICATION

    def test_list_backups_newest_first(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)
        older = store.create_backup(state, "initial")
        newer = store.create_backup(state, "pre-verification")
        os.utime(older, (time.time() - 60, time.time() - 60))

        assert store.list_backups(state.id) == [newer, older]
        assert store.list_backups("migration-other") == []

    def test_restore_missing_backup(self, store: StateStore, tmp_path) -> None:
        with pytest.raises(StateNotFoundError):
            store.restore_from_backup(tmp_path / "nope.json")

    def test_restore_corrupted_backup(self, store: StateStore, tmp_path) -> None:
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")

        with pytest.raises(StateCorruptedError):
            store.restore_from_backup(broken)


class TestRollback:
    def test_rollback_removes_only_later_results(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = advance_to(store, store.initialize_state(migration_config), MigrationPhase.CODE_GENERATION)

        state = store.rollback_to_step(state, MigrationPhase.CLASSIFICATION)

        assert state.current_phase == MigrationPhase.CLASSIFICATION
        assert state.status == MigrationStatus.ROLLED_BACK
        assert set(state.step_results) == {
            MigrationPhase.INITIAL_SCAN,
            MigrationPhase.DISCOVERY,
            MigrationPhase.CLASSIFICATION,
        }
        assert store.load_state(state.id) == state
        assert any("pre-rollback-classification" in p.name for p in store.list_backups(state.id))

    @pytest.mark.parametrize(
        "target", [MigrationPhase.COMPARISON, MigrationPhase.VERIFICATION]
    )
    def test_rollback_at_or_after_current_rejected(
        self, store: StateStore, migration_config: MigrationConfig, target: MigrationPhase
    ) -> None:
        state = advance_to(store, store.initialize_state(migration_config), MigrationPhase.COMPARISON)

        with pytest.raises(InvalidRollbackError):
            store.rollback_to_step(state, target)
        assert store.load_state(state.id).status == MigrationStatus.IN_PROGRESS


class TestPausedState:
    def test_save_and_load(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = advance_to(store, store.initialize_state(migration_config), MigrationPhase.DISCOVERY)
        state.status = MigrationStatus.PAUSED

        saved = store.save_paused_state(state, "review", {"items": ["A"]})
        loaded = store.load_paused_state(migration_id=state.id)

        assert loaded.record_id == saved.record_id
        assert loaded.record_id.startswith(f"checkpoint-{state.id}-review-")
        assert loaded.checkpoint_id == "review"
        assert loaded.context == {"items": ["A"]}
        assert loaded.state == state

    def test_snapshot_is_independent_of_later_changes(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)
        store.save_paused_state(state, "review")

        state.context = {"changed": True}

        assert store.load_paused_state(migration_id=state.id).state.context == {}

    def test_latest_pause_wins(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = store.initialize_state(migration_config)
        store.save_paused_state(state, "first")
        second = store.save_paused_state(state, "second")

        assert store.load_paused_state(migration_id=state.id).record_id == second.record_id
        assert store.load_paused_state(record_id=second.record_id).checkpoint_id == "second"
        assert [c["checkpoint_id"] for c in store.list_checkpoints(state.id)] == ["second", "first"]

    def test_missing_pause_record(self, store: StateStore) -> None:
        with pytest.raises(StateNotFoundError):
            store.load_paused_state(migration_id="migration-none")


class TestHistoryAndEnumeration:
    def test_checkpoint_history_oldest_first(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)
        for checkpoint_id in ("one", "two"):
            store.append_checkpoint_execution(
                CheckpointExecution(
                    checkpoint_id=checkpoint_id,
                    migration_id=state.id,
                    phase=MigrationPhase.DISCOVERY,
                    result=CheckpointResult.proceed(),
                )
            )

        history = store.load_checkpoint_history(state.id)

        assert [e.checkpoint_id for e in history] == ["one", "two"]
        assert store.load_checkpoint_history("migration-other") == []

    def test_list_states(self, store: StateStore, migration_config: MigrationConfig) -> None:
        first = store.initialize_state(migration_config)
        second = store.initialize_state(migration_config)
        store.save_state(first)

        listed = store.list_states()

        assert [item["id"] for item in listed] == [first.id, second.id]
        assert listed[0]["stack_name"] == "app-dev"
        assert listed[0]["modified_at"].tzinfo is not None

    def test_get_progress(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = store.initialize_state(migration_config)
        assert store.get_progress(state)["percentage"] == 0

        state = advance_to(store, state, MigrationPhase.COMPARISON)
        progress = store.get_progress(state)

        assert progress["completed_steps"] == 3
        assert progress["total_steps"] == 8
        assert progress["remaining_phases"][0] == "comparison"

        state.status = MigrationStatus.COMPLETED
        assert store.get_progress(state)["percentage"] == 100

    def test_progress_ignores_skipped_and_failed_phases(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        state = store.initialize_state(migration_config)
        state = store.update_step_result(state, result_for(MigrationPhase.INITIAL_SCAN))
        state = store.update_step_result(
            state, result_for(MigrationPhase.DISCOVERY, succeeded=False), advance_on_failure=True
        )
        state.skipped_phases = [MigrationPhase.CLASSIFICATION]
        state.current_phase = MigrationPhase.COMPARISON

        progress = store.get_progress(state)

        assert progress["completed_steps"] == 1
        assert progress["failed_steps"] == 1
        assert progress["skipped_steps"] == 1
        assert progress["percentage"] == 12
        assert progress["remaining_phases"][0] == "comparison"
        assert "classification" not in progress["remaining_phases"]

    def test_export_state(self, store: StateStore, migration_config: MigrationConfig, tmp_path) -> None:
        state = store.initialize_state(migration_config)

        path = store.export_state(None, tmp_path / "out" / "state.json")

        assert json.loads(path.read_text())["id"] == state.id


class TestCleanup:
    def _age(self, store: StateStore, migration_id: str, days: int) -> None:
        with get_session(store.database_url) as session:
            session.get(MigrationRecord, migration_id).updated_at = utcnow() - timedelta(days=days)

    def test_prunes_only_expired_finished_migrations(
        self, store: StateStore, migration_config: MigrationConfig
    ) -> None:
        finished = store.initialize_state(migration_config)
        finished.status = MigrationStatus.FAILED
        store.save_state(finished)
        store.create_backup(finished, "initial")
        store.save_paused_state(finished, "review")

        paused = store.initialize_state(migration_config)
        paused.status = MigrationStatus.PAUSED
        store.save_state(paused)

        current = store.initialize_state(migration_config)
        current.status = MigrationStatus.COMPLETED
        store.save_state(current)

        for migration_id in (finished.id, paused.id, current.id):
            self._age(store, migration_id, days=90)

        counts = store.cleanup(retention_days=30)

        assert counts == {"states": 1, "paused_states": 1, "checkpoint_executions": 0, "backups": 1}
        remaining = {item["id"] for item in store.list_states()}
        assert remaining == {paused.id, current.id}
        with pytest.raises(StateNotFoundError):
            store.load_state(finished.id)

    def test_recent_records_kept(self, store: StateStore, migration_config: MigrationConfig) -> None:
        state = store.initialize_state(migration_config)
        state.status = MigrationStatus.COMPLETED
        store.save_state(state)
        store.initialize_state(migration_config)

        assert store.cleanup(retention_days=30)["states"] == 0
