"""
Durable migration state storage.

This module provides the StateStore class, the single writer of persisted
migration state. State documents live in a SQLite database inside the
working directory (historical id-keyed records, the current-migration
pointer, pause records and the checkpoint audit trail); labelled backup
snapshots are written as JSON files under ``<work_dir>/backups``.
"""

import json
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, desc, select

from stack_migration.config import MigrationConfig, StateConfig, build_migration_config
from stack_migration.exceptions import (
    InvalidRollbackError,
    StateCorruptedError,
    StateError,
    StateNotFoundError,
)
from stack_migration.migration.database import get_session, init_database
from stack_migration.migration.models import (
    CheckpointExecutionRecord,
    CurrentMigration,
    MigrationRecord,
    PausedStateRecord,
)
from stack_migration.migration.phases import (
    ACTIVE_STATUSES,
    PHASE_ORDER,
    MigrationPhase,
    MigrationStatus,
    first_phase,
    last_phase,
    next_phase,
    phase_index,
)
from stack_migration.migration.schemas import (
    CheckpointExecution,
    MigrationState,
    PausedMigration,
    StepResult,
    utcnow,
)
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)

_FILE_TIMESTAMP = "%Y%m%dT%H%M%S%fZ"


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _parse_state(document: str, source: str) -> MigrationState:
    try:
        return MigrationState.model_validate_json(document)
    except ValidationError as e:
        logger.error("State record failed to parse", source=source, error=str(e))
        raise StateCorruptedError(f"Corrupted migration state in {source}: {e}") from e


class StateStore:
    """
    Persists migration state, backups, pause records and checkpoint history.

    All public methods are serialized with a reentrant lock. The store
    assumes a single writer process.

    Usage:
        store = StateStore(StateConfig(work_dir=".migration-state"))
        state = store.initialize_state(migration_config)
        ...
        state = store.update_step_result(state, result)
    """

    def __init__(self, config: StateConfig | None = None):
        """
        Initialize the state store.

        Args:
            config: State configuration (defaults to StateConfig())

        Raises:
            StateError: If the working directory or database cannot be initialized
        """
        self.config = config or StateConfig()
        self.work_dir = self.config.work_path
        self.backup_dir = self.config.backup_path
        self.database_url = self.config.database_url
        self._lock = threading.RLock()

        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            init_database(self.database_url)
        except Exception as e:
            logger.error("Failed to initialize state store", error=str(e))
            raise StateError(f"Failed to initialize state store: {e}") from e

        logger.debug("State store initialized", work_dir=str(self.work_dir))

    # ------------------------------------------------------------------
    # Core state records
    # ------------------------------------------------------------------

    @staticmethod
    def generate_migration_id() -> str:
        """Timestamp plus random suffix, e.g. ``migration-1760870400000-1a2b3c4d``."""
        millis = int(datetime.now(UTC).timestamp() * 1000)
        return f"migration-{millis}-{uuid.uuid4().hex[:8]}"

    def initialize_state(self, config: MigrationConfig | dict[str, Any]) -> MigrationState:
        """
        Create and persist a fresh migration state.

        Args:
            config: Migration configuration (validated if given as a mapping)

        Returns:
            MigrationState: New state, status PENDING at the first phase

        Raises:
            ConfigurationError: If the configuration is invalid
            StateError: If the state cannot be persisted
        """
        migration_config = build_migration_config(config)
        now = utcnow()
        state = MigrationState(
            id=self.generate_migration_id(),
            current_phase=first_phase(),
            status=MigrationStatus.PENDING,
            config=migration_config,
            started_at=now,
            updated_at=now,
        )
        self.save_state(state)

        logger.info(
            "Migration state initialized",
            migration_id=state.id,
            stack_name=migration_config.stack_name,
        )
        return state

    def save_state(self, state: MigrationState) -> None:
        """
        Persist the historical record and the current pointer.

        Both rows are written in one transaction, so either both or
        neither change.

        Args:
            state: State to persist (its ``updated_at`` is refreshed)

        Raises:
            StateError: If the write fails
        """
        with self._lock:
            state.touch()
            document = state.model_dump_json()

            with get_session(self.database_url) as session:
                session.merge(
                    MigrationRecord(
                        id=state.id,
                        status=state.status.value,
                        current_phase=state.current_phase.value,
                        stack_name=state.config.stack_name,
                        state_json=document,
                        started_at=state.started_at,
                        updated_at=state.updated_at,
                    )
                )
                session.flush()
                session.merge(
                    CurrentMigration(
                        slot=1,
                        migration_id=state.id,
                        state_json=document,
                        updated_at=state.updated_at,
                    )
                )

            logger.debug(
                "State saved",
                migration_id=state.id,
                phase=state.current_phase.value,
                status=state.status.value,
            )

    def load_state(self, migration_id: str | None = None) -> MigrationState:
        """
        Load a migration state.

        Args:
            migration_id: Id to load; the current migration when omitted

        Returns:
            MigrationState: The persisted state

        Raises:
            StateNotFoundError: If there is no such record
            StateCorruptedError: If the record cannot be parsed
        """
        with self._lock:
            with get_session(self.database_url) as session:
                if migration_id is None:
                    current = session.get(CurrentMigration, 1)
                    if current is None:
                        raise StateNotFoundError("No current migration found")
                    return _parse_state(current.state_json, "current migration")

                record = session.get(MigrationRecord, migration_id)
                if record is None:
                    raise StateNotFoundError(f"Migration not found: {migration_id}")
                return _parse_state(record.state_json, f"migration record {migration_id}")

    def update_step_result(
        self,
        state: MigrationState,
        result: StepResult,
        advance_on_failure: bool = False,
    ) -> MigrationState:
        """
        Record a phase result and advance the state machine.

        A successful result moves ``current_phase`` to the next phase with
        status IN_PROGRESS, or marks the migration COMPLETED after the last
        phase. A failed result marks the migration FAILED with the result's
        error, unless ``advance_on_failure`` (dry run) is set, in which case
        the error is recorded and the pointer advances anyway.

        Args:
            state: State to update (mutated in place)
            result: Result of the current phase
            advance_on_failure: Advance past failed phases

        Returns:
            MigrationState: The updated state

        Raises:
            StateError: If the result is for another phase or cannot be persisted
        """
        with self._lock:
            if result.phase != state.current_phase:
                raise StateError(
                    f"Result for phase {result.phase.value} does not match current phase "
                    f"{state.current_phase.value}"
                )

            state.step_results[result.phase] = result

            if result.succeeded or advance_on_failure:
                if not result.succeeded:
                    state.error = result.error
                self._advance(state)
            else:
                state.status = MigrationStatus.FAILED
                state.error = result.error

            self.save_state(state)

            logger.info(
                "Step result recorded",
                migration_id=state.id,
                phase=result.phase.value,
                result_status=result.status.value,
                next_phase=state.current_phase.value,
                status=state.status.value,
            )
            return state

    @staticmethod
    def _advance(state: MigrationState) -> None:
        following = next_phase(state.current_phase)
        if following is None:
            state.status = MigrationStatus.COMPLETED
            state.completed_at = utcnow()
        else:
            state.current_phase = following
            state.status = MigrationStatus.IN_PROGRESS

    # ------------------------------------------------------------------
    # Backups and rollback
    # ------------------------------------------------------------------

    def create_backup(self, state: MigrationState, label: str) -> Path:
        """
        Snapshot the full state to a JSON file.

        Args:
            state: State to snapshot
            label: Backup label (e.g. ``initial``, ``pre-template_modification``)

        Returns:
            Path: The backup file

        Raises:
            StateError: If the backup cannot be written
        """
        with self._lock:
            created_at = utcnow()
            path = self.backup_dir / (
                f"backup-{state.id}-{label}-{created_at.strftime(_FILE_TIMESTAMP)}.json"
            )
            payload = {
                "migration_id": state.id,
                "label": label,
                "created_at": created_at.isoformat(),
                "state": state.model_dump(mode="json"),
            }

            try:
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(payload, indent=2))
            except OSError as e:
                logger.error("Failed to create backup", migration_id=state.id, error=str(e))
                raise StateError(f"Failed to create backup {path}: {e}") from e

            logger.info("Backup created", migration_id=state.id, label=label, path=str(path))
            return path

    def list_backups(self, migration_id: str | None = None) -> list[Path]:
        """Backup files, newest first, optionally for one migration."""
        pattern = f"backup-{migration_id}-*.json" if migration_id else "backup-*.json"
        return sorted(
            self.backup_dir.glob(pattern), key=lambda p: p.stat().st_mtime, reverse=True
        )

    def restore_from_backup(self, backup_path: str | Path) -> MigrationState:
        """
        Restore and persist the state captured in a backup file.

        Args:
            backup_path: Backup file created by ``create_backup``

        Returns:
            MigrationState: The restored state

        Raises:
            StateNotFoundError: If the file does not exist
            StateCorruptedError: If the file cannot be parsed
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise StateNotFoundError(f"Backup not found: {backup_path}")

        try:
            payload = json.loads(backup_path.read_text())
            document = json.dumps(payload["state"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StateCorruptedError(f"Corrupted backup {backup_path}: {e}") from e

        state = _parse_state(document, str(backup_path))
        self.save_state(state)
        logger.info("State restored from backup", migration_id=state.id, path=str(backup_path))
        return state

    def rollback_to_step(self, state: MigrationState, target: MigrationPhase) -> MigrationState:
        """
        Roll the state back to an earlier phase.

        Takes a ``pre-rollback-<target>`` backup first, then deletes every
        StepResult after ``target``. Results at or before ``target`` are kept.

        Args:
            state: State to roll back (mutated in place)
            target: Phase to return to; must be before the current phase

        Returns:
            MigrationState: The rolled back state, status ROLLED_BACK

        Raises:
            InvalidRollbackError: If ``target`` is at or after the current phase
            StateError: If the backup or save fails
        """
        with self._lock:
            if phase_index(target) >= phase_index(state.current_phase):
                raise InvalidRollbackError(
                    f"Cannot roll back to {target.value}: it is not before the current "
                    f"phase {state.current_phase.value}"
                )

            self.create_backup(state, f"pre-rollback-{target.value}")

            cutoff = phase_index(target)
            removed = [p for p in state.step_results if phase_index(p) > cutoff]
            for phase in removed:
                del state.step_results[phase]

            state.skipped_phases = [p for p in state.skipped_phases if phase_index(p) <= cutoff]
            state.current_phase = target
            state.status = MigrationStatus.ROLLED_BACK
            state.completed_at = None
            state.error = None
            self.save_state(state)

            logger.info(
                "State rolled back",
                migration_id=state.id,
                target_phase=target.value,
                removed_results=[p.value for p in removed],
            )
            return state

    # ------------------------------------------------------------------
    # Pause records
    # ------------------------------------------------------------------

    def save_paused_state(
        self,
        state: MigrationState,
        checkpoint_id: str,
        context: dict[str, Any] | None = None,
    ) -> PausedMigration:
        """
        Persist a pause record separate from the regular state rows.

        Args:
            state: Paused state
            checkpoint_id: Checkpoint that paused the migration
            context: Decision context attached by the checkpoint

        Returns:
            PausedMigration: The stored bundle

        Raises:
            StateError: If the record cannot be written
        """
        with self._lock:
            paused_at = utcnow()
            paused = PausedMigration(
                record_id=(
                    f"checkpoint-{state.id}-{checkpoint_id}-{paused_at.strftime(_FILE_TIMESTAMP)}"
                ),
                state=state.model_copy(deep=True),
                checkpoint_id=checkpoint_id,
                paused_at=paused_at,
                context=context or {},
            )

            with get_session(self.database_url) as session:
                session.add(
                    PausedStateRecord(
                        id=paused.record_id,
                        migration_id=state.id,
                        checkpoint_id=checkpoint_id,
                        paused_at=paused_at,
                        payload_json=paused.model_dump_json(),
                    )
                )

            logger.info(
                "Paused state saved",
                migration_id=state.id,
                checkpoint_id=checkpoint_id,
                record_id=paused.record_id,
            )
            return paused

    def load_paused_state(
        self,
        migration_id: str | None = None,
        record_id: str | None = None,
    ) -> PausedMigration:
        """
        Load a pause record.

        Args:
            migration_id: Latest pause of this migration (any migration when omitted)
            record_id: Exact pause record to load; takes precedence

        Returns:
            PausedMigration: The stored bundle

        Raises:
            StateNotFoundError: If no matching record exists
            StateCorruptedError: If the record cannot be parsed
        """
        with self._lock:
            with get_session(self.database_url) as session:
                if record_id is not None:
                    record = session.get(PausedStateRecord, record_id)
                else:
                    stmt = select(PausedStateRecord).order_by(desc(PausedStateRecord.paused_at))
                    if migration_id is not None:
                        stmt = stmt.where(PausedStateRecord.migration_id == migration_id)
                    record = session.scalars(stmt.limit(1)).first()

                if record is None:
                    target = record_id or migration_id or "any migration"
                    raise StateNotFoundError(f"No paused state found for {target}")

                try:
                    return PausedMigration.model_validate_json(record.payload_json)
                except ValidationError as e:
                    raise StateCorruptedError(f"Corrupted pause record {record.id}: {e}") from e

    def list_checkpoints(self, migration_id: str | None = None) -> list[dict[str, Any]]:
        """Pause records, newest first."""
        with self._lock:
            with get_session(self.database_url) as session:
                stmt = select(PausedStateRecord).order_by(desc(PausedStateRecord.paused_at))
                if migration_id is not None:
                    stmt = stmt.where(PausedStateRecord.migration_id == migration_id)
                return [
                    {
                        "id": record.id,
                        "migration_id": record.migration_id,
                        "checkpoint_id": record.checkpoint_id,
                        "paused_at": _as_utc(record.paused_at),
                    }
                    for record in session.scalars(stmt)
                ]

    # ------------------------------------------------------------------
    # Checkpoint audit trail
    # ------------------------------------------------------------------

    def append_checkpoint_execution(self, execution: CheckpointExecution) -> None:
        """Append one checkpoint execution to the audit trail."""
        with self._lock:
            with get_session(self.database_url) as session:
                session.add(
                    CheckpointExecutionRecord(
                        migration_id=execution.migration_id,
                        checkpoint_id=execution.checkpoint_id,
                        phase=execution.phase.value,
                        action=execution.result.action.value,
                        executed_at=execution.executed_at,
                        payload_json=execution.model_dump_json(),
                    )
                )

    def load_checkpoint_history(self, migration_id: str) -> list[CheckpointExecution]:
        """Checkpoint executions of a migration, oldest first."""
        with self._lock:
            with get_session(self.database_url) as session:
                stmt = (
                    select(CheckpointExecutionRecord)
                    .where(CheckpointExecutionRecord.migration_id == migration_id)
                    .order_by(CheckpointExecutionRecord.id)
                )
                history = []
                for record in session.scalars(stmt):
                    try:
                        history.append(CheckpointExecution.model_validate_json(record.payload_json))
                    except ValidationError as e:
                        raise StateCorruptedError(
                            f"Corrupted checkpoint execution {record.id}: {e}"
                        ) from e
                return history

    # ------------------------------------------------------------------
    # Enumeration and maintenance
    # ------------------------------------------------------------------

    def list_states(self) -> list[dict[str, Any]]:
        """Summaries of all stored migrations, most recently modified first."""
        with self._lock:
            with get_session(self.database_url) as session:
                stmt = select(MigrationRecord).order_by(desc(MigrationRecord.updated_at))
                return [
                    {
                        "id": record.id,
                        "status": record.status,
                        "current_phase": record.current_phase,
                        "stack_name": record.stack_name,
                        "started_at": _as_utc(record.started_at),
                        "modified_at": _as_utc(record.updated_at),
                    }
                    for record in session.scalars(stmt)
                ]

    def current_migration_id(self) -> str | None:
        with self._lock:
            with get_session(self.database_url) as session:
                current = session.get(CurrentMigration, 1)
                return current.migration_id if current else None

    def cleanup(self, retention_days: int | None = None) -> dict[str, int]:
        """
        Prune records and backups older than the retention period.

        Never deletes the current migration or any migration that is
        PENDING, IN_PROGRESS or PAUSED.

        Args:
            retention_days: Age threshold (defaults to the configured retention)

        Returns:
            Counts of deleted states, pause records, executions and backups
        """
        days = retention_days if retention_days is not None else self.config.retention_days
        cutoff = utcnow() - timedelta(days=days)
        active = {status.value for status in ACTIVE_STATUSES}

        with self._lock:
            with get_session(self.database_url) as session:
                current = session.get(CurrentMigration, 1)
                protected = {current.migration_id} if current else set()

                expired = [
                    record.id
                    for record in session.scalars(select(MigrationRecord))
                    if record.id not in protected
                    and record.status not in active
                    and _as_utc(record.updated_at) < cutoff
                ]

                counts = {"states": len(expired), "paused_states": 0, "checkpoint_executions": 0}
                if expired:
                    counts["paused_states"] = session.execute(
                        delete(PausedStateRecord).where(PausedStateRecord.migration_id.in_(expired))
                    ).rowcount
                    counts["checkpoint_executions"] = session.execute(
                        delete(CheckpointExecutionRecord).where(
                            CheckpointExecutionRecord.migration_id.in_(expired)
                        )
                    ).rowcount
                    session.execute(delete(MigrationRecord).where(MigrationRecord.id.in_(expired)))

            removed_backups = 0
            for migration_id in expired:
                for path in self.list_backups(migration_id):
                    path.unlink(missing_ok=True)
                    removed_backups += 1
            counts["backups"] = removed_backups

        logger.info("State cleanup finished", retention_days=days, **counts)
        return counts

    def get_progress(self, state: MigrationState) -> dict[str, Any]:
        """
        Summarize how far a migration has progressed.

        Returns:
            Dict with percentage, completed_steps, skipped_steps, failed_steps,
            total_steps, current_phase, remaining_phases and status.
            Only phases with a successful result count as completed.
        """
        executable = [p for p in PHASE_ORDER if p != last_phase()]
        completed = [p for p in executable if state.is_phase_completed(p)]
        failed = [
            p for p in executable if p in state.step_results and not state.step_results[p].succeeded
        ]
        current = phase_index(state.current_phase)
        remaining = [
            p
            for p in executable
            if phase_index(p) >= current and p not in completed and p not in state.skipped_phases
        ]

        if state.status == MigrationStatus.COMPLETED:
            percentage = 100
        else:
            percentage = round(len(completed) / len(executable) * 100)

        return {
            "percentage": percentage,
            "completed_steps": len(completed),
            "skipped_steps": len(state.skipped_phases),
            "failed_steps": len(failed),
            "total_steps": len(executable),
            "current_phase": state.current_phase.value,
            "remaining_phases": [p.value for p in remaining],
            "status": state.status.value,
        }

    def export_state(self, migration_id: str | None, output_path: str | Path) -> Path:
        """Write a migration state as pretty-printed JSON."""
        state = self.load_state(migration_id)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(state.model_dump_json(indent=2))
        logger.info("State exported", migration_id=state.id, path=str(output_path))
        return output_path
