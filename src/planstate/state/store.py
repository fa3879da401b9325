"""File-backed execution state store for plans.

``execution-state.json`` is the only authoritative record of task and phase
status.  The phase files and ``orchestration.json`` are synchronized copies
regenerated from it on every mutation; nothing here ever reads status back
from them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from ..errors import (
    ConcurrentModificationError,
    InvalidStatusError,
    PersistenceError,
    PhaseNotFoundError,
    PlanNotFoundError,
    TaskNotFoundError,
)
from ..tools.atomic import dump_json, read_json, read_json_optional, write_atomic, write_multiple_atomic
from .derive import derive_phase_status, derive_plan_status
from .layout import EXECUTION_STATE_FILE, ORCHESTRATION_FILE, execution_state_path, orchestration_path, phase_path
from .progress import calculate_progress
from .schema import (
    SETTABLE_TASK_STATUSES,
    TERMINAL_PHASE_STATUSES,
    ErrorEntry,
    ExecutionState,
    HistoryEntry,
    OrchestrationRecord,
    PhaseEntry,
    PhaseRecord,
    PhaseStatus,
    TaskStatus,
    status_value,
    utc_now,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StatusUpdate:
    """Outcome of a committed task status change."""

    task_id: str
    phase_id: str
    old_status: str
    new_status: str
    phase_status: str
    plan_status: str
    revision: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "phase_id": self.phase_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "phase_status": self.phase_status,
            "plan_status": self.plan_status,
            "revision": self.revision,
        }


@dataclass(slots=True)
class SyncReport:
    tasks_fixed: int = 0
    phases_fixed: int = 0
    files_written: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "tasks_fixed": self.tasks_fixed,
            "phases_fixed": self.phases_fixed,
            "files_written": self.files_written,
        }


class ExecutionStateStore:
    """Read and write execution state for plans under ``plans_dir``.

    Every method takes the plan identifier explicitly; the store keeps no
    per-plan state in memory between calls.
    """

    def __init__(self, plans_dir: Path | str) -> None:
        self.plans_dir = Path(plans_dir)

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------
    def plan_dir(self, plan_id: str) -> Path:
        return self.plans_dir / plan_id

    def plan_exists(self, plan_id: str) -> bool:
        return orchestration_path(self.plan_dir(plan_id)).is_file()

    def list_plans(self) -> List[str]:
        if not self.plans_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.plans_dir.iterdir()
            if entry.is_dir() and (entry / ORCHESTRATION_FILE).is_file()
        )

    def _require_plan(self, plan_id: str) -> Path:
        plan_dir = self.plan_dir(plan_id)
        if not orchestration_path(plan_dir).is_file():
            raise PlanNotFoundError(
                f"Plan '{plan_id}' not found",
                details={"plan_id": plan_id, "path": plan_dir.as_posix()},
            )
        return plan_dir

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_orchestration(self, plan_id: str) -> OrchestrationRecord:
        plan_dir = self._require_plan(plan_id)
        path = orchestration_path(plan_dir)
        try:
            return OrchestrationRecord.model_validate(read_json(path))
        except ValidationError as error:
            raise PersistenceError(
                f"Orchestration for plan '{plan_id}' is malformed",
                code="INVALID_ORCHESTRATION",
                cause=error,
                details={"path": path.as_posix()},
            ) from error

    def _load_phase_record(self, plan_dir: Path, entry: PhaseEntry) -> Optional[PhaseRecord]:
        path = phase_path(plan_dir, entry.file)
        payload = read_json_optional(path)
        if payload is None:
            LOGGER.warning("Phase file %s for phase %s is missing", path, entry.id)
            return None
        try:
            return PhaseRecord.model_validate(payload)
        except ValidationError as error:
            raise PersistenceError(
                f"Phase file {entry.file} is malformed",
                code="INVALID_PHASE_FILE",
                cause=error,
                details={"path": path.as_posix(), "phase_id": entry.id},
            ) from error

    def load_phase_records(
        self,
        plan_id: str,
        orchestration: Optional[OrchestrationRecord] = None,
    ) -> Dict[str, PhaseRecord]:
        """Return the phase files of ``plan_id`` keyed by phase id, in orchestration order."""
        plan_dir = self._require_plan(plan_id)
        orchestration = orchestration or self.load_orchestration(plan_id)
        records: Dict[str, PhaseRecord] = {}
        for entry in orchestration.phases:
            record = self._load_phase_record(plan_dir, entry)
            if record is not None:
                records[entry.id] = record
        return records

    def get_execution_state(self, plan_id: str) -> ExecutionState:
        """Load the execution state, or an empty one when the record does not exist yet."""
        plan_dir = self._require_plan(plan_id)
        path = execution_state_path(plan_dir)
        payload = read_json_optional(path)
        if payload is None:
            return ExecutionState(plan_id=plan_id)
        try:
            state = ExecutionState.model_validate(payload)
        except ValidationError as error:
            raise PersistenceError(
                f"Execution state for plan '{plan_id}' is malformed",
                code="INVALID_EXECUTION_STATE",
                cause=error,
                details={"path": path.as_posix()},
            ) from error
        if state.plan_id is None:
            state.plan_id = plan_id
        return state

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------
    def _on_disk_revision(self, plan_dir: Path) -> int:
        payload = read_json_optional(execution_state_path(plan_dir))
        if not isinstance(payload, dict):
            return 0
        try:
            return int(payload.get("revision", 0))
        except (TypeError, ValueError):
            return 0

    def _stamp(self, plan_id: str, plan_dir: Path, state: ExecutionState, expected_revision: Optional[int]) -> None:
        if expected_revision is not None:
            current = self._on_disk_revision(plan_dir)
            if current != expected_revision:
                raise ConcurrentModificationError(
                    f"Execution state for plan '{plan_id}' changed since it was read "
                    f"(expected revision {expected_revision}, found {current})",
                    details={"expected_revision": expected_revision, "revision": current},
                )
        state.last_updated = utc_now()
        state.revision += 1

    @staticmethod
    def _render(record: Any) -> str:
        return dump_json(record.model_dump(mode="json"))

    def save_execution_state(
        self,
        plan_id: str,
        state: ExecutionState,
        *,
        expected_revision: Optional[int] = None,
    ) -> ExecutionState:
        """Persist ``state``; with ``expected_revision`` the write fails if another save landed first."""
        plan_dir = self._require_plan(plan_id)
        self._stamp(plan_id, plan_dir, state, expected_revision)
        write_atomic(execution_state_path(plan_dir), self._render(state))
        return state

    def _commit(
        self,
        plan_id: str,
        state: ExecutionState,
        phase_records: Mapping[str, PhaseRecord],
        orchestration: OrchestrationRecord,
        *,
        expected_revision: Optional[int],
    ) -> None:
        """Write phase files and the execution state as one group, then resync orchestration.

        The execution state is renamed last so an interrupted rename sequence
        leaves at worst a stale phase copy behind the authoritative record.
        """
        plan_dir = self.plan_dir(plan_id)
        self._stamp(plan_id, plan_dir, state, expected_revision)
        files: Dict[Path, str] = {}
        for entry in orchestration.phases:
            record = phase_records.get(entry.id)
            if record is not None:
                files[phase_path(plan_dir, entry.file)] = self._render(record)
        files[execution_state_path(plan_dir)] = self._render(state)
        write_multiple_atomic(files)
        self.sync_orchestration_progress(plan_id, orchestration=orchestration, state=state)

    # ------------------------------------------------------------------
    # Task and phase status
    # ------------------------------------------------------------------
    def get_task_status(self, plan_id: str, task_id: str) -> str:
        return self.get_execution_state(plan_id).task_status(task_id)

    def get_phase_status(self, plan_id: str, phase_id: str) -> str:
        return self.get_execution_state(plan_id).phase_status(phase_id)

    def get_all_task_statuses(self, plan_id: str) -> Dict[str, str]:
        return dict(self.get_execution_state(plan_id).task_statuses)

    def get_all_phase_statuses(self, plan_id: str) -> Dict[str, str]:
        return dict(self.get_execution_state(plan_id).phase_statuses)

    def plan_status(self, orchestration: OrchestrationRecord, state: ExecutionState) -> str:
        return derive_plan_status(
            [state.phase_status(entry.id) for entry in orchestration.phases],
            completed_at=state.completed_at,
        )

    def find_task_phase(
        self,
        plan_id: str,
        task_id: str,
        orchestration: Optional[OrchestrationRecord] = None,
    ) -> tuple[PhaseEntry, PhaseRecord]:
        """Return the orchestration entry and phase file holding ``task_id``."""
        plan_dir = self._require_plan(plan_id)
        orchestration = orchestration or self.load_orchestration(plan_id)
        for entry in orchestration.phases:
            record = self._load_phase_record(plan_dir, entry)
            if record is not None and record.find_task(task_id) is not None:
                return entry, record
        raise TaskNotFoundError(
            f"Task '{task_id}' not found in any phase of plan '{plan_id}'",
            details={"plan_id": plan_id, "task_id": task_id},
        )

    def set_task_status(
        self,
        plan_id: str,
        task_id: str,
        status: TaskStatus | str,
        *,
        result: Any = None,
        sync_files: bool = True,
    ) -> StatusUpdate:
        """Record a new status for ``task_id`` and rederive its phase.

        This is the only write path for task status.  Legality of the
        transition itself is the caller's concern.
        """
        new_status = status_value(status)
        if new_status not in SETTABLE_TASK_STATUSES:
            raise InvalidStatusError(
                f"Invalid status '{new_status}'. Must be one of: {', '.join(SETTABLE_TASK_STATUSES)}",
                details={"status": new_status, "valid": list(SETTABLE_TASK_STATUSES)},
            )

        orchestration = self.load_orchestration(plan_id)
        state = self.get_execution_state(plan_id)
        expected_revision = state.revision
        entry, record = self.find_task_phase(plan_id, task_id, orchestration)

        old_status = state.task_status(task_id)
        state.task_statuses[task_id] = new_status
        task = record.find_task(task_id)
        if task is not None:
            task.status = new_status
            if result is not None:
                task.result = result

        phase_status = derive_phase_status(
            record.task_ids(),
            state.task_statuses,
            fallback=state.phase_statuses.get(entry.id),
        )
        state.phase_statuses[entry.id] = phase_status
        record.status = phase_status

        if new_status != TaskStatus.PENDING.value and state.started_at is None:
            state.started_at = utc_now()
        if phase_status in TERMINAL_PHASE_STATUSES:
            if state.current_phase == entry.id:
                state.current_phase = None
        elif new_status == TaskStatus.IN_PROGRESS.value and not state.current_phase:
            state.current_phase = entry.id

        if sync_files:
            self._commit(plan_id, state, {entry.id: record}, orchestration, expected_revision=expected_revision)
        else:
            self.save_execution_state(plan_id, state, expected_revision=expected_revision)

        LOGGER.info(
            "Task %s of plan %s: %s -> %s (phase %s is %s)",
            task_id,
            plan_id,
            old_status,
            new_status,
            entry.id,
            phase_status,
        )
        return StatusUpdate(
            task_id=task_id,
            phase_id=entry.id,
            old_status=old_status,
            new_status=new_status,
            phase_status=phase_status,
            plan_status=self.plan_status(orchestration, state),
            revision=state.revision,
        )

    def skip_phase(self, plan_id: str, phase_id: str, *, reason: Optional[str] = None) -> ExecutionState:
        """Mark ``phase_id`` skipped.  The skip is terminal and survives later task updates."""
        orchestration = self.load_orchestration(plan_id)
        entry = orchestration.find_phase(phase_id)
        if entry is None:
            raise PhaseNotFoundError(
                f"Phase '{phase_id}' not found in plan '{plan_id}'",
                details={"plan_id": plan_id, "phase_id": phase_id},
            )
        state = self.get_execution_state(plan_id)
        expected_revision = state.revision

        state.phase_statuses[phase_id] = PhaseStatus.SKIPPED.value
        if reason:
            state.skip_reasons[phase_id] = reason
        if state.current_phase == phase_id:
            state.current_phase = None

        records: Dict[str, PhaseRecord] = {}
        record = self._load_phase_record(self.plan_dir(plan_id), entry)
        if record is not None:
            record.status = PhaseStatus.SKIPPED.value
            records[phase_id] = record

        self._commit(plan_id, state, records, orchestration, expected_revision=expected_revision)
        LOGGER.info("Skipped phase %s of plan %s", phase_id, plan_id)
        return state

    def mark_plan_complete(self, plan_id: str, *, summary: Optional[str] = None) -> ExecutionState:
        """Record the explicit completion signal for ``plan_id``."""
        orchestration = self.load_orchestration(plan_id)
        state = self.get_execution_state(plan_id)
        expected_revision = state.revision
        state.completed_at = utc_now()
        state.current_phase = None
        if summary is not None:
            state.summary = summary
        self._commit(plan_id, state, {}, orchestration, expected_revision=expected_revision)
        LOGGER.info("Marked plan %s complete", plan_id)
        return state

    def record_error(
        self,
        plan_id: str,
        message: str,
        *,
        task_id: Optional[str] = None,
        phase_id: Optional[str] = None,
    ) -> ErrorEntry:
        state = self.get_execution_state(plan_id)
        entry = ErrorEntry(message=message, task_id=task_id, phase_id=phase_id)
        state.errors.append(entry)
        self.save_execution_state(plan_id, state, expected_revision=state.revision)
        return entry

    def reset_all_statuses(self, plan_id: str, *, preserve_history: bool = True) -> ExecutionState:
        """Return every task and phase to its initial status.

        With ``preserve_history`` a run that had started is archived into
        ``execution_history`` before the reset.
        """
        orchestration = self.load_orchestration(plan_id)
        records = self.load_phase_records(plan_id, orchestration)
        state = self.get_execution_state(plan_id)
        expected_revision = state.revision

        if preserve_history and state.has_started:
            state.execution_history.append(
                HistoryEntry(
                    started_at=state.started_at,
                    ended_at=utc_now(),
                    completed_at=state.completed_at,
                    phase_statuses=dict(state.phase_statuses),
                    task_statuses=dict(state.task_statuses),
                )
            )

        for task_id in list(state.task_statuses):
            state.task_statuses[task_id] = TaskStatus.PENDING.value
        for phase_id in list(state.phase_statuses):
            state.phase_statuses[phase_id] = PhaseStatus.PENDING.value

        for phase_id, record in records.items():
            for task in record.tasks:
                task.status = TaskStatus.PENDING.value
                task.result = None
                state.task_statuses[task.task_id] = TaskStatus.PENDING.value
            record.status = derive_phase_status(record.task_ids(), state.task_statuses)
            state.phase_statuses[phase_id] = record.status

        state.current_phase = None
        state.started_at = None
        state.completed_at = None
        state.summary = None
        state.skip_reasons = {}
        state.errors = []

        self._commit(plan_id, state, records, orchestration, expected_revision=expected_revision)
        LOGGER.info("Reset all statuses of plan %s (history preserved: %s)", plan_id, preserve_history)
        return state

    # ------------------------------------------------------------------
    # Synchronized copies
    # ------------------------------------------------------------------
    def sync_orchestration_progress(
        self,
        plan_id: str,
        *,
        orchestration: Optional[OrchestrationRecord] = None,
        state: Optional[ExecutionState] = None,
    ) -> OrchestrationRecord:
        """Regenerate phase statuses, counters and plan status in ``orchestration.json``."""
        plan_dir = self._require_plan(plan_id)
        orchestration = orchestration or self.load_orchestration(plan_id)
        state = state or self.get_execution_state(plan_id)
        records = self.load_phase_records(plan_id, orchestration)

        for entry in orchestration.phases:
            tracked = state.phase_statuses.get(entry.id)
            if tracked:
                entry.status = tracked
        orchestration.progress = calculate_progress(orchestration, records, state).to_snapshot()
        orchestration.metadata.status = self.plan_status(orchestration, state)
        orchestration.metadata.modified = utc_now()

        write_atomic(orchestration_path(plan_dir), self._render(orchestration))
        return orchestration

    def sync_phase_files(self, plan_id: str) -> SyncReport:
        """Rewrite phase files that disagree with the execution state."""
        plan_dir = self._require_plan(plan_id)
        orchestration = self.load_orchestration(plan_id)
        state = self.get_execution_state(plan_id)
        expected_revision = state.revision
        report = SyncReport()
        changed: Dict[str, PhaseRecord] = {}
        state_changed = False

        for entry in orchestration.phases:
            try:
                record = self._load_phase_record(plan_dir, entry)
            except PersistenceError as error:
                LOGGER.warning("Skipping unreadable phase file %s: %s", entry.file, error.message)
                continue
            if record is None:
                continue

            dirty = False
            for task in record.tasks:
                if task.task_id not in state.task_statuses:
                    state.task_statuses[task.task_id] = TaskStatus.PENDING.value
                    state_changed = True
                expected = state.task_statuses[task.task_id]
                if task.status != expected:
                    task.status = expected
                    report.tasks_fixed += 1
                    dirty = True

            phase_status = derive_phase_status(
                record.task_ids(),
                state.task_statuses,
                fallback=state.phase_statuses.get(entry.id),
            )
            if state.phase_statuses.get(entry.id) != phase_status:
                state.phase_statuses[entry.id] = phase_status
                state_changed = True
            if record.status != phase_status:
                record.status = phase_status
                report.phases_fixed += 1
                dirty = True
            if dirty:
                changed[entry.id] = record

        if changed or state_changed:
            self._commit(plan_id, state, changed, orchestration, expected_revision=expected_revision)
            report.files_written = len(changed) + 1
        else:
            self.sync_orchestration_progress(plan_id, orchestration=orchestration, state=state)

        LOGGER.info(
            "Synced plan %s: %d task(s), %d phase(s) fixed",
            plan_id,
            report.tasks_fixed,
            report.phases_fixed,
        )
        return report

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    @staticmethod
    def initialize_execution_state(
        plan_id: str,
        orchestration: OrchestrationRecord,
        phase_records: Mapping[str, PhaseRecord],
    ) -> ExecutionState:
        """Build the initial state: every task ``pending``, every phase its derived status."""
        state = ExecutionState(plan_id=plan_id)
        for entry in orchestration.phases:
            record = phase_records.get(entry.id)
            task_ids = record.task_ids() if record is not None else []
            for task_id in task_ids:
                state.task_statuses[task_id] = TaskStatus.PENDING.value
            state.phase_statuses[entry.id] = derive_phase_status(task_ids, state.task_statuses)
        return state


__all__ = [
    "EXECUTION_STATE_FILE",
    "ExecutionStateStore",
    "StatusUpdate",
    "SyncReport",
]
