"""In-process command surface of the plan state engine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import backup_retention, resolve_plans_dir
from .errors import BackupNotFoundError, InvalidStatusError, PlanNotFoundError, TransitionError
from .planning.bootstrap import PlanCreation, initialize_plan
from .planning.dependencies import IntegrityReport
from .planning.integrity import validate_plan_directory
from .policy.safety import (
    SafetyCheck,
    UpdateOperation,
    UpdateValidation,
    can_delete_phase,
    can_delete_task,
    validate_status_transition,
    validate_update_during_execution,
)
from .state.progress import PlanProgress, calculate_progress, summarize_tasks
from .state.schema import (
    SETTABLE_TASK_STATUSES,
    ErrorEntry,
    ExecutionState,
    PhaseStatus,
    PlanDocument,
    TaskStatus,
    status_value,
)
from .state.store import ExecutionStateStore, StatusUpdate, SyncReport
from .tools.backups import BACKUP_DIR_NAME, DEFAULT_KEEP, BackupInfo, create_backup, list_backups, restore_from_backup

LOGGER = logging.getLogger(__name__)


class PlanEngine:
    """Validated entry points over an ``ExecutionStateStore``.

    The store records whatever it is told; the engine is where transition
    legality and plan existence are enforced before anything is written.
    Callers must serialise mutating calls per plan.
    """

    def __init__(self, store: ExecutionStateStore, *, backup_keep: int = DEFAULT_KEEP) -> None:
        self.store = store
        self.backup_keep = backup_keep

    @classmethod
    def from_config(cls, config: Mapping[str, Any], config_path: Optional[Path | str] = None) -> "PlanEngine":
        plans_dir = resolve_plans_dir(config, config_path)
        return cls(ExecutionStateStore(plans_dir), backup_keep=backup_retention(config))

    @classmethod
    def for_directory(cls, plans_dir: Path | str, *, backup_keep: int = DEFAULT_KEEP) -> "PlanEngine":
        return cls(ExecutionStateStore(plans_dir), backup_keep=backup_keep)

    def _plan_dir(self, plan_id: str) -> Path:
        if not self.store.plan_exists(plan_id):
            raise PlanNotFoundError(f"Plan '{plan_id}' not found", details={"plan_id": plan_id})
        return self.store.plan_dir(plan_id)

    # ------------------------------------------------------------------
    # Plan lifecycle
    # ------------------------------------------------------------------
    def init_plan(self, document: PlanDocument | Mapping[str, Any]) -> PlanCreation:
        return initialize_plan(self.store, document)

    def list_plans(self) -> List[str]:
        return self.store.list_plans()

    def validate(self, plan_id: str) -> IntegrityReport:
        return validate_plan_directory(self._plan_dir(plan_id))

    def sync(self, plan_id: str) -> SyncReport:
        return self.store.sync_phase_files(plan_id)

    def get_state(self, plan_id: str) -> ExecutionState:
        return self.store.get_execution_state(plan_id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def set_status(
        self,
        plan_id: str,
        task_id: str,
        status: TaskStatus | str,
        *,
        result: Any = None,
        force: bool = False,
    ) -> StatusUpdate:
        """Change a task's status after checking the transition is legal.

        Re-recording the current status is accepted (e.g. to attach a result).
        ``force`` bypasses the transition table but not status validation.
        """
        new_status = status_value(status)
        if new_status not in SETTABLE_TASK_STATUSES:
            raise InvalidStatusError(
                f"Invalid status '{new_status}'. Must be one of: {', '.join(SETTABLE_TASK_STATUSES)}",
                details={"status": new_status, "valid": list(SETTABLE_TASK_STATUSES)},
            )

        self.store.find_task_phase(plan_id, task_id)
        current = self.store.get_execution_state(plan_id).task_statuses.get(task_id)
        if current != new_status:
            check = validate_status_transition(current, new_status, "task")
            if not check.can_proceed:
                if not force:
                    raise TransitionError(
                        check.reason or "Invalid status transition",
                        code=check.code,
                        allowed=check.allowed,
                        details={"task_id": task_id, "current": current, "requested": new_status},
                    )
                LOGGER.warning("Forcing task %s of plan %s: %s", task_id, plan_id, check.reason)

        return self.store.set_task_status(plan_id, task_id, new_status, result=result)

    def skip_phase(self, plan_id: str, phase_id: str, *, reason: Optional[str] = None) -> ExecutionState:
        """Skip a phase that has not completed; skipping twice is a no-op."""
        state = self.store.get_execution_state(plan_id)
        current = state.phase_status(phase_id)
        if current == PhaseStatus.SKIPPED.value:
            return state
        if current == PhaseStatus.COMPLETED.value:
            raise TransitionError(
                f"Phase '{phase_id}' is already completed and cannot be skipped",
                details={"phase_id": phase_id, "current": current},
            )
        return self.store.skip_phase(plan_id, phase_id, reason=reason)

    def complete_plan(self, plan_id: str, *, summary: Optional[str] = None) -> ExecutionState:
        return self.store.mark_plan_complete(plan_id, summary=summary)

    def record_error(
        self,
        plan_id: str,
        message: str,
        *,
        task_id: Optional[str] = None,
        phase_id: Optional[str] = None,
    ) -> ErrorEntry:
        return self.store.record_error(plan_id, message, task_id=task_id, phase_id=phase_id)

    def reset_all(self, plan_id: str, *, preserve_history: bool = True) -> ExecutionState:
        return self.store.reset_all_statuses(plan_id, preserve_history=preserve_history)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def get_progress(self, plan_id: str) -> PlanProgress:
        orchestration = self.store.load_orchestration(plan_id)
        records = self.store.load_phase_records(plan_id, orchestration)
        state = self.store.get_execution_state(plan_id)
        return calculate_progress(orchestration, records, state)

    def task_summary(self, plan_id: str, phase_id: str) -> Dict[str, List[str]]:
        orchestration = self.store.load_orchestration(plan_id)
        records = self.store.load_phase_records(plan_id, orchestration)
        record = records.get(phase_id)
        if record is None:
            return {}
        return summarize_tasks(record, self.store.get_execution_state(plan_id))

    # ------------------------------------------------------------------
    # Safety
    # ------------------------------------------------------------------
    def can_mutate(
        self,
        plan_id: str,
        operations: Iterable[UpdateOperation | Mapping[str, Any]],
    ) -> UpdateValidation:
        orchestration = self.store.load_orchestration(plan_id)
        records = self.store.load_phase_records(plan_id, orchestration)
        state = self.store.get_execution_state(plan_id)
        return validate_update_during_execution(orchestration, state, operations, phase_records=records)

    def can_delete_phase(self, plan_id: str, phase_id: str, *, force: bool = False) -> SafetyCheck:
        orchestration = self.store.load_orchestration(plan_id)
        state = self.store.get_execution_state(plan_id)
        return can_delete_phase(phase_id, orchestration, state, force=force)

    def can_delete_task(
        self,
        plan_id: str,
        task_id: str,
        *,
        phase_id: Optional[str] = None,
        force: bool = False,
    ) -> SafetyCheck:
        orchestration = self.store.load_orchestration(plan_id)
        records = self.store.load_phase_records(plan_id, orchestration)
        if phase_id is None:
            phase_id = next(
                (record.phase_id for record in records.values() if record.find_task(task_id) is not None),
                "",
            )
        state = self.store.get_execution_state(plan_id)
        return can_delete_task(task_id, phase_id, records, state, force=force)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------
    def backup(self, plan_id: str) -> Path:
        return create_backup(self._plan_dir(plan_id), keep=self.backup_keep)

    def list_backups(self, plan_id: str) -> List[BackupInfo]:
        return list_backups(self._plan_dir(plan_id))

    def restore(self, plan_id: str, backup_name: str) -> Path:
        """Restore ``plan_id`` from one of its own backups, named as listed by ``list_backups``."""
        plan_dir = self._plan_dir(plan_id)
        if not backup_name or Path(backup_name).name != backup_name:
            raise BackupNotFoundError(
                f"Invalid backup name '{backup_name}'",
                details={"plan_id": plan_id, "backup": backup_name},
            )
        backup_path = plan_dir / BACKUP_DIR_NAME / backup_name
        if not backup_path.is_dir():
            raise BackupNotFoundError(
                f"Backup '{backup_name}' not found for plan '{plan_id}'",
                details={"plan_id": plan_id, "backup": backup_name},
            )
        restored = restore_from_backup(backup_path, keep=self.backup_keep)
        LOGGER.info("Plan %s restored from %s", plan_id, backup_name)
        return restored


__all__ = ["PlanEngine"]
