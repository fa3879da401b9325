"""Safety checks for status transitions and structural edits of a plan.

Every check returns a result object instead of raising; ``ensure_safe``
turns a failed check into an ``UnsafeOperationError`` for callers that want
exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..errors import UnsafeOperationError
from ..state.schema import ExecutionState, OrchestrationRecord, PhaseRecord, PhaseStatus, TaskStatus, status_value

# Shared by tasks and phases.  Statuses without an entry (blocked, skipped)
# have no legal successor in this table.
VALID_TRANSITIONS: Dict[str, Dict[str, tuple[str, ...]]] = {
    entity: {
        "pending": ("in_progress", "completed"),
        "in_progress": ("completed", "failed"),
        "completed": (),
        "failed": ("in_progress",),
    }
    for entity in ("task", "phase")
}

PROCEED = "proceed"
PROCEED_WITH_CAUTION = "proceed_with_caution"
SELECTIVE = "selective"
ROLLBACK = "rollback"

# Blocked codes that no force flag can clear; a batch containing one needs re-planning.
_ACTIVE_WORK_CODES = frozenset(
    {
        "DELETE_CURRENT_PHASE",
        "DELETE_IN_PROGRESS_PHASE",
        "DELETE_IN_PROGRESS_TASK",
    }
)


@dataclass(slots=True)
class SafetyCheck:
    """Outcome of a single safety decision."""

    can_proceed: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    requires_force: bool = False
    warnings: List[str] = field(default_factory=list)
    allowed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"can_proceed": self.can_proceed, "warnings": list(self.warnings)}
        if not self.can_proceed:
            payload.update({"reason": self.reason, "code": self.code, "requires_force": self.requires_force})
        if self.allowed:
            payload["allowed"] = list(self.allowed)
        return payload


def ensure_safe(check: SafetyCheck) -> SafetyCheck:
    """Raise ``UnsafeOperationError`` when ``check`` did not pass."""
    if not check.can_proceed:
        raise UnsafeOperationError(
            check.reason or "Operation is not safe",
            code=check.code,
            requires_force=check.requires_force,
        )
    return check


def validate_status_transition(
    current: Optional[str],
    new: str,
    entity_type: str = "task",
) -> SafetyCheck:
    """Check ``current -> new`` against the transition table.

    An untracked entity (``current`` is ``None``) may take any initial status.
    """
    transitions = VALID_TRANSITIONS.get(entity_type)
    if transitions is None:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Unknown entity type '{entity_type}'",
            code="INVALID_ENTITY_TYPE",
        )
    if not current:
        return SafetyCheck(can_proceed=True)

    current_value = status_value(current)
    new_value = status_value(new)
    successors = transitions.get(current_value)
    if successors is None:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Unknown current status '{current_value}' for {entity_type}",
            code="INVALID_CURRENT_STATUS",
        )
    if new_value not in successors:
        listed = ", ".join(successors) or "none"
        return SafetyCheck(
            can_proceed=False,
            reason=(
                f"Invalid status transition for {entity_type}: {current_value} -> {new_value}. "
                f"Allowed: {listed}"
            ),
            code="INVALID_STATUS_TRANSITION",
            allowed=list(successors),
        )
    return SafetyCheck(can_proceed=True, allowed=list(successors))


def can_delete_phase(
    phase_id: str,
    orchestration: OrchestrationRecord,
    state: ExecutionState,
    *,
    force: bool = False,
) -> SafetyCheck:
    if orchestration.find_phase(phase_id) is None:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Phase '{phase_id}' not found in orchestration",
            code="PHASE_NOT_FOUND",
        )

    status = state.phase_statuses.get(phase_id)
    if status == PhaseStatus.IN_PROGRESS.value:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Phase '{phase_id}' is currently in progress and cannot be deleted",
            code="PHASE_IN_PROGRESS",
        )
    if status == PhaseStatus.COMPLETED.value and not force:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Phase '{phase_id}' is completed. Use --force to delete completed work",
            code="PHASE_COMPLETED",
            requires_force=True,
        )

    dependents = [entry.id for entry in orchestration.phases if phase_id in entry.dependencies]
    if dependents:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Phase '{phase_id}' has dependent phases: {', '.join(dependents)}. Remove dependencies first",
            code="HAS_DEPENDENT_PHASES",
        )

    warnings: List[str] = []
    if force and status == PhaseStatus.COMPLETED.value:
        warnings.append(f"Deleting completed phase '{phase_id}' - all progress will be lost")
    return SafetyCheck(can_proceed=True, warnings=warnings)


def _phase_list(phases: Mapping[str, PhaseRecord] | Sequence[PhaseRecord]) -> List[PhaseRecord]:
    if isinstance(phases, Mapping):
        return list(phases.values())
    return list(phases)


def _task_dependents(task_id: str, phases: Iterable[PhaseRecord]) -> List[str]:
    return [task.task_id for phase in phases for task in phase.tasks if task_id in task.dependencies]


def can_delete_task(
    task_id: str,
    phase_id: str,
    phases: Mapping[str, PhaseRecord] | Sequence[PhaseRecord],
    state: ExecutionState,
    *,
    force: bool = False,
) -> SafetyCheck:
    """Decide whether ``task_id`` may be removed from ``phase_id``.

    Dependents are searched across every phase in ``phases`` since task
    dependencies may cross phase boundaries.
    """
    records = _phase_list(phases)
    owner = next((record for record in records if record.phase_id == phase_id), None)
    if owner is None or owner.find_task(task_id) is None:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Task '{task_id}' not found in phase '{phase_id}'",
            code="TASK_NOT_FOUND",
        )

    status = state.task_statuses.get(task_id)
    if status == TaskStatus.IN_PROGRESS.value:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Task '{task_id}' is currently in progress and cannot be deleted",
            code="TASK_IN_PROGRESS",
        )
    if status == TaskStatus.COMPLETED.value and not force:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Task '{task_id}' is completed. Use --force to delete completed work",
            code="TASK_COMPLETED",
            requires_force=True,
        )

    dependents = _task_dependents(task_id, records)
    if dependents:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Task '{task_id}' has dependent tasks: {', '.join(dependents)}. Remove dependencies first",
            code="HAS_DEPENDENT_TASKS",
        )

    warnings: List[str] = []
    if force and status == TaskStatus.COMPLETED.value:
        warnings.append(f"Deleting completed task '{task_id}' - all progress will be lost")
    return SafetyCheck(can_proceed=True, warnings=warnings)


class UpdateOperation(BaseModel):
    """A proposed structural edit: ``type`` add|update|delete on ``target`` phase|task|metadata."""

    model_config = ConfigDict(extra="forbid")

    type: str
    target: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def entity_id(self) -> Optional[str]:
        value = self.data.get("id")
        return str(value) if value is not None else None

    @property
    def force(self) -> bool:
        return bool(self.data.get("force", False))


@dataclass(slots=True)
class BlockedOperation:
    operation: UpdateOperation
    reason: str
    code: str
    requires_force: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.model_dump(mode="json"),
            "reason": self.reason,
            "code": self.code,
            "requires_force": self.requires_force,
        }


@dataclass(slots=True)
class UpdateValidation:
    """Partition of a batch of proposed edits into allowed and blocked."""

    allowed: List[UpdateOperation] = field(default_factory=list)
    blocked: List[BlockedOperation] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    is_executing: bool = False
    current_phase: Optional[str] = None

    @property
    def safe(self) -> bool:
        return not self.blocked

    @property
    def recommendation(self) -> str:
        if any(item.code in _ACTIVE_WORK_CODES for item in self.blocked):
            return ROLLBACK
        if self.blocked:
            return SELECTIVE
        if self.warnings and self.is_executing:
            return PROCEED_WITH_CAUTION
        return PROCEED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": [operation.model_dump(mode="json") for operation in self.allowed],
            "blocked": [item.to_dict() for item in self.blocked],
            "warnings": list(self.warnings),
            "is_executing": self.is_executing,
            "current_phase": self.current_phase,
            "recommendation": self.recommendation,
        }


def _coerce_operations(operations: Iterable[UpdateOperation | Mapping[str, Any]]) -> List[UpdateOperation]:
    return [
        operation if isinstance(operation, UpdateOperation) else UpdateOperation.model_validate(dict(operation))
        for operation in operations
    ]


def _check_phase_delete(
    operation: UpdateOperation,
    orchestration: OrchestrationRecord,
    state: ExecutionState,
    result: UpdateValidation,
) -> None:
    phase_id = operation.entity_id or ""
    status = state.phase_statuses.get(phase_id)

    if phase_id and phase_id == state.current_phase:
        result.blocked.append(
            BlockedOperation(operation, f"Cannot delete current phase '{phase_id}' during execution", "DELETE_CURRENT_PHASE")
        )
        return
    if status == PhaseStatus.IN_PROGRESS.value:
        result.blocked.append(
            BlockedOperation(operation, f"Cannot delete in-progress phase '{phase_id}'", "DELETE_IN_PROGRESS_PHASE")
        )
        return
    if status == PhaseStatus.COMPLETED.value and not operation.force:
        result.blocked.append(
            BlockedOperation(
                operation,
                f"Cannot delete completed phase '{phase_id}' during execution without --force",
                "DELETE_COMPLETED_PHASE_DURING_EXECUTION",
                requires_force=True,
            )
        )
        return

    dependents = [entry.id for entry in orchestration.phases if phase_id in entry.dependencies]
    if dependents:
        result.blocked.append(
            BlockedOperation(
                operation,
                f"Phase '{phase_id}' has dependent phases: {', '.join(dependents)}. Remove dependencies first",
                "HAS_DEPENDENT_PHASES",
            )
        )
        return

    result.allowed.append(operation)
    if status == PhaseStatus.COMPLETED.value:
        result.warnings.append(f"Deleting completed phase '{phase_id}' - all progress will be lost")
    else:
        result.warnings.append(f"Deleting pending phase '{phase_id}' during execution - future work will be affected")


def _check_task_delete(
    operation: UpdateOperation,
    phase_records: Sequence[PhaseRecord],
    state: ExecutionState,
    result: UpdateValidation,
) -> None:
    task_id = operation.entity_id or ""
    status = state.task_statuses.get(task_id)

    if status == TaskStatus.IN_PROGRESS.value:
        result.blocked.append(
            BlockedOperation(operation, f"Cannot delete in-progress task '{task_id}'", "DELETE_IN_PROGRESS_TASK")
        )
        return
    if status == TaskStatus.COMPLETED.value and not operation.force:
        result.blocked.append(
            BlockedOperation(
                operation,
                f"Cannot delete completed task '{task_id}' during execution without --force",
                "DELETE_COMPLETED_TASK_DURING_EXECUTION",
                requires_force=True,
            )
        )
        return

    dependents = _task_dependents(task_id, phase_records)
    if dependents:
        result.blocked.append(
            BlockedOperation(
                operation,
                f"Task '{task_id}' has dependent tasks: {', '.join(dependents)}. Remove dependencies first",
                "HAS_DEPENDENT_TASKS",
            )
        )
        return

    result.allowed.append(operation)
    if status == TaskStatus.COMPLETED.value:
        result.warnings.append(f"Deleting completed task '{task_id}' - all progress will be lost")
    else:
        result.warnings.append(f"Deleting pending task '{task_id}' during execution")


def validate_update_during_execution(
    orchestration: OrchestrationRecord,
    state: ExecutionState,
    operations: Iterable[UpdateOperation | Mapping[str, Any]],
    *,
    phase_records: Mapping[str, PhaseRecord] | Sequence[PhaseRecord] = (),
) -> UpdateValidation:
    """Partition ``operations`` into allowed and blocked for the plan's current state.

    A plan that has not started, or has been marked complete, allows every
    operation.  ``phase_records`` enables the cross-phase dependent-task check.
    """
    batch = _coerce_operations(operations)
    result = UpdateValidation(is_executing=state.is_executing, current_phase=state.current_phase)
    if not result.is_executing:
        result.allowed = batch
        result.warnings.append("Plan is not currently executing - all updates allowed")
        return result

    records = _phase_list(phase_records)
    for operation in batch:
        if operation.target == "metadata":
            result.allowed.append(operation)
            continue

        if operation.target not in ("phase", "task") or operation.type not in ("add", "update", "delete"):
            result.allowed.append(operation)
            result.warnings.append(
                f"Unknown operation type '{operation.type}' on target '{operation.target}' - allowing but use caution"
            )
            continue

        if operation.type == "add":
            result.allowed.append(operation)
            result.warnings.append(f"Adding {operation.target} during execution - future work will be affected")
            continue

        if operation.type == "update":
            entity_id = operation.entity_id or ""
            if operation.target == "phase":
                completed = state.phase_statuses.get(entity_id) == PhaseStatus.COMPLETED.value
            else:
                completed = state.task_statuses.get(entity_id) == TaskStatus.COMPLETED.value
            if completed:
                result.warnings.append(
                    f"Updating completed {operation.target} '{entity_id}' - may cause inconsistencies"
                )
            result.allowed.append(operation)
            continue

        if operation.target == "phase":
            _check_phase_delete(operation, orchestration, state, result)
        else:
            _check_task_delete(operation, records, state, result)

    return result


__all__ = [
    "PROCEED",
    "PROCEED_WITH_CAUTION",
    "ROLLBACK",
    "SELECTIVE",
    "VALID_TRANSITIONS",
    "BlockedOperation",
    "SafetyCheck",
    "UpdateOperation",
    "UpdateValidation",
    "can_delete_phase",
    "can_delete_task",
    "ensure_safe",
    "validate_status_transition",
    "validate_update_during_execution",
]
