"""Typed records for submitted plans and their persisted state files."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def status_value(status: Any) -> str:
    """Return the plain string form of a status enum or string."""
    if isinstance(status, Enum):
        return str(status.value)
    return str(status)


class RecordModel(BaseModel):
    """Strict base for caller-submitted documents."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class StoredRecord(BaseModel):
    """Base for on-disk records; unknown keys are preserved across round trips."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TaskStatus(str, Enum):
    """Lifecycle states for a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


class PhaseStatus(str, Enum):
    """Lifecycle states for a phase; ``skipped`` is only ever set explicitly."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


class PlanStatus(str, Enum):
    """Derived lifecycle state of a whole plan."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkType(str, Enum):
    FEATURE = "feature"
    BUG = "bug"
    SPIKE = "spike"
    REFACTOR = "refactor"
    OTHER = "other"


# ``skipped`` is reachable only through a phase-level skip.
SETTABLE_TASK_STATUSES: tuple[str, ...] = (
    TaskStatus.PENDING.value,
    TaskStatus.IN_PROGRESS.value,
    TaskStatus.COMPLETED.value,
    TaskStatus.FAILED.value,
    TaskStatus.BLOCKED.value,
)

TERMINAL_PHASE_STATUSES = frozenset({PhaseStatus.COMPLETED.value, PhaseStatus.SKIPPED.value})


# --------------------------------------------------------------------------
# Submitted plan document
# --------------------------------------------------------------------------


class TaskDefinition(RecordModel):
    """A task as authored in a submitted plan document."""

    id: str = Field(validation_alias=AliasChoices("id", "task_id"), min_length=1)
    description: str = ""
    details: str = ""
    dependencies: List[str] = Field(default_factory=list)


class PhaseDefinition(RecordModel):
    """A phase as authored in a submitted plan document.

    ``dependencies=None`` means "depends on the previous phase"; an explicit
    empty list means the phase has no phase-level dependencies.
    """

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "phase_id"))
    name: str = Field(validation_alias=AliasChoices("name", "phase_name"), min_length=1)
    description: str = ""
    dependencies: Optional[List[str]] = None
    tasks: List[TaskDefinition] = Field(default_factory=list)


class PlanDocument(RecordModel):
    """Orchestration document submitted to create a plan."""

    plan_name: str = Field(min_length=1)
    goal: str = ""
    work_type: WorkType = WorkType.OTHER
    description: str = ""
    version: str = "1.0.0"
    phases: List[PhaseDefinition] = Field(min_length=1)


# --------------------------------------------------------------------------
# Persisted records
# --------------------------------------------------------------------------


class TaskRecord(StoredRecord):
    task_id: str
    description: str = ""
    details: str = ""
    dependencies: List[str] = Field(default_factory=list)
    status: str = TaskStatus.PENDING.value
    result: Optional[Any] = None


class PhaseRecord(StoredRecord):
    """Contents of ``phases/<phase-id>.json``: a synchronized copy, never authoritative."""

    phase_id: str
    phase_name: str = ""
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    status: str = PhaseStatus.PENDING.value
    tasks: List[TaskRecord] = Field(default_factory=list)

    def task_ids(self) -> List[str]:
        return [task.task_id for task in self.tasks]

    def find_task(self, task_id: str) -> Optional[TaskRecord]:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None


class PhaseEntry(StoredRecord):
    """A phase as listed in ``orchestration.json``."""

    id: str
    name: str = ""
    file: str
    dependencies: List[str] = Field(default_factory=list)
    status: str = PhaseStatus.PENDING.value


class PlanMetadata(StoredRecord):
    plan_id: str
    name: str = ""
    goal: str = ""
    description: str = ""
    work_type: str = WorkType.OTHER.value
    status: str = PlanStatus.PENDING.value
    version: str = "1.0.0"
    created: datetime = Field(default_factory=utc_now)
    modified: datetime = Field(default_factory=utc_now)


class ProgressSnapshot(StoredRecord):
    """Aggregate counters mirrored into ``orchestration.json`` for older readers."""

    total_tasks: int = 0
    completed_tasks: int = 0
    skipped_tasks: int = 0
    total_phases: int = 0
    completed_phases: int = 0
    skipped_phases: int = 0
    percent_complete: int = 0
    last_updated: Optional[datetime] = None


class OrchestrationRecord(StoredRecord):
    metadata: PlanMetadata
    phases: List[PhaseEntry] = Field(default_factory=list)
    progress: ProgressSnapshot = Field(default_factory=ProgressSnapshot)

    def phase_ids(self) -> List[str]:
        return [phase.id for phase in self.phases]

    def find_phase(self, phase_id: str) -> Optional[PhaseEntry]:
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        return None


class ErrorEntry(StoredRecord):
    message: str
    recorded_at: datetime = Field(default_factory=utc_now)
    task_id: Optional[str] = None
    phase_id: Optional[str] = None


class HistoryEntry(StoredRecord):
    """Snapshot of a previous run, appended by a history-preserving reset."""

    started_at: Optional[datetime] = None
    ended_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    phase_statuses: Dict[str, str] = Field(default_factory=dict)
    task_statuses: Dict[str, str] = Field(default_factory=dict)


class ExecutionState(StoredRecord):
    """Authoritative status record for one plan (``execution-state.json``)."""

    plan_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("plan_id", "planId"))
    task_statuses: Dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("task_statuses", "taskStatuses"),
    )
    phase_statuses: Dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("phase_statuses", "phaseStatuses", "phaseStates"),
    )
    current_phase: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("current_phase", "currentPhase")
    )
    started_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("started_at", "startedAt")
    )
    completed_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("completed_at", "completedAt")
    )
    last_updated: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("last_updated", "lastUpdated")
    )
    errors: List[ErrorEntry] = Field(default_factory=list)
    execution_history: List[HistoryEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("execution_history", "executionHistory"),
    )
    skip_reasons: Dict[str, str] = Field(default_factory=dict)
    summary: Optional[str] = None
    revision: int = 0

    @field_validator("task_statuses", "phase_statuses", mode="before")
    @classmethod
    def _coerce_status_map(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(key): status_value(item) for key, item in value.items() if item is not None}
        return value

    @field_validator("errors", mode="before")
    @classmethod
    def _coerce_errors(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [{"message": item} if isinstance(item, str) else item for item in value]
        return value

    def task_status(self, task_id: str) -> str:
        return self.task_statuses.get(task_id) or TaskStatus.PENDING.value

    def phase_status(self, phase_id: str) -> str:
        return self.phase_statuses.get(phase_id) or PhaseStatus.PENDING.value

    @property
    def has_started(self) -> bool:
        if self.started_at is not None:
            return True
        return any(status != TaskStatus.PENDING.value for status in self.task_statuses.values())

    @property
    def is_executing(self) -> bool:
        return self.has_started and self.completed_at is None
