"""Execution state records, derivation rules, progress and the state store."""

from .derive import derive_phase_status, derive_plan_status
from .progress import PhaseProgress, PlanProgress, TaskProgress, calculate_progress, summarize_tasks
from .schema import (
    ExecutionState,
    OrchestrationRecord,
    PhaseRecord,
    PhaseStatus,
    PlanDocument,
    PlanStatus,
    TaskStatus,
    WorkType,
)
from .store import ExecutionStateStore, StatusUpdate, SyncReport

__all__ = [
    "ExecutionState",
    "ExecutionStateStore",
    "OrchestrationRecord",
    "PhaseProgress",
    "PhaseRecord",
    "PhaseStatus",
    "PlanDocument",
    "PlanProgress",
    "PlanStatus",
    "StatusUpdate",
    "SyncReport",
    "TaskProgress",
    "TaskStatus",
    "WorkType",
    "calculate_progress",
    "derive_phase_status",
    "derive_plan_status",
    "summarize_tasks",
]
