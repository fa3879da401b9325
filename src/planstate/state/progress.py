"""Read-side progress summaries computed from the execution state.

Nothing here touches disk or mutates its inputs.  Tasks inside a ``skipped``
phase count as skipped whatever their tracked status is, so a plan that skips
optional phases can still reach 100% effective completion while
``actual_work_percent`` reports only the executable subset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .derive import derive_phase_status, derive_plan_status
from .schema import (
    ExecutionState,
    OrchestrationRecord,
    PhaseRecord,
    PhaseStatus,
    ProgressSnapshot,
    TaskStatus,
    utc_now,
)


def percent(part: int, whole: int) -> int:
    """Integer percentage of ``part`` over ``whole``, rounded half up."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class TaskProgress:
    task_id: str
    phase_id: str
    status: str
    description: str = ""
    details: str = ""
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "phase_id": self.phase_id,
            "status": self.status,
            "description": self.description,
            "details": self.details,
            "result": self.result,
        }


@dataclass(slots=True)
class PhaseProgress:
    id: str
    name: str
    status: str
    tasks: List[TaskProgress] = field(default_factory=list)

    @property
    def task_count(self) -> int:
        return len(self.tasks)

    @property
    def completed_count(self) -> int:
        return sum(1 for task in self.tasks if task.status == TaskStatus.COMPLETED.value)

    @property
    def skipped_count(self) -> int:
        return sum(1 for task in self.tasks if task.status == TaskStatus.SKIPPED.value)

    @property
    def percent_complete(self) -> int:
        if not self.tasks:
            return 100 if self.status in (PhaseStatus.COMPLETED.value, PhaseStatus.SKIPPED.value) else 0
        return percent(self.completed_count + self.skipped_count, self.task_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "task_count": self.task_count,
            "completed_count": self.completed_count,
            "skipped_count": self.skipped_count,
            "percent_complete": self.percent_complete,
            "tasks": [task.to_dict() for task in self.tasks],
        }


@dataclass(slots=True)
class PlanProgress:
    """Counts, percentages and the current position of a plan."""

    plan_id: str
    goal: str = ""
    work_type: str = ""
    status: str = "pending"
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    pending_tasks: int = 0
    failed_tasks: int = 0
    blocked_tasks: int = 0
    skipped_tasks: int = 0
    percent_complete: int = 0
    actual_work_percent: int = 0
    total_phases: int = 0
    completed_phases: int = 0
    in_progress_phases: int = 0
    skipped_phases: int = 0
    phase_percent_complete: int = 0
    current_phase: Optional[PhaseProgress] = None
    current_task: Optional[TaskProgress] = None
    phases: List[PhaseProgress] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    skip_reasons: Dict[str, str] = field(default_factory=dict)
    summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        current_phase = None
        if self.current_phase is not None:
            current_phase = {
                "id": self.current_phase.id,
                "name": self.current_phase.name,
                "status": self.current_phase.status,
            }
        return {
            "plan_id": self.plan_id,
            "goal": self.goal,
            "work_type": self.work_type,
            "status": self.status,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "in_progress_tasks": self.in_progress_tasks,
            "pending_tasks": self.pending_tasks,
            "failed_tasks": self.failed_tasks,
            "blocked_tasks": self.blocked_tasks,
            "skipped_tasks": self.skipped_tasks,
            "percent_complete": self.percent_complete,
            "actual_work_percent": self.actual_work_percent,
            "total_phases": self.total_phases,
            "completed_phases": self.completed_phases,
            "in_progress_phases": self.in_progress_phases,
            "skipped_phases": self.skipped_phases,
            "phase_percent_complete": self.phase_percent_complete,
            "current_phase": current_phase,
            "current_task": self.current_task.to_dict() if self.current_task else None,
            "phases": [phase.to_dict() for phase in self.phases],
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "last_updated": _iso(self.last_updated),
            "skip_reasons": dict(self.skip_reasons),
            "summary": self.summary,
        }

    def to_snapshot(self) -> ProgressSnapshot:
        """Return the aggregate counters mirrored into ``orchestration.json``."""
        return ProgressSnapshot(
            total_tasks=self.total_tasks,
            completed_tasks=self.completed_tasks,
            skipped_tasks=self.skipped_tasks,
            total_phases=self.total_phases,
            completed_phases=self.completed_phases,
            skipped_phases=self.skipped_phases,
            percent_complete=self.percent_complete,
            last_updated=utc_now(),
        )


_TASK_COUNTERS = {
    TaskStatus.COMPLETED.value: "completed_tasks",
    TaskStatus.IN_PROGRESS.value: "in_progress_tasks",
    TaskStatus.FAILED.value: "failed_tasks",
    TaskStatus.BLOCKED.value: "blocked_tasks",
    TaskStatus.SKIPPED.value: "skipped_tasks",
}


def resolve_phase_status(record: PhaseRecord, state: ExecutionState) -> str:
    """Tracked phase status, or the one derived from its tasks when untracked."""
    tracked = state.phase_statuses.get(record.phase_id)
    if tracked:
        return tracked
    return derive_phase_status(record.task_ids(), state.task_statuses)


def calculate_progress(
    orchestration: OrchestrationRecord,
    phase_records: Mapping[str, PhaseRecord],
    state: ExecutionState,
) -> PlanProgress:
    """Summarise a plan.  Phases whose file is missing count only toward ``total_phases``."""
    metadata = orchestration.metadata
    progress = PlanProgress(
        plan_id=metadata.plan_id,
        goal=metadata.goal,
        work_type=metadata.work_type,
        total_phases=len(orchestration.phases),
        started_at=state.started_at,
        completed_at=state.completed_at,
        last_updated=state.last_updated,
        skip_reasons=dict(state.skip_reasons),
        summary=state.summary,
    )

    first_in_progress: Optional[TaskProgress] = None
    first_pending: Optional[TaskProgress] = None
    phase_statuses: List[str] = []

    for entry in orchestration.phases:
        record = phase_records.get(entry.id)
        if record is None:
            phase_statuses.append(state.phase_status(entry.id))
            continue

        phase_status = resolve_phase_status(record, state)
        phase_statuses.append(phase_status)
        phase = PhaseProgress(id=entry.id, name=record.phase_name or entry.name, status=phase_status)

        if phase_status == PhaseStatus.COMPLETED.value:
            progress.completed_phases += 1
        elif phase_status == PhaseStatus.SKIPPED.value:
            progress.skipped_phases += 1
        elif phase_status == PhaseStatus.IN_PROGRESS.value:
            progress.in_progress_phases += 1
            if progress.current_phase is None:
                progress.current_phase = phase

        for task in record.tasks:
            if phase_status == PhaseStatus.SKIPPED.value:
                status = TaskStatus.SKIPPED.value
                result = None
            else:
                status = state.task_status(task.task_id)
                result = task.result
            item = TaskProgress(
                task_id=task.task_id,
                phase_id=entry.id,
                status=status,
                description=task.description,
                details=task.details,
                result=result,
            )
            phase.tasks.append(item)
            progress.total_tasks += 1

            counter = _TASK_COUNTERS.get(status)
            if counter is None:
                progress.pending_tasks += 1
                if first_pending is None:
                    first_pending = item
            else:
                setattr(progress, counter, getattr(progress, counter) + 1)
                if status == TaskStatus.IN_PROGRESS.value and first_in_progress is None:
                    first_in_progress = item

        progress.phases.append(phase)

    if first_in_progress is not None:
        progress.current_task = first_in_progress
    elif progress.current_phase is None:
        progress.current_task = first_pending

    progress.percent_complete = percent(
        progress.completed_tasks + progress.skipped_tasks, progress.total_tasks
    )
    executable = progress.total_tasks - progress.skipped_tasks
    if executable > 0:
        progress.actual_work_percent = percent(progress.completed_tasks, executable)
    else:
        progress.actual_work_percent = 100 if progress.skipped_tasks else 0
    progress.phase_percent_complete = percent(
        progress.completed_phases + progress.skipped_phases, progress.total_phases
    )
    progress.status = derive_plan_status(phase_statuses, completed_at=state.completed_at)
    return progress


def summarize_tasks(record: PhaseRecord, state: ExecutionState) -> Dict[str, List[str]]:
    """Group the task ids of one phase by their tracked status."""
    skipped = state.phase_status(record.phase_id) == PhaseStatus.SKIPPED.value
    summary: Dict[str, List[str]] = {status.value: [] for status in TaskStatus}
    for task in record.tasks:
        status = TaskStatus.SKIPPED.value if skipped else state.task_status(task.task_id)
        summary.setdefault(status, []).append(task.task_id)
    return summary


__all__ = [
    "PhaseProgress",
    "PlanProgress",
    "TaskProgress",
    "calculate_progress",
    "percent",
    "resolve_phase_status",
    "summarize_tasks",
]
