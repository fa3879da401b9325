"""Pure rules deriving phase and plan status from their children."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping, Optional

from .schema import PhaseStatus, PlanStatus, TaskStatus, TERMINAL_PHASE_STATUSES

LOGGER = logging.getLogger(__name__)


def derive_phase_status(
    task_ids: Iterable[str],
    task_statuses: Mapping[str, str],
    *,
    fallback: Optional[str] = None,
) -> str:
    """Return the status a phase holds given the statuses of its tasks.

    Untracked tasks count as ``pending``.  A phase without tasks is
    ``completed``.  An explicit ``skipped`` fallback is authoritative and is
    returned unchanged; ``skipped`` is never derived.
    """
    if fallback == PhaseStatus.SKIPPED.value:
        return PhaseStatus.SKIPPED.value

    statuses = [task_statuses.get(task_id) or TaskStatus.PENDING.value for task_id in task_ids]
    if not statuses:
        return PhaseStatus.COMPLETED.value

    completed = sum(1 for status in statuses if status == TaskStatus.COMPLETED.value)
    blocked = sum(1 for status in statuses if status == TaskStatus.BLOCKED.value)

    if completed == len(statuses):
        derived = PhaseStatus.COMPLETED.value
    elif TaskStatus.FAILED.value in statuses:
        derived = PhaseStatus.FAILED.value
    elif TaskStatus.IN_PROGRESS.value in statuses:
        derived = PhaseStatus.IN_PROGRESS.value
    elif blocked and blocked == len(statuses) - completed:
        derived = PhaseStatus.BLOCKED.value
    elif completed:
        derived = PhaseStatus.IN_PROGRESS.value
    else:
        derived = PhaseStatus.PENDING.value

    LOGGER.debug("Derived phase status %s from %d task(s)", derived, len(statuses))
    return derived


def derive_plan_status(
    phase_statuses: Iterable[str],
    *,
    completed_at: Optional[datetime] = None,
) -> str:
    """Return the plan status implied by its phases and the explicit completion signal."""
    if completed_at is not None:
        return PlanStatus.COMPLETED.value

    statuses = list(phase_statuses)
    if not statuses:
        return PlanStatus.PENDING.value

    if all(status in TERMINAL_PHASE_STATUSES for status in statuses) and (
        PhaseStatus.COMPLETED.value in statuses
    ):
        return PlanStatus.COMPLETED.value
    if PhaseStatus.FAILED.value in statuses:
        return PlanStatus.FAILED.value
    if PhaseStatus.IN_PROGRESS.value in statuses or PhaseStatus.COMPLETED.value in statuses:
        return PlanStatus.IN_PROGRESS.value
    return PlanStatus.PENDING.value


__all__ = ["derive_phase_status", "derive_plan_status"]
