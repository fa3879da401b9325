from __future__ import annotations

from datetime import datetime, timezone

import pytest

from planstate.state.derive import derive_phase_status, derive_plan_status


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        (["completed", "completed"], "completed"),
        (["completed", "failed", "in_progress"], "failed"),
        (["pending", "in_progress"], "in_progress"),
        (["blocked", "completed"], "blocked"),
        (["blocked", "pending"], "pending"),
        (["completed", "pending"], "in_progress"),
        (["pending", "pending"], "pending"),
    ],
)
def test_phase_status_rules_apply_in_order(statuses, expected) -> None:
    task_ids = [f"t{index}" for index in range(len(statuses))]
    assert derive_phase_status(task_ids, dict(zip(task_ids, statuses))) == expected


def test_untracked_tasks_count_as_pending() -> None:
    assert derive_phase_status(["a", "b"], {"a": "completed"}) == "in_progress"
    assert derive_phase_status(["a"], {}) == "pending"


def test_phase_without_tasks_is_completed() -> None:
    assert derive_phase_status([], {}) == "completed"


def test_skipped_fallback_is_kept() -> None:
    assert derive_phase_status(["a"], {"a": "in_progress"}, fallback="skipped") == "skipped"
    assert derive_phase_status(["a"], {"a": "in_progress"}, fallback="completed") == "in_progress"


def test_plan_status_from_phases() -> None:
    assert derive_plan_status([]) == "pending"
    assert derive_plan_status(["pending", "pending"]) == "pending"
    assert derive_plan_status(["completed", "pending"]) == "in_progress"
    assert derive_plan_status(["in_progress", "failed"]) == "failed"
    assert derive_plan_status(["completed", "skipped"]) == "completed"


def test_explicit_completion_signal_wins() -> None:
    finished = datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert derive_plan_status(["pending", "failed"], completed_at=finished) == "completed"
