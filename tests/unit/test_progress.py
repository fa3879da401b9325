from __future__ import annotations

import pytest

from planstate.state.progress import calculate_progress, percent, summarize_tasks
from planstate.state.schema import (
    ExecutionState,
    OrchestrationRecord,
    PhaseEntry,
    PhaseRecord,
    PlanMetadata,
    TaskRecord,
)


def _plan() -> tuple[OrchestrationRecord, dict[str, PhaseRecord]]:
    orchestration = OrchestrationRecord(
        metadata=PlanMetadata(plan_id="demo", goal="Demo goal"),
        phases=[
            PhaseEntry(id="p1", name="One", file="phases/p1.json"),
            PhaseEntry(id="p2", name="Two", file="phases/p2.json", dependencies=["p1"]),
            PhaseEntry(id="p3", name="Three", file="phases/p3.json", dependencies=["p2"]),
        ],
    )
    records = {
        "p1": PhaseRecord(
            phase_id="p1",
            phase_name="One",
            tasks=[TaskRecord(task_id="t1", description="first"), TaskRecord(task_id="t2")],
        ),
        "p2": PhaseRecord(phase_id="p2", phase_name="Two", tasks=[TaskRecord(task_id="t3")]),
        "p3": PhaseRecord(phase_id="p3", phase_name="Three", tasks=[TaskRecord(task_id="t4")]),
    }
    return orchestration, records


@pytest.mark.parametrize(
    ("part", "whole", "expected"),
    [(0, 0, 0), (1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (3, 3, 100)],
)
def test_percent_rounds_half_up(part, whole, expected) -> None:
    assert percent(part, whole) == expected


def test_fresh_plan_points_at_first_pending_task() -> None:
    orchestration, records = _plan()

    progress = calculate_progress(orchestration, records, ExecutionState())

    assert progress.total_tasks == 4
    assert progress.pending_tasks == 4
    assert progress.percent_complete == 0
    assert progress.current_phase is None
    assert progress.current_task.task_id == "t1"
    assert progress.status == "pending"


def test_in_progress_phase_and_task_become_current() -> None:
    orchestration, records = _plan()
    state = ExecutionState(
        task_statuses={"t1": "completed", "t2": "completed", "t3": "in_progress", "t4": "pending"},
        phase_statuses={"p1": "completed", "p2": "in_progress", "p3": "pending"},
    )

    progress = calculate_progress(orchestration, records, state)

    assert progress.completed_tasks == 2
    assert progress.percent_complete == 50
    assert progress.current_phase.id == "p2"
    assert progress.current_task.task_id == "t3"
    assert progress.completed_phases == 1
    assert progress.phase_percent_complete == 33
    assert progress.status == "in_progress"


def test_tasks_in_skipped_phase_count_as_skipped() -> None:
    orchestration, records = _plan()
    state = ExecutionState(
        task_statuses={"t1": "completed", "t2": "completed", "t3": "completed", "t4": "in_progress"},
        phase_statuses={"p1": "completed", "p2": "completed", "p3": "skipped"},
        skip_reasons={"p3": "descoped"},
    )

    progress = calculate_progress(orchestration, records, state)

    assert progress.skipped_tasks == 1
    assert progress.in_progress_tasks == 0
    assert progress.percent_complete == 100
    assert progress.actual_work_percent == 100
    assert progress.skipped_phases == 1
    assert progress.current_task is None
    assert progress.status == "completed"
    assert progress.to_dict()["skip_reasons"] == {"p3": "descoped"}


def test_everything_skipped_reports_full_actual_work() -> None:
    orchestration, records = _plan()
    state = ExecutionState(phase_statuses={"p1": "skipped", "p2": "skipped", "p3": "skipped"})

    progress = calculate_progress(orchestration, records, state)

    assert progress.skipped_tasks == 4
    assert progress.actual_work_percent == 100


def test_missing_phase_file_counts_only_as_phase() -> None:
    orchestration, records = _plan()
    del records["p3"]

    progress = calculate_progress(orchestration, records, ExecutionState())

    assert progress.total_phases == 3
    assert progress.total_tasks == 3
    assert [phase.id for phase in progress.phases] == ["p1", "p2"]


def test_snapshot_mirrors_counters() -> None:
    orchestration, records = _plan()
    state = ExecutionState(task_statuses={"t1": "completed"})

    snapshot = calculate_progress(orchestration, records, state).to_snapshot()

    assert snapshot.total_tasks == 4
    assert snapshot.completed_tasks == 1
    assert snapshot.percent_complete == 25


def test_summarize_tasks_groups_by_status() -> None:
    _, records = _plan()
    state = ExecutionState(task_statuses={"t1": "failed"})

    summary = summarize_tasks(records["p1"], state)

    assert summary["failed"] == ["t1"]
    assert summary["pending"] == ["t2"]
    assert summary["completed"] == []
