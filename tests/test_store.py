from __future__ import annotations

import json
from pathlib import Path

import pytest

from planstate.errors import (
    ConcurrentModificationError,
    InvalidStatusError,
    PersistenceError,
    PhaseNotFoundError,
    PlanNotFoundError,
    TaskNotFoundError,
)
from planstate.state.schema import ExecutionState
from planstate.state.store import ExecutionStateStore


def _read(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture()
def store(engine) -> ExecutionStateStore:
    return engine.store


def test_initial_state_tracks_every_task_as_pending(store, created_plan) -> None:
    state = store.get_execution_state(created_plan)

    assert state.task_statuses == {"a1": "pending", "a2": "pending", "b1": "pending"}
    assert state.phase_statuses == {"phase-a": "pending", "phase-b": "pending"}
    assert state.revision == 1
    assert store.get_task_status(created_plan, "unknown-task") == "pending"


def test_set_task_status_updates_state_phase_file_and_orchestration(store, created_plan) -> None:
    update = store.set_task_status(created_plan, "a1", "in_progress")

    assert update.old_status == "pending"
    assert update.phase_id == "phase-a"
    assert update.phase_status == "in_progress"
    assert update.plan_status == "in_progress"

    state = store.get_execution_state(created_plan)
    assert state.current_phase == "phase-a"
    assert state.started_at is not None

    plan_dir = store.plan_dir(created_plan)
    phase_file = _read(plan_dir / "phases" / "phase-a.json")
    assert phase_file["status"] == "in_progress"
    assert {task["task_id"]: task["status"] for task in phase_file["tasks"]}["a1"] == "in_progress"

    orchestration = _read(plan_dir / "orchestration.json")
    assert orchestration["phases"][0]["status"] == "in_progress"
    assert orchestration["metadata"]["status"] == "in_progress"


def test_set_task_status_stores_result(store, created_plan) -> None:
    store.set_task_status(created_plan, "a1", "completed", result="parser merged")

    records = store.load_phase_records(created_plan)
    assert records["phase-a"].find_task("a1").result == "parser merged"


def test_set_task_status_rejects_unknown_status(store, created_plan) -> None:
    with pytest.raises(InvalidStatusError) as excinfo:
        store.set_task_status(created_plan, "a1", "skipped")
    assert "pending" in excinfo.value.details["valid"]


def test_set_task_status_unknown_task_and_plan(store, created_plan) -> None:
    with pytest.raises(TaskNotFoundError):
        store.set_task_status(created_plan, "zz", "completed")
    with pytest.raises(PlanNotFoundError):
        store.set_task_status("no-such-plan", "a1", "completed")


def test_first_pending_status_does_not_stamp_start(store, created_plan) -> None:
    store.set_task_status(created_plan, "a1", "pending")
    assert store.get_execution_state(created_plan).started_at is None


def test_current_phase_cleared_when_it_completes(store, created_plan) -> None:
    store.set_task_status(created_plan, "a1", "in_progress")
    store.set_task_status(created_plan, "a1", "completed")
    store.set_task_status(created_plan, "a2", "completed")

    state = store.get_execution_state(created_plan)
    assert state.phase_statuses["phase-a"] == "completed"
    assert state.current_phase is None


def test_revision_guard_detects_interleaved_writes(store, created_plan) -> None:
    stale = store.get_execution_state(created_plan)
    store.set_task_status(created_plan, "a1", "in_progress")

    stale.task_statuses["a2"] = "completed"
    with pytest.raises(ConcurrentModificationError) as excinfo:
        store.save_execution_state(created_plan, stale, expected_revision=stale.revision)

    assert excinfo.value.details["revision"] == stale.revision + 1
    assert store.get_task_status(created_plan, "a2") == "pending"


def test_legacy_camel_case_state_is_accepted(store, created_plan) -> None:
    path = store.plan_dir(created_plan) / "execution-state.json"
    path.write_text(
        json.dumps(
            {
                "taskStatuses": {"a1": "completed", "retired-task": "completed"},
                "phaseStates": {"phase-a": "in_progress"},
                "currentPhase": "phase-a",
                "startedAt": "2024-05-01T10:00:00Z",
                "errors": ["old failure"],
                "customNote": "keep me",
            }
        ),
        encoding="utf-8",
    )

    state = store.get_execution_state(created_plan)
    assert state.task_status("a1") == "completed"
    assert state.phase_status("phase-a") == "in_progress"
    assert state.current_phase == "phase-a"
    assert state.errors[0].message == "old failure"

    store.set_task_status(created_plan, "a2", "completed")
    saved = _read(path)
    assert saved["task_statuses"]["retired-task"] == "completed"
    assert saved["customNote"] == "keep me"
    assert saved["phase_statuses"]["phase-a"] == "completed"


def test_malformed_state_raises_persistence_error(store, created_plan) -> None:
    path = store.plan_dir(created_plan) / "execution-state.json"
    path.write_text('{"task_statuses": ["not", "a", "map"]}', encoding="utf-8")

    with pytest.raises(PersistenceError) as excinfo:
        store.get_execution_state(created_plan)
    assert excinfo.value.code == "INVALID_EXECUTION_STATE"


def test_skip_phase_is_terminal_for_later_task_updates(store, created_plan) -> None:
    store.skip_phase(created_plan, "phase-b", reason="descoped")
    store.set_task_status(created_plan, "b1", "in_progress")

    state = store.get_execution_state(created_plan)
    assert state.phase_statuses["phase-b"] == "skipped"
    assert state.skip_reasons == {"phase-b": "descoped"}

    with pytest.raises(PhaseNotFoundError):
        store.skip_phase(created_plan, "phase-z")


def test_plan_completes_when_remaining_phases_are_skipped(store, created_plan) -> None:
    store.set_task_status(created_plan, "a1", "completed")
    store.set_task_status(created_plan, "a2", "completed")
    store.skip_phase(created_plan, "phase-b")

    orchestration = store.load_orchestration(created_plan)
    assert orchestration.metadata.status == "completed"
    assert orchestration.progress.skipped_tasks == 1
    assert orchestration.progress.percent_complete == 100


def test_mark_plan_complete_records_signal(store, created_plan) -> None:
    state = store.mark_plan_complete(created_plan, summary="done early")

    assert state.completed_at is not None
    assert state.summary == "done early"
    assert store.load_orchestration(created_plan).metadata.status == "completed"


def test_record_error_appends(store, created_plan) -> None:
    store.record_error(created_plan, "build broke", task_id="a1")
    store.record_error(created_plan, "flaky test")

    errors = store.get_execution_state(created_plan).errors
    assert [entry.message for entry in errors] == ["build broke", "flaky test"]
    assert errors[0].task_id == "a1"


def test_reset_without_history_after_no_run_adds_nothing(store, created_plan) -> None:
    state = store.reset_all_statuses(created_plan, preserve_history=True)
    assert state.execution_history == []


def test_reset_clears_phase_file_results(store, created_plan) -> None:
    store.set_task_status(created_plan, "a1", "completed", result="ok")
    store.reset_all_statuses(created_plan, preserve_history=False)

    record = store.load_phase_records(created_plan)["phase-a"]
    task = record.find_task("a1")
    assert task.status == "pending"
    assert task.result is None
    assert record.status == "pending"
    assert store.get_execution_state(created_plan).execution_history == []


def test_sync_phase_files_repairs_drift(store, created_plan) -> None:
    store.set_task_status(created_plan, "a1", "completed")
    phase_path = store.plan_dir(created_plan) / "phases" / "phase-a.json"
    payload = _read(phase_path)
    payload["status"] = "pending"
    for task in payload["tasks"]:
        task["status"] = "failed"
    phase_path.write_text(json.dumps(payload), encoding="utf-8")

    report = store.sync_phase_files(created_plan)

    assert report.tasks_fixed == 2
    assert report.phases_fixed == 1
    repaired = _read(phase_path)
    assert [task["status"] for task in repaired["tasks"]] == ["completed", "pending"]
    assert repaired["status"] == "in_progress"


def test_list_plans_only_reports_initialised_directories(store, created_plan) -> None:
    (store.plans_dir / "scratch").mkdir()
    assert store.list_plans() == [created_plan]


def test_initialize_execution_state_marks_empty_phase_completed() -> None:
    from planstate.planning.bootstrap import build_plan_records, coerce_plan_document

    document = coerce_plan_document(
        {
            "plan_name": "empty-phase",
            "phases": [
                {"name": "Setup", "tasks": []},
                {"name": "Work", "tasks": [{"id": "w1"}]},
            ],
        }
    )
    orchestration, records = build_plan_records(document)

    state = ExecutionStateStore.initialize_execution_state("empty-phase", orchestration, records)

    assert state.phase_statuses == {"phase-1-setup": "completed", "phase-2-work": "pending"}
    assert state.task_statuses == {"w1": "pending"}


def test_phase_entries_cannot_point_outside_the_phases_directory(store, created_plan) -> None:
    orchestration_file = store.plan_dir(created_plan) / "orchestration.json"
    payload = _read(orchestration_file)
    payload["phases"][1]["file"] = "phases/../execution-state.json"
    orchestration_file.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(PersistenceError) as excinfo:
        store.load_phase_records(created_plan)

    assert excinfo.value.code == "UNSAFE_PHASE_PATH"
