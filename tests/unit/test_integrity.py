from __future__ import annotations

import json

from planstate.planning.bootstrap import coerce_plan_document
from planstate.planning.integrity import (
    resolve_phase_nodes,
    validate_phase_references,
    validate_plan_directory,
    validate_plan_document,
)
from planstate.state.schema import OrchestrationRecord, PhaseEntry, PhaseRecord, PlanMetadata


def test_phase_defaults_to_depending_on_previous_phase() -> None:
    document = coerce_plan_document(
        {
            "plan_name": "defaults",
            "phases": [
                {"name": "First", "tasks": [{"id": "a"}]},
                {"name": "Second", "tasks": [{"id": "b"}]},
                {"name": "Third", "dependencies": [], "tasks": [{"id": "c"}]},
            ],
        }
    )

    nodes = resolve_phase_nodes(document)

    assert [node.dependencies for node in nodes] == [[], ["phase-1-first"], []]


def test_empty_phase_is_a_warning() -> None:
    document = coerce_plan_document(
        {"plan_name": "empty", "phases": [{"id": "setup", "name": "Setup"}]}
    )

    report = validate_plan_document(document)

    assert report.valid
    assert report.codes() == ["EMPTY_PHASE"]


def test_phase_references_against_files() -> None:
    orchestration = OrchestrationRecord(
        metadata=PlanMetadata(plan_id="demo"),
        phases=[
            PhaseEntry(id="p1", name="One", file="phases/p1.json"),
            PhaseEntry(id="p2", name="Two", file="phases/p2.json"),
        ],
    )
    records = [
        PhaseRecord(phase_id="p1", phase_name="Renamed"),
        PhaseRecord(phase_id="stray", phase_name="Stray"),
    ]

    codes = [issue.code for issue in validate_phase_references(orchestration, records)]

    assert codes == ["MISSING_PHASE_FILE", "ORPHANED_PHASE_FILE", "PHASE_NAME_MISMATCH"]
    assert validate_phase_references(None, records)[0].code == "INVALID_ORCHESTRATION"


def test_directory_validation_reports_drift(engine, created_plan) -> None:
    plan_dir = engine.store.plan_dir(created_plan)
    phase_file = plan_dir / "phases" / "phase-a.json"
    payload = json.loads(phase_file.read_text(encoding="utf-8"))
    payload["tasks"][0]["status"] = "completed"
    payload["tasks"].append({"task_id": "a3", "status": "pending"})
    phase_file.write_text(json.dumps(payload), encoding="utf-8")

    report = validate_plan_directory(plan_dir)

    assert report.valid
    assert set(report.codes()) == {"UNTRACKED_TASK", "STALE_PHASE_FILE"}


def test_directory_validation_flags_broken_files(engine, created_plan) -> None:
    plan_dir = engine.store.plan_dir(created_plan)
    (plan_dir / "phases" / "phase-b.json").write_text("{broken", encoding="utf-8")
    (plan_dir / "execution-state.json").unlink()

    report = validate_plan_directory(plan_dir)

    codes = report.codes()
    assert "INVALID_PHASE_FILE" in codes
    assert "MISSING_PHASE_FILE" in codes
    assert "MISSING_EXECUTION_STATE" in codes
    assert not report.valid


def test_phase_ids_must_be_safe_file_names() -> None:
    document = coerce_plan_document(
        {
            "plan_name": "unsafe",
            "phases": [
                {"id": "../other/execution-state", "name": "Escape", "dependencies": [], "tasks": [{"id": "a"}]},
                {"id": "Mixed Case", "name": "Spaces", "dependencies": [], "tasks": [{"id": "b"}]},
                {"id": "ok_phase-2", "name": "Fine", "dependencies": [], "tasks": [{"id": "c"}]},
            ],
        }
    )

    report = validate_plan_document(document)

    assert not report.valid
    assert report.codes() == ["INVALID_PHASE_ID", "INVALID_PHASE_ID"]
    assert [issue.details["phase_id"] for issue in report.errors] == ["../other/execution-state", "Mixed Case"]
