"""Create a plan directory from a submitted plan document."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml
from pydantic import ValidationError

from ..errors import PlanExistsError, PlanValidationError
from ..state.layout import execution_state_path, orchestration_path, phase_file_name, phase_path
from ..state.progress import calculate_progress
from ..state.schema import (
    ExecutionState,
    OrchestrationRecord,
    PhaseEntry,
    PhaseRecord,
    PlanDocument,
    PlanMetadata,
    TaskRecord,
    utc_now,
)
from ..state.store import ExecutionStateStore
from ..tools.atomic import dump_json, write_multiple_atomic
from .dependencies import IntegrityReport
from .integrity import resolve_phase_nodes, validate_plan_document

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PlanCreation:
    """Records written for a newly created plan."""

    plan_id: str
    plan_dir: Path
    orchestration: OrchestrationRecord
    phase_records: Dict[str, PhaseRecord]
    state: ExecutionState
    report: IntegrityReport = field(default_factory=IntegrityReport)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "plan_dir": self.plan_dir.as_posix(),
            "phases": [entry.id for entry in self.orchestration.phases],
            "task_count": len(self.state.task_statuses),
            "warnings": [issue.to_dict() for issue in self.report.warnings],
            "execution_state": self.state.model_dump(mode="json"),
        }


def _validation_issues(error: ValidationError) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        issues.append(
            {
                "type": "error",
                "code": "INVALID_DOCUMENT",
                "message": f"{location or 'document'}: {item.get('msg', 'invalid value')}",
            }
        )
    return issues


def coerce_plan_document(payload: PlanDocument | Mapping[str, Any]) -> PlanDocument:
    """Validate a raw mapping into a ``PlanDocument``."""
    if isinstance(payload, PlanDocument):
        return payload
    if not isinstance(payload, Mapping):
        raise PlanValidationError(
            "Plan document must be a mapping",
            code="INVALID_DOCUMENT",
            details={"type": type(payload).__name__},
        )
    try:
        return PlanDocument.model_validate(dict(payload))
    except ValidationError as error:
        issues = _validation_issues(error)
        raise PlanValidationError(
            f"Plan document is malformed: {issues[0]['message'] if issues else error}",
            code="INVALID_DOCUMENT",
            issues=issues,
        ) from error


def load_plan_document(path: Path | str) -> PlanDocument:
    """Read a plan document from a YAML or JSON file."""
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as error:
        raise PlanValidationError(
            f"Unable to read plan document {source}: {error}",
            code="INVALID_DOCUMENT",
            details={"path": source.as_posix()},
        ) from error
    try:
        payload = json.loads(text) if source.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as error:
        raise PlanValidationError(
            f"Plan document {source} could not be parsed: {error}",
            code="INVALID_DOCUMENT",
            details={"path": source.as_posix()},
        ) from error
    return coerce_plan_document(payload or {})


def build_plan_records(document: PlanDocument) -> tuple[OrchestrationRecord, Dict[str, PhaseRecord]]:
    """Translate ``document`` into the orchestration record and one record per phase."""
    now = utc_now()
    nodes = resolve_phase_nodes(document)
    entries: List[PhaseEntry] = []
    records: Dict[str, PhaseRecord] = {}
    for node, phase in zip(nodes, document.phases):
        entries.append(
            PhaseEntry(
                id=node.id,
                name=phase.name,
                file=phase_file_name(node.id),
                dependencies=list(node.dependencies),
            )
        )
        records[node.id] = PhaseRecord(
            phase_id=node.id,
            phase_name=phase.name,
            description=phase.description,
            dependencies=list(node.dependencies),
            tasks=[
                TaskRecord(
                    task_id=task.id,
                    description=task.description,
                    details=task.details,
                    dependencies=list(task.dependencies),
                )
                for task in phase.tasks
            ],
        )

    orchestration = OrchestrationRecord(
        metadata=PlanMetadata(
            plan_id=document.plan_name,
            name=document.plan_name,
            goal=document.goal,
            description=document.description,
            work_type=document.work_type.value,
            version=document.version,
            created=now,
            modified=now,
        ),
        phases=entries,
    )
    return orchestration, records


def initialize_plan(
    store: ExecutionStateStore,
    payload: PlanDocument | Mapping[str, Any],
) -> PlanCreation:
    """Validate ``payload`` and write the new plan's records as one group.

    Nothing is written when validation reports an error.
    """
    document = coerce_plan_document(payload)
    report = validate_plan_document(document)
    if not report.valid:
        first = report.errors[0]
        raise PlanValidationError(
            f"Plan '{document.plan_name}' failed validation with {len(report.errors)} error(s): {first.message}",
            code=first.code,
            issues=[issue.to_dict() for issue in report.errors],
        )

    plan_id = document.plan_name
    if store.plan_exists(plan_id):
        raise PlanExistsError(
            f"Plan '{plan_id}' already exists",
            details={"plan_id": plan_id, "path": store.plan_dir(plan_id).as_posix()},
        )

    orchestration, records = build_plan_records(document)
    state = store.initialize_execution_state(plan_id, orchestration, records)
    for phase_id, record in records.items():
        record.status = state.phase_status(phase_id)
    for entry in orchestration.phases:
        entry.status = state.phase_status(entry.id)
    state.last_updated = utc_now()
    state.revision = 1
    orchestration.progress = calculate_progress(orchestration, records, state).to_snapshot()

    plan_dir = store.plan_dir(plan_id)
    files: Dict[Path, str] = {
        phase_path(plan_dir, entry.file): dump_json(records[entry.id].model_dump(mode="json"))
        for entry in orchestration.phases
    }
    files[orchestration_path(plan_dir)] = dump_json(orchestration.model_dump(mode="json"))
    files[execution_state_path(plan_dir)] = dump_json(state.model_dump(mode="json"))
    write_multiple_atomic(files)

    for warning in report.warnings:
        LOGGER.warning("Plan %s: [%s] %s", plan_id, warning.code, warning.message)
    LOGGER.info("Created plan %s with %d phase(s)", plan_id, len(orchestration.phases))
    return PlanCreation(
        plan_id=plan_id,
        plan_dir=plan_dir,
        orchestration=orchestration,
        phase_records=records,
        state=state,
        report=report,
    )


__all__ = [
    "PlanCreation",
    "build_plan_records",
    "coerce_plan_document",
    "initialize_plan",
    "load_plan_document",
]
