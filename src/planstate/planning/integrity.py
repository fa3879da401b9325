"""Structural integrity checks for submitted plans and persisted plan directories."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..errors import PersistenceError
from ..state.layout import PHASES_DIR, execution_state_path, orchestration_path
from ..state.schema import ExecutionState, OrchestrationRecord, PhaseRecord, PlanDocument
from ..tools.atomic import read_json, read_json_optional
from ..utils.slug import phase_id_problem, phase_identifier, plan_name_problem
from .dependencies import (
    ERROR,
    WARNING,
    IntegrityIssue,
    IntegrityReport,
    PhaseNode,
    TaskNode,
    detect_circular_dependencies_across_phases,
    find_duplicate_ids,
    validate_phase_dependencies,
    validate_task_dependencies,
)

LOGGER = logging.getLogger(__name__)


def resolve_phase_nodes(document: PlanDocument) -> List[PhaseNode]:
    """Assign identifiers and default dependencies to the phases of ``document``.

    A phase without an explicit id gets ``phase-<n>-<slug>``; a phase without
    an explicit dependency list depends on the phase before it.
    """
    nodes: List[PhaseNode] = []
    for index, phase in enumerate(document.phases):
        phase_id = phase.id or phase_identifier(phase.name, index)
        if phase.dependencies is not None:
            dependencies = list(phase.dependencies)
        elif nodes:
            dependencies = [nodes[-1].id]
        else:
            dependencies = []
        nodes.append(
            PhaseNode(
                id=phase_id,
                name=phase.name,
                dependencies=dependencies,
                tasks=[TaskNode(id=task.id, dependencies=list(task.dependencies)) for task in phase.tasks],
            )
        )
    return nodes


def check_phase_graph(phases: Sequence[PhaseNode]) -> IntegrityReport:
    """Run every identifier and dependency check over ``phases``."""
    report = IntegrityReport.from_issues(find_duplicate_ids(phases))
    report.merge(IntegrityReport.from_issues(validate_phase_dependencies(phases)))
    for phase in phases:
        report.merge(IntegrityReport.from_issues(validate_task_dependencies(phase, phases)))
    report.merge(IntegrityReport.from_issues(detect_circular_dependencies_across_phases(phases)))
    return report


def validate_plan_document(document: PlanDocument) -> IntegrityReport:
    report = IntegrityReport()
    problem = plan_name_problem(document.plan_name)
    if problem:
        report.add(
            IntegrityIssue(
                code="INVALID_PLAN_NAME",
                message=problem,
                details={"plan_name": document.plan_name},
            )
        )
    nodes = resolve_phase_nodes(document)
    for node in nodes:
        id_problem = phase_id_problem(node.id)
        if id_problem:
            report.add(
                IntegrityIssue(
                    code="INVALID_PHASE_ID",
                    message=f"Phase id '{node.id}' is not allowed: {id_problem}",
                    details={"phase_id": node.id},
                )
            )
        if not node.tasks:
            report.add(
                IntegrityIssue(
                    code="EMPTY_PHASE",
                    message=f"Phase '{node.id}' has no tasks and will count as completed",
                    severity=WARNING,
                    details={"phase_id": node.id},
                )
            )
    return report.merge(check_phase_graph(nodes))


def validate_phase_references(
    orchestration: Optional[OrchestrationRecord],
    phase_records: Sequence[PhaseRecord],
) -> List[IntegrityIssue]:
    """Compare the orchestration's phase list against the phase files on disk."""
    if orchestration is None:
        return [
            IntegrityIssue(
                code="INVALID_ORCHESTRATION",
                message="Orchestration is missing or has an invalid phases list",
            )
        ]

    issues: List[IntegrityIssue] = []
    records: Dict[str, PhaseRecord] = {record.phase_id: record for record in phase_records}
    declared = {entry.id for entry in orchestration.phases}

    for entry in orchestration.phases:
        if entry.id not in records:
            issues.append(
                IntegrityIssue(
                    code="MISSING_PHASE_FILE",
                    message=f"Phase '{entry.id}' referenced in orchestration but phase file not found",
                    details={"phase_id": entry.id, "expected_file": entry.file},
                )
            )

    for phase_id in records:
        if phase_id not in declared:
            issues.append(
                IntegrityIssue(
                    code="ORPHANED_PHASE_FILE",
                    message=f"Phase file '{phase_id}' exists but is not referenced in orchestration",
                    severity=WARNING,
                    details={"phase_id": phase_id},
                )
            )

    for entry in orchestration.phases:
        record = records.get(entry.id)
        if record is not None and record.phase_name != entry.name:
            issues.append(
                IntegrityIssue(
                    code="PHASE_NAME_MISMATCH",
                    message=f"Phase '{entry.id}' has different names in orchestration and phase file",
                    severity=WARNING,
                    details={
                        "phase_id": entry.id,
                        "orchestration_name": entry.name,
                        "file_name": record.phase_name,
                    },
                )
            )
    return issues


def _load_orchestration(plan_dir: Path, report: IntegrityReport) -> Optional[OrchestrationRecord]:
    try:
        return OrchestrationRecord.model_validate(read_json(orchestration_path(plan_dir)))
    except PersistenceError as error:
        report.add(
            IntegrityIssue(
                code="INVALID_ORCHESTRATION",
                message=error.message,
                details={"cause": error.code},
            )
        )
    except ValidationError as error:
        report.add(
            IntegrityIssue(
                code="INVALID_ORCHESTRATION",
                message=f"Orchestration does not match the expected structure ({error.error_count()} problem(s))",
            )
        )
    return None


def _load_phase_files(plan_dir: Path, report: IntegrityReport) -> List[PhaseRecord]:
    records: List[PhaseRecord] = []
    phases_dir = plan_dir / PHASES_DIR
    if not phases_dir.is_dir():
        return records
    for path in sorted(phases_dir.glob("*.json")):
        try:
            records.append(PhaseRecord.model_validate(read_json(path)))
        except (PersistenceError, ValidationError) as error:
            report.add(
                IntegrityIssue(
                    code="INVALID_PHASE_FILE",
                    message=f"Phase file {path.name} could not be loaded: {error}",
                    details={"file": f"{PHASES_DIR}/{path.name}"},
                )
            )
    return records


def _check_state_drift(
    plan_dir: Path,
    phase_records: Sequence[PhaseRecord],
    report: IntegrityReport,
) -> None:
    try:
        payload = read_json_optional(execution_state_path(plan_dir))
    except PersistenceError as error:
        report.add(IntegrityIssue(code="INVALID_EXECUTION_STATE", message=error.message))
        return
    if payload is None:
        report.add(
            IntegrityIssue(
                code="MISSING_EXECUTION_STATE",
                message="Execution state record not found; every task reads as pending",
                severity=WARNING,
            )
        )
        return
    try:
        state = ExecutionState.model_validate(payload)
    except ValidationError as error:
        report.add(
            IntegrityIssue(
                code="INVALID_EXECUTION_STATE",
                message=f"Execution state does not match the expected structure ({error.error_count()} problem(s))",
            )
        )
        return

    for record in phase_records:
        untracked = [task.task_id for task in record.tasks if task.task_id not in state.task_statuses]
        if untracked:
            report.add(
                IntegrityIssue(
                    code="UNTRACKED_TASK",
                    message=f"Phase '{record.phase_id}' has tasks missing from execution state",
                    severity=WARNING,
                    details={"phase_id": record.phase_id, "task_ids": untracked},
                )
            )
        stale = [
            task.task_id
            for task in record.tasks
            if task.task_id in state.task_statuses and task.status != state.task_statuses[task.task_id]
        ]
        if stale:
            report.add(
                IntegrityIssue(
                    code="STALE_PHASE_FILE",
                    message=f"Phase file '{record.phase_id}' disagrees with execution state; run sync",
                    severity=WARNING,
                    details={"phase_id": record.phase_id, "task_ids": stale},
                )
            )


def validate_plan_directory(plan_dir: Path | str) -> IntegrityReport:
    """Re-validate a persisted plan: references, dependencies and state drift."""
    root = Path(plan_dir)
    report = IntegrityReport()
    orchestration = _load_orchestration(root, report)
    phase_records = _load_phase_files(root, report)
    report.merge(IntegrityReport.from_issues(validate_phase_references(orchestration, phase_records)))

    declared_dependencies: Dict[str, List[str]] = {}
    if orchestration is not None:
        declared_dependencies = {entry.id: list(entry.dependencies) for entry in orchestration.phases}
    nodes = [
        PhaseNode.from_record(record, dependencies=declared_dependencies.get(record.phase_id))
        for record in phase_records
    ]
    report.merge(check_phase_graph(nodes))
    _check_state_drift(root, phase_records, report)

    LOGGER.debug(
        "Validated %s: %d error(s), %d warning(s)",
        root,
        len(report.errors),
        len(report.warnings),
    )
    return report


__all__ = [
    "ERROR",
    "WARNING",
    "IntegrityIssue",
    "IntegrityReport",
    "check_phase_graph",
    "resolve_phase_nodes",
    "validate_phase_references",
    "validate_plan_directory",
    "validate_plan_document",
]
