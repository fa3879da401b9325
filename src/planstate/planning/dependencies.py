"""Dependency graph checks for tasks and phases.

Tasks and phases form two independent graphs: tasks depend on tasks (possibly
in other phases) and phases depend on phases.  Both are plain adjacency maps
keyed by identifier, scanned depth-first for cycles.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from ..state.schema import PhaseRecord

ERROR = "error"
WARNING = "warning"


@dataclass(slots=True)
class IntegrityIssue:
    """One finding from a structural check."""

    code: str
    message: str
    severity: str = ERROR
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.severity,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = dict(self.details)
        return payload


@dataclass(slots=True)
class IntegrityReport:
    """Errors block the operation under validation; warnings never do."""

    errors: List[IntegrityIssue] = field(default_factory=list)
    warnings: List[IntegrityIssue] = field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: Iterable[IntegrityIssue]) -> "IntegrityReport":
        report = cls()
        for issue in issues:
            report.add(issue)
        return report

    @property
    def valid(self) -> bool:
        return not self.errors

    def add(self, issue: IntegrityIssue) -> None:
        if issue.is_error:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def merge(self, other: "IntegrityReport") -> "IntegrityReport":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def codes(self) -> List[str]:
        return [issue.code for issue in [*self.errors, *self.warnings]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }

    def format(self) -> str:
        """Render the report for terminal output."""
        lines = ["All integrity checks passed" if self.valid else "Integrity validation failed"]
        if self.errors:
            lines.append("")
            lines.append(f"Errors ({len(self.errors)}):")
            for index, issue in enumerate(self.errors, start=1):
                lines.append(f"  {index}. [{issue.code}] {issue.message}")
                if issue.details:
                    lines.append(f"     Details: {json.dumps(issue.details, sort_keys=True)}")
        if self.warnings:
            lines.append("")
            lines.append(f"Warnings ({len(self.warnings)}):")
            for index, issue in enumerate(self.warnings, start=1):
                lines.append(f"  {index}. [{issue.code}] {issue.message}")
        return "\n".join(lines)


@dataclass(slots=True)
class TaskNode:
    id: str
    dependencies: List[str] = field(default_factory=list)


@dataclass(slots=True)
class PhaseNode:
    """Identifier-only view of a phase used by the graph checks."""

    id: str
    name: str = ""
    dependencies: List[str] = field(default_factory=list)
    tasks: List[TaskNode] = field(default_factory=list)

    @classmethod
    def from_record(
        cls,
        record: PhaseRecord,
        *,
        dependencies: Optional[Sequence[str]] = None,
    ) -> "PhaseNode":
        return cls(
            id=record.phase_id,
            name=record.phase_name,
            dependencies=list(record.dependencies if dependencies is None else dependencies),
            tasks=[TaskNode(id=task.task_id, dependencies=list(task.dependencies)) for task in record.tasks],
        )

    def task_ids(self) -> List[str]:
        return [task.id for task in self.tasks]


def find_dependency_cycles(graph: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """Return every cycle found by a depth-first scan of ``graph``.

    Each cycle runs from the first occurrence of the revisited node through
    the node that closed it, and repeats the revisited node at the end, e.g.
    ``["a", "b", "a"]``.  A self-dependency yields ``["a", "a"]``.  The scan
    keeps its own stack, so chain length is not bounded by the recursion limit.
    """
    cycles: List[List[str]] = []
    state: Dict[str, str] = {}

    for root in graph:
        if state.get(root) == "permanent":
            continue
        state[root] = "temporary"
        path: List[str] = [root]
        pending: List[Iterator[str]] = [iter(graph.get(root, ()))]
        while pending:
            neighbour = next(pending[-1], None)
            if neighbour is None:
                pending.pop()
                state[path.pop()] = "permanent"
                continue
            marker = state.get(neighbour)
            if marker == "permanent":
                continue
            if marker == "temporary":
                cycle = path[path.index(neighbour):] + [neighbour]
                if cycle not in cycles:
                    cycles.append(cycle)
                continue
            state[neighbour] = "temporary"
            path.append(neighbour)
            pending.append(iter(graph.get(neighbour, ())))
    return cycles


def validate_task_dependencies(
    phase: PhaseNode,
    all_phases: Sequence[PhaseNode] = (),
) -> List[IntegrityIssue]:
    """Report task dependencies of ``phase`` that resolve to no known task."""
    known = set(phase.task_ids())
    for other in all_phases:
        known.update(other.task_ids())

    issues: List[IntegrityIssue] = []
    for task in phase.tasks:
        for dependency in task.dependencies:
            if dependency in known:
                continue
            issues.append(
                IntegrityIssue(
                    code="MISSING_TASK_DEPENDENCY",
                    message=f"Task '{task.id}' depends on non-existent task '{dependency}'",
                    details={"task_id": task.id, "phase_id": phase.id, "missing_dependency": dependency},
                )
            )
    return issues


def detect_circular_dependencies(tasks: Sequence[TaskNode]) -> List[IntegrityIssue]:
    graph = {task.id: list(task.dependencies) for task in tasks}
    return [
        IntegrityIssue(
            code="CIRCULAR_DEPENDENCY",
            message=f"Circular dependency detected: {' -> '.join(cycle)}",
            details={"cycle": cycle, "start_task": cycle[0]},
        )
        for cycle in find_dependency_cycles(graph)
    ]


def detect_circular_dependencies_across_phases(phases: Sequence[PhaseNode]) -> List[IntegrityIssue]:
    tasks = [task for phase in phases for task in phase.tasks]
    return detect_circular_dependencies(tasks)


def validate_phase_dependencies(phases: Sequence[PhaseNode]) -> List[IntegrityIssue]:
    """Check the phase graph: every dependency resolves and no cycle exists."""
    known = {phase.id for phase in phases}
    issues: List[IntegrityIssue] = []
    for phase in phases:
        for dependency in phase.dependencies:
            if dependency not in known:
                issues.append(
                    IntegrityIssue(
                        code="MISSING_PHASE_DEPENDENCY",
                        message=f"Phase '{phase.id}' depends on non-existent phase '{dependency}'",
                        details={"phase_id": phase.id, "missing_dependency": dependency},
                    )
                )

    graph = {phase.id: list(phase.dependencies) for phase in phases}
    for cycle in find_dependency_cycles(graph):
        issues.append(
            IntegrityIssue(
                code="CIRCULAR_PHASE_DEPENDENCY",
                message=f"Circular phase dependency detected: {' -> '.join(cycle)}",
                details={"cycle": cycle, "start_phase": cycle[0]},
            )
        )
    return issues


def find_duplicate_ids(phases: Sequence[PhaseNode]) -> List[IntegrityIssue]:
    """Report phase or task identifiers declared more than once."""
    issues: List[IntegrityIssue] = []
    phase_counts = Counter(phase.id for phase in phases)
    for phase_id, count in phase_counts.items():
        if count > 1:
            issues.append(
                IntegrityIssue(
                    code="DUPLICATE_PHASE_ID",
                    message=f"Phase id '{phase_id}' is declared {count} times",
                    details={"phase_id": phase_id, "count": count},
                )
            )

    task_counts = Counter(task.id for phase in phases for task in phase.tasks)
    for task_id, count in task_counts.items():
        if count > 1:
            owners = [phase.id for phase in phases if task_id in phase.task_ids()]
            issues.append(
                IntegrityIssue(
                    code="DUPLICATE_TASK_ID",
                    message=f"Task id '{task_id}' is declared {count} times",
                    details={"task_id": task_id, "count": count, "phases": owners},
                )
            )
    return issues


__all__ = [
    "ERROR",
    "WARNING",
    "IntegrityIssue",
    "IntegrityReport",
    "PhaseNode",
    "TaskNode",
    "detect_circular_dependencies",
    "detect_circular_dependencies_across_phases",
    "find_dependency_cycles",
    "find_duplicate_ids",
    "validate_phase_dependencies",
    "validate_task_dependencies",
]
