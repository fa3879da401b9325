from __future__ import annotations

from planstate.planning.dependencies import (
    IntegrityIssue,
    IntegrityReport,
    PhaseNode,
    TaskNode,
    detect_circular_dependencies,
    detect_circular_dependencies_across_phases,
    find_dependency_cycles,
    find_duplicate_ids,
    validate_phase_dependencies,
    validate_task_dependencies,
)


def test_find_dependency_cycles_reports_closed_path() -> None:
    graph = {"a": ["b"], "b": ["c"], "c": ["a"], "d": []}

    assert find_dependency_cycles(graph) == [["a", "b", "c", "a"]]


def test_self_dependency_is_a_cycle() -> None:
    issues = detect_circular_dependencies([TaskNode("solo", ["solo"])])

    assert len(issues) == 1
    assert issues[0].code == "CIRCULAR_DEPENDENCY"
    assert issues[0].details["cycle"] == ["solo", "solo"]


def test_acyclic_graph_with_shared_dependency() -> None:
    tasks = [TaskNode("a"), TaskNode("b", ["a"]), TaskNode("c", ["a", "b"])]
    assert detect_circular_dependencies(tasks) == []


def test_long_dependency_chains_do_not_exhaust_the_stack() -> None:
    length = 5000
    chain = {f"t{index}": [f"t{index + 1}"] for index in range(length)}

    assert find_dependency_cycles(chain) == []

    chain[f"t{length - 1}"] = ["t0"]
    cycles = find_dependency_cycles(chain)

    assert len(cycles) == 1
    assert len(cycles[0]) == length + 1
    assert cycles[0][0] == cycles[0][-1] == "t0"


def test_cross_phase_task_cycle_is_detected() -> None:
    phases = [
        PhaseNode("p1", tasks=[TaskNode("x", ["y"])]),
        PhaseNode("p2", dependencies=["p1"], tasks=[TaskNode("y", ["x"])]),
    ]

    issues = detect_circular_dependencies_across_phases(phases)

    assert [issue.details["cycle"] for issue in issues] == [["x", "y", "x"]]


def test_task_dependencies_may_reference_other_phases() -> None:
    phases = [
        PhaseNode("p1", tasks=[TaskNode("x")]),
        PhaseNode("p2", tasks=[TaskNode("y", ["x", "ghost"])]),
    ]

    alone = validate_task_dependencies(phases[1])
    assert [issue.details["missing_dependency"] for issue in alone] == ["x", "ghost"]

    issues = validate_task_dependencies(phases[1], phases)
    assert [issue.details["missing_dependency"] for issue in issues] == ["ghost"]
    assert issues[0].code == "MISSING_TASK_DEPENDENCY"


def test_phase_dependencies_missing_and_circular() -> None:
    phases = [
        PhaseNode("p1", dependencies=["p2"]),
        PhaseNode("p2", dependencies=["p1", "p9"]),
    ]

    codes = [issue.code for issue in validate_phase_dependencies(phases)]

    assert codes == ["MISSING_PHASE_DEPENDENCY", "CIRCULAR_PHASE_DEPENDENCY"]


def test_duplicate_ids_are_reported() -> None:
    phases = [
        PhaseNode("p1", tasks=[TaskNode("t1")]),
        PhaseNode("p1", tasks=[TaskNode("t1"), TaskNode("t2")]),
    ]

    issues = find_duplicate_ids(phases)

    assert {issue.code for issue in issues} == {"DUPLICATE_PHASE_ID", "DUPLICATE_TASK_ID"}


def test_report_separates_errors_from_warnings() -> None:
    report = IntegrityReport.from_issues(
        [
            IntegrityIssue("EMPTY_PHASE", "empty", severity="warning"),
            IntegrityIssue("MISSING_PHASE_FILE", "gone"),
        ]
    )

    assert not report.valid
    assert report.codes() == ["MISSING_PHASE_FILE", "EMPTY_PHASE"]
    payload = report.to_dict()
    assert payload["errors"][0]["type"] == "error"
    assert payload["warnings"][0]["type"] == "warning"
    assert "Errors (1):" in report.format()
