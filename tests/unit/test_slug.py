from __future__ import annotations

from planstate.utils.slug import phase_id_problem, phase_identifier, plan_name_problem


def test_phase_identifier_drops_numbering_prefix() -> None:
    assert phase_identifier("Phase 3: Wire Up Storage", 2) == "phase-3-wire-up-storage"
    assert phase_identifier("Research", 0) == "phase-1-research"
    assert phase_identifier("!!!", 4) == "phase-5"


def test_phase_identifier_truncates_slug() -> None:
    identifier = phase_identifier("A very long phase name that keeps going and going", 0)
    assert identifier.startswith("phase-1-")
    assert len(identifier) <= len("phase-1-") + 30
    assert not identifier.endswith("-")


def test_phase_id_rules() -> None:
    assert phase_id_problem("phase-1-set-up-ci") is None
    assert phase_id_problem("build_2") is None
    assert phase_id_problem("../victim/execution-state") is not None
    assert phase_id_problem("nested/phase") is not None
    assert phase_id_problem("-leading") is not None
    assert phase_id_problem("Build") is not None
    assert phase_id_problem("") is not None
    assert phase_id_problem("p" * 81) is not None
    assert phase_id_problem(phase_identifier("x" * 200, 0)) is None


def test_plan_name_rules() -> None:
    assert plan_name_problem("release-2") is None
    assert plan_name_problem("Release") is not None
    assert plan_name_problem("a" * 51) is not None
    assert plan_name_problem("") is not None
    assert "reserved" in plan_name_problem("index")
