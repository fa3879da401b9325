from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Dict

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from planstate.engine import PlanEngine  # noqa: E402

TWO_PHASE_PLAN: Dict[str, Any] = {
    "plan_name": "release-widget",
    "goal": "Ship the widget",
    "work_type": "feature",
    "phases": [
        {
            "id": "phase-a",
            "name": "Phase A",
            "tasks": [
                {"id": "a1", "description": "Write the parser"},
                {"id": "a2", "description": "Write the renderer"},
            ],
        },
        {
            "id": "phase-b",
            "name": "Phase B",
            "tasks": [
                {"id": "b1", "description": "Wire parser to renderer", "dependencies": ["a1", "a2"]},
            ],
        },
    ],
}


@pytest.fixture()
def two_phase_plan() -> Dict[str, Any]:
    """Plan document: phase A (a1, a2) then phase B (b1 depending on both)."""
    return copy.deepcopy(TWO_PHASE_PLAN)


@pytest.fixture()
def plans_dir(tmp_path: Path) -> Path:
    path = tmp_path / "plans"
    path.mkdir()
    return path


@pytest.fixture()
def engine(plans_dir: Path) -> PlanEngine:
    return PlanEngine.for_directory(plans_dir)


@pytest.fixture()
def created_plan(engine: PlanEngine, two_phase_plan: Dict[str, Any]) -> str:
    engine.init_plan(two_phase_plan)
    return two_phase_plan["plan_name"]
