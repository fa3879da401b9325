"""On-disk layout of a plan directory."""

from __future__ import annotations

from pathlib import Path

from ..errors import PersistenceError

ORCHESTRATION_FILE = "orchestration.json"
EXECUTION_STATE_FILE = "execution-state.json"
PHASES_DIR = "phases"


def phase_file_name(phase_id: str) -> str:
    """Return the orchestration-relative path of a phase file."""
    return f"{PHASES_DIR}/{phase_id}.json"


def orchestration_path(plan_dir: Path) -> Path:
    return plan_dir / ORCHESTRATION_FILE


def execution_state_path(plan_dir: Path) -> Path:
    return plan_dir / EXECUTION_STATE_FILE


def phase_path(plan_dir: Path, file_name: str) -> Path:
    """Return the phase file ``file_name`` of ``plan_dir``.

    Raises ``PersistenceError`` when the name resolves outside the phases
    directory, so a phase entry can never address another plan's records.
    """
    path = plan_dir / file_name
    phases_root = (plan_dir / PHASES_DIR).resolve()
    if phases_root not in path.resolve().parents:
        raise PersistenceError(
            f"Phase file '{file_name}' resolves outside {PHASES_DIR}/",
            code="UNSAFE_PHASE_PATH",
            details={"plan_dir": plan_dir.as_posix(), "file": file_name},
        )
    return path


__all__ = [
    "EXECUTION_STATE_FILE",
    "ORCHESTRATION_FILE",
    "PHASES_DIR",
    "execution_state_path",
    "orchestration_path",
    "phase_file_name",
    "phase_path",
]
