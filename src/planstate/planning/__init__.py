"""
Plan submission and structural validation.
"""

from importlib import import_module
from typing import Any

_EXPORTS = {
    "PlanCreation": "planstate.planning.bootstrap",
    "initialize_plan": "planstate.planning.bootstrap",
    "load_plan_document": "planstate.planning.bootstrap",
    "IntegrityIssue": "planstate.planning.dependencies",
    "IntegrityReport": "planstate.planning.dependencies",
    "find_dependency_cycles": "planstate.planning.dependencies",
    "validate_plan_directory": "planstate.planning.integrity",
    "validate_plan_document": "planstate.planning.integrity",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import planning helpers so graph checks load without the store."""
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
