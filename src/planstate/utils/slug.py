"""Identifier helpers for plans and phases."""

from __future__ import annotations

import re
from typing import Pattern

_SLUG_PATTERN: Pattern[str] = re.compile(r"[^a-z0-9]+")
_PHASE_PREFIX: Pattern[str] = re.compile(r"^phase\s*\d+\s*:\s*", re.IGNORECASE)
_PLAN_NAME_PATTERN: Pattern[str] = re.compile(r"^[a-z0-9-]+$")
_PHASE_ID_PATTERN: Pattern[str] = re.compile(r"^[a-z0-9][a-z0-9_-]*$")

PLAN_NAME_MAX_LENGTH = 50
PHASE_ID_MAX_LENGTH = 80
PHASE_SLUG_MAX_LENGTH = 30
RESERVED_PLAN_NAMES = frozenset({"index", "schema", "template"})


def phase_identifier(name: str, index: int) -> str:
    """Return the identifier assigned to the ``index``-th (0-based) phase called ``name``.

    A leading ``"Phase 2:"`` style prefix is dropped so renumbered phases keep
    readable ids, e.g. ``phase_identifier("Phase 1: Set up CI", 0)`` is
    ``"phase-1-set-up-ci"``.
    """
    stripped = _PHASE_PREFIX.sub("", name or "")
    slug = _normalize(stripped)[:PHASE_SLUG_MAX_LENGTH].strip("-")
    if not slug:
        return f"phase-{index + 1}"
    return f"phase-{index + 1}-{slug}"


def phase_id_problem(phase_id: str | None) -> str | None:
    """Return why ``phase_id`` cannot name a phase file, or ``None``."""
    if not phase_id or len(phase_id) > PHASE_ID_MAX_LENGTH:
        return f"Phase id must be 1-{PHASE_ID_MAX_LENGTH} characters"
    if not _PHASE_ID_PATTERN.match(phase_id):
        return "Phase id must start with a lowercase letter or number and use only lowercase letters, numbers, '-' and '_'"
    return None


def plan_name_problem(name: str | None) -> str | None:
    """Return why ``name`` cannot be used as a plan identifier, or ``None``."""
    if not name or len(name) > PLAN_NAME_MAX_LENGTH:
        return f"Plan name must be 1-{PLAN_NAME_MAX_LENGTH} characters"
    if not _PLAN_NAME_PATTERN.match(name):
        return "Plan name must use only lowercase letters, numbers, and hyphens"
    if name in RESERVED_PLAN_NAMES:
        return f"'{name}' is a reserved name"
    return None


def _normalize(value: str) -> str:
    return _SLUG_PATTERN.sub("-", value.strip().lower()).strip("-")
