"""Shared helpers."""

from .slug import phase_id_problem, phase_identifier, plan_name_problem

__all__ = ["phase_id_problem", "phase_identifier", "plan_name_problem"]
