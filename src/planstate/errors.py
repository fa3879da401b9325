"""Typed errors raised by the plan state engine."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence


class PlanStateError(RuntimeError):
    """Base class for every error surfaced to engine callers.

    ``code`` is a stable machine-readable identifier; ``details`` carries the
    structured context a caller needs to decide what to do next.
    """

    default_code = "PLAN_STATE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class PlanValidationError(PlanStateError):
    """Raised for malformed input: bad statuses, unresolved dependencies, cycles."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        issues: Sequence[Dict[str, Any]] = (),
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.issues = [dict(issue) for issue in issues]

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.issues:
            payload["issues"] = list(self.issues)
        return payload


class InvalidStatusError(PlanValidationError):
    default_code = "INVALID_STATUS"


class PlanExistsError(PlanStateError):
    default_code = "PLAN_EXISTS"


class NotFoundError(PlanStateError):
    """Raised when a plan, phase, task or backup identifier does not resolve."""

    default_code = "NOT_FOUND"


class PlanNotFoundError(NotFoundError):
    default_code = "PLAN_NOT_FOUND"


class PhaseNotFoundError(NotFoundError):
    default_code = "PHASE_NOT_FOUND"


class TaskNotFoundError(NotFoundError):
    default_code = "TASK_NOT_FOUND"


class BackupNotFoundError(NotFoundError):
    default_code = "BACKUP_NOT_FOUND"


class TransitionError(PlanStateError):
    """Raised for an illegal status change; ``allowed`` lists legal successors."""

    default_code = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        message: str,
        *,
        allowed: Sequence[str] = (),
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        merged.setdefault("allowed", list(allowed))
        super().__init__(message, code=code, details=merged)
        self.allowed = list(allowed)


class UnsafeOperationError(PlanStateError):
    """Raised when a delete/update would corrupt in-flight or completed work."""

    default_code = "UNSAFE_OPERATION"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        requires_force: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        merged.setdefault("requires_force", requires_force)
        super().__init__(message, code=code, details=merged)
        self.requires_force = requires_force


class PersistenceError(PlanStateError):
    """Raised when an atomic write, read, backup or restore fails."""

    default_code = "PERSISTENCE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        if cause is not None:
            merged.setdefault("cause", f"{type(cause).__name__}: {cause}")
        super().__init__(message, code=code, details=merged)
        self.cause = cause


class ConcurrentModificationError(PersistenceError):
    default_code = "CONCURRENT_MODIFICATION"


__all__ = [
    "BackupNotFoundError",
    "ConcurrentModificationError",
    "InvalidStatusError",
    "NotFoundError",
    "PersistenceError",
    "PhaseNotFoundError",
    "PlanExistsError",
    "PlanNotFoundError",
    "PlanStateError",
    "PlanValidationError",
    "TaskNotFoundError",
    "TransitionError",
    "UnsafeOperationError",
]
