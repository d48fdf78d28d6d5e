"""Error taxonomy for the command pipeline.

Tool failures are reported as data (``ToolResult.error``) built from a
``StructuredError``; the exception classes below are raised only across
seams where the caller decides whether to fall back (model timeouts,
store failures, rejected plans).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    OBJECT_NOT_FOUND = "object_not_found"
    FRAME_NOT_FOUND = "frame_not_found"
    INVALID_TYPE = "invalid_type"
    BUDGET_EXCEEDED = "budget_exceeded"
    TIMEOUT = "timeout"
    MODEL_ERROR = "model_error"
    PLAN_INVALID = "plan_invalid"
    TEMPLATE_NOT_FOUND = "template_not_found"
    DB_ERROR = "db_error"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


@dataclass
class StructuredError:
    """Machine-readable error with an optional hint for the model."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggested_fix: str | None = None
    retryable: bool = False

    def __str__(self) -> str:
        if self.suggested_fix:
            return f"{self.message}. {self.suggested_fix}"
        return self.message

    @classmethod
    def object_not_found(cls, object_id: str) -> StructuredError:
        return cls(
            ErrorCode.OBJECT_NOT_FOUND,
            f"Object not found: {object_id}",
            details={"object_id": object_id},
            suggested_fix="Use getContext to verify the object exists",
        )

    @classmethod
    def frame_not_found(cls, frame_id: str) -> StructuredError:
        return cls(
            ErrorCode.FRAME_NOT_FOUND,
            f"Frame not found: {frame_id}",
            details={"frame_id": frame_id},
            suggested_fix="Use getContext with scope 'all' and typeFilter 'frame' "
            "to find available frames",
        )

    @classmethod
    def invalid_type(cls, value: str, allowed: list[str]) -> StructuredError:
        return cls(
            ErrorCode.INVALID_TYPE,
            f"Invalid type: {value}",
            details={"value": value, "allowed": allowed},
            suggested_fix=f"Use one of: {', '.join(allowed)}",
        )

    @classmethod
    def budget_exceeded(cls, what: str, current: int, maximum: int) -> StructuredError:
        return cls(
            ErrorCode.BUDGET_EXCEEDED,
            f"{what}: {current} exceeds max {maximum}",
            details={"what": what, "current": current, "max": maximum},
        )

    @classmethod
    def timeout(cls, seconds: float) -> StructuredError:
        return cls(
            ErrorCode.TIMEOUT,
            f"Operation timed out after {seconds:.0f}s",
            details={"timeout_s": seconds},
            retryable=True,
        )

    @classmethod
    def plan_invalid(cls, reason: str) -> StructuredError:
        return cls(
            ErrorCode.PLAN_INVALID,
            f"Plan is invalid: {reason}",
            suggested_fix="Regenerate the plan with simpler operations",
            retryable=True,
        )

    @classmethod
    def template_not_found(cls, template_id: str) -> StructuredError:
        return cls(
            ErrorCode.TEMPLATE_NOT_FOUND,
            f"Unknown template: {template_id}",
            details={"template_id": template_id},
        )

    @classmethod
    def db_error(cls, message: str) -> StructuredError:
        return cls(ErrorCode.DB_ERROR, f"Database error: {message}", retryable=True)


class BoardpilotError(Exception):
    """Base class for errors raised inside the command pipeline."""

    def __init__(self, error: StructuredError) -> None:
        super().__init__(str(error))
        self.error = error


class ModelTimeoutError(BoardpilotError):
    """A model call did not finish within its deadline."""

    def __init__(self, seconds: float) -> None:
        super().__init__(StructuredError.timeout(seconds))


class StoreError(BoardpilotError):
    """The object store rejected a read or write."""

    def __init__(self, message: str) -> None:
        super().__init__(StructuredError.db_error(message))


class PlanValidationError(BoardpilotError):
    """A generated plan failed validation."""

    def __init__(self, reason: str) -> None:
        super().__init__(StructuredError.plan_invalid(reason))


class RateLimitedError(BoardpilotError):
    """The user exhausted their request window."""

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(StructuredError(
            ErrorCode.RATE_LIMITED,
            "Too many requests",
            details={"retry_after_seconds": retry_after_seconds},
            suggested_fix=f"Try again in {retry_after_seconds}s",
            retryable=True,
        ))
        self.retry_after_seconds = retry_after_seconds
