"""
Shared type system for Kairos Platform
Rust-inspired Result pattern and the business error taxonomy used across
the billing lifecycle apps.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypedDict, TypeVar

# Type variables for generic Result
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type

# ===============================================================================
# RESULT TYPES
# ===============================================================================


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Success result containing a value"""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the success value"""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get the success value (ignores default)"""
        return self.value

    def unwrap_err(self) -> Any:
        """Raises an exception since this is success, not error - provides consistent API"""
        raise ValueError(f"Called unwrap_err on Ok: {self.value}")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Error result containing an error value"""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Any:
        """Raises an exception - use unwrap_or() for safe access"""
        raise ValueError(f"Called unwrap on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Get the default value since this is an error"""
        return default

    def unwrap_err(self) -> E:
        """Get the error value"""
        return self.error


# Result type alias
Result = Ok[T] | Err[E]


def capture(func: Callable[[], T]) -> Result[T, BusinessError]:
    """Run func and wrap a raised BusinessError into Err; other exceptions propagate."""
    try:
        return Ok(func())
    except BusinessError as e:
        return Err(e)


# ===============================================================================
# BUSINESS ERRORS
# ===============================================================================


class BusinessError(Exception):
    """Base class for business logic errors.

    Every error carries a stable machine-readable ``code`` and a human
    ``message``. API views translate these into HTTP responses.
    """

    code = "BUSINESS_ERROR"
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "error_code": self.code}


class ValidationError(BusinessError):
    """Malformed input: out-of-range durations, missing fields, bad codes"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, code: str | None = None):
        super().__init__(message, code)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class ConflictError(BusinessError):
    """Duplicate active grace period, duplicate promo code, delete with usages"""

    code = "CONFLICT"


class InvalidStateError(BusinessError):
    """Operation not permitted from the entity's current state"""

    code = "INVALID_STATE"


class NotFoundError(BusinessError):
    code = "NOT_FOUND"


class RateLimitedError(BusinessError):
    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after_seconds: int, code: str | None = None):
        super().__init__(message, code)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class ExhaustedError(BusinessError):
    """Promo code usage or per-user limits reached"""

    code = "EXHAUSTED"


class StoreUnavailableError(BusinessError):
    """Database timeout or transient failure; safe for the caller to retry"""

    code = "STORE_UNAVAILABLE"
    retryable = True


# ===============================================================================
# SWEEP RESULTS
# ===============================================================================


class SweepResult(TypedDict):
    """Outcome of a scheduled sweep; per-item failures land in ``errors``"""

    processed: int
    sent: int
    failed: int
    errors: list[str]
    processed_ids: list[str]


def empty_sweep_result() -> SweepResult:
    return SweepResult(processed=0, sent=0, failed=0, errors=[], processed_ids=[])
