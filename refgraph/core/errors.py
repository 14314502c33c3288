"""
Refgraph Error Handling Module

Structured error codes and an exception hierarchy for the reference graph
engine. Nothing raised here is meant to be fatal to the host editor: callers
degrade to leaving the raw trigger text uncommitted.
"""

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# =============================================================================
# Error Code Taxonomy
# =============================================================================


class ErrorCategory(Enum):
    """Top-level error categories."""

    MARKER = "MARKER"
    RESOLUTION = "RESOLUTION"
    STORE = "STORE"
    SESSION = "SESSION"
    VALIDATION = "VALIDATION"


class ErrorSeverity(Enum):
    """Error severity levels."""

    DEBUG = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    CRITICAL = auto()


@dataclass(frozen=True)
class ErrorCode:
    """Structured error code with metadata."""

    code: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    http_status: int
    recovery_hint: str = ""

    def __str__(self) -> str:
        return f"{self.category.value}_{self.code}"


class ErrorCodes:
    """Central registry of refgraph error codes."""

    # Marker errors (1xxx)
    MALFORMED_MARKER = ErrorCode(
        code="1001",
        category=ErrorCategory.MARKER,
        severity=ErrorSeverity.DEBUG,
        message="Malformed or unterminated reference marker",
        user_message="A link in this note could not be read.",
        http_status=422,
        recovery_hint="The marker is left as plain text.",
    )

    # Resolution errors (2xxx)
    AMBIGUOUS_RESOLUTION = ErrorCode(
        code="2001",
        category=ErrorCategory.RESOLUTION,
        severity=ErrorSeverity.WARNING,
        message="Several entities share the same display text",
        user_message="More than one match was found; the most recent was used.",
        http_status=200,
        recovery_hint="Rename one of the duplicates to disambiguate.",
    )

    ENTITY_NOT_FOUND = ErrorCode(
        code="2002",
        category=ErrorCategory.RESOLUTION,
        severity=ErrorSeverity.INFO,
        message="Referenced entity does not exist",
        user_message="The selected item no longer exists.",
        http_status=404,
        recovery_hint="Pick another suggestion or create a new one.",
    )

    # Store errors (3xxx)
    STORE_WRITE_FAILURE = ErrorCode(
        code="3001",
        category=ErrorCategory.STORE,
        severity=ErrorSeverity.ERROR,
        message="Entity store write failed",
        user_message="The link could not be saved.",
        http_status=503,
        recovery_hint="The text was kept as typed. Try again.",
    )

    # Session errors (4xxx)
    STALE_RESOLUTION = ErrorCode(
        code="4001",
        category=ErrorCategory.SESSION,
        severity=ErrorSeverity.DEBUG,
        message="Resolution completed after its session moved on",
        user_message="",
        http_status=409,
    )

    INVALID_TRANSITION = ErrorCode(
        code="4002",
        category=ErrorCategory.SESSION,
        severity=ErrorSeverity.WARNING,
        message="Transition not allowed from the current state",
        user_message="This suggestion is no longer active.",
        http_status=409,
    )

    # Validation errors (5xxx)
    INVALID_VALUE = ErrorCode(
        code="5001",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.INFO,
        message="Invalid value",
        user_message="The provided value is not valid.",
        http_status=400,
    )


# =============================================================================
# Base Exception Classes
# =============================================================================


class RefgraphError(Exception):
    """
    Base exception for all refgraph errors.

    Carries an ``ErrorCode`` plus optional detail and context so the caller
    can log it, show a user message, or map it to an HTTP status.
    """

    def __init__(
        self,
        error_code: ErrorCode,
        detail: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.error_code = error_code
        self.detail = detail
        self.original_error = original_error
        self.context = context or {}
        self.debug_info: Dict[str, Any] = {}
        self.timestamp = datetime.now(timezone.utc)

        if original_error:
            self.debug_info["original_traceback"] = traceback.format_exception(
                type(original_error), original_error, original_error.__traceback__
            )

        super().__init__(self.technical_message)

    @property
    def code(self) -> str:
        """Full error code string."""
        return str(self.error_code)

    @property
    def category(self) -> ErrorCategory:
        return self.error_code.category

    @property
    def severity(self) -> ErrorSeverity:
        return self.error_code.severity

    @property
    def http_status(self) -> int:
        return self.error_code.http_status

    @property
    def user_message(self) -> str:
        """User-friendly error message."""
        msg = self.error_code.user_message
        if self.detail and msg:
            msg = f"{msg} ({self.detail})"
        return msg

    @property
    def technical_message(self) -> str:
        """Technical error message for logging."""
        msg = f"[{self.code}] {self.error_code.message}"
        if self.detail:
            msg = f"{msg}: {self.detail}"
        return msg

    @property
    def recovery_hint(self) -> str:
        return self.error_code.recovery_hint

    def to_dict(self, include_debug: bool = False) -> Dict[str, Any]:
        """
        Convert error to dictionary for API responses.

        Args:
            include_debug: Include debug information (for dev mode only)
        """
        result = {
            "code": self.code,
            "category": self.category.value,
            "message": self.user_message,
            "recovery_hint": self.recovery_hint,
            "timestamp": self.timestamp.isoformat(),
        }

        if include_debug:
            result["debug"] = {
                "technical_message": self.technical_message,
                "context": self.context,
                "debug_info": self.debug_info,
            }

        return result

    def log(self) -> None:
        """Log the error with its registered severity."""
        log_method = getattr(logger, self.severity.name.lower(), logger.error)
        log_method(
            self.technical_message,
            extra={
                "ctx_error_code": self.code,
                "ctx_context": self.context,
            },
        )


class MalformedMarkerError(RefgraphError):
    """An unterminated or corrupt marker was found in note content."""

    def __init__(self, error_code: ErrorCode = ErrorCodes.MALFORMED_MARKER, **kwargs):
        super().__init__(error_code, **kwargs)


class AmbiguousResolutionError(RefgraphError):
    """More than one entity of a kind shares the same display text."""

    def __init__(
        self, error_code: ErrorCode = ErrorCodes.AMBIGUOUS_RESOLUTION, **kwargs
    ):
        super().__init__(error_code, **kwargs)


class EntityNotFoundError(RefgraphError):
    """Referenced entity is missing from the store."""

    def __init__(self, error_code: ErrorCode = ErrorCodes.ENTITY_NOT_FOUND, **kwargs):
        super().__init__(error_code, **kwargs)


class StoreWriteError(RefgraphError):
    """Entity creation or note save failed."""

    def __init__(
        self, error_code: ErrorCode = ErrorCodes.STORE_WRITE_FAILURE, **kwargs
    ):
        super().__init__(error_code, **kwargs)


class StaleResolutionError(RefgraphError):
    """An asynchronous result arrived after its session moved on."""

    def __init__(self, error_code: ErrorCode = ErrorCodes.STALE_RESOLUTION, **kwargs):
        super().__init__(error_code, **kwargs)


class InvalidTransitionError(RefgraphError):
    """A suggestion session was driven out of a terminal state."""

    def __init__(
        self, error_code: ErrorCode = ErrorCodes.INVALID_TRANSITION, **kwargs
    ):
        super().__init__(error_code, **kwargs)


class ValidationError(RefgraphError):
    """Validation-related errors."""

    def __init__(self, error_code: ErrorCode = ErrorCodes.INVALID_VALUE, **kwargs):
        super().__init__(error_code, **kwargs)


def wrap_exception(
    error: Exception,
    error_class: type = StoreWriteError,
    detail: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> RefgraphError:
    """
    Wrap a foreign exception in a refgraph error.

    Refgraph errors pass through unchanged.
    """
    if isinstance(error, RefgraphError):
        return error
    return error_class(
        detail=detail or str(error),
        original_error=error,
        context=context,
    )
