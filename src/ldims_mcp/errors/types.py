"""Classified error types for LDIMS MCP.

This module defines the closed error taxonomy used across the service. Every
failure that crosses a component boundary is represented as a
:class:`ClassifiedError`, which carries a machine code, a severity, whether
the failure is worth retrying, and a user-facing suggestion.

Example:
    Raise and render a classified error::

        from ldims_mcp.errors.types import ClassifiedError

        error = ClassifiedError.api_timeout("Request timeout after 30000ms", retry_after_ms=1000)
        response = error.to_response()
        # {"isError": True, "errorCode": "API_TIMEOUT", ...}
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Final

from ldims_mcp.constants import CONNECTION_RETRY_AFTER_MS


class ErrorCode(str, Enum):
    """Closed set of error kinds.

    New kinds may be added; existing kinds are never repurposed.
    """

    INVALID_PARAMS = "INVALID_PARAMS"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    API_CONNECTION_FAILED = "API_CONNECTION_FAILED"
    API_TIMEOUT = "API_TIMEOUT"
    API_AUTHENTICATION_FAILED = "API_AUTHENTICATION_FAILED"
    API_RATE_LIMITED = "API_RATE_LIMITED"
    API_SERVER_ERROR = "API_SERVER_ERROR"
    API_INVALID_RESPONSE = "API_INVALID_RESPONSE"
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_MISSING = "CONFIG_MISSING"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorSeverity(str, Enum):
    """Ordered error severity levels (low < medium < high < critical)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank used for ordering comparisons."""
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK: Final[dict[ErrorSeverity, int]] = {
    ErrorSeverity.LOW: 0,
    ErrorSeverity.MEDIUM: 1,
    ErrorSeverity.HIGH: 2,
    ErrorSeverity.CRITICAL: 3,
}

DEFAULT_USER_MESSAGES: Final[dict[ErrorCode, str]] = {
    ErrorCode.INVALID_PARAMS: "Please check the input parameters and try again.",
    ErrorCode.RESOURCE_NOT_FOUND: "The requested resource does not exist.",
    ErrorCode.TOOL_NOT_FOUND: "The requested tool does not exist. Check the tool name.",
    ErrorCode.API_CONNECTION_FAILED: "Cannot reach the LDIMS service. Please try again later.",
    ErrorCode.API_TIMEOUT: "The request timed out. Please try again later.",
    ErrorCode.API_AUTHENTICATION_FAILED: "Authentication with LDIMS failed. Check the API token.",
    ErrorCode.API_RATE_LIMITED: "Too many requests to LDIMS. Please wait before retrying.",
    ErrorCode.API_SERVER_ERROR: "The LDIMS service reported an internal error.",
    ErrorCode.API_INVALID_RESPONSE: "The LDIMS service returned an unexpected response.",
    ErrorCode.CONFIG_INVALID: "The service configuration is invalid.",
    ErrorCode.CONFIG_MISSING: "A required configuration value is missing.",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred. Please contact the administrator.",
    ErrorCode.UNKNOWN_ERROR: "An unknown error occurred.",
    ErrorCode.SERVICE_UNAVAILABLE: "The service is temporarily unavailable.",
}


class ClassifiedError(Exception):
    """A failure classified into the service error taxonomy.

    Instances are immutable: public attributes cannot be reassigned after
    construction, and ``details`` is exposed as a read-only mapping. Use
    :meth:`with_context` to derive an error with additional diagnostics.

    Attributes:
        code: Error kind from :class:`ErrorCode`.
        message: Internal, technical description of the failure.
        severity: Severity level.
        recoverable: Whether retrying the operation may succeed.
        retry_after_ms: Suggested delay before retrying, in milliseconds.
        user_message: Human-readable suggestion for the caller.
        details: Diagnostic key/value context.
        timestamp: When the error was created (UTC).
        trace_id: Optional correlation token.
    """

    code: ErrorCode
    message: str
    severity: ErrorSeverity
    recoverable: bool
    retry_after_ms: int | None
    user_message: str | None
    details: Mapping[str, Any]
    timestamp: datetime
    trace_id: str | None

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        recoverable: bool = False,
        retry_after_ms: int | None = None,
        user_message: str | None = None,
        details: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
        trace_id: str | None = None,
    ) -> None:
        """Initialize a classified error.

        Args:
            code: Error kind.
            message: Internal error description.
            severity: Severity level. Defaults to medium.
            recoverable: Whether the failure is transient. Defaults to False.
            retry_after_ms: Suggested retry delay in milliseconds.
            user_message: User-facing suggestion. Defaults to the code's standard message.
            details: Diagnostic context.
            timestamp: Creation time. Defaults to now (UTC).
            trace_id: Correlation token.

        Raises:
            ValueError: If retry_after_ms is negative.
        """
        if retry_after_ms is not None and retry_after_ms < 0:
            raise ValueError("retry_after_ms must be non-negative")
        super().__init__(message)
        fields = {
            "code": ErrorCode(code),
            "message": message,
            "severity": ErrorSeverity(severity),
            "recoverable": recoverable,
            "retry_after_ms": retry_after_ms,
            "user_message": user_message or DEFAULT_USER_MESSAGES.get(ErrorCode(code)),
            "details": MappingProxyType(dict(details or {})),
            "timestamp": timestamp or datetime.now(UTC),
            "trace_id": trace_id,
        }
        for name, value in fields.items():
            object.__setattr__(self, name, value)

    def __setattr__(self, name: str, value: Any) -> None:
        # Interpreter-managed dunders (__traceback__, __notes__, ...) stay writable.
        if name.startswith("__"):
            object.__setattr__(self, name, value)
            return
        raise AttributeError(f"{type(self).__name__} is immutable; cannot set {name!r}")

    def __delattr__(self, name: str) -> None:
        if name.startswith("__"):
            object.__delattr__(self, name)
            return
        raise AttributeError(f"{type(self).__name__} is immutable; cannot delete {name!r}")

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code.value}, severity={self.severity.value}, "
            f"recoverable={self.recoverable}, message={self.message!r})"
        )

    def with_context(self, context: Mapping[str, Any]) -> "ClassifiedError":
        """Return a copy of this error with ``context`` merged into its details.

        Args:
            context: Diagnostic context to attach under ``details["context"]``.

        Returns:
            New ClassifiedError sharing every other field with this one.
        """
        details = dict(self.details)
        merged = dict(details.get("context") or {})
        merged.update(context)
        details["context"] = merged
        derived = ClassifiedError(
            self.code,
            self.message,
            severity=self.severity,
            recoverable=self.recoverable,
            retry_after_ms=self.retry_after_ms,
            user_message=self.user_message,
            details=details,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
        )
        derived.__cause__ = self.__cause__
        return derived

    def to_response(self, include_details: bool = True) -> dict[str, Any]:
        """Render the structured error object returned at the protocol boundary.

        Args:
            include_details: Whether to include the diagnostic details map.

        Returns:
            Dictionary with ``isError``, ``errorCode``, ``errorMessage`` and,
            where present, ``userMessage``, ``details``, ``retryAfter``,
            ``severity``, ``recoverable``, ``timestamp`` and ``traceId``.
        """
        response: dict[str, Any] = {
            "isError": True,
            "errorCode": self.code.value,
            "errorMessage": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.user_message:
            response["userMessage"] = self.user_message
        if self.retry_after_ms is not None:
            response["retryAfter"] = self.retry_after_ms
        if self.trace_id:
            response["traceId"] = self.trace_id
        if include_details and self.details:
            response["details"] = _jsonable(self.details)
        return response

    # ------------------------------------------------------------------
    # Factory constructors
    # ------------------------------------------------------------------

    @classmethod
    def invalid_params(
        cls, message: str, details: Mapping[str, Any] | None = None
    ) -> "ClassifiedError":
        """Parameter validation failure (never retried)."""
        return cls(
            ErrorCode.INVALID_PARAMS,
            message,
            severity=ErrorSeverity.LOW,
            recoverable=True,
            user_message="check input parameters",
            details=details,
        )

    @classmethod
    def resource_not_found(
        cls, resource: str, details: Mapping[str, Any] | None = None
    ) -> "ClassifiedError":
        """Requested document, file or resource does not exist."""
        return cls(
            ErrorCode.RESOURCE_NOT_FOUND,
            f"Resource not found: {resource}",
            severity=ErrorSeverity.MEDIUM,
            recoverable=False,
            details={"resource": resource, **(details or {})},
        )

    @classmethod
    def tool_not_found(cls, name: str, available: list[str]) -> "ClassifiedError":
        """Requested tool is not registered."""
        return cls(
            ErrorCode.TOOL_NOT_FOUND,
            f"Unknown tool: {name}",
            severity=ErrorSeverity.LOW,
            recoverable=False,
            user_message=f'Tool "{name}" does not exist. Available tools: {", ".join(available)}',
            details={"requestedTool": name, "availableTools": available},
        )

    @classmethod
    def api_connection_failed(
        cls, message: str, details: Mapping[str, Any] | None = None
    ) -> "ClassifiedError":
        """Backend could not be reached."""
        return cls(
            ErrorCode.API_CONNECTION_FAILED,
            message,
            severity=ErrorSeverity.HIGH,
            recoverable=True,
            retry_after_ms=CONNECTION_RETRY_AFTER_MS,
            details=details,
        )

    @classmethod
    def api_timeout(
        cls,
        message: str,
        retry_after_ms: int | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> "ClassifiedError":
        """Backend call exceeded its timeout."""
        return cls(
            ErrorCode.API_TIMEOUT,
            message,
            severity=ErrorSeverity.MEDIUM,
            recoverable=True,
            retry_after_ms=retry_after_ms,
            details=details,
        )

    @classmethod
    def invalid_response(
        cls, message: str, details: Mapping[str, Any] | None = None
    ) -> "ClassifiedError":
        """Backend response did not match the expected contract."""
        return cls(
            ErrorCode.API_INVALID_RESPONSE,
            message,
            severity=ErrorSeverity.HIGH,
            recoverable=False,
            details=details,
        )

    @classmethod
    def internal_error(
        cls, message: str, details: Mapping[str, Any] | None = None
    ) -> "ClassifiedError":
        """Unexpected failure inside the service."""
        return cls(
            ErrorCode.INTERNAL_ERROR,
            message,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            details=details,
        )

    @classmethod
    def from_http_status(
        cls,
        status: int,
        message: str,
        retry_after_ms: int | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> "ClassifiedError":
        """Map a non-success backend HTTP status to a classified error.

        Args:
            status: HTTP status code returned by the backend.
            message: Description of the failed request.
            retry_after_ms: Delay suggested by a ``Retry-After`` header.
            details: Diagnostic context.

        Returns:
            ClassifiedError of the matching kind.
        """
        info = {"status": status, **(details or {})}
        if status in {401, 403}:
            return cls(
                ErrorCode.API_AUTHENTICATION_FAILED,
                message,
                severity=ErrorSeverity.HIGH,
                recoverable=False,
                details=info,
            )
        if status == 404:
            return cls(
                ErrorCode.RESOURCE_NOT_FOUND,
                message,
                severity=ErrorSeverity.MEDIUM,
                recoverable=False,
                details=info,
            )
        if status == 429:
            return cls(
                ErrorCode.API_RATE_LIMITED,
                message,
                severity=ErrorSeverity.MEDIUM,
                recoverable=True,
                retry_after_ms=retry_after_ms,
                details=info,
            )
        if status == 503:
            return cls(
                ErrorCode.SERVICE_UNAVAILABLE,
                message,
                severity=ErrorSeverity.HIGH,
                recoverable=True,
                retry_after_ms=retry_after_ms,
                details=info,
            )
        if status >= 500:
            return cls(
                ErrorCode.API_SERVER_ERROR,
                message,
                severity=ErrorSeverity.HIGH,
                recoverable=True,
                retry_after_ms=retry_after_ms,
                details=info,
            )
        return cls(
            ErrorCode.INVALID_PARAMS,
            message,
            severity=ErrorSeverity.LOW,
            recoverable=False,
            details=info,
        )


def _jsonable(value: Any) -> Any:
    """Convert a details value into JSON-serializable data."""
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [_jsonable(v) for v in value]
    if isinstance(value, str | int | float | bool) or value is None:
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
