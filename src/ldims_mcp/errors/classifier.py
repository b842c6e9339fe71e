"""Error classification and diagnostics for LDIMS MCP.

This module turns arbitrary failures (exceptions raised by the backend
adapter, parameter validation failures, or already-classified errors) into a
single :class:`ClassifiedError`, records every classification in bounded
process statistics, and renders errors as MCP tool results.

The classifier is an explicitly constructed service object. Create one at
startup and pass it to every component that reports or inspects errors.

Example:
    >>> classifier = ErrorClassifier(ClassifierConfig(default_retry_delay_ms=1000))
    >>> error = classifier.classify(TimeoutError("read timeout"))
    >>> error.code
    <ErrorCode.API_TIMEOUT: 'API_TIMEOUT'>
"""

import threading
import traceback
from collections import Counter, deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final

import aiohttp
import structlog
from pydantic import ValidationError

from ldims_mcp.constants import DEFAULT_RETRY_DELAY_MS, ERROR_HISTORY_SIZE
from ldims_mcp.errors.types import ClassifiedError, ErrorCode, ErrorSeverity

logger: Final = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClassifierConfig:
    """Behaviour switches for the error classifier.

    Attributes:
        enable_detailed_errors: Render full error reports (and stack traces)
            in tool results instead of the short user message.
        log_stack_trace: Log stack traces for critical errors.
        default_retry_delay_ms: Suggested delay attached to timeout errors.
        history_size: Number of recent errors kept for diagnostics.
    """

    enable_detailed_errors: bool = False
    log_stack_trace: bool = False
    default_retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    history_size: int = ERROR_HISTORY_SIZE


@dataclass
class ErrorStats:
    """Snapshot of classification statistics.

    Attributes:
        total_errors: Number of classifications since start or last reset.
        errors_by_code: Count per error code.
        errors_by_severity: Count per severity.
        last_error_time: Time of the most recent classification.
    """

    total_errors: int = 0
    errors_by_code: dict[ErrorCode, int] = field(default_factory=dict)
    errors_by_severity: dict[ErrorSeverity, int] = field(default_factory=dict)
    last_error_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the snapshot for JSON responses."""
        return {
            "totalErrors": self.total_errors,
            "errorsByCode": {code.value: count for code, count in self.errors_by_code.items()},
            "errorsBySeverity": {
                severity.value: count for severity, count in self.errors_by_severity.items()
            },
            "lastErrorTime": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class ErrorClassifier:
    """Classifies failures and keeps bounded diagnostics about them.

    Classification order (first match wins):

    1. A :class:`ClassifiedError` is returned unchanged.
    2. A ``pydantic.ValidationError`` becomes ``INVALID_PARAMS``.
    3. ``TimeoutError`` and ``aiohttp.ClientConnectionError`` map to
       ``API_TIMEOUT`` and ``API_CONNECTION_FAILED``.
    4. Other exceptions are matched on their message (case-insensitive):
       "fetch"/"network", then "timeout", then "not found"; anything else is
       ``INTERNAL_ERROR``.
    5. Values that are not exceptions become ``UNKNOWN_ERROR``.

    Statistics are shared by every caller and guarded by a lock, so the
    classifier may be used from worker threads as well as the event loop.

    Attributes:
        config: Classifier configuration.
    """

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        """Initialize the classifier.

        Args:
            config: Classifier configuration. Defaults to ClassifierConfig().
        """
        self.config = config or ClassifierConfig()
        self._lock = threading.Lock()
        self._history: deque[ClassifiedError] = deque(maxlen=self.config.history_size)
        self._total = 0
        self._by_code: Counter[ErrorCode] = Counter()
        self._by_severity: Counter[ErrorSeverity] = Counter()
        self._last_error_time: datetime | None = None

    def classify(
        self, error: object, context: Mapping[str, Any] | None = None
    ) -> ClassifiedError:
        """Classify a failure and record it.

        Args:
            error: Raised exception or arbitrary failure value.
            context: Optional diagnostic context (tool name, attempt, ...).

        Returns:
            The classified error. Already-classified errors are returned as-is.
        """
        if isinstance(error, ClassifiedError):
            classified = error
        elif isinstance(error, ValidationError):
            classified = self._from_validation_error(error, context)
        elif isinstance(error, BaseException):
            classified = self._from_exception(error, context)
        else:
            classified = ClassifiedError(
                ErrorCode.UNKNOWN_ERROR,
                f"Unknown error: {error!s}",
                severity=ErrorSeverity.MEDIUM,
                details={"originalError": repr(error), "context": dict(context or {})},
            )

        self._record(classified)
        self._log(classified, context)
        return classified

    def _from_validation_error(
        self, error: ValidationError, context: Mapping[str, Any] | None
    ) -> ClassifiedError:
        validation_errors = [
            {
                "path": ".".join(str(part) for part in issue["loc"]),
                "message": issue["msg"],
                "code": issue["type"],
            }
            for issue in error.errors()
        ]
        summary = ", ".join(f"{item['path']}: {item['message']}" for item in validation_errors)
        details: dict[str, Any] = {"validationErrors": validation_errors}
        if context:
            details["context"] = dict(context)
        return ClassifiedError.invalid_params(
            f"Parameter validation failed: {summary}", details=details
        )

    def _from_exception(
        self, error: BaseException, context: Mapping[str, Any] | None
    ) -> ClassifiedError:
        message = str(error) or type(error).__name__
        lowered = message.lower()
        details: dict[str, Any] = {"originalError": type(error).__name__}
        if context:
            details["context"] = dict(context)

        if isinstance(error, TimeoutError):
            classified = ClassifiedError.api_timeout(
                message, retry_after_ms=self.config.default_retry_delay_ms, details=details
            )
        elif isinstance(error, aiohttp.ClientConnectionError) and "timeout" not in lowered:
            classified = ClassifiedError.api_connection_failed(message, details=details)
        elif "fetch" in lowered or "network" in lowered:
            classified = ClassifiedError.api_connection_failed(message, details=details)
        elif "timeout" in lowered:
            classified = ClassifiedError.api_timeout(
                message, retry_after_ms=self.config.default_retry_delay_ms, details=details
            )
        elif "not found" in lowered:
            classified = ClassifiedError(
                ErrorCode.RESOURCE_NOT_FOUND,
                message,
                severity=ErrorSeverity.MEDIUM,
                recoverable=False,
                details=details,
            )
        else:
            if self.config.log_stack_trace and error.__traceback__ is not None:
                details["stack"] = "".join(traceback.format_exception(error))
            classified = ClassifiedError.internal_error(message, details=details)

        classified.__cause__ = error
        return classified

    def _record(self, error: ClassifiedError) -> None:
        with self._lock:
            self._total += 1
            self._last_error_time = datetime.now(UTC)
            self._by_code[error.code] += 1
            self._by_severity[error.severity] += 1
            self._history.append(error)

    def _log(self, error: ClassifiedError, context: Mapping[str, Any] | None) -> None:
        event: dict[str, Any] = {
            "code": error.code.value,
            "error_message": error.message,
            "severity": error.severity.value,
            "recoverable": error.recoverable,
            "trace_id": error.trace_id,
        }
        if self.config.enable_detailed_errors:
            event["details"] = dict(error.details)
        if context:
            event["context"] = dict(context)

        if error.severity is ErrorSeverity.CRITICAL:
            logger.error(
                "critical_error",
                exc_info=self.config.log_stack_trace and error.__cause__ is not None,
                **event,
            )
        elif error.severity is ErrorSeverity.HIGH:
            logger.error("high_error", **event)
        elif error.severity is ErrorSeverity.MEDIUM:
            logger.warning("medium_error", **event)
        else:
            logger.info("low_error", **event)

    def stats(self) -> ErrorStats:
        """Return a copy of the current statistics."""
        with self._lock:
            return ErrorStats(
                total_errors=self._total,
                errors_by_code=dict(self._by_code),
                errors_by_severity=dict(self._by_severity),
                last_error_time=self._last_error_time,
            )

    def recent_errors(self, limit: int = 10) -> list[ClassifiedError]:
        """Return up to ``limit`` most recent errors, oldest first.

        Args:
            limit: Maximum number of errors to return.

        Returns:
            List of recent classified errors.
        """
        if limit <= 0:
            return []
        with self._lock:
            return list(self._history)[-limit:]

    def clear_stats(self) -> None:
        """Reset statistics and history (operator action)."""
        with self._lock:
            self._total = 0
            self._by_code.clear()
            self._by_severity.clear()
            self._history.clear()
            self._last_error_time = None
        logger.info("error_stats_cleared")

    def to_tool_result(self, error: ClassifiedError) -> dict[str, Any]:
        """Render a classified error as an MCP tool result.

        Args:
            error: Error to render.

        Returns:
            Tool result with a single text item, ``isError`` set, and the
            structured error fields merged at the top level.
        """
        response = error.to_response(include_details=self.config.enable_detailed_errors)
        if self.config.enable_detailed_errors:
            text = format_detailed_error(error)
        else:
            text = error.user_message or error.message
        return {"content": [{"type": "text", "text": text}], **response}


def format_detailed_error(error: ClassifiedError) -> str:
    """Format a multi-line diagnostic report for an error.

    Args:
        error: Error to describe.

    Returns:
        Human-readable report including the suggested wait time for
        retryable errors and the stack trace when one is available.
    """
    lines = [
        "Operation failed",
        "",
        f"Error code: {error.code.value}",
        f"Error message: {error.message}",
        f"Severity: {error.severity.value}",
        f"Time: {error.timestamp.isoformat()}",
    ]
    if error.user_message:
        lines += ["", f"Suggestion: {error.user_message}"]
    if error.recoverable and error.retry_after_ms:
        lines += ["", f"Retryable: try again in {error.retry_after_ms / 1000:g} seconds"]
    if error.trace_id:
        lines += ["", f"Trace ID: {error.trace_id}"]
    stack = error.details.get("stack")
    if stack is None and error.__cause__ is not None and error.__cause__.__traceback__:
        stack = "".join(traceback.format_exception(error.__cause__))
    if stack:
        lines += ["", "Stack trace:", str(stack).rstrip()]
    return "\n".join(lines)
