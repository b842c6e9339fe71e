"""Retry execution with exponential backoff.

The executor runs an async operation and, on failure, asks the
:class:`~ldims_mcp.errors.classifier.ErrorClassifier` how to proceed. Retry
decisions are made on typed fields of the classified error (recoverable,
severity, code), never on the exception text.

Example:
    >>> executor = RetryExecutor(classifier, RetryPolicy(max_attempts=3, base_delay_ms=1000))
    >>> content = await executor.execute(
    ...     lambda: client.get_document_file_content("42"),
    ...     context={"tool": "get_document_file_content"},
    ... )
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, TypeVar

from ldims_mcp.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY_MS
from ldims_mcp.errors.classifier import ErrorClassifier
from ldims_mcp.errors.types import ClassifiedError, ErrorCode, ErrorSeverity

if TYPE_CHECKING:
    from ldims_mcp.config.settings import Settings

logger: Final = logging.getLogger(__name__)

T = TypeVar("T")

# Surfaced immediately regardless of the recoverable flag
NON_RETRYABLE_CODES: Final[frozenset[ErrorCode]] = frozenset(
    {
        ErrorCode.INVALID_PARAMS,
        ErrorCode.API_AUTHENTICATION_FAILED,
        ErrorCode.RESOURCE_NOT_FOUND,
        ErrorCode.TOOL_NOT_FOUND,
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration shared by all retrying operations.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        base_delay_ms: Delay before the first retry when the error does not
            suggest one. Later retries double it.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_ms: int = DEFAULT_RETRY_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be a positive integer")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be non-negative")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetryPolicy":
        """Build the policy from application settings.

        ``LDIMS_API_RETRY_COUNT`` is the total number of attempts; zero
        still performs a single attempt.

        Args:
            settings: Application settings.

        Returns:
            RetryPolicy instance.
        """
        return cls(
            max_attempts=max(1, settings.ldims_api_retry_count),
            base_delay_ms=settings.error_retry_delay,
        )


class RetryExecutor:
    """Runs async operations with classification-driven retries.

    Attributes:
        classifier: Classifier consulted on every failure.
        policy: Retry policy.
    """

    def __init__(self, classifier: ErrorClassifier, policy: RetryPolicy | None = None) -> None:
        """Initialize the executor.

        Args:
            classifier: Error classifier shared with the rest of the service.
            policy: Retry policy. Defaults to RetryPolicy().
        """
        self.classifier = classifier
        self.policy = policy or RetryPolicy()

    def should_retry(self, error: ClassifiedError, attempt: int) -> bool:
        """Decide whether a failed attempt should be retried.

        Critical severity is never retried, whatever the recoverable flag says.

        Args:
            error: Classified failure of the attempt.
            attempt: 1-based number of the attempt that failed.

        Returns:
            True if another attempt should be made.
        """
        return (
            error.recoverable
            and attempt < self.policy.max_attempts
            and error.severity is not ErrorSeverity.CRITICAL
            and error.code not in NON_RETRYABLE_CODES
        )

    def retry_delay_ms(self, error: ClassifiedError, attempt: int) -> int:
        """Compute the backoff delay after a failed attempt.

        Args:
            error: Classified failure of the attempt.
            attempt: 1-based number of the attempt that failed.

        Returns:
            ``base * 2 ** (attempt - 1)`` where ``base`` is the error's
            suggested delay or the policy default.
        """
        base = (
            error.retry_after_ms if error.retry_after_ms is not None else self.policy.base_delay_ms
        )
        return int(base * 2 ** (attempt - 1))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Mapping[str, Any] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or a retry is not warranted.

        Args:
            operation: Zero-argument callable returning an awaitable.
            context: Diagnostic context attached to every classification.

        Returns:
            The operation's result.

        Raises:
            ClassifiedError: The classification of the last failure.
        """
        max_attempts = self.policy.max_attempts
        last_error: ClassifiedError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = self.classifier.classify(
                    e, {**(context or {}), "attempt": attempt, "maxAttempts": max_attempts}
                )
                if not self.should_retry(last_error, attempt):
                    if last_error is e:
                        raise
                    raise last_error from e

                delay_ms = self.retry_delay_ms(last_error, attempt)
                logger.info(
                    f"Retrying operation ({attempt}/{max_attempts}) after "
                    f"{last_error.code.value}, next attempt in {delay_ms}ms"
                )
                await asyncio.sleep(delay_ms / 1000)
            else:
                if attempt > 1:
                    logger.info(f"Operation succeeded after {attempt} attempts")
                return result

        # Unreachable in practice: the last attempt always raises above
        assert last_error is not None
        raise last_error
