"""Tests for the classified error taxonomy."""

import pytest

from ldims_mcp.errors.types import ClassifiedError, ErrorCode, ErrorSeverity


class TestErrorSeverity:
    """Test suite for severity ordering."""

    def test_severities_are_ordered(self) -> None:
        """Test that severities compare low < medium < high < critical."""
        assert ErrorSeverity.LOW < ErrorSeverity.MEDIUM < ErrorSeverity.HIGH
        assert ErrorSeverity.HIGH < ErrorSeverity.CRITICAL
        assert ErrorSeverity.CRITICAL >= ErrorSeverity.CRITICAL
        assert max(ErrorSeverity) is ErrorSeverity.CRITICAL


class TestClassifiedError:
    """Test suite for ClassifiedError construction and immutability."""

    def test_defaults(self) -> None:
        """Test default severity, recoverability and user message."""
        error = ClassifiedError(ErrorCode.INTERNAL_ERROR, "boom")

        assert error.severity is ErrorSeverity.MEDIUM
        assert error.recoverable is False
        assert error.retry_after_ms is None
        assert error.user_message is not None
        assert error.timestamp.tzinfo is not None
        assert str(error) == "boom"

    def test_attributes_cannot_be_reassigned(self) -> None:
        """Test that classified errors are immutable."""
        error = ClassifiedError.api_timeout("slow", retry_after_ms=1000)

        with pytest.raises(AttributeError):
            error.recoverable = False
        with pytest.raises(AttributeError):
            del error.code
        with pytest.raises(TypeError):
            error.details["extra"] = 1  # type: ignore[index]

    def test_can_be_raised_and_chained(self) -> None:
        """Test that the interpreter can attach a cause and traceback."""
        with pytest.raises(ClassifiedError) as exc_info:
            try:
                raise OSError("refused")
            except OSError as e:
                raise ClassifiedError.api_connection_failed("down") from e

        assert isinstance(exc_info.value.__cause__, OSError)

    def test_negative_retry_after_rejected(self) -> None:
        """Test that a negative retry delay is invalid."""
        with pytest.raises(ValueError):
            ClassifiedError(ErrorCode.API_TIMEOUT, "slow", retry_after_ms=-1)

    def test_with_context_returns_new_error(self) -> None:
        """Test that with_context merges context without touching the original."""
        error = ClassifiedError.invalid_response("bad", details={"endpoint": "/x"})

        derived = error.with_context({"query": "budget"})

        assert derived is not error
        assert derived.code is error.code
        assert derived.timestamp == error.timestamp
        assert derived.details["context"] == {"query": "budget"}
        assert derived.details["endpoint"] == "/x"
        assert "context" not in error.details


class TestFactories:
    """Test suite for the factory constructors."""

    def test_invalid_params(self) -> None:
        """Test the parameter validation error."""
        error = ClassifiedError.invalid_params("query is required")

        assert error.code is ErrorCode.INVALID_PARAMS
        assert error.severity is ErrorSeverity.LOW
        assert error.user_message == "check input parameters"

    def test_tool_not_found_lists_available_tools(self) -> None:
        """Test that the unknown tool error names the available tools."""
        error = ClassifiedError.tool_not_found("nope", ["searchDocuments", "other"])

        assert error.code is ErrorCode.TOOL_NOT_FOUND
        assert "searchDocuments, other" in (error.user_message or "")
        assert error.details["availableTools"] == ["searchDocuments", "other"]

    def test_connection_failed_suggests_retry(self) -> None:
        """Test that connection failures are recoverable with a suggested delay."""
        error = ClassifiedError.api_connection_failed("refused")

        assert error.recoverable is True
        assert error.severity is ErrorSeverity.HIGH
        assert error.retry_after_ms == 5000

    def test_internal_error_is_critical(self) -> None:
        """Test that internal errors are critical and not recoverable."""
        error = ClassifiedError.internal_error("bug")

        assert error.severity is ErrorSeverity.CRITICAL
        assert error.recoverable is False

    @pytest.mark.parametrize(
        ("status", "code", "recoverable"),
        [
            (400, ErrorCode.INVALID_PARAMS, False),
            (401, ErrorCode.API_AUTHENTICATION_FAILED, False),
            (403, ErrorCode.API_AUTHENTICATION_FAILED, False),
            (404, ErrorCode.RESOURCE_NOT_FOUND, False),
            (429, ErrorCode.API_RATE_LIMITED, True),
            (500, ErrorCode.API_SERVER_ERROR, True),
            (502, ErrorCode.API_SERVER_ERROR, True),
            (503, ErrorCode.SERVICE_UNAVAILABLE, True),
        ],
    )
    def test_from_http_status(self, status: int, code: ErrorCode, recoverable: bool) -> None:
        """Test mapping of backend HTTP statuses."""
        error = ClassifiedError.from_http_status(status, f"HTTP {status}")

        assert error.code is code
        assert error.recoverable is recoverable
        assert error.details["status"] == status

    def test_rate_limit_keeps_retry_after(self) -> None:
        """Test that a Retry-After delay is kept for rate limiting."""
        error = ClassifiedError.from_http_status(429, "slow down", retry_after_ms=7000)

        assert error.retry_after_ms == 7000


class TestToResponse:
    """Test suite for rendering errors at the protocol boundary."""

    def test_response_fields(self) -> None:
        """Test the structured error fields."""
        error = ClassifiedError.api_timeout(
            "Request timeout after 30000ms", retry_after_ms=1000, details={"url": "http://x"}
        )

        response = error.to_response()

        assert response["isError"] is True
        assert response["errorCode"] == "API_TIMEOUT"
        assert response["errorMessage"] == "Request timeout after 30000ms"
        assert response["retryAfter"] == 1000
        assert response["severity"] == "medium"
        assert response["recoverable"] is True
        assert response["details"] == {"url": "http://x"}
        assert "userMessage" in response

    def test_details_can_be_omitted(self) -> None:
        """Test that details are left out on request."""
        error = ClassifiedError.invalid_response("bad", details={"secret": "value"})

        assert "details" not in error.to_response(include_details=False)

    def test_details_are_json_safe(self) -> None:
        """Test that enum and nested values are converted for JSON."""
        error = ClassifiedError.invalid_response(
            "bad", details={"code": ErrorCode.API_TIMEOUT, "items": ("a", 1)}
        )

        details = error.to_response()["details"]

        assert details == {"code": "API_TIMEOUT", "items": ["a", 1]}
