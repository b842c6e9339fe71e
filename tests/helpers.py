"""Builders for mocked LDIMS backend responses."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock


def make_response(
    status: int = 200,
    payload: Any = None,
    *,
    text: str = "",
    headers: dict[str, str] | None = None,
    reason: str = "OK",
) -> MagicMock:
    """Build a mock aiohttp response.

    Args:
        status: HTTP status code.
        payload: Value returned by ``json()``.
        text: Value returned by ``text()``.
        headers: Response headers.
        reason: HTTP reason phrase.

    Returns:
        Mock usable as the target of ``session.get(...).__aenter__``.
    """
    response = MagicMock()
    response.status = status
    response.reason = reason
    response.headers = headers or {}
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)
    return response


def mock_get(session_get: MagicMock, *responses: MagicMock) -> None:
    """Make a patched ``session.get`` yield ``responses`` in order.

    Args:
        session_get: The patched ``get`` method.
        *responses: Responses returned by successive calls.
    """
    session_get.return_value.__aenter__ = AsyncMock(side_effect=list(responses))
    session_get.return_value.__aexit__ = AsyncMock(return_value=None)


def search_envelope(records: list[dict[str, Any]], total: int | None = None) -> dict[str, Any]:
    """Build a successful backend search envelope."""
    return {
        "code": 200,
        "message": "success",
        "data": {
            "list": records,
            "total": len(records) if total is None else total,
            "page": 1,
            "pageSize": 10,
        },
    }


def file_envelope(**overrides: Any) -> dict[str, Any]:
    """Build a successful backend file content envelope."""
    data: dict[str, Any] = {
        "id": "42",
        "fileName": "annual-report.pdf",
        "extractedContent": "Annual report of the finance department.",
        "fileSize": 2048,
        "fileType": "application/pdf",
        "createdAt": "2024-01-10T08:00:00Z",
        "updatedAt": "2024-01-11T09:30:00Z",
        "processingStatus": "completed",
        "hash": "abc123",
    }
    data.update(overrides)
    return {"success": True, "data": data}
