"""Tests for the FastAPI HTTP transport."""

from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ldims_mcp.config.settings import Settings
from ldims_mcp.errors import ClassifiedError
from ldims_mcp.ldims.client import LdimsApiClient
from ldims_mcp.ldims.schemas import (
    DocumentFileContent,
    SearchDocumentsResponse,
    SearchMetadata,
)
from ldims_mcp.server.http_app import create_app
from ldims_mcp.server.services import build_services

SESSION_HEADER = "Mcp-Session-Id"


def _rpc(
    method: str, params: dict[str, Any] | None = None, request_id: int = 1
) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def _empty_search() -> SearchDocumentsResponse:
    return SearchDocumentsResponse(
        results=[],
        total_matches=0,
        search_metadata=SearchMetadata(
            execution_time="3ms", search_mode="semantic", query_processed="budget"
        ),
    )


def _ldims_client(settings: Settings) -> LdimsApiClient:
    client = LdimsApiClient.from_settings(settings)
    client.search_documents = AsyncMock(return_value=_empty_search())  # type: ignore[method-assign]
    client.get_document_file_content = AsyncMock(  # type: ignore[method-assign]
        return_value=DocumentFileContent(file_id="42", content="Annual report", format="text")
    )
    client.health_check = AsyncMock(return_value=True)  # type: ignore[method-assign]
    return client


def _test_client(settings: Settings) -> tuple[TestClient, LdimsApiClient]:
    ldims = _ldims_client(settings)
    app = create_app(settings, services=build_services(settings, ldims))
    return TestClient(app), ldims


@pytest.fixture
def ldims(settings: Settings) -> LdimsApiClient:
    """Provide an LDIMS client with mocked backend calls."""
    return _ldims_client(settings)


@pytest.fixture
def client(settings: Settings, ldims: LdimsApiClient) -> Iterator[TestClient]:
    """Create a test client for the FastAPI app with its lifespan running."""
    app = create_app(settings, services=build_services(settings, ldims))
    with TestClient(app) as test_client:
        yield test_client


def _initialize(client: TestClient) -> str:
    response = client.post("/mcp", json=_rpc("initialize", {"protocolVersion": "2025-03-26"}))
    assert response.status_code == 200
    return response.headers[SESSION_HEADER]


class TestMcpEndpoint:
    """Test suite for the MCP JSON-RPC endpoint."""

    def test_initialize_opens_session(self, client: TestClient) -> None:
        """Test that initialize returns a session ID header."""
        response = client.post("/mcp", json=_rpc("initialize", {}))

        assert response.status_code == 200
        assert response.headers[SESSION_HEADER]
        body = response.json()
        assert body["result"]["serverInfo"]["name"] == "ldims-document-mcp"

    def test_session_via_header_and_path(self, client: TestClient) -> None:
        """Test that a session is addressed by header or path."""
        session_id = _initialize(client)

        by_header = client.post(
            "/mcp", json=_rpc("tools/list", request_id=2), headers={SESSION_HEADER: session_id}
        )
        by_path = client.post(f"/mcp/{session_id}", json=_rpc("ping", request_id=3))

        assert by_header.status_code == 200
        assert len(by_header.json()["result"]["tools"]) == 2
        assert by_path.json() == {"jsonrpc": "2.0", "id": 3, "result": {}}
        assert by_path.headers[SESSION_HEADER] == session_id

    def test_notification_accepted(self, client: TestClient) -> None:
        """Test that a notification is acknowledged with 202."""
        session_id = _initialize(client)

        response = client.post(
            f"/mcp/{session_id}", json={"jsonrpc": "2.0", "method": "notifications/initialized"}
        )

        assert response.status_code == 202

    def test_tool_call(self, client: TestClient, ldims: LdimsApiClient) -> None:
        """Test a tool call over an MCP session."""
        session_id = _initialize(client)

        response = client.post(
            f"/mcp/{session_id}",
            json=_rpc("tools/call", {"name": "searchDocuments", "arguments": {"query": "budget"}}),
        )

        result = response.json()["result"]
        assert result["isError"] is False
        assert result["structuredContent"]["totalMatches"] == 0
        search = ldims.search_documents
        assert isinstance(search, AsyncMock)
        search.assert_awaited_once()

    def test_missing_session_id(self, client: TestClient) -> None:
        """Test that requests other than initialize need a session."""
        response = client.post("/mcp", json=_rpc("ping"))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_SESSION_ID"

    def test_unknown_session_id(self, client: TestClient) -> None:
        """Test that an unknown session ID is rejected."""
        response = client.post("/mcp/not-a-session", json=_rpc("ping"))

        assert response.status_code == 404
        assert response.json()["success"] is False
        assert response.json()["error"]["code"] == "UNKNOWN_SESSION"

    def test_parse_error(self, client: TestClient) -> None:
        """Test that an unparsable body is a JSON-RPC parse error."""
        response = client.post(
            "/mcp", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    def test_delete_session(self, client: TestClient) -> None:
        """Test that a deleted session can no longer be used."""
        session_id = _initialize(client)

        deleted = client.delete(f"/mcp/{session_id}")
        after = client.post(f"/mcp/{session_id}", json=_rpc("ping"))

        assert deleted.status_code == 204
        assert after.status_code == 404

    def test_delete_by_header(self, client: TestClient) -> None:
        """Test deleting a session identified by header."""
        session_id = _initialize(client)

        response = client.delete("/mcp", headers={SESSION_HEADER: session_id})

        assert response.status_code == 204

    def test_delete_without_id(self, client: TestClient) -> None:
        """Test that DELETE needs a session ID."""
        assert client.delete("/mcp").status_code == 400

    def test_delete_unknown(self, client: TestClient) -> None:
        """Test deleting an unknown session."""
        assert client.delete("/mcp/nope").status_code == 404


class TestHealthEndpoint:
    """Test suite for the health check endpoint."""

    def test_healthy(self, client: TestClient) -> None:
        """Test the health report with a reachable backend."""
        _initialize(client)

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"mcp": True, "ldims_api": True}
        assert data["activeSessions"] == 1
        assert data["uptime"] >= 0
        assert "version" in data
        assert "timestamp" in data

    def test_degraded(self, client: TestClient, ldims: LdimsApiClient) -> None:
        """Test that an unreachable backend degrades the status."""
        health_check = ldims.health_check
        assert isinstance(health_check, AsyncMock)
        health_check.return_value = False

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["services"]["ldims_api"] is False


class TestRestEndpoints:
    """Test suite for the REST convenience endpoints."""

    def test_root(self, client: TestClient) -> None:
        """Test the service descriptor."""
        data = client.get("/").json()

        assert data["name"] == "ldims-document-mcp"
        assert data["endpoints"]["mcp"] == "/mcp"

    def test_list_tools(self, client: TestClient) -> None:
        """Test listing tools."""
        data = client.get("/api/tools").json()

        assert data["success"] is True
        assert [tool["name"] for tool in data["data"]] == [
            "searchDocuments",
            "get_document_file_content",
        ]

    def test_call_tool(self, client: TestClient) -> None:
        """Test calling a tool directly."""
        response = client.post("/api/tools/get_document_file_content", json={"file_id": "42"})

        data = response.json()
        assert response.status_code == 200
        assert data["success"] is True
        assert data["data"]["structuredContent"]["content"] == "Annual report"
        assert "executionTime" in data

    def test_call_tool_invalid_params(self, client: TestClient) -> None:
        """Test that invalid arguments are a 400."""
        response = client.post("/api/tools/searchDocuments", json={"query": ""})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PARAMS"

    def test_call_unknown_tool(self, client: TestClient) -> None:
        """Test that an unknown tool is a 404."""
        response = client.post("/api/tools/nope", json={})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TOOL_NOT_FOUND"

    def test_call_tool_backend_failure(self, client: TestClient, ldims: LdimsApiClient) -> None:
        """Test that backend failures are a 502."""
        search = ldims.search_documents
        assert isinstance(search, AsyncMock)
        search.return_value = ClassifiedError.from_http_status(401, "denied")

        response = client.post("/api/tools/searchDocuments", json={"query": "budget"})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "API_AUTHENTICATION_FAILED"

    def test_call_tool_body_not_object(self, client: TestClient) -> None:
        """Test that tool arguments must be a JSON object."""
        response = client.post("/api/tools/searchDocuments", json=["budget"])

        assert response.status_code == 400

    def test_error_stats(self, client: TestClient) -> None:
        """Test reading and resetting error statistics."""
        client.post("/api/tools/nope", json={})

        stats = client.get("/api/errors/stats").json()["data"]
        assert stats["totalErrors"] == 1
        assert stats["errorsByCode"] == {"TOOL_NOT_FOUND": 1}
        assert stats["recentErrors"][0]["errorCode"] == "TOOL_NOT_FOUND"

        assert client.delete("/api/errors/stats").json()["data"] == {"cleared": True}
        assert client.get("/api/errors/stats").json()["data"]["totalErrors"] == 0

    def test_unhandled_exception(self, settings: Settings) -> None:
        """Test that unexpected exceptions become a 500 error envelope."""
        services = build_services(settings, _ldims_client(settings))
        services.tools.list_tools = MagicMock(  # type: ignore[method-assign]
            side_effect=RuntimeError("boom")
        )
        app = create_app(settings, services=services)

        with TestClient(app, raise_server_exceptions=False) as raw_client:
            response = raw_client.get("/api/tools")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"


class TestAuthentication:
    """Test suite for the bearer token middleware."""

    @pytest.fixture
    def auth_client(self) -> Iterator[TestClient]:
        """Create a test client with authentication enabled."""
        settings = Settings(
            _env_file=None,
            ldims_api_base_url="http://ldims.test",
            ldims_auth_token="test-token",
            http_auth_enabled=True,
            environment="test",
        )
        test_client, _ = _test_client(settings)
        with test_client:
            yield test_client

    def test_missing_token(self, auth_client: TestClient) -> None:
        """Test that requests without a token are rejected with 401."""
        response = auth_client.get("/api/tools")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_REQUIRED"

    def test_wrong_token(self, auth_client: TestClient) -> None:
        """Test that a wrong token is rejected with 403."""
        response = auth_client.get("/api/tools", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "AUTH_INVALID"

    def test_valid_token(self, auth_client: TestClient) -> None:
        """Test that the configured token is accepted."""
        response = auth_client.post(
            "/mcp",
            json=_rpc("initialize", {}),
            headers={"Authorization": "Bearer test-token"},
        )

        assert response.status_code == 200

    def test_health_is_public(self, auth_client: TestClient) -> None:
        """Test that the health check needs no token."""
        assert auth_client.get("/health").status_code == 200
