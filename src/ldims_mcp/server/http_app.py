"""FastAPI application of the MCP HTTP transport.

This module sets up the FastAPI application with the MCP JSON-RPC endpoint,
REST convenience endpoints, health checks, and middleware.
"""

import hmac
import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Final

import structlog
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ldims_mcp.config.settings import Settings, get_settings
from ldims_mcp.constants import MCP_SESSION_HEADER
from ldims_mcp.errors.types import ErrorCode
from ldims_mcp.server.health import router as health_router
from ldims_mcp.server.protocol import PARSE_ERROR, jsonrpc_error
from ldims_mcp.server.services import Services, build_services
from ldims_mcp.server.sessions import SessionError, SessionErrorCode
from ldims_mcp.version import __version__

logger = logging.getLogger(__name__)
access_logger: Final = structlog.get_logger("ldims_mcp.http")

_PROTECTED_PREFIXES: Final = ("/api", "/mcp")

# HTTP status of REST tool calls by error code; anything else is a backend failure
_TOOL_ERROR_STATUS: Final[dict[str, int]] = {
    ErrorCode.INVALID_PARAMS.value: 400,
    ErrorCode.TOOL_NOT_FOUND.value: 404,
    ErrorCode.RESOURCE_NOT_FOUND.value: 404,
    ErrorCode.INTERNAL_ERROR.value: 500,
    ErrorCode.UNKNOWN_ERROR.value: 500,
}


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def success_response(data: Any, execution_time_ms: int | None = None) -> JSONResponse:
    """Build the REST success envelope."""
    content: dict[str, Any] = {"success": True, "data": data, "timestamp": _timestamp()}
    if execution_time_ms is not None:
        content["executionTime"] = execution_time_ms
    return JSONResponse(content)


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: Any = None,
    execution_time_ms: int | None = None,
) -> JSONResponse:
    """Build the REST error envelope.

    Args:
        code: Machine-readable error code.
        message: Human-readable message.
        status_code: HTTP status.
        details: Optional error details.
        execution_time_ms: Optional handling time.

    Returns:
        JSON response ``{success: false, error: {...}, timestamp}``.
    """
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    content: dict[str, Any] = {"success": False, "error": error, "timestamp": _timestamp()}
    if execution_time_ms is not None:
        content["executionTime"] = execution_time_ms
    return JSONResponse(status_code=status_code, content=content)


def _services(request: Request) -> Services:
    services: Services = request.app.state.services
    return services


# =============================================================================
# MCP endpoint
# =============================================================================

mcp_router = APIRouter()


@mcp_router.post("/mcp")
@mcp_router.post("/mcp/{session_id}")
async def handle_mcp(request: Request, session_id: str | None = None) -> Response:
    """Route a JSON-RPC message to its MCP session.

    The session ID is taken from the path, else from the ``Mcp-Session-Id``
    header. An ``initialize`` request without ID opens a new session.
    """
    sid = session_id or request.headers.get(MCP_SESSION_HEADER)
    try:
        message = await request.json()
    except ValueError:
        return JSONResponse(
            status_code=400, content=jsonrpc_error(None, PARSE_ERROR, "Parse error")
        )

    try:
        result = await _services(request).router.route(message, sid)
    except SessionError as e:
        return error_response(e.code.value, e.message, e.status_code)

    headers = {MCP_SESSION_HEADER: result.session_id}
    if result.response is None:
        return Response(status_code=202, headers=headers)
    return JSONResponse(content=result.response, headers=headers)


@mcp_router.delete("/mcp")
@mcp_router.delete("/mcp/{session_id}")
async def terminate_mcp_session(request: Request, session_id: str | None = None) -> Response:
    """Close an MCP session at the client's request."""
    sid = session_id or request.headers.get(MCP_SESSION_HEADER)
    if not sid:
        return error_response(
            SessionErrorCode.MISSING_SESSION_ID.value,
            "Mcp-Session-Id header or /mcp/{session_id} path parameter required",
            400,
        )
    if not await _services(request).router.terminate(sid):
        return error_response(
            SessionErrorCode.UNKNOWN_SESSION.value, f"Unknown MCP session: {sid}", 404
        )
    return Response(status_code=204)


# =============================================================================
# REST endpoints
# =============================================================================

api_router = APIRouter()


@api_router.get("/tools")
async def list_tools(request: Request) -> JSONResponse:
    """List the available tools."""
    return success_response(_services(request).tools.list_tools())


@api_router.post("/tools/{tool_name}")
async def call_tool(request: Request, tool_name: str) -> JSONResponse:
    """Invoke a tool directly with a JSON object of arguments."""
    started = time.perf_counter()
    body = await request.body()
    try:
        arguments = await request.json() if body else {}
    except ValueError:
        return error_response(ErrorCode.INVALID_PARAMS.value, "Request body is not valid JSON", 400)
    if not isinstance(arguments, dict):
        return error_response(
            ErrorCode.INVALID_PARAMS.value, "Tool arguments must be a JSON object", 400
        )

    result = await _services(request).tools.call_tool(tool_name, arguments)
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    if result.get("isError"):
        code = result["errorCode"]
        return error_response(
            code,
            result.get("userMessage") or result["errorMessage"],
            _TOOL_ERROR_STATUS.get(code, 502),
            details=result.get("details"),
            execution_time_ms=elapsed_ms,
        )
    return success_response(result, elapsed_ms)


@api_router.get("/errors/stats")
async def error_stats(request: Request) -> JSONResponse:
    """Report error classification statistics and the most recent errors."""
    classifier = _services(request).classifier
    recent = [
        error.to_response(include_details=False) for error in classifier.recent_errors(limit=10)
    ]
    return success_response({**classifier.stats().to_dict(), "recentErrors": recent})


@api_router.delete("/errors/stats")
async def reset_error_stats(request: Request) -> JSONResponse:
    """Reset error classification statistics."""
    _services(request).classifier.clear_stats()
    return success_response({"cleared": True})


# =============================================================================
# Application
# =============================================================================


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. Defaults to get_settings().
        services: Pre-built services. Defaults to services built from settings.

    Returns:
        Configured FastAPI application instance.

    Example:
        >>> app = create_app()
        >>> # Run with: uvicorn --factory ldims_mcp.server.http_app:create_app
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application lifecycle (startup and shutdown)."""
        logger.info(f"Starting {settings.mcp_server_name} HTTP server v{__version__}")
        logger.info(f"LDIMS API: {settings.ldims_api_base_url}{settings.api_prefix}")

        app_services = services or build_services(settings)
        async with AsyncExitStack() as stack:
            await stack.enter_async_context(app_services.client)
            await app_services.router.start()
            stack.push_async_callback(app_services.router.stop)

            app.state.services = app_services
            app.state.started_at = time.monotonic()
            logger.info("Startup completed successfully")

            yield

            logger.info(f"Shutting down {settings.mcp_server_name}")
        logger.info("Shutdown completed successfully")

    app = FastAPI(
        title="LDIMS MCP",
        description="Model Context Protocol service for the LDIMS document system",
        version=__version__,
        lifespan=lifespan,
    )

    if settings.http_auth_enabled:
        app.middleware("http")(_auth_middleware(settings))

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Log every request with its status and duration."""
        started = time.perf_counter()
        response = await call_next(request)
        access_logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response

    # Outermost, so auth rejections carry CORS headers too
    origins = [origin.strip() for origin in settings.cors_origin.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=settings.cors_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[MCP_SESSION_HEADER],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions globally.

        Args:
            _request: FastAPI request object (unused but required by FastAPI).
            exc: Exception that was raised.

        Returns:
            JSON response with error details.
        """
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return error_response(ErrorCode.INTERNAL_ERROR.value, "Internal server error", 500)

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Describe the service and its endpoints."""
        return {
            "name": settings.mcp_server_name,
            "version": settings.mcp_server_version,
            "status": "running",
            "endpoints": {
                "health": "/health",
                "mcp": "/mcp",
                "tools": "/api/tools",
                "toolCall": "/api/tools/{tool_name}",
                "errorStats": "/api/errors/stats",
            },
        }

    app.include_router(health_router, tags=["health"])
    app.include_router(mcp_router, tags=["mcp"])
    app.include_router(api_router, prefix="/api", tags=["api"])

    return app


def _auth_middleware(
    settings: Settings,
) -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    """Build the bearer token middleware protecting /api and /mcp."""
    expected = f"Bearer {settings.ldims_auth_token or ''}"

    async def authenticate(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.method == "OPTIONS" or not request.url.path.startswith(_PROTECTED_PREFIXES):
            return await call_next(request)
        token = request.headers.get(settings.http_auth_header)
        if not token:
            return error_response("AUTH_REQUIRED", "Authentication token required", 401)
        if not hmac.compare_digest(token.encode(), expected.encode()):
            logger.warning(f"Rejected request with invalid token: {request.url.path}")
            return error_response("AUTH_INVALID", "Invalid authentication token", 403)
        return await call_next(request)

    return authenticate
