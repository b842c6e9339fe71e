"""Health check endpoint of the HTTP transport.

This module reports whether the MCP service is up and whether the LDIMS
backend it wraps is reachable.
"""

import logging
import time
from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ldims_mcp.version import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


class ServiceChecks(BaseModel):
    """Component reachability.

    Attributes:
        mcp: Whether the MCP service is serving requests.
        ldims_api: Whether the LDIMS backend answered its health endpoint.
    """

    mcp: bool = Field(..., description="MCP service status")
    ldims_api: bool = Field(..., description="LDIMS API reachability")


class HealthStatus(BaseModel):
    """Health check response model.

    Attributes:
        status: ``healthy`` when the backend is reachable, else ``degraded``.
        timestamp: Current timestamp.
        version: Application version.
        uptime: Milliseconds since the application started.
        services: Component checks.
        active_sessions: Number of open MCP sessions.
    """

    status: Literal["healthy", "degraded"] = Field(..., description="Overall health status")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(tz=UTC), description="Current timestamp"
    )
    version: str = Field(__version__, description="Application version")
    uptime: int = Field(..., ge=0, description="Uptime in milliseconds")
    services: ServiceChecks
    active_sessions: int = Field(0, ge=0, serialization_alias="activeSessions")


@router.get("/health", response_model=HealthStatus, response_model_by_alias=True)
async def health_check(request: Request) -> HealthStatus:
    """Health check endpoint.

    Returns:
        Health status with component checks.

    Example:
        >>> response = client.get("/health")
        >>> assert response.json()["services"]["mcp"] is True
    """
    services = request.app.state.services
    ldims_ok = await services.client.health_check()
    if not ldims_ok:
        logger.warning("Health check: LDIMS API unreachable")

    uptime_ms = int((time.monotonic() - request.app.state.started_at) * 1000)
    return HealthStatus(
        status="healthy" if ldims_ok else "degraded",
        version=services.settings.mcp_server_version,
        uptime=uptime_ms,
        services=ServiceChecks(mcp=True, ldims_api=ldims_ok),
        active_sessions=services.router.active_sessions,
    )
