"""MCP server transports for LDIMS.

This package provides:
- LdimsToolHandler implementing the tools and resources
- McpProtocolHandler and SessionRouter for the HTTP transport
- create_app (FastAPI) and the stdio server
"""

from ldims_mcp.server.protocol import McpProtocolHandler
from ldims_mcp.server.services import Services, build_services
from ldims_mcp.server.sessions import SessionError, SessionRouter, SessionTransport
from ldims_mcp.server.tools import LdimsToolHandler

__all__ = [
    "LdimsToolHandler",
    "McpProtocolHandler",
    "Services",
    "SessionError",
    "SessionRouter",
    "SessionTransport",
    "build_services",
]
