"""LDIMS MCP - Model Context Protocol service for the LDIMS document system.

This package exposes the LDIMS document management REST API to AI assistants
through the Model Context Protocol, over stdio or HTTP transports.
"""

from ldims_mcp.version import __version__

__author__ = "LDIMS MCP Contributors"
__license__ = "MIT"

__all__ = ["__author__", "__license__", "__version__"]
