"""Constants used throughout LDIMS MCP.

This module contains application constants that do not depend on runtime
configuration or environment variables. For environment-based configuration,
see the config module.
"""

from typing import Final

# =============================================================================
# MCP Protocol
# =============================================================================

MCP_PROTOCOL_VERSION: Final[str] = "2025-03-26"
"""Latest MCP protocol revision spoken by the HTTP transport."""

SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = (
    "2024-11-05",
    "2025-03-26",
    "2025-06-18",
)
"""Protocol revisions accepted during initialize negotiation."""

MCP_SESSION_HEADER: Final[str] = "Mcp-Session-Id"
"""HTTP header carrying the MCP session identifier."""

# =============================================================================
# Tools and Resources
# =============================================================================

TOOL_SEARCH_DOCUMENTS: Final[str] = "searchDocuments"
TOOL_GET_DOCUMENT_FILE_CONTENT: Final[str] = "get_document_file_content"

EXTRACTED_CONTENT_URI_TEMPLATE: Final[str] = "ldims://docs/{document_id}/extracted_content"
"""URI template of the extracted document content resource."""

EXTRACTED_CONTENT_URI_PATTERN: Final[str] = r"^ldims://docs/([^/]+)/extracted_content$"

# =============================================================================
# Backend API
# =============================================================================

USER_AGENT_PREFIX: Final[str] = "LDIMS-MCP-Service"

HEALTH_CHECK_TIMEOUT: Final[float] = 5.0
"""Timeout in seconds for backend health probes."""

SEARCH_MAX_RESULTS: Final[int] = 50
SEARCH_DEFAULT_RESULTS: Final[int] = 5

CONTEXT_EXCERPT_RADIUS: Final[int] = 80
"""Characters kept on each side of the best match in a search excerpt."""

# =============================================================================
# Error Handling
# =============================================================================

ERROR_HISTORY_SIZE: Final[int] = 100
"""Number of recent classified errors kept for diagnostics."""

CONNECTION_RETRY_AFTER_MS: Final[int] = 5000
"""Suggested retry delay for backend connection failures."""

MAX_RETRY_AFTER_MS: Final[int] = 60000
"""Upper bound applied to backend Retry-After hints."""

DEFAULT_RETRY_DELAY_MS: Final[int] = 1000
DEFAULT_MAX_ATTEMPTS: Final[int] = 3
