"""LDIMS backend adapter.

This package provides:
- LdimsApiClient for the LDIMS REST API
- Tool parameter, backend envelope and result models
- Local relevance ranking of search records
"""

from ldims_mcp.ldims.client import LdimsApiClient
from ldims_mcp.ldims.schemas import (
    DocumentFileContent,
    ExtractedContent,
    GetDocumentFileContentParams,
    SearchDocumentsParams,
    SearchDocumentsResponse,
    SearchFilters,
    SearchResult,
)

__all__ = [
    "DocumentFileContent",
    "ExtractedContent",
    "GetDocumentFileContentParams",
    "LdimsApiClient",
    "SearchDocumentsParams",
    "SearchDocumentsResponse",
    "SearchFilters",
    "SearchResult",
]
