"""Pydantic models for LDIMS tool parameters, backend payloads and results.

Three groups of models live here:

- Tool parameter models validate MCP tool arguments. Unknown fields are
  rejected, and the models double as the source of the tools' JSON Schemas.
- Backend envelope models describe the LDIMS REST responses. They are
  strictly typed, and a payload that does not match fails validation rather
  than being patched up with defaults.
- Result models are what the adapter returns to the tool handler. They
  serialize with camelCase keys.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ldims_mcp.constants import SEARCH_DEFAULT_RESULTS, SEARCH_MAX_RESULTS

SearchMode = Literal["exact", "semantic"]
ContentFormat = Literal["text", "base64"]


# =============================================================================
# Tool parameters
# =============================================================================


class SearchFilters(BaseModel):
    """Optional filters of the searchDocuments tool.

    Attributes:
        date_from: Only documents created on or after this date.
        date_to: Only documents created on or before this date.
        document_type: Document type name.
        submitter: Name of the submitting user.
        search_mode: ``exact`` phrase matching or ``semantic`` term matching.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    date_from: str | None = Field(
        None, alias="dateFrom", description="Start date filter (YYYY-MM-DD)"
    )
    date_to: str | None = Field(None, alias="dateTo", description="End date filter (YYYY-MM-DD)")
    document_type: str | None = Field(
        None, alias="documentType", description="Document type name filter"
    )
    submitter: str | None = Field(None, description="Submitter name filter")
    search_mode: SearchMode = Field(
        "semantic",
        alias="searchMode",
        description="exact: whole-phrase matching; semantic: per-term matching",
    )

    def has_backend_filters(self) -> bool:
        """Whether any filter is forwarded to the backend query."""
        return any((self.date_from, self.date_to, self.document_type, self.submitter))


class SearchDocumentsParams(BaseModel):
    """Arguments of the searchDocuments tool."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    query: str = Field(..., min_length=1, description="Search keywords or natural language query")
    max_results: int = Field(
        SEARCH_DEFAULT_RESULTS,
        ge=1,
        le=SEARCH_MAX_RESULTS,
        alias="maxResults",
        description=f"Maximum number of results (1-{SEARCH_MAX_RESULTS})",
    )
    filters: SearchFilters | None = Field(None, description="Search filters")


class GetDocumentFileContentParams(BaseModel):
    """Arguments of the get_document_file_content tool."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    file_id: str = Field(..., min_length=1, description="Document file ID in LDIMS")
    include_metadata: bool = Field(False, description="Include file metadata in the result")
    format: ContentFormat = Field(
        "text", description="Content format: text or base64 (binary encoded)"
    )


# =============================================================================
# Backend envelopes
# =============================================================================


class _BackendModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        strict=True,
        extra="ignore",
    )


class BackendErrorInfo(_BackendModel):
    """Error block of a failed backend envelope."""

    code: str
    message: str
    details: object | None = None


class FileContentData(_BackendModel):
    """Payload of ``GET /documents/files/{id}/content``."""

    id: str | int
    file_name: str
    extracted_content: str | None = None
    file_size: int | None = None
    file_type: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    processing_status: str | None = None
    hash: str | None = None


class FileContentEnvelope(_BackendModel):
    """Envelope of the file content endpoint."""

    success: bool
    data: FileContentData | None = None
    message: str | None = None
    error: BackendErrorInfo | None = None


class SearchRecordFile(_BackendModel):
    """A file attached to a search record."""

    id: int | str
    file_name: str
    extracted_content: str | None = None
    file_type: str | None = None
    processing_status: str | None = None


class SearchRecord(_BackendModel):
    """A document returned by the search endpoint."""

    id: str | int
    doc_name: str | None = None
    extracted_content: str | None = None
    remarks: str | None = None
    created_at: str | None = None
    submitter: str | None = None
    doc_type_name: str | None = None
    source_department_name: str | None = None
    department_name: str | None = None
    handover_date: str | None = None
    file_count: int | None = None
    files: list[SearchRecordFile] = Field(default_factory=list)


class SearchPage(_BackendModel):
    """Data block of the search envelope."""

    items: list[SearchRecord] = Field(..., alias="list")
    total: int
    page: int | None = None
    page_size: int | None = None


class SearchEnvelope(_BackendModel):
    """Envelope of the search endpoint."""

    code: int
    message: str
    data: SearchPage | None = None


# =============================================================================
# Adapter results
# =============================================================================


class _ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, object]:
        """Serialize with camelCase keys, omitting unset optional values."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SearchResultMetadata(_ResultModel):
    """Descriptive metadata of a matched document."""

    created_at: str | None = None
    submitter: str | None = None
    document_type: str | None = None
    department_name: str | None = None
    handover_date: str | None = None
    file_count: int | None = None


class SearchResult(_ResultModel):
    """A ranked search match.

    Attributes:
        document_id: LDIMS document ID.
        document_name: Document name as reported by the backend.
        relevance_score: Best snippet score in ``[0, 1]``.
        match_position: Character offset of the best match, None when unmatched.
        matched_context: Excerpt around the best match.
        matched_source: File name or field the excerpt was taken from.
        metadata: Descriptive metadata.
    """

    document_id: str
    document_name: str | None = None
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    match_position: int | None = None
    matched_context: str = ""
    matched_source: str | None = None
    metadata: SearchResultMetadata


class SearchMetadata(_ResultModel):
    """How a search was executed."""

    execution_time: str
    search_mode: SearchMode
    query_processed: str


class SearchDocumentsResponse(_ResultModel):
    """Successful search result."""

    results: list[SearchResult]
    total_matches: int
    search_metadata: SearchMetadata


class FileMetadata(_ResultModel):
    """File metadata, returned only when requested."""

    filename: str
    size: int | None = None
    mime_type: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    hash: str | None = None


class DocumentFileContent(BaseModel):
    """Content of a document file."""

    file_id: str
    content: str
    format: ContentFormat
    processing_status: str | None = None
    metadata: FileMetadata | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialize with the snake_case keys used by the tool's arguments."""
        return self.model_dump(exclude_none=True)


class ExtractedContentMetadata(_ResultModel):
    """Metadata attached to an extracted content resource."""

    document_id: str
    document_name: str
    extracted_at: str | None = None
    format: str | None = None
    file_size: int | None = None
    processing_status: str | None = None


class ExtractedContent(_ResultModel):
    """Extracted text of a document, served as an MCP resource."""

    uri: str
    text: str
    metadata: ExtractedContentMetadata
