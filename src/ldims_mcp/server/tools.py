"""MCP tool and resource handlers backed by the LDIMS adapter.

The handler is transport-agnostic: both the stdio server and the HTTP
JSON-RPC endpoint delegate to it. Parameters are validated before any
backend call, backend calls run through the retry executor, and every
failure is rendered as a structured tool error.
"""

import logging
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Final

from pydantic import BaseModel, ValidationError

from ldims_mcp.constants import (
    EXTRACTED_CONTENT_URI_PATTERN,
    EXTRACTED_CONTENT_URI_TEMPLATE,
    TOOL_GET_DOCUMENT_FILE_CONTENT,
    TOOL_SEARCH_DOCUMENTS,
)
from ldims_mcp.errors import ClassifiedError, ErrorClassifier, RetryExecutor
from ldims_mcp.ldims.client import LdimsApiClient
from ldims_mcp.ldims.schemas import (
    DocumentFileContent,
    ExtractedContent,
    GetDocumentFileContentParams,
    SearchDocumentsParams,
    SearchDocumentsResponse,
)

logger: Final = logging.getLogger(__name__)

_URI_RE: Final = re.compile(EXTRACTED_CONTENT_URI_PATTERN)

_SEARCH_DESCRIPTION: Final = (
    "Search LDIMS documents by keywords or a natural language query. Results are "
    "ranked by how well the document content matches the query and include "
    "metadata and a preview of the matched content."
)
_FILE_CONTENT_DESCRIPTION: Final = (
    "Get the extracted content of a document file in LDIMS by file ID, optionally "
    "with file metadata (name, size, type, timestamps)."
)

_UNKNOWN: Final = "unknown"


class LdimsToolHandler:
    """Implements the LDIMS MCP tools and the extracted content resource.

    Attributes:
        client: LDIMS API client.
        classifier: Error classifier used to render failures.
        executor: Retry executor wrapping backend calls.

    Example:
        >>> handler = LdimsToolHandler(client, classifier, executor)
        >>> result = await handler.call_tool("searchDocuments", {"query": "budget"})
        >>> result["isError"]
        False
    """

    def __init__(
        self,
        client: LdimsApiClient,
        classifier: ErrorClassifier,
        executor: RetryExecutor,
    ) -> None:
        """Initialize the tool handler.

        Args:
            client: LDIMS API client (opened by the caller).
            classifier: Shared error classifier.
            executor: Retry executor sharing the same classifier.
        """
        self.client = client
        self.classifier = classifier
        self.executor = executor
        self._tools: dict[str, Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]] = {
            TOOL_SEARCH_DOCUMENTS: self._search_documents,
            TOOL_GET_DOCUMENT_FILE_CONTENT: self._get_document_file_content,
        }

    @property
    def tool_names(self) -> list[str]:
        """Names of the registered tools."""
        return list(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        """Describe the available tools.

        Returns:
            Tool definitions with name, description and JSON Schema input.
        """
        return [
            {
                "name": TOOL_SEARCH_DOCUMENTS,
                "description": _SEARCH_DESCRIPTION,
                "inputSchema": SearchDocumentsParams.model_json_schema(),
            },
            {
                "name": TOOL_GET_DOCUMENT_FILE_CONTENT,
                "description": _FILE_CONTENT_DESCRIPTION,
                "inputSchema": GetDocumentFileContentParams.model_json_schema(),
            },
        ]

    async def call_tool(self, name: str, arguments: Mapping[str, Any] | None) -> dict[str, Any]:
        """Invoke a tool and render its result.

        Failures never escape: they are classified and returned as a tool
        result with ``isError`` set.

        Args:
            name: Tool name.
            arguments: Tool arguments.

        Returns:
            MCP tool result dictionary.
        """
        handler = self._tools.get(name)
        if handler is None:
            error = self.classifier.classify(
                ClassifiedError.tool_not_found(name, self.tool_names), {"tool": name}
            )
            return self.classifier.to_tool_result(error)

        started = time.perf_counter()
        try:
            result = await handler(arguments or {})
        except ClassifiedError as e:
            # Already recorded where it was classified
            error = e
        except Exception as e:
            error = self.classifier.classify(e, {"tool": name})
        else:
            logger.info(f"Tool {name} completed in {(time.perf_counter() - started) * 1000:.0f}ms")
            return result

        logger.warning(f"Tool {name} failed: {error.code.value}")
        return self.classifier.to_tool_result(error)

    def _validate(
        self, model: type[BaseModel], arguments: Mapping[str, Any], context: Mapping[str, Any]
    ) -> Any:
        try:
            return model.model_validate(dict(arguments))
        except ValidationError as e:
            raise self.classifier.classify(e, context) from e

    async def _search_documents(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        params: SearchDocumentsParams = self._validate(
            SearchDocumentsParams, arguments, {"tool": TOOL_SEARCH_DOCUMENTS}
        )

        async def search() -> SearchDocumentsResponse:
            outcome = await self.client.search_documents(params)
            if isinstance(outcome, ClassifiedError):
                raise outcome
            return outcome

        response = await self.executor.execute(
            search, {"tool": TOOL_SEARCH_DOCUMENTS, "query": params.query}
        )
        return {
            "content": [{"type": "text", "text": format_search_results(response)}],
            "structuredContent": response.to_dict(),
            "isError": False,
        }

    async def _get_document_file_content(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        params: GetDocumentFileContentParams = self._validate(
            GetDocumentFileContentParams, arguments, {"tool": TOOL_GET_DOCUMENT_FILE_CONTENT}
        )
        content = await self.executor.execute(
            lambda: self.client.get_document_file_content(
                params.file_id, params.include_metadata, params.format
            ),
            {"tool": TOOL_GET_DOCUMENT_FILE_CONTENT, "fileId": params.file_id},
        )
        return {
            "content": [{"type": "text", "text": format_file_content(content)}],
            "structuredContent": content.to_dict(),
            "isError": False,
        }

    def list_resource_templates(self) -> list[dict[str, Any]]:
        """Describe the resource templates.

        Returns:
            The extracted content resource template.
        """
        return [
            {
                "uriTemplate": EXTRACTED_CONTENT_URI_TEMPLATE,
                "name": "Document extracted content",
                "description": "Full extracted text of an LDIMS document file",
                "mimeType": "text/plain",
            }
        ]

    async def read_resource(self, uri: str) -> ExtractedContent:
        """Read an extracted content resource.

        Args:
            uri: ``ldims://docs/{document_id}/extracted_content``.

        Returns:
            The extracted content.

        Raises:
            ClassifiedError: ``RESOURCE_NOT_FOUND`` for malformed URIs, or the
                classified backend failure.
        """
        match = _URI_RE.match(uri)
        if match is None:
            raise self.classifier.classify(
                ClassifiedError.resource_not_found(
                    uri,
                    details={
                        "reason": "Malformed resource URI",
                        "expectedFormat": EXTRACTED_CONTENT_URI_TEMPLATE,
                    },
                ),
                {"operation": "resource_read"},
            )

        document_id = match.group(1)
        return await self.executor.execute(
            lambda: self.client.get_extracted_content(document_id),
            {"resource": "extracted_content", "documentId": document_id},
        )


def format_search_results(response: SearchDocumentsResponse) -> str:
    """Render search results as the tool's text content.

    Args:
        response: Ranked search response.

    Returns:
        Human-readable report.
    """
    meta = response.search_metadata
    lines = [
        "Document search results:",
        "",
        f'Query: "{meta.query_processed}"',
        f"Search mode: {meta.search_mode}",
        f"Execution time: {meta.execution_time}",
        f"Total matches: {response.total_matches}",
        "",
    ]
    if not response.results:
        lines.append("No documents matched the query.")
        return "\n".join(lines)

    lines.append(f"Found {len(response.results)} documents:")
    for index, doc in enumerate(response.results, start=1):
        lines += [
            "",
            f"{index}. {doc.document_name or _UNKNOWN}",
            f"   Document ID: {doc.document_id}",
            f"   Relevance: {doc.relevance_score * 100:.1f}%",
            f"   Submitter: {doc.metadata.submitter or _UNKNOWN}",
            f"   Created: {doc.metadata.created_at or _UNKNOWN}",
            f"   Document type: {doc.metadata.document_type or _UNKNOWN}",
        ]
        if doc.metadata.department_name:
            lines.append(f"   Department: {doc.metadata.department_name}")
        if doc.matched_context:
            source = f" [{doc.matched_source}]" if doc.matched_source else ""
            lines += ["", f"   Matched content{source}:", f"   {doc.matched_context}"]

    lines += [
        "",
        "Tip: read the full text of a file through the "
        f"{EXTRACTED_CONTENT_URI_TEMPLATE} resource.",
    ]
    return "\n".join(lines)


def format_file_content(content: DocumentFileContent) -> str:
    """Render a file's content as the tool's text content.

    Args:
        content: File content returned by the adapter.

    Returns:
        Human-readable report followed by the content itself.
    """
    meta = content.metadata
    lines = ["Document file content retrieved:", ""]
    if meta is not None:
        size = f"{meta.size} bytes" if meta.size is not None else _UNKNOWN
        lines += [
            f"File name: {meta.filename}",
            f"File ID: {content.file_id}",
            f"File type: {meta.mime_type or _UNKNOWN}",
            f"File size: {size}",
            f"Last modified: {meta.updated_at or meta.created_at or _UNKNOWN}",
        ]
    else:
        lines.append(f"File ID: {content.file_id}")
    if content.processing_status:
        lines.append(f"Processing status: {content.processing_status}")
    lines += [f"Format: {content.format}", "", "Content:", content.content]
    return "\n".join(lines)


def resource_contents(content: ExtractedContent) -> dict[str, Any]:
    """Render an extracted content resource as a ``resources/read`` result.

    Args:
        content: Extracted content.

    Returns:
        Result with a single text resource item.
    """
    return {
        "contents": [
            {
                "uri": content.uri,
                "mimeType": "text/plain",
                "text": content.text,
                "_meta": content.metadata.to_dict(),
            }
        ]
    }
