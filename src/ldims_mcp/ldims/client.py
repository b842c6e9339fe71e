"""Async client for the LDIMS document management REST API.

This module translates the two LDIMS tool operations and the extracted
content resource into REST calls, validates the backend envelopes against
strict schemas, and reshapes them into adapter results. Every request is
raced against a timeout and every failure is raised (or, for searches,
returned) as a :class:`~ldims_mcp.errors.types.ClassifiedError`.

Example:
    Basic usage with context manager::

        async with LdimsApiClient("http://localhost:3000", auth_token="secret") as client:
            # Search documents
            result = await client.search_documents(SearchDocumentsParams(query="budget"))

            # Read a file
            content = await client.get_document_file_content("42", include_metadata=True)

            # Health check
            is_healthy = await client.health_check()
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Final, TypeVar
from urllib.parse import quote

import aiohttp
from pydantic import BaseModel, ValidationError

from ldims_mcp.config.settings import Settings
from ldims_mcp.constants import (
    EXTRACTED_CONTENT_URI_TEMPLATE,
    HEALTH_CHECK_TIMEOUT,
    MAX_RETRY_AFTER_MS,
    USER_AGENT_PREFIX,
)
from ldims_mcp.errors.types import ClassifiedError, ErrorCode, ErrorSeverity
from ldims_mcp.ldims.ranking import (
    best_match,
    excerpt,
    rank,
    record_snippets,
    score_snippet,
)
from ldims_mcp.ldims.schemas import (
    BackendErrorInfo,
    ContentFormat,
    DocumentFileContent,
    ExtractedContent,
    ExtractedContentMetadata,
    FileContentData,
    FileContentEnvelope,
    FileMetadata,
    SearchDocumentsParams,
    SearchDocumentsResponse,
    SearchEnvelope,
    SearchMetadata,
    SearchMode,
    SearchRecord,
    SearchResult,
    SearchResultMetadata,
)
from ldims_mcp.version import __version__

logger: Final = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class LdimsApiClient:
    """HTTP client for the LDIMS REST API.

    Attributes:
        base_url: Base URL of the LDIMS API (e.g., "http://localhost:3000").
        api_version: API version path segment.
        auth_token: Optional bearer token.
        timeout: Request timeout in seconds.
        timeout_retry_after_ms: Retry delay suggested on timeouts.
        session: aiohttp client session (initialized via context manager).

    Example:
        >>> async with LdimsApiClient("http://localhost:3000") as client:
        ...     result = await client.search_documents(SearchDocumentsParams(query="contract"))
        ...     print(len(result.results))
        2
    """

    def __init__(
        self,
        base_url: str,
        api_version: str = "v1",
        auth_token: str | None = None,
        timeout: float = 30.0,
        timeout_retry_after_ms: int | None = None,
    ) -> None:
        """Initialize the LDIMS API client.

        Args:
            base_url: Base URL of the LDIMS API.
            api_version: API version path segment. Defaults to "v1".
            auth_token: Optional bearer token sent with every request.
            timeout: Request timeout in seconds.
            timeout_retry_after_ms: Retry delay suggested when a request times out.
        """
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.auth_token = auth_token
        self.timeout = timeout
        self.timeout_retry_after_ms = timeout_retry_after_ms
        self.session: aiohttp.ClientSession | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "LdimsApiClient":
        """Create a client from application settings.

        Args:
            settings: Application settings.

        Returns:
            Configured (not yet opened) client.
        """
        return cls(
            base_url=settings.ldims_api_base_url,
            api_version=settings.ldims_api_version,
            auth_token=settings.ldims_auth_token,
            timeout=settings.timeout_seconds,
            timeout_retry_after_ms=settings.error_retry_delay,
        )

    async def __aenter__(self) -> "LdimsApiClient":
        """Enter async context manager, creating HTTP session.

        Returns:
            Self for use in async with statement.
        """
        # Request deadlines are enforced per call with asyncio.timeout
        self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager, closing HTTP session.

        Args:
            exc_type: Exception type if an exception was raised.
            exc_val: Exception value if an exception was raised.
            exc_tb: Exception traceback if an exception was raised.
        """
        if self.session:
            await self.session.close()
            self.session = None

    @property
    def api_prefix(self) -> str:
        """Path prefix of every endpoint, e.g. ``/api/v1``."""
        return f"/api/{self.api_version}"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"{USER_AGENT_PREFIX}/{__version__}",
        }
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}{path}"

    async def _get_json(self, path: str, params: Mapping[str, str] | None = None) -> Any:
        """Send a GET request and decode the JSON body.

        Args:
            path: Endpoint path below the API prefix.
            params: Optional query parameters.

        Returns:
            Decoded JSON body.

        Raises:
            ClassifiedError: On timeout, connection failure, non-2xx status or
                a body that is not JSON.
        """
        if not self.session:
            raise ClassifiedError.internal_error(
                "Session not initialized - use async with context manager"
            )

        url = self._url(path)
        timeout_ms = int(self.timeout * 1000)
        logger.debug(f"LDIMS request: GET {url} params={dict(params or {})}")

        try:
            async with (
                asyncio.timeout(self.timeout),
                self.session.get(url, params=params, headers=self._headers()) as resp,
            ):
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    raise ClassifiedError.from_http_status(
                        resp.status,
                        f"HTTP request failed: {resp.status} {resp.reason or ''}".rstrip(),
                        retry_after_ms=parse_retry_after(resp.headers.get("Retry-After")),
                        details={"url": url, "body": body[:200]},
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise ClassifiedError.invalid_response(
                        f"Response from {path} is not valid JSON: {e}", details={"url": url}
                    ) from e
        except ClassifiedError:
            raise
        except TimeoutError as e:
            logger.warning(f"LDIMS request timed out after {timeout_ms}ms: GET {url}")
            raise ClassifiedError.api_timeout(
                f"Request timeout after {timeout_ms}ms",
                retry_after_ms=self.timeout_retry_after_ms,
                details={"url": url, "timeoutMs": timeout_ms},
            ) from e
        except aiohttp.ClientError as e:
            logger.warning(f"LDIMS request failed: GET {url}: {e}")
            raise ClassifiedError.api_connection_failed(
                f"Network request failed: {e}", details={"url": url}
            ) from e

    @staticmethod
    def _parse(model: type[ModelT], payload: Any, endpoint: str) -> ModelT:
        """Validate a backend payload against its canonical schema.

        Raises:
            ClassifiedError: ``API_INVALID_RESPONSE`` if the payload does not match.
        """
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ClassifiedError.invalid_response(
                f"Unexpected response from {endpoint}: {e.error_count()} validation error(s)",
                details={
                    "endpoint": endpoint,
                    "validationErrors": [
                        {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                        for err in e.errors()
                    ],
                },
            ) from e

    async def search_documents(
        self, params: SearchDocumentsParams
    ) -> SearchDocumentsResponse | ClassifiedError:
        """Search documents and rank the matches.

        Backend failures are returned rather than raised, so callers can tell
        an empty result apart from a failed call.

        Args:
            params: Validated search parameters.

        Returns:
            The ranked search result, or the classified failure.

        Example:
            >>> result = await client.search_documents(SearchDocumentsParams(query="budget"))
            >>> if isinstance(result, ClassifiedError):
            ...     print(result.code)
        """
        filters = params.filters
        search_mode = filters.search_mode if filters else "semantic"
        query: dict[str, str] = {
            "searchText": params.query,
            "pageSize": str(params.max_results),
            "page": "1",
            "searchMode": search_mode,
        }
        if filters is not None:
            if filters.date_from:
                query["startDate"] = filters.date_from
            if filters.date_to:
                query["endDate"] = filters.date_to
            if filters.document_type:
                query["docTypeName"] = filters.document_type
            if filters.submitter:
                query["submitter"] = filters.submitter
            if filters.has_backend_filters():
                query["sortField"] = "createdAt"
                query["sortOrder"] = "DESC"

        endpoint = "/documents/search"
        started = time.perf_counter()
        try:
            envelope = self._parse(SearchEnvelope, await self._get_json(endpoint, query), endpoint)
            if envelope.code != 200:
                raise _envelope_status_error(envelope.code, envelope.message, endpoint)
            if envelope.data is None:
                raise ClassifiedError.invalid_response(
                    "Search response is missing its data block", details={"endpoint": endpoint}
                )
        except ClassifiedError as e:
            logger.error(f"Document search failed for {params.query!r}: {e.code.value}: {e}")
            return e.with_context(
                {"query": params.query, "filters": filters.model_dump() if filters else None}
            )

        execution_time = f"{round((time.perf_counter() - started) * 1000)}ms"
        records = envelope.data.items
        results = self._rank_records(records, params.query, search_mode)[: params.max_results]

        logger.info(
            f"Document search completed: query={params.query!r}, "
            f"results={len(results)}, executionTime={execution_time}"
        )
        return SearchDocumentsResponse(
            results=results,
            total_matches=envelope.data.total,
            search_metadata=SearchMetadata(
                execution_time=execution_time,
                search_mode=search_mode,
                query_processed=params.query,
            ),
        )

    @staticmethod
    def _rank_records(
        records: list[SearchRecord], query: str, search_mode: SearchMode
    ) -> list[SearchResult]:
        results: list[SearchResult] = []
        matches = []
        for record in records:
            snippets = record_snippets(record)
            match = best_match(score_snippet(s, query, search_mode) for s in snippets)
            matches.append(match)

            if match is not None and match.position is not None:
                context = excerpt(match.snippet.text, match.position, match.length)
                source: str | None = match.snippet.source
            elif snippets:
                context = excerpt(snippets[0].text, 0)
                source = snippets[0].source
            else:
                context, source = "", None

            results.append(
                SearchResult(
                    document_id=str(record.id),
                    document_name=record.doc_name,
                    relevance_score=match.score if match else 0.0,
                    match_position=match.position if match else None,
                    matched_context=context,
                    matched_source=source,
                    metadata=SearchResultMetadata(
                        created_at=record.created_at,
                        submitter=record.submitter,
                        document_type=record.doc_type_name,
                        department_name=record.source_department_name or record.department_name,
                        handover_date=record.handover_date,
                        file_count=record.file_count,
                    ),
                )
            )
        return rank(results, matches)

    async def _fetch_file(self, file_id: str, params: Mapping[str, str] | None) -> FileContentData:
        endpoint = f"/documents/files/{quote(file_id, safe='')}/content"
        envelope = self._parse(
            FileContentEnvelope, await self._get_json(endpoint, params), endpoint
        )
        if not envelope.success:
            raise _backend_error(envelope.error, envelope.message, file_id)
        if envelope.data is None:
            raise ClassifiedError.invalid_response(
                "File content response is missing its data block",
                details={"endpoint": endpoint, "fileId": file_id},
            )
        return envelope.data

    async def get_document_file_content(
        self,
        file_id: str,
        include_metadata: bool = False,
        format: ContentFormat = "text",
    ) -> DocumentFileContent:
        """Fetch the content of a document file.

        Args:
            file_id: LDIMS file ID.
            include_metadata: Whether to return the file metadata block.
            format: ``text`` or ``base64``; forwarded to the backend.

        Returns:
            The file content, with metadata only when requested.

        Raises:
            ClassifiedError: If the request fails or the response is invalid.
        """
        logger.info(f"Fetching document file content: {file_id}")
        data = await self._fetch_file(
            file_id,
            {"include_metadata": "true" if include_metadata else "false", "format": format},
        )
        metadata = None
        if include_metadata:
            metadata = FileMetadata(
                filename=data.file_name,
                size=data.file_size,
                mime_type=data.file_type,
                created_at=data.created_at,
                updated_at=data.updated_at,
                hash=data.hash,
            )
        return DocumentFileContent(
            file_id=str(data.id),
            content=data.extracted_content or "",
            format=format,
            processing_status=data.processing_status,
            metadata=metadata,
        )

    async def get_extracted_content(self, document_id: str) -> ExtractedContent:
        """Fetch the extracted text served as ``ldims://docs/{id}/extracted_content``.

        Args:
            document_id: LDIMS file ID the resource refers to.

        Returns:
            The extracted content resource.

        Raises:
            ClassifiedError: If the request fails or the response is invalid.
        """
        data = await self._fetch_file(document_id, None)
        text = data.extracted_content or ""
        logger.info(f"Extracted content loaded: {document_id} ({len(text)} chars)")
        return ExtractedContent(
            uri=EXTRACTED_CONTENT_URI_TEMPLATE.format(document_id=document_id),
            text=text,
            metadata=ExtractedContentMetadata(
                document_id=document_id,
                document_name=data.file_name,
                extracted_at=data.updated_at or data.created_at,
                format=data.file_type,
                file_size=data.file_size,
                processing_status=data.processing_status,
            ),
        )

    async def health_check(self) -> bool:
        """Check if the LDIMS API is reachable.

        Returns:
            True if ``/health`` answers with a 2xx status.
        """
        if not self.session:
            return False
        url = self._url("/health")
        try:
            async with (
                asyncio.timeout(HEALTH_CHECK_TIMEOUT),
                self.session.get(url, headers=self._headers()) as resp,
            ):
                return 200 <= resp.status < 300
        except (TimeoutError, aiohttp.ClientError) as e:
            logger.warning(f"LDIMS health check failed: {e}")
            return False


def parse_retry_after(value: str | None) -> int | None:
    """Convert a ``Retry-After`` header into milliseconds.

    Args:
        value: Header value, either delay seconds or an HTTP date.

    Returns:
        Delay in milliseconds capped at ``MAX_RETRY_AFTER_MS``, or None if
        absent or unparsable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return min(int(value) * 1000, MAX_RETRY_AFTER_MS)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delay = int((when - datetime.now(UTC)).total_seconds() * 1000)
    return min(max(0, delay), MAX_RETRY_AFTER_MS)


def _envelope_status_error(code: int, message: str, endpoint: str) -> ClassifiedError:
    if code >= 400:
        return ClassifiedError.from_http_status(
            code, f"Backend reported {code}: {message}", details={"endpoint": endpoint}
        )
    return ClassifiedError.invalid_response(
        f"Unexpected envelope code {code}: {message}", details={"endpoint": endpoint}
    )


def _backend_error(
    error: BackendErrorInfo | None, message: str | None, file_id: str
) -> ClassifiedError:
    code = error.code if error else "UNKNOWN_ERROR"
    text = error.message if error else (message or "Unknown API error")
    details = {"fileId": file_id, "backendCode": code}
    if "NOT_FOUND" in code.upper():
        return ClassifiedError.resource_not_found(f"file {file_id}", details=details)
    return ClassifiedError(
        ErrorCode.API_SERVER_ERROR,
        f"LDIMS reported {code}: {text}",
        severity=ErrorSeverity.HIGH,
        recoverable=False,
        details=details,
    )
