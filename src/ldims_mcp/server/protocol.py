"""JSON-RPC 2.0 message handling for the MCP HTTP transport.

:class:`McpProtocolHandler` processes one decoded JSON-RPC message at a time
and returns the response message, or None for notifications. Tool failures
are reported inside the tool result (``isError``); JSON-RPC errors are used
only for protocol-level problems.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Final

from ldims_mcp.constants import MCP_PROTOCOL_VERSION, SUPPORTED_PROTOCOL_VERSIONS
from ldims_mcp.errors.types import ClassifiedError, ErrorCode
from ldims_mcp.server.tools import LdimsToolHandler, resource_contents

logger: Final = logging.getLogger(__name__)

# JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603
RESOURCE_NOT_FOUND: Final[int] = -32002

INITIALIZE_METHOD: Final[str] = "initialize"


class JsonRpcError(Exception):
    """Protocol-level failure answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def jsonrpc_error(
    request_id: str | int | None, code: int, message: str, data: Any = None
) -> dict[str, Any]:
    """Build a JSON-RPC error response.

    Args:
        request_id: ID of the failed request (None when unknown).
        code: JSON-RPC error code.
        message: Error message.
        data: Optional additional error data.

    Returns:
        JSON-RPC response dictionary.
    """
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def is_initialize_request(message: Any) -> bool:
    """Whether ``message`` is an ``initialize`` request."""
    return (
        isinstance(message, Mapping)
        and message.get("method") == INITIALIZE_METHOD
        and "id" in message
    )


class McpProtocolHandler:
    """Serves MCP requests of one conversation.

    Attributes:
        tools: Tool and resource handler.
        server_name: Name announced in ``initialize``.
        server_version: Version announced in ``initialize``.
        initialized: Whether the client completed initialization.
        protocol_version: Negotiated protocol version.
    """

    def __init__(self, tools: LdimsToolHandler, server_name: str, server_version: str) -> None:
        self.tools = tools
        self.server_name = server_name
        self.server_version = server_version
        self.initialized = False
        self.protocol_version: str | None = None
        self._methods: dict[str, Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]] = {
            INITIALIZE_METHOD: self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "resources/templates/list": self._list_resource_templates,
            "resources/read": self._read_resource,
        }

    async def handle(self, message: Any) -> dict[str, Any] | None:
        """Process one JSON-RPC message.

        Args:
            message: Decoded JSON value.

        Returns:
            The response message, or None for notifications.
        """
        if not isinstance(message, Mapping) or message.get("jsonrpc") != "2.0":
            request_id = message.get("id") if isinstance(message, Mapping) else None
            return jsonrpc_error(request_id, INVALID_REQUEST, "Invalid Request")

        method = message.get("method")
        if not isinstance(method, str):
            return jsonrpc_error(message.get("id"), INVALID_REQUEST, "Invalid Request")

        if "id" not in message:
            self._handle_notification(method)
            return None

        request_id = message["id"]
        params = message.get("params") or {}
        if not isinstance(params, Mapping):
            return jsonrpc_error(request_id, INVALID_PARAMS, "params must be an object")

        handler = self._methods.get(method)
        if handler is None:
            return jsonrpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        try:
            result = await handler(params)
        except JsonRpcError as e:
            return jsonrpc_error(request_id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception(f"Unhandled error in {method}: {e}")
            return jsonrpc_error(request_id, INTERNAL_ERROR, "Internal error")
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _handle_notification(self, method: str) -> None:
        if method == "notifications/initialized":
            self.initialized = True
            logger.debug("Client initialization completed")
        else:
            logger.debug(f"Ignoring notification: {method}")

    async def _initialize(self, params: Mapping[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            self.protocol_version = requested
        else:
            self.protocol_version = MCP_PROTOCOL_VERSION
        client_info = params.get("clientInfo") or {}
        logger.info(
            f"Initializing MCP session for {client_info.get('name', 'unknown client')} "
            f"(protocol {self.protocol_version})"
        )
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            "serverInfo": {"name": self.server_name, "version": self.server_version},
            "instructions": (
                "LDIMS document tools. Use searchDocuments to find documents, then "
                "get_document_file_content or the extracted_content resource to read them."
            ),
        }

    async def _ping(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return {"tools": self.tools.list_tools()}

    async def _call_tool(self, params: Mapping[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments")
        if not isinstance(name, str) or not name:
            raise JsonRpcError(INVALID_PARAMS, "tools/call requires a tool name")
        if arguments is not None and not isinstance(arguments, Mapping):
            raise JsonRpcError(INVALID_PARAMS, "tools/call arguments must be an object")
        return await self.tools.call_tool(name, arguments)

    async def _list_resources(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return {"resources": []}

    async def _list_resource_templates(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return {"resourceTemplates": self.tools.list_resource_templates()}

    async def _read_resource(self, params: Mapping[str, Any]) -> dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise JsonRpcError(INVALID_PARAMS, "resources/read requires a uri")
        try:
            content = await self.tools.read_resource(uri)
        except ClassifiedError as e:
            code = RESOURCE_NOT_FOUND if e.code is ErrorCode.RESOURCE_NOT_FOUND else INTERNAL_ERROR
            raise JsonRpcError(
                code, e.user_message or e.message, e.to_response(include_details=False)
            ) from e
        return resource_contents(content)
