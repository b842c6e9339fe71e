"""MCP server over stdio.

Builds an ``mcp`` low-level server whose handlers delegate to
:class:`~ldims_mcp.server.tools.LdimsToolHandler` and runs it on standard
input/output. Logging must never write to stdout here.
"""

import logging
from typing import Any

import anyio
import mcp.types as types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.stdio import stdio_server
from pydantic import AnyUrl

from ldims_mcp.config.settings import Settings
from ldims_mcp.errors.types import ClassifiedError
from ldims_mcp.server.services import build_services
from ldims_mcp.server.tools import LdimsToolHandler

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "LDIMS document tools. Use searchDocuments to find documents, then "
    "get_document_file_content or the ldims://docs/{document_id}/extracted_content "
    "resource to read them."
)


class McpHandlerError(Exception):
    """Failure reported to the MCP client with a user-facing message."""


def build_server(tools: LdimsToolHandler, settings: Settings) -> Server:
    """Create the MCP server and register its handlers.

    Args:
        tools: Tool and resource handler.
        settings: Application settings (server name and version).

    Returns:
        Configured low-level MCP server.
    """
    server: Server = Server(
        settings.mcp_server_name,
        version=settings.mcp_server_version,
        instructions=INSTRUCTIONS,
    )

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=tool["name"],
                description=tool["description"],
                inputSchema=tool["inputSchema"],
            )
            for tool in tools.list_tools()
        ]

    # Arguments are validated by the tool handler so that failures are classified
    @server.call_tool(validate_input=False)
    async def call_tool(
        name: str, arguments: dict[str, Any] | None
    ) -> tuple[list[types.TextContent], dict[str, Any]]:
        result = await tools.call_tool(name, arguments)
        text = "\n".join(item["text"] for item in result["content"])
        if result.get("isError"):
            raise McpHandlerError(text)
        return [types.TextContent(type="text", text=text)], result.get("structuredContent", {})

    @server.list_resource_templates()
    async def list_resource_templates() -> list[types.ResourceTemplate]:
        return [
            types.ResourceTemplate(
                uriTemplate=template["uriTemplate"],
                name=template["name"],
                description=template["description"],
                mimeType=template["mimeType"],
            )
            for template in tools.list_resource_templates()
        ]

    @server.read_resource()
    async def read_resource(uri: AnyUrl) -> str:
        try:
            content = await tools.read_resource(str(uri))
        except ClassifiedError as e:
            raise McpHandlerError(e.user_message or e.message) from e
        return content.text

    return server


async def serve(settings: Settings) -> None:
    """Serve MCP on stdio until the client disconnects.

    Args:
        settings: Application settings.
    """
    services = build_services(settings)
    server = build_server(services.tools, settings)
    logger.info(f"Starting {settings.mcp_server_name} v{settings.mcp_server_version} on stdio")

    async with services.client, stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(
                notification_options=NotificationOptions(
                    prompts_changed=False,
                    resources_changed=False,
                    tools_changed=False,
                ),
                experimental_capabilities={},
            ),
        )
    logger.info("stdio session ended")


def run(settings: Settings) -> None:
    """Run the stdio server to completion."""
    anyio.run(serve, settings)
