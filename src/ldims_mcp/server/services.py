"""Construction of the service objects shared by both transports."""

from dataclasses import dataclass

from ldims_mcp.config.settings import Settings
from ldims_mcp.errors import ClassifierConfig, ErrorClassifier, RetryExecutor, RetryPolicy
from ldims_mcp.ldims.client import LdimsApiClient
from ldims_mcp.server.protocol import McpProtocolHandler
from ldims_mcp.server.sessions import SessionRouter
from ldims_mcp.server.tools import LdimsToolHandler


@dataclass
class Services:
    """Service objects created once at startup and passed to every consumer.

    Attributes:
        settings: Application settings.
        classifier: Error classifier holding the process error statistics.
        executor: Retry executor for backend calls.
        client: LDIMS API client.
        tools: MCP tool and resource handler.
        router: Session router of the HTTP transport.
    """

    settings: Settings
    classifier: ErrorClassifier
    executor: RetryExecutor
    client: LdimsApiClient
    tools: LdimsToolHandler
    router: SessionRouter


def build_services(settings: Settings, client: LdimsApiClient | None = None) -> Services:
    """Wire the service objects from settings.

    Args:
        settings: Application settings.
        client: LDIMS API client to use instead of one built from settings.

    Returns:
        Services container. The client still has to be opened by the caller.
    """
    classifier = ErrorClassifier(
        ClassifierConfig(
            enable_detailed_errors=bool(settings.error_detailed),
            log_stack_trace=bool(settings.error_stack_trace),
            default_retry_delay_ms=settings.error_retry_delay,
        )
    )
    executor = RetryExecutor(classifier, RetryPolicy.from_settings(settings))
    client = client or LdimsApiClient.from_settings(settings)
    tools = LdimsToolHandler(client, classifier, executor)

    def protocol_factory() -> McpProtocolHandler:
        return McpProtocolHandler(tools, settings.mcp_server_name, settings.mcp_server_version)

    router = SessionRouter(
        protocol_factory,
        idle_timeout=settings.session_idle_timeout,
        sweep_interval=settings.session_sweep_interval,
    )
    return Services(
        settings=settings,
        classifier=classifier,
        executor=executor,
        client=client,
        tools=tools,
        router=router,
    )
