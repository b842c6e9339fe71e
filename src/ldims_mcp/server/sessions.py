"""MCP session routing for the HTTP transport.

Each MCP conversation over HTTP owns a :class:`SessionTransport`, created when
the client sends ``initialize`` and addressed afterwards by its session ID.
The :class:`SessionRouter` maps session IDs to transports:

- ``initialize`` without a session ID creates a session with a fresh ID.
- Any other request must carry a known session ID.
- Closing a transport (client ``DELETE``, shutdown or idle eviction) removes
  its mapping; later requests with that ID are rejected.

Sessions whose client disappears without closing them are evicted by a
periodic idle sweep.
"""

import asyncio
import contextlib
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final

from ldims_mcp.server.protocol import McpProtocolHandler, is_initialize_request

logger: Final = logging.getLogger(__name__)

Clock = Callable[[], float]


class SessionErrorCode(str, Enum):
    """Reasons a request cannot be routed to a session."""

    MISSING_SESSION_ID = "MISSING_SESSION_ID"
    UNKNOWN_SESSION = "UNKNOWN_SESSION"


class SessionError(Exception):
    """Raised when a request cannot be routed.

    Attributes:
        code: Routing error code.
        status_code: Matching HTTP status (400 or 404).
        message: Description of the problem.
    """

    _STATUS: Final = {
        SessionErrorCode.MISSING_SESSION_ID: 400,
        SessionErrorCode.UNKNOWN_SESSION: 404,
    }

    def __init__(self, code: SessionErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = self._STATUS[code]


class SessionTransport:
    """Server-side endpoint of one MCP session.

    Messages are processed one at a time, in arrival order.

    Attributes:
        session_id: Session ID.
        protocol: Protocol handler owned by this session.
        created_at: Clock reading at creation.
        last_activity: Clock reading of the last message.
        closed: Whether the transport was closed.
    """

    def __init__(
        self,
        session_id: str,
        protocol: McpProtocolHandler,
        clock: Clock = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.protocol = protocol
        self._clock = clock
        self.created_at = clock()
        self.last_activity = self.created_at
        self.closed = False
        self._lock = asyncio.Lock()
        self._close_callbacks: list[Callable[["SessionTransport"], None]] = []

    @property
    def busy(self) -> bool:
        """Whether a message is being processed."""
        return self._lock.locked()

    def idle_seconds(self, now: float | None = None) -> float:
        """Seconds since the last message."""
        return (self._clock() if now is None else now) - self.last_activity

    def on_close(self, callback: Callable[["SessionTransport"], None]) -> None:
        """Register a callback fired once when the transport closes."""
        self._close_callbacks.append(callback)

    async def handle(self, message: Any) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Process a JSON-RPC message or batch.

        Args:
            message: Decoded JSON-RPC message, or a list of them.

        Returns:
            The response, a list of responses for a batch, or None when
            nothing needs answering.

        Raises:
            SessionError: If the transport is already closed.
        """
        if self.closed:
            raise SessionError(
                SessionErrorCode.UNKNOWN_SESSION, f"Session {self.session_id} is closed"
            )
        async with self._lock:
            self.last_activity = self._clock()
            try:
                if isinstance(message, list):
                    responses = [await self.protocol.handle(item) for item in message]
                    batch = [response for response in responses if response is not None]
                    return batch or None
                return await self.protocol.handle(message)
            finally:
                self.last_activity = self._clock()

    def close(self) -> None:
        """Close the transport and notify listeners. Idempotent."""
        if self.closed:
            return
        self.closed = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback(self)


@dataclass(frozen=True)
class RouteResult:
    """Outcome of routing one request.

    Attributes:
        session_id: Session the request was handled by.
        response: Response message(s), None for notifications.
        created: Whether the request created the session.
    """

    session_id: str
    response: dict[str, Any] | list[dict[str, Any]] | None
    created: bool = False


class SessionRouter:
    """Maps MCP session IDs to their transports.

    Attributes:
        idle_timeout: Seconds a session may stay idle before eviction.
        sweep_interval: Seconds between idle sweeps.

    Example:
        >>> router = SessionRouter(lambda: McpProtocolHandler(tools, "ldims", "1.0.0"))
        >>> await router.start()
        >>> result = await router.route({"jsonrpc": "2.0", "id": 1, "method": "initialize"})
        >>> await router.route({"jsonrpc": "2.0", "id": 2, "method": "ping"}, result.session_id)
    """

    def __init__(
        self,
        protocol_factory: Callable[[], McpProtocolHandler],
        idle_timeout: float = 1800.0,
        sweep_interval: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the router.

        Args:
            protocol_factory: Builds the protocol handler of a new session.
            idle_timeout: Seconds of inactivity after which a session is evicted.
            sweep_interval: Seconds between idle sweeps of the background task.
            clock: Monotonic clock, replaceable in tests.
        """
        self.protocol_factory = protocol_factory
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sessions: dict[str, SessionTransport] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def active_sessions(self) -> int:
        """Number of sessions in the routing table."""
        return len(self._sessions)

    def get(self, session_id: str) -> SessionTransport | None:
        """Look up the transport of a session."""
        return self._sessions.get(session_id)

    async def route(self, message: Any, session_id: str | None = None) -> RouteResult:
        """Route a request to its session, creating one on ``initialize``.

        Args:
            message: Decoded JSON-RPC message or batch.
            session_id: Session ID from the request path or header.

        Returns:
            The routing result.

        Raises:
            SessionError: ``MISSING_SESSION_ID`` for a non-initialize request
                without ID, ``UNKNOWN_SESSION`` for an ID not in the table.
        """
        if session_id:
            async with self._lock:
                transport = self._sessions.get(session_id)
            if transport is None:
                raise SessionError(
                    SessionErrorCode.UNKNOWN_SESSION, f"Unknown session: {session_id}"
                )
            return RouteResult(session_id, await transport.handle(message))

        if not is_initialize_request(message):
            raise SessionError(
                SessionErrorCode.MISSING_SESSION_ID,
                "Missing session ID: send initialize first or provide the Mcp-Session-Id header",
            )

        transport = await self._create_session()
        return RouteResult(transport.session_id, await transport.handle(message), created=True)

    async def _create_session(self) -> SessionTransport:
        async with self._lock:
            session_id = str(uuid.uuid4())
            while session_id in self._sessions:
                session_id = str(uuid.uuid4())
            transport = SessionTransport(session_id, self.protocol_factory(), self._clock)
            transport.on_close(self._forget)
            self._sessions[session_id] = transport
        logger.info(f"MCP session created: {session_id} ({self.active_sessions} active)")
        return transport

    def _forget(self, transport: SessionTransport) -> None:
        if self._sessions.get(transport.session_id) is transport:
            del self._sessions[transport.session_id]
            logger.info(f"MCP session closed: {transport.session_id}")

    async def terminate(self, session_id: str) -> bool:
        """Close a session at the client's request.

        Args:
            session_id: Session to close.

        Returns:
            True if the session existed.
        """
        async with self._lock:
            transport = self._sessions.pop(session_id, None)
        if transport is None:
            return False
        transport.close()
        logger.info(f"MCP session terminated: {session_id}")
        return True

    async def sweep_idle(self, now: float | None = None) -> list[str]:
        """Evict sessions idle for longer than ``idle_timeout``.

        Sessions processing a message are never evicted.

        Args:
            now: Clock reading to compare against. Defaults to the current time.

        Returns:
            IDs of the evicted sessions.
        """
        now = self._clock() if now is None else now
        async with self._lock:
            expired = [
                transport
                for transport in self._sessions.values()
                if not transport.busy and transport.idle_seconds(now) > self.idle_timeout
            ]
            for transport in expired:
                del self._sessions[transport.session_id]

        for transport in expired:
            transport.close()
            logger.info(
                f"MCP session {transport.session_id} evicted after "
                f"{transport.idle_seconds(now):.0f}s idle"
            )
        return [transport.session_id for transport in expired]

    async def start(self) -> None:
        """Start the background idle sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(
                f"Session router started (idle timeout {self.idle_timeout:.0f}s, "
                f"sweep every {self.sweep_interval:.0f}s)"
            )

    async def stop(self) -> None:
        """Stop the idle sweep and close every session."""
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
        self._sweep_task = None

        async with self._lock:
            transports = list(self._sessions.values())
            self._sessions.clear()
        for transport in transports:
            transport.close()
        logger.info(f"Session router stopped, {len(transports)} session(s) closed")

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.sweep_idle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in idle session sweep: {e}", exc_info=True)
