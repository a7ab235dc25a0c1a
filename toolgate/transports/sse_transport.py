# -*- coding: utf-8 -*-
"""Location: ./toolgate/transports/sse_transport.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

SSE Transport Implementation.
This module implements the server side of the MCP Server-Sent Events
transport: a long-lived GET stream pushes messages to the client, and the
client submits JSON-RPC messages through a separate POST endpoint carrying the
session identifier announced in the first ``endpoint`` event.
"""

# Standard
import asyncio
from enum import Enum
import inspect
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Set, Union
import uuid

# Third-Party
from fastapi import Request
from mcp.types import JSONRPCMessage
import orjson
from pydantic import TypeAdapter, ValidationError
from sse_starlette.sse import EventSourceResponse

# First-Party
from toolgate.config import settings
from toolgate.services.logging_service import LoggingService
from toolgate.transports.base import Transport

logger = LoggingService().get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"

# Works whether JSONRPCMessage is a RootModel or a plain Union
_JSONRPC_ADAPTER: TypeAdapter = TypeAdapter(JSONRPCMessage)

MessageHandler = Callable[[Dict[str, Any]], Any]


class SessionState(str, Enum):
    """Lifecycle of a session: created, then connected, then closed for good."""

    CREATED = "created"
    CONNECTED = "connected"
    CLOSED = "closed"


class TransportError(Exception):
    """Base class for errors reported to the client as an HTTP status."""

    status_code = 400


class SessionNotFoundError(TransportError):
    """The session identifier is unknown or expired."""

    status_code = 404


class UnsupportedContentTypeError(TransportError):
    """The submitted body is not JSON."""

    status_code = 415


class MessageParseError(TransportError):
    """The submitted body is not a valid JSON-RPC message."""

    status_code = 400


class ConnectionNotEstablishedError(TransportError):
    """A message was submitted before the event stream was opened."""

    status_code = 500


_STOPPED = object()
_IDLE = object()
_CLOSED = object()


class SSETransport(Transport):
    """One MCP session carried over Server-Sent Events.

    Examples:
        >>> transport = SSETransport("/messages")
        >>> transport.state.value
        'created'
        >>> transport.endpoint_url == f"/messages?sessionId={transport.session_id}"
        True
        >>> SSETransport().session_id != SSETransport().session_id
        True
    """

    def __init__(self, endpoint: Optional[str] = None, session_id: Optional[str] = None):
        """Create a session transport.

        Args:
            endpoint: Path clients post messages to.
            session_id: Session identifier, generated when omitted.
        """
        self._endpoint = endpoint or settings.messages_path
        self._session_id = session_id or str(uuid.uuid4())
        self._state = SessionState.CREATED
        self._message_queue: asyncio.Queue = asyncio.Queue()
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._stop: Optional[asyncio.Event] = None
        self._close_callbacks: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()

        self.on_message: Optional[MessageHandler] = None
        self.on_close: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None

        logger.info(f"Creating SSE transport with endpoint={self._endpoint}, session_id={self._session_id}")

    @property
    def session_id(self) -> str:
        """Session identifier."""
        return self._session_id

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def endpoint_url(self) -> str:
        """Message submission path announced to the client."""
        return f"{self._endpoint}?sessionId={self._session_id}"

    @property
    def connected(self) -> bool:
        """True while the session accepts messages."""
        return self._state == SessionState.CONNECTED

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        """Register an internal hook run when the session closes.

        Args:
            callback: Called once, before ``on_close``.
        """
        self._close_callbacks.append(callback)

    async def connect(self) -> None:
        """Mark the session connected.

        Raises:
            RuntimeError: If the session was already closed.
        """
        if self._state == SessionState.CLOSED:
            raise RuntimeError("Session is closed")
        self._state = SessionState.CONNECTED
        logger.info(f"SSE transport connected: {self._session_id}")

    async def disconnect(self) -> None:
        """Close the session."""
        self.close()

    def close(self) -> bool:
        """Close the session exactly once.

        Removes the session from its registry, ends the active event stream,
        and invokes ``on_close``.

        Returns:
            bool: False if the session was already closed.
        """
        if self._state == SessionState.CLOSED:
            return False
        self._state = SessionState.CLOSED
        if self._stop is not None:
            self._stop.set()
        self._inbound.put_nowait(_CLOSED)

        for callback in [*self._close_callbacks, self.on_close]:
            if callback is None:
                continue
            try:
                callback()
            except Exception as e:
                logger.error(f"Close callback failed for session {self._session_id}: {e}")

        logger.info(f"SSE transport disconnected: {self._session_id}")
        return True

    async def send_message(self, message: Dict[str, Any]) -> None:
        """Queue a message for the event stream.

        Args:
            message: JSON-RPC message

        Raises:
            RuntimeError: If the session is not connected.
        """
        if not self.connected:
            raise RuntimeError("Not connected")

        await self._message_queue.put(message)
        logger.debug(f"Message queued for SSE: {self._session_id}, method={message.get('method', '(response)')}")

    async def receive_message(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Iterate over messages posted by the client.

        Used when no ``on_message`` handler is set; ends when the session closes.

        Yields:
            Dict[str, Any]: Validated JSON-RPC messages.
        """
        while True:
            message = await self._inbound.get()
            if message is _CLOSED:
                return
            yield message

    async def is_connected(self) -> bool:
        """Check if transport is connected.

        Returns:
            True if connected
        """
        return self.connected

    async def handle_post_message(self, request: Request) -> None:
        """Validate a submitted message and dispatch it.

        Args:
            request: The POST request.

        Raises:
            ConnectionNotEstablishedError: The event stream is not connected.
            UnsupportedContentTypeError: The body is not declared as JSON.
            MessageParseError: The body is not a valid JSON-RPC message.
        """
        if not self.connected:
            raise ConnectionNotEstablishedError("SSE connection not established")

        content_type = request.headers.get("content-type", "")
        if content_type.split(";", 1)[0].strip().lower() != JSON_CONTENT_TYPE:
            raise UnsupportedContentTypeError(f"Unsupported content type: {content_type or '(none)'}")

        body = await request.body()
        try:
            payload = orjson.loads(body)
            _JSONRPC_ADAPTER.validate_python(payload)
        except (orjson.JSONDecodeError, ValidationError) as e:
            self._report_error(e)
            raise MessageParseError(f"Invalid message: {e}") from e

        self.dispatch(payload)

    def dispatch(self, message: Dict[str, Any]) -> None:
        """Hand a validated message to ``on_message`` or the inbound queue.

        Coroutine handlers are scheduled as tasks so the submission can be
        acknowledged straight away.

        Args:
            message: Validated JSON-RPC message.
        """
        if self.on_message is None:
            self._inbound.put_nowait(message)
            return

        try:
            result = self.on_message(message)
        except Exception as e:
            logger.error(f"Message handler failed for session {self._session_id}: {e}")
            self._report_error(e)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Message handler failed for session {self._session_id}: {exc}")
            self._report_error(exc)

    def _report_error(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.error(f"Error callback failed for session {self._session_id}: {e}")

    def _take_over(self) -> asyncio.Event:
        # A newer response stops the previous one without closing the session
        if self._stop is not None:
            self._stop.set()
        self._stop = asyncio.Event()
        return self._stop

    async def _next_message(self, stop: asyncio.Event, timeout: Optional[float]) -> Union[Dict[str, Any], object]:
        getter = asyncio.ensure_future(self._message_queue.get())
        stopper = asyncio.ensure_future(stop.wait())
        try:
            done, _ = await asyncio.wait({getter, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (getter, stopper):
                if not task.done():
                    task.cancel()
        if getter in done:
            return getter.result()
        if stopper in done:
            return _STOPPED
        return _IDLE

    def events(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Return the event generator of a new stream for this session.

        A newer stream for the same session takes over the queue and
        re-announces the endpoint. When the active stream goes away the
        session is closed.

        Returns:
            Async generator of SSE event dicts.
        """
        stop = self._take_over()

        async def event_generator():
            """Generate SSE events.

            Yields:
                SSE event
            """
            try:
                yield {
                    "event": "endpoint",
                    "data": self.endpoint_url,
                    "retry": settings.sse_retry_timeout,
                }

                while not stop.is_set():
                    timeout = settings.sse_keepalive_interval if settings.sse_keepalive_enabled else None
                    message = await self._next_message(stop, timeout)
                    if message is _STOPPED:
                        break
                    if message is _IDLE:
                        yield {"event": "keepalive", "data": "{}", "retry": settings.sse_retry_timeout}
                        continue

                    try:
                        data = orjson.dumps(message).decode("utf-8")
                    except TypeError as e:
                        logger.error(f"Error serialising SSE message: {e}")
                        yield {"event": "error", "data": orjson.dumps({"error": str(e)}).decode("utf-8"), "retry": settings.sse_retry_timeout}
                        continue

                    logger.debug(f"Sending SSE message: {data}")
                    yield {"event": "message", "data": data, "retry": settings.sse_retry_timeout}
            except asyncio.CancelledError:
                logger.info(f"SSE event generator cancelled: {self._session_id}")
                raise
            finally:
                logger.info(f"SSE event generator completed: {self._session_id}")
                if not stop.is_set():
                    # Client went away from the active stream
                    self.close()

        return event_generator()

    def create_sse_response(self, _request: Optional[Request] = None) -> EventSourceResponse:
        """Create the SSE response for this session.

        Args:
            _request: FastAPI request

        Returns:
            SSE response object
        """
        return EventSourceResponse(
            self.events(),
            status_code=200,
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-MCP-SSE": "true",
            },
        )
