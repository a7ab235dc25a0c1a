# -*- coding: utf-8 -*-
"""Location: ./toolgate/cache/session_registry.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Session Registry.
Tracks the live SSE sessions of this process and implements the two HTTP
entry points of the transport: opening (or resuming) an event stream and
submitting a message to a session. Sessions remove themselves from the
registry when they close.
"""

# Standard
import threading
from typing import Dict, List, Optional, Protocol

# Third-Party
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response

# First-Party
from toolgate.config import settings
from toolgate.services.logging_service import LoggingService
from toolgate.transports.sse_transport import SessionNotFoundError, SSETransport, TransportError

logger = LoggingService().get_logger(__name__)


class SessionServer(Protocol):
    """A server that can be bound to a new session."""

    async def connect(self, transport: SSETransport) -> None:
        """Attach handlers to ``transport`` and start it."""


class SessionRegistry:
    """In-memory map of session id to transport.

    Examples:
        >>> registry = SessionRegistry()
        >>> transport = SSETransport("/messages")
        >>> registry.add(transport)
        >>> registry.get(transport.session_id) is transport
        True
        >>> _ = transport.close()
        >>> registry.get(transport.session_id) is None
        True
        >>> len(registry)
        0
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SSETransport] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> List[str]:
        """Return the identifiers of all registered sessions."""
        with self._lock:
            return list(self._sessions)

    def add(self, transport: SSETransport) -> None:
        """Register a transport; it is removed again when it closes.

        Args:
            transport: Session transport.
        """
        session_id = transport.session_id
        with self._lock:
            self._sessions[session_id] = transport
        transport.add_close_callback(lambda: self.remove(session_id))
        logger.debug(f"Registered session {session_id}")

    def get(self, session_id: str) -> Optional[SSETransport]:
        """Look up a session.

        Args:
            session_id: Session identifier.

        Returns:
            The transport, or None if unknown.
        """
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[SSETransport]:
        """Drop a session from the registry without closing it.

        Args:
            session_id: Session identifier.

        Returns:
            The removed transport, or None if it was not registered.
        """
        with self._lock:
            transport = self._sessions.pop(session_id, None)
        if transport is not None:
            logger.debug(f"Removed session {session_id}")
        return transport

    def require(self, session_id: str) -> SSETransport:
        """Look up a session that must exist.

        Args:
            session_id: Session identifier.

        Returns:
            SSETransport: The transport.

        Raises:
            SessionNotFoundError: If the session is unknown.
        """
        transport = self.get(session_id)
        if transport is None:
            raise SessionNotFoundError("Invalid or expired sessionId")
        return transport

    async def handle_connecting(self, request: Request, server: SessionServer) -> Response:
        """Open a new event stream, or resume an existing session.

        Args:
            request: GET request, optionally carrying ``sessionId``.
            server: Server bound to newly created sessions.

        Returns:
            Response: The event stream, or 404 for an unknown session.
        """
        session_id = request.query_params.get("sessionId")
        if not session_id:
            transport = SSETransport(settings.messages_path)
            self.add(transport)
            try:
                await server.connect(transport)
            except Exception:
                transport.close()
                raise
            logger.info(f"New SSE session {transport.session_id}")
            return transport.create_sse_response(request)

        try:
            transport = self.require(session_id)
        except SessionNotFoundError as e:
            logger.warning(f"Reconnect with unknown session {session_id}")
            return PlainTextResponse(str(e), status_code=e.status_code)

        logger.info(f"Resuming SSE session {session_id}")
        return transport.create_sse_response(request)

    async def handle_incoming(self, request: Request) -> Response:
        """Accept a message posted to a session.

        Args:
            request: POST request carrying ``sessionId`` and a JSON-RPC body.

        Returns:
            Response: 202 on success, otherwise the error status with a short message.
        """
        session_id = request.query_params.get("sessionId")
        if not session_id:
            return PlainTextResponse("Missing sessionId", status_code=400)

        try:
            transport = self.require(session_id)
            await transport.handle_post_message(request)
        except TransportError as e:
            logger.warning(f"Rejected message for session {session_id}: {e}")
            return PlainTextResponse(str(e), status_code=e.status_code)

        return PlainTextResponse("Accepted", status_code=202)

    async def shutdown(self) -> None:
        """Close every registered session."""
        with self._lock:
            transports = list(self._sessions.values())
        for transport in transports:
            transport.close()
        logger.info(f"Closed {len(transports)} SSE session(s)")
