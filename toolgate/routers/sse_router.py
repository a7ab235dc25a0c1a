# -*- coding: utf-8 -*-
"""Location: ./toolgate/routers/sse_router.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

SSE Router.
Exposes the session transport over HTTP: a GET endpoint opening (or resuming)
the event stream and a POST endpoint accepting client messages.
"""

# Third-Party
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

# First-Party
from toolgate.cache.session_registry import SessionRegistry
from toolgate.config import settings
from toolgate.services.mcp_server import CodeRunnerServer

router = APIRouter(tags=["SSE"])


def get_session_registry(request: Request) -> SessionRegistry:
    """Return the registry stored on the application."""
    return request.app.state.session_registry


def get_mcp_server(request: Request) -> CodeRunnerServer:
    """Return the server bound to new sessions."""
    return request.app.state.mcp_server


@router.get(settings.sse_path)
async def sse_endpoint(request: Request, registry: SessionRegistry = Depends(get_session_registry), server: CodeRunnerServer = Depends(get_mcp_server)) -> Response:
    """Open an event stream; ``?sessionId=`` resumes an existing session.

    Args:
        request: Incoming request.
        registry: Session registry.
        server: Server bound to new sessions.

    Returns:
        Response: Event stream, or 404 for an unknown session.
    """
    return await registry.handle_connecting(request, server)


@router.post(settings.messages_path)
async def message_endpoint(request: Request, registry: SessionRegistry = Depends(get_session_registry)) -> Response:
    """Submit a JSON-RPC message to a session.

    Args:
        request: Incoming request carrying ``?sessionId=``.
        registry: Session registry.

    Returns:
        Response: 202 when accepted.
    """
    return await registry.handle_incoming(request)
