# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolgate/routers/test_sse_router.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

HTTP-level tests for the SSE router and the application factory.
"""

# Standard
import asyncio

# Third-Party
from fastapi.testclient import TestClient
import pytest

# First-Party
from toolgate.cache.session_registry import SessionRegistry
from toolgate.main import create_app
from toolgate.runtimes.base import ExecutionBackend, Language
from toolgate.services.code_execution_service import CodeExecutionService
from toolgate.services.mcp_server import CodeRunnerServer
from toolgate.transports.sse_transport import SSETransport

PING = {"jsonrpc": "2.0", "id": 1, "method": "ping"}


class StaticBackend(ExecutionBackend):
    def __init__(self, language, healthy):
        self.language = language
        self.healthy = healthy

    async def execute(self, request):
        raise NotImplementedError

    async def health_check(self):
        return self.healthy


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def client(registry):
    service = CodeExecutionService({Language.PYTHON: StaticBackend(Language.PYTHON, True), Language.JAVASCRIPT: StaticBackend(Language.JAVASCRIPT, False)})
    # Not entered as a context manager, so the lifespan does not run
    return TestClient(create_app(registry=registry, server=CodeRunnerServer(service)))


@pytest.fixture
def open_session(registry):
    transport = SSETransport("/messages")
    asyncio.run(transport.connect())
    transport.received = []
    transport.on_message = transport.received.append
    registry.add(transport)
    return transport


def test_post_without_session_id(client):
    response = client.post("/messages", json=PING)
    assert response.status_code == 400
    assert response.text == "Missing sessionId"


def test_post_to_unknown_session(client):
    response = client.post("/messages?sessionId=does-not-exist", json=PING)
    assert response.status_code == 404


def test_post_to_open_session(client, open_session):
    response = client.post(f"/messages?sessionId={open_session.session_id}", json=PING)

    assert response.status_code == 202
    assert open_session.received == [PING]


def test_post_with_wrong_content_type(client, open_session):
    response = client.post(f"/messages?sessionId={open_session.session_id}", content=b"ping", headers={"content-type": "text/plain"})
    assert response.status_code == 415
    assert open_session.received == []


def test_resume_unknown_session(client, registry):
    response = client.get("/sse?sessionId=does-not-exist")
    assert response.status_code == 404
    assert len(registry) == 0


def test_health_reports_sessions_and_backends(client, open_session):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "sessions": 1, "backends": {"python": True, "javascript": False}}
