# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolgate/cache/test_session_registry.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Unit tests for toolgate.cache.session_registry.
"""

# Standard
import json

# Third-Party
import pytest
from sse_starlette.sse import EventSourceResponse

# First-Party
from toolgate.cache.session_registry import SessionRegistry
from toolgate.transports.sse_transport import SessionNotFoundError, SSETransport


class FakeRequest:
    def __init__(self, query=None, body=None, content_type="application/json"):
        self.query_params = query or {}
        self.headers = {"content-type": content_type}
        self._body = json.dumps(body).encode() if body is not None else b""

    async def body(self):
        return self._body


class RecordingServer:
    """Connects sessions and records what each one receives."""

    def __init__(self):
        self.received = {}

    async def connect(self, transport):
        inbox = self.received.setdefault(transport.session_id, [])
        transport.on_message = inbox.append
        await transport.connect()


class FailingServer:
    async def connect(self, transport):
        raise RuntimeError("cannot bind")


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def server():
    return RecordingServer()


def _message(method, request_id=1):
    return {"jsonrpc": "2.0", "id": request_id, "method": method}


@pytest.mark.asyncio
async def test_each_connection_gets_a_distinct_session(registry, server):
    first = await registry.handle_connecting(FakeRequest(), server)
    second = await registry.handle_connecting(FakeRequest(), server)

    assert isinstance(first, EventSourceResponse)
    assert isinstance(second, EventSourceResponse)
    assert len(registry) == 2
    assert len(set(registry.session_ids())) == 2
    await registry.shutdown()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_message_reaches_only_its_session(registry, server):
    await registry.handle_connecting(FakeRequest(), server)
    await registry.handle_connecting(FakeRequest(), server)
    target, other = registry.session_ids()

    response = await registry.handle_incoming(FakeRequest({"sessionId": target}, _message("ping")))

    assert response.status_code == 202
    assert response.body == b"Accepted"
    assert server.received[target] == [_message("ping")]
    assert server.received[other] == []


@pytest.mark.asyncio
async def test_missing_session_id_is_400(registry):
    response = await registry.handle_incoming(FakeRequest(body=_message("ping")))
    assert response.status_code == 400
    assert response.body == b"Missing sessionId"


@pytest.mark.asyncio
async def test_unknown_session_id_is_404(registry):
    response = await registry.handle_incoming(FakeRequest({"sessionId": "nope"}, _message("ping")))
    assert response.status_code == 404
    assert response.body == b"Invalid or expired sessionId"
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_transport_errors_map_to_status(registry, server):
    await registry.handle_connecting(FakeRequest(), server)
    (session_id,) = registry.session_ids()

    wrong_type = await registry.handle_incoming(FakeRequest({"sessionId": session_id}, _message("ping"), content_type="text/plain"))
    invalid = await registry.handle_incoming(FakeRequest({"sessionId": session_id}, {"not": "jsonrpc"}))

    assert wrong_type.status_code == 415
    assert invalid.status_code == 400
    assert server.received[session_id] == []


@pytest.mark.asyncio
async def test_reconnect_with_unknown_id_creates_nothing(registry, server):
    response = await registry.handle_connecting(FakeRequest({"sessionId": "missing"}), server)

    assert response.status_code == 404
    assert len(registry) == 0
    assert server.received == {}


@pytest.mark.asyncio
async def test_reconnect_with_known_id_resumes(registry, server):
    await registry.handle_connecting(FakeRequest(), server)
    (session_id,) = registry.session_ids()

    response = await registry.handle_connecting(FakeRequest({"sessionId": session_id}), server)

    assert isinstance(response, EventSourceResponse)
    assert registry.session_ids() == [session_id]
    assert list(server.received) == [session_id]


@pytest.mark.asyncio
async def test_failed_bind_closes_and_unregisters(registry):
    with pytest.raises(RuntimeError, match="cannot bind"):
        await registry.handle_connecting(FakeRequest(), FailingServer())
    assert len(registry) == 0


def test_closed_session_leaves_registry(registry):
    transport = SSETransport("/messages")
    registry.add(transport)
    assert registry.require(transport.session_id) is transport

    transport.close()
    with pytest.raises(SessionNotFoundError):
        registry.require(transport.session_id)
    assert registry.remove(transport.session_id) is None


@pytest.mark.asyncio
async def test_empty_session_id_opens_new_connection(registry, server):
    response = await registry.handle_connecting(FakeRequest({"sessionId": ""}), server)

    assert isinstance(response, EventSourceResponse)
    assert len(registry) == 1
    assert list(server.received) == registry.session_ids()


@pytest.mark.asyncio
async def test_request_notification_and_response_are_accepted(registry, server):
    await registry.handle_connecting(FakeRequest(), server)
    (session_id,) = registry.session_ids()
    messages = [
        _message("ping", request_id=7),
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
        {"jsonrpc": "2.0", "id": 3, "result": {}},
    ]

    statuses = [(await registry.handle_incoming(FakeRequest({"sessionId": session_id}, message))).status_code for message in messages]

    assert statuses == [202, 202, 202]
    assert server.received[session_id] == messages
