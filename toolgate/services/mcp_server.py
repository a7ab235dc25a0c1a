# -*- coding: utf-8 -*-
"""Location: ./toolgate/services/mcp_server.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

MCP message handling for the code runner.

``CodeRunnerServer`` is bound to every new SSE session. It answers the
lifecycle and discovery requests itself and runs ``tools/call`` requests
through :class:`CodeExecutionService`, registering each call with the
orchestration service so ``notifications/cancelled`` and session teardown
can abort it. Responses go back over the session's event stream.
"""

# Standard
import asyncio
from typing import Any, Dict, Optional, Set

# Third-Party
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, LATEST_PROTOCOL_VERSION, METHOD_NOT_FOUND

# First-Party
from toolgate import __version__
from toolgate.config import settings
from toolgate.runtimes.base import ExecutionCancelled
from toolgate.services.code_execution_service import CodeExecutionError, CodeExecutionService
from toolgate.services.logging_service import LoggingService
from toolgate.services.orchestration_service import orchestration_service, OrchestrationService, run_key
from toolgate.transports.sse_transport import SSETransport
from toolgate.utils.stream import CancellationToken

logger = LoggingService().get_logger(__name__)


class JSONRPCMethodError(Exception):
    """Error returned to the client as a JSON-RPC error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def jsonrpc_result(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    """Build a JSON-RPC success response.

    Examples:
        >>> jsonrpc_result(1, {})
        {'jsonrpc': '2.0', 'id': 1, 'result': {}}
    """
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def jsonrpc_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    """Build a JSON-RPC error response.

    Examples:
        >>> jsonrpc_error(1, -32601, "Method not found: x")["error"]
        {'code': -32601, 'message': 'Method not found: x'}
    """
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


class CodeRunnerServer:
    """JSON-RPC handler serving the code runner tools over SSE sessions."""

    def __init__(self, execution_service: Optional[CodeExecutionService] = None, orchestration: Optional[OrchestrationService] = None) -> None:
        self._execution = execution_service or CodeExecutionService()
        self._orchestration = orchestration or orchestration_service
        self._tasks: Set[asyncio.Task] = set()

    @property
    def execution_service(self) -> CodeExecutionService:
        """Service running the tools."""
        return self._execution

    async def connect(self, transport: SSETransport) -> None:
        """Bind this server to a new session and start it.

        Args:
            transport: Session transport.
        """
        session_id = transport.session_id
        transport.on_message = lambda message: self.handle_message(transport, message)
        transport.on_close = lambda: self._session_closed(session_id)
        transport.on_error = lambda error: logger.warning(f"Session {session_id} error: {error}")
        await transport.connect()

    def _session_closed(self, session_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._orchestration.cancel_session(session_id, "Session closed"))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_message(self, transport: SSETransport, message: Dict[str, Any]) -> None:
        """Handle one validated JSON-RPC message from the client.

        Args:
            transport: Session the message arrived on.
            message: JSON-RPC request, notification or response.
        """
        method = message.get("method")
        if method is None:
            logger.debug(f"Ignoring client response on session {transport.session_id}")
            return

        params = message.get("params") or {}
        if "id" not in message:
            await self._handle_notification(transport, method, params)
            return

        request_id = message["id"]
        if method == "tools/call":
            await self._call_tool(transport, request_id, params)
            return

        try:
            result = await self._handle_request(method, params)
        except JSONRPCMethodError as e:
            await self._send(transport, jsonrpc_error(request_id, e.code, e.message))
            return
        await self._send(transport, jsonrpc_result(request_id, result))

    async def _handle_request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if method == "initialize":
            requested = params.get("protocolVersion")
            return {
                "protocolVersion": requested if isinstance(requested, str) else LATEST_PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": settings.app_name, "version": __version__},
            }
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": self._execution.list_tools()}
        raise JSONRPCMethodError(METHOD_NOT_FOUND, f"Method not found: {method}")

    async def _handle_notification(self, transport: SSETransport, method: str, params: Dict[str, Any]) -> None:
        if method == "notifications/initialized":
            logger.info(f"Session {transport.session_id} initialized")
        elif method == "notifications/cancelled":
            request_id = params.get("requestId")
            if request_id is None:
                return
            found = await self._orchestration.cancel_run(run_key(transport.session_id, request_id), params.get("reason"))
            if not found:
                logger.debug(f"Cancellation for unknown request {request_id} on session {transport.session_id}")
        else:
            logger.debug(f"Ignoring notification {method}")

    async def _call_tool(self, transport: SSETransport, request_id: Any, params: Dict[str, Any]) -> None:
        name = params.get("name")
        key = run_key(transport.session_id, request_id)
        token = CancellationToken()

        async def _cancel(reason: Optional[str]) -> None:
            token.cancel(ExecutionCancelled(reason or "Request cancelled"))

        await self._orchestration.register_run(key, name, _cancel)
        try:
            result = await self._execution.call_tool(name, params.get("arguments"), token)
        except ExecutionCancelled as e:
            # Cancelled requests get no response
            logger.info(f"Tool call {key} cancelled: {e}")
            return
        except CodeExecutionError as e:
            await self._send(transport, jsonrpc_error(request_id, INVALID_PARAMS, str(e)))
            return
        except Exception as e:
            logger.error(f"Tool call {key} failed: {e}")
            await self._send(transport, jsonrpc_error(request_id, INTERNAL_ERROR, str(e)))
            return
        finally:
            await self._orchestration.unregister_run(key)

        await self._send(transport, jsonrpc_result(request_id, result))

    @staticmethod
    async def _send(transport: SSETransport, message: Dict[str, Any]) -> None:
        try:
            await transport.send_message(message)
        except RuntimeError as e:
            logger.info(f"Dropping response for session {transport.session_id}: {e}")
