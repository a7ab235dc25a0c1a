# -*- coding: utf-8 -*-
"""Location: ./toolgate/services/code_execution_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Code runner tools.

Exposes two MCP tools, ``python-code-runner`` (embedded interpreter) and
``javascript-code-runner`` (Deno subprocess), and routes execution requests
to the matching backend. Tool calls fold the live output stream into a single
text result.
"""

# Standard
from typing import Any, Dict, List, Optional

# First-Party
from toolgate.config import settings
from toolgate.runtimes.base import ExecutionBackend, ExecutionError, ExecutionRequest, Language
from toolgate.runtimes.embedded_backend import EmbeddedBackend
from toolgate.runtimes.subprocess_backend import SubprocessBackend
from toolgate.services.logging_service import LoggingService
from toolgate.utils.stream import CancellationToken, ExecutionStream

logger = LoggingService().get_logger(__name__)

PYTHON_TOOL = "python-code-runner"
JAVASCRIPT_TOOL = "javascript-code-runner"
NO_OUTPUT = "(no output)"

TOOL_LANGUAGES: Dict[str, Language] = {
    PYTHON_TOOL: Language.PYTHON,
    JAVASCRIPT_TOOL: Language.JAVASCRIPT,
}

_PYTHON_DESCRIPTION = """Execute a Python snippet and return the combined stdout/stderr (write to stdout/stderr to see results).
Top-level await is supported.
# Packages
Third-party imports are installed from PyPI before the snippet runs."""

_JAVASCRIPT_DESCRIPTION = """Execute a JavaScript/TypeScript snippet using the Deno runtime and return the combined stdout/stderr (write to stdout/stderr to see results).
Send only code compatible with Deno (prefer ESM syntax). Runs server-side, not in a browser.
# Packages
1. npm packages: import { get } from "npm:lodash-es"
2. JSR packages: import { join } from "jsr:@std/path"
3. Node built-ins: import fs from "node:fs"
"""


class CodeExecutionError(Exception):
    """Raised for a tool call that cannot be started (unknown tool, bad arguments)."""


def _tool_definition(name: str, description: str, code_description: str) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": {
            "type": "object",
            "properties": {"code": {"type": "string", "description": code_description}},
            "required": ["code"],
        },
    }


def text_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    """Build an MCP tool result with one text item.

    Args:
        text: Result text.
        is_error: Whether the tool failed.

    Returns:
        Dict[str, Any]: ``CallToolResult``-shaped dict.

    Examples:
        >>> text_result("hi")
        {'content': [{'type': 'text', 'text': 'hi'}], 'isError': False}
    """
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


class CodeExecutionService:
    """Route code execution requests to backends and serve the runner tools."""

    def __init__(self, backends: Optional[Dict[Language, ExecutionBackend]] = None) -> None:
        """Create the service.

        Args:
            backends: Backend per language; defaults to the embedded Python
                interpreter and the Deno subprocess backend.
        """
        self._backends = backends or {
            Language.PYTHON: EmbeddedBackend(),
            Language.JAVASCRIPT: SubprocessBackend(),
        }

    def list_tools(self) -> List[Dict[str, Any]]:
        """Return the MCP definitions of the runner tools.

        Returns:
            List[Dict[str, Any]]: Tool definitions.

        Examples:
            >>> [tool["name"] for tool in CodeExecutionService().list_tools()]
            ['python-code-runner', 'javascript-code-runner']
        """
        return [
            _tool_definition(PYTHON_TOOL, _PYTHON_DESCRIPTION, "Python source code to execute"),
            _tool_definition(JAVASCRIPT_TOOL, _JAVASCRIPT_DESCRIPTION, "JavaScript/TypeScript source code to execute"),
        ]

    def backend_for(self, language: Language) -> ExecutionBackend:
        """Return the backend that runs ``language``.

        Raises:
            CodeExecutionError: If no backend is configured for it.
        """
        backend = self._backends.get(language)
        if backend is None:
            raise CodeExecutionError(f"No backend for language {language.value}")
        return backend

    async def run(self, request: ExecutionRequest) -> ExecutionStream:
        """Start an execution on the backend matching its language.

        Args:
            request: Execution request.

        Returns:
            ExecutionStream: Live output.
        """
        logger.info(f"Executing {request.language.value} snippet ({len(request.code)} chars)")
        return await self.backend_for(request.language).execute(request)

    async def execute(
        self,
        code: str,
        language: Language,
        token: Optional[CancellationToken] = None,
        timeout_ms: Optional[int] = None,
        permissions: Optional[List[str]] = None,
    ) -> ExecutionStream:
        """Build a request with configured defaults and run it.

        Args:
            code: Source code.
            language: Language, which selects the backend.
            token: Cancellation token; a fresh one is created if omitted.
            timeout_ms: Deadline, defaulting to ``settings.code_execution_timeout_ms``.
            permissions: Subprocess permission overrides.

        Returns:
            ExecutionStream: Live output.
        """
        request = ExecutionRequest(
            code=code,
            language=language,
            token=token or CancellationToken(),
            timeout_ms=timeout_ms or settings.code_execution_timeout_ms,
            permissions=permissions,
        )
        return await self.run(request)

    @staticmethod
    async def collect(stream: ExecutionStream) -> str:
        """Concatenate the text of every chunk in ``stream``.

        Raises:
            ExecutionError: If the stream errors.
        """
        return "".join([chunk.text async for chunk in stream])

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]], token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        """Run a code runner tool to completion.

        Args:
            name: Tool name.
            arguments: Tool arguments, ``{"code": str}``.
            token: Cancellation token of the call.

        Returns:
            Dict[str, Any]: Tool result; execution failures are reported with ``isError``.

        Raises:
            CodeExecutionError: Unknown tool or invalid arguments.
            ExecutionCancelled: The call was cancelled through ``token``.
        """
        language = TOOL_LANGUAGES.get(name)
        if language is None:
            raise CodeExecutionError(f"Unknown tool: {name}")
        code = (arguments or {}).get("code")
        if not isinstance(code, str):
            raise CodeExecutionError("Argument 'code' must be a string")

        token = token or CancellationToken()
        try:
            stream = await self.execute(code, language, token)
            output = await self.collect(stream)
        except ExecutionError as e:
            if token.cancelled:
                raise
            logger.warning(f"{name} failed: {e}")
            return text_result(str(e), is_error=True)

        return text_result(output or NO_OUTPUT)

    async def health(self) -> Dict[str, bool]:
        """Report backend availability by language."""
        return {language.value: await backend.health_check() for language, backend in self._backends.items()}
