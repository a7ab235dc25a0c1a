# -*- coding: utf-8 -*-
"""Location: ./tests/conftest.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared fixtures.
"""

# Standard
from typing import Any, Callable, List, Optional

# Third-Party
import pytest

# First-Party
from toolgate.config import settings
from toolgate.runtimes.base import ExecutionRequest, Language
from toolgate.utils.stream import CancellationToken, ExecutionStream


@pytest.fixture(autouse=True)
def _no_package_installs(monkeypatch: pytest.MonkeyPatch) -> None:
    """Never reach the package index from tests."""
    monkeypatch.setattr(settings, "embedded_auto_install", False)


@pytest.fixture
def scratch_dir(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Point subprocess executions at a per-test scratch directory."""
    path = tmp_path / "scratch"
    monkeypatch.setattr(settings, "code_execution_scratch_dir", path)
    return path


@pytest.fixture
def make_request() -> Callable[..., ExecutionRequest]:
    """Factory for execution requests with short default timeouts."""

    def _make(
        code: str,
        language: Language = Language.PYTHON,
        token: Optional[CancellationToken] = None,
        timeout_ms: int = 5000,
        permissions: Optional[List[str]] = None,
    ) -> ExecutionRequest:
        return ExecutionRequest(code=code, language=language, token=token or CancellationToken(), timeout_ms=timeout_ms, permissions=permissions)

    return _make


@pytest.fixture
def drain() -> Callable[[ExecutionStream], Any]:
    """Coroutine function reading every chunk of a stream."""

    async def _drain(stream: ExecutionStream) -> List[Any]:
        return [chunk async for chunk in stream]

    return _drain
