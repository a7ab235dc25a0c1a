# -*- coding: utf-8 -*-
"""Location: ./toolgate/runtimes/base.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Base interfaces for execution backends.

Defines the execution request, the tagged output chunk produced by every
backend, the interrupt flag shared between a running interpreter and the
timeout/cancellation paths, and the execution error taxonomy.
"""

# Standard
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
import threading
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    # First-Party
    from toolgate.utils.stream import CancellationToken, ExecutionStream

STDERR_PREFIX = "[stderr] "


class ExecutionError(Exception):
    """Base class for code execution errors."""


class ExecutionCancelled(ExecutionError):
    """Raised into a stream when the caller aborts the execution."""


class SpawnFailure(ExecutionError):
    """The sandbox process could not be started."""


class RuntimeFault(ExecutionError):
    """Uncaught fault raised by the executed code or its runtime."""


class PreloadFailure(ExecutionError):
    """Installing the dependencies of a snippet failed before it ran."""


class Language(str, Enum):
    """Language variant, which also selects the backend."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"


class ChunkOrigin(str, Enum):
    """Where an output chunk came from."""

    STDOUT = "stdout"
    STDERR = "stderr"
    SYSTEM = "system"


@dataclass(frozen=True)
class OutputChunk:
    """One piece of execution output.

    Examples:
        >>> chunk = OutputChunk(ChunkOrigin.STDOUT, "hello")
        >>> chunk.origin.value, chunk.text
        ('stdout', 'hello')
    """

    origin: ChunkOrigin
    text: str


class InterruptSignal(IntEnum):
    """Interrupt severities, ordered so that a larger value wins."""

    NONE = 0
    CANCELLED = 2
    TIMED_OUT = 3


class InterruptFlag:
    """Monotonic interrupt word polled by a running interpreter.

    Examples:
        >>> flag = InterruptFlag()
        >>> flag.value
        <InterruptSignal.NONE: 0>
        >>> flag.raise_to(InterruptSignal.TIMED_OUT)
        True
        >>> flag.raise_to(InterruptSignal.CANCELLED)
        False
        >>> flag.value.name
        'TIMED_OUT'
    """

    def __init__(self) -> None:
        self._value = InterruptSignal.NONE
        self._lock = threading.Lock()

    @property
    def value(self) -> InterruptSignal:
        """Current severity."""
        return self._value

    def is_set(self) -> bool:
        """Return True once any interrupt has been requested."""
        return self._value != InterruptSignal.NONE

    def raise_to(self, level: InterruptSignal) -> bool:
        """Raise the severity; lower or equal levels are ignored.

        Args:
            level: Requested severity.

        Returns:
            bool: True if the stored value changed.
        """
        with self._lock:
            if level <= self._value:
                return False
            self._value = level
            return True


@dataclass
class ExecutionRequest:
    """A single code execution, owned by the backend that runs it."""

    code: str
    language: Language
    token: "CancellationToken"
    timeout_ms: int
    permissions: Optional[List[str]] = field(default=None)


class ExecutionBackend(ABC):
    """Contract shared by the embedded and subprocess backends."""

    language: Language

    @abstractmethod
    async def execute(self, request: ExecutionRequest) -> "ExecutionStream":
        """Start an execution and return its live output stream.

        Args:
            request: The execution request.

        Returns:
            ExecutionStream: Stream of output chunks, closed or errored exactly once.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the backend can run code on this host."""
