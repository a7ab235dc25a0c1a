# -*- coding: utf-8 -*-
"""Location: ./toolgate/utils/stream.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Cancellable output streams.

``open_stream`` returns an :class:`ExecutionStream` immediately while the
producer, started through ``on_start``, pushes chunks into it from the
background. A :class:`CancellationToken` passed at open time errors the stream
and runs the ``on_cancel`` cleanup exactly once.

Examples:
    >>> import asyncio
    >>> async def demo():
    ...     def start(ctrl):
    ...         ctrl.push("a")
    ...         ctrl.push("b")
    ...         ctrl.close()
    ...     return [c async for c in open_stream(start)]
    >>> asyncio.run(demo())
    ['a', 'b']
"""

# Standard
import asyncio
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, List, Optional

# First-Party
from toolgate.runtimes.base import ExecutionCancelled
from toolgate.services.logging_service import LoggingService

logger = LoggingService().get_logger(__name__)

CancelCallback = Callable[[BaseException], None]


class CancellationToken:
    """One-shot cancellation signal with synchronous callbacks.

    Must be used from the event loop thread.

    Examples:
        >>> token = CancellationToken()
        >>> seen = []
        >>> _ = token.add_callback(lambda reason: seen.append(str(reason)))
        >>> token.cancel()
        True
        >>> token.cancel(RuntimeError("again"))
        False
        >>> seen
        ['Operation aborted']
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._reason: Optional[BaseException] = None
        self._callbacks: List[CancelCallback] = []
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        """True once :meth:`cancel` has been called."""
        return self._reason is not None

    @property
    def reason(self) -> Optional[BaseException]:
        """The exception describing why the token was cancelled."""
        return self._reason

    def cancel(self, reason: Optional[BaseException] = None) -> bool:
        """Signal cancellation and fire callbacks.

        Args:
            reason: Exception describing the abort. Defaults to ``ExecutionCancelled``.

        Returns:
            bool: False if the token was already cancelled.
        """
        if self._reason is not None:
            return False
        self._reason = reason if reason is not None else ExecutionCancelled("Operation aborted")
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self._reason)
            except Exception as e:
                logger.error(f"Cancellation callback failed: {e}")
        return True

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Register a callback fired on cancellation.

        Args:
            callback: Receives the cancellation reason.

        Returns:
            Callable that unregisters the callback.
        """
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    async def wait(self) -> BaseException:
        """Wait until the token is cancelled.

        Returns:
            BaseException: The cancellation reason.
        """
        if self._reason is None:
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        return self._reason


class StreamState(str, Enum):
    """Lifecycle of an execution stream."""

    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


_END = object()


class ExecutionStream:
    """Async iterable of chunks with a single terminal state.

    Chunks pushed before termination are still delivered; an errored stream
    raises its error once they have been consumed.
    """

    def __init__(self) -> None:
        self._buffer: Deque[Any] = deque()
        self._state = StreamState.OPEN
        self._error: Optional[BaseException] = None
        self._waiter: Optional[asyncio.Future] = None

    @property
    def state(self) -> StreamState:
        """Current lifecycle state."""
        return self._state

    @property
    def error(self) -> Optional[BaseException]:
        """Error the stream terminated with, if any."""
        return self._error

    @property
    def terminated(self) -> bool:
        """True once the stream has closed or errored."""
        return self._state != StreamState.OPEN

    def _wake(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    def _push(self, chunk: Any) -> bool:
        if self._state != StreamState.OPEN:
            return False
        self._buffer.append(chunk)
        self._wake()
        return True

    def _close(self) -> bool:
        if self._state != StreamState.OPEN:
            return False
        self._state = StreamState.CLOSED
        self._buffer.append(_END)
        self._wake()
        return True

    def _fail(self, reason: BaseException) -> bool:
        if self._state != StreamState.OPEN:
            return False
        self._state = StreamState.ERRORED
        self._error = reason
        self._buffer.append(_END)
        self._wake()
        return True

    def __aiter__(self) -> "ExecutionStream":
        return self

    async def __anext__(self) -> Any:
        while not self._buffer:
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        item = self._buffer[0]
        if item is _END:
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        self._buffer.popleft()
        return item


class StreamController:
    """Producer side of an :class:`ExecutionStream`."""

    def __init__(self, stream: ExecutionStream) -> None:
        self._stream = stream

    @property
    def terminated(self) -> bool:
        """True once the stream has closed or errored."""
        return self._stream.terminated

    def push(self, chunk: Any) -> bool:
        """Append a chunk; ignored after termination.

        Args:
            chunk: Chunk to deliver.

        Returns:
            bool: True if the chunk was accepted.
        """
        return self._stream._push(chunk)  # pylint: disable=protected-access

    def close(self) -> bool:
        """Terminate normally.

        Returns:
            bool: True if this call terminated the stream.
        """
        return self._stream._close()  # pylint: disable=protected-access

    def error(self, reason: BaseException) -> bool:
        """Terminate abnormally.

        Args:
            reason: Exception raised to the consumer.

        Returns:
            bool: True if this call terminated the stream.
        """
        return self._stream._fail(reason)  # pylint: disable=protected-access


def open_stream(
    on_start: Callable[[StreamController], None],
    on_cancel: Optional[Callable[[], None]] = None,
    token: Optional[CancellationToken] = None,
) -> ExecutionStream:
    """Create a stream and start its producer.

    ``on_start`` runs synchronously and must arrange for the stream to be
    closed or errored eventually. If ``token`` is already cancelled once
    ``on_start`` returns, the stream errors with the token's reason and
    ``on_cancel`` runs before this function returns.

    Args:
        on_start: Receives the controller.
        on_cancel: Cleanup run once on cancellation of a live stream.
        token: Optional cancellation token.

    Returns:
        ExecutionStream: The live stream.

    Examples:
        >>> import asyncio
        >>> token = CancellationToken()
        >>> _ = token.cancel()
        >>> calls = []
        >>> stream = open_stream(lambda ctrl: None, lambda: calls.append("cancel"), token)
        >>> stream.state.value, calls
        ('errored', ['cancel'])
        >>> async def drain():
        ...     try:
        ...         return [c async for c in stream]
        ...     except ExecutionCancelled as e:
        ...         return str(e)
        >>> asyncio.run(drain())
        'Operation aborted'
    """
    stream = ExecutionStream()
    controller = StreamController(stream)
    on_start(controller)

    if token is None:
        return stream

    fired = False

    def _abort(reason: BaseException) -> None:
        nonlocal fired
        if fired:
            return
        fired = True
        if not controller.error(reason):
            # Already finished on its own; nothing to clean up.
            return
        if on_cancel is not None:
            try:
                on_cancel()
            except Exception as e:
                logger.error(f"Stream cancel handler failed: {e}")

    if token.cancelled:
        _abort(token.reason)
        return stream

    token.add_callback(_abort)
    return stream
