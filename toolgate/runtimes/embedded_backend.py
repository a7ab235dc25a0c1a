# -*- coding: utf-8 -*-
"""Location: ./toolgate/runtimes/embedded_backend.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Embedded Python interpreter backend.

Snippets run inside this process on a single dedicated interpreter thread, so
executions are serialised and each one gets its own private globals. Output
written to ``sys.stdout``/``sys.stderr`` from that thread is batched per line
and pushed into the execution stream; reads from ``sys.stdin`` see an empty
input. A per-run :class:`InterruptFlag` is polled from a trace function at
every line and call, which lets the timeout
and cancellation paths unwind a busy loop cooperatively. Blocking calls into C
code (``time.sleep``, socket reads) are only interrupted once they return.
"""

# Standard
import ast
import asyncio
import builtins
from concurrent.futures import ThreadPoolExecutor
import inspect
import io
import sys
import threading
import traceback
from typing import Callable, List, Optional, Set, Tuple, Union

# First-Party
from toolgate.config import settings
from toolgate.runtimes.base import (
    ChunkOrigin,
    ExecutionBackend,
    ExecutionCancelled,
    ExecutionError,
    ExecutionRequest,
    InterruptFlag,
    InterruptSignal,
    Language,
    OutputChunk,
    RuntimeFault,
    STDERR_PREFIX,
)
from toolgate.services.dependency_preloader import available_modules, DependencyPreloader
from toolgate.services.logging_service import LoggingService
from toolgate.utils.stream import ExecutionStream, open_stream, StreamController

logger = LoggingService().get_logger(__name__)

TIMEOUT_MESSAGE = "[err][py] timeout"
CODE_FILENAME = "<exec>"

Sink = Callable[[str], None]


class InterpreterInterrupt(KeyboardInterrupt):
    """Raised inside the interpreter thread when its interrupt flag is set."""

    def __init__(self, signal: InterruptSignal) -> None:
        super().__init__(f"Execution interrupted ({signal.name.lower()})")
        self.signal = signal


class _LineBatcher:
    """Buffer writes and hand complete lines to a sink.

    Examples:
        >>> out = []
        >>> batcher = _LineBatcher(out.append, prefix="[stderr] ")
        >>> batcher.write("a")
        >>> batcher.write("b\\nc")
        >>> out
        ['[stderr] ab\\n']
        >>> batcher.flush()
        >>> out
        ['[stderr] ab\\n', '[stderr] c']
    """

    def __init__(self, sink: Sink, prefix: str = "") -> None:
        self._sink = sink
        self._prefix = prefix
        self._pending: List[str] = []

    def write(self, text: str) -> None:
        if not text:
            return
        newline = text.rfind("\n")
        if newline < 0:
            self._pending.append(text)
            return
        self._pending.append(text[: newline + 1])
        self._emit()
        if newline + 1 < len(text):
            self._pending.append(text[newline + 1 :])

    def flush(self) -> None:
        if self._pending:
            self._emit()

    def _emit(self) -> None:
        data = "".join(self._pending)
        self._pending = []
        self._sink(self._prefix + data)


class _RoutedStream(io.TextIOBase):
    """``sys.stdout``/``sys.stderr`` proxy routing interpreter-thread writes.

    Writes from any other thread go to the wrapped original stream.
    """

    def __init__(self, original, local: threading.local, index: int) -> None:
        super().__init__()
        self._original = original
        self._local = local
        self._index = index

    @property
    def original(self):
        """The stream this proxy replaced."""
        return self._original

    def _target(self) -> Optional[_LineBatcher]:
        sinks = getattr(self._local, "sinks", None)
        return sinks[self._index] if sinks else None

    @property
    def encoding(self) -> str:
        return getattr(self._original, "encoding", None) or "utf-8"

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def write(self, s: str) -> int:
        target = self._target()
        if target is None:
            return self._original.write(s)
        target.write(s)
        return len(s)

    def flush(self) -> None:
        target = self._target()
        if target is None:
            self._original.flush()
            return
        target.flush()


class _RoutedInput(io.TextIOBase):
    """``sys.stdin`` proxy giving the interpreter thread an empty input.

    Snippets never read the server's own stdin; ``input()`` raises ``EOFError``.
    """

    def __init__(self, original, local: threading.local) -> None:
        super().__init__()
        self._original = original
        self._local = local

    @property
    def original(self):
        """The stream this proxy replaced."""
        return self._original

    def _source(self):
        source = getattr(self._local, "stdin", None)
        return self._original if source is None else source

    def readable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def read(self, size: Optional[int] = -1) -> str:
        return self._source().read(size)

    def readline(self, size: Optional[int] = -1) -> str:
        return self._source().readline(size)


def _format_user_traceback(exc: BaseException) -> str:
    """Render ``exc`` starting at the first frame of the user's snippet."""
    tb = exc.__traceback__
    while tb is not None and tb.tb_frame.f_code.co_filename != CODE_FILENAME:
        tb = tb.tb_next
    return "".join(traceback.format_exception(type(exc), exc, tb)).rstrip()


class EmbeddedInterpreter:
    """Process-wide in-process interpreter with a single execution thread."""

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="toolgate-interpreter")
        self._local = threading.local()
        self._module_count = 0

    async def initialize(self) -> None:
        """Start the interpreter thread and warm the module index."""
        loop = asyncio.get_running_loop()
        self._module_count = await loop.run_in_executor(self._executor, lambda: len(available_modules()))
        logger.info(f"Embedded interpreter ready ({self._module_count} importable modules)")

    def shutdown(self) -> None:
        """Stop accepting work; a run in progress is left to finish."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def run(self, code: str, flag: InterruptFlag, on_stdout: Sink, on_stderr: Sink) -> None:
        """Execute ``code`` on the interpreter thread.

        Args:
            code: Python source; top-level ``await`` is allowed.
            flag: Interrupt flag polled while the code runs.
            on_stdout: Receives stdout text, batched per line.
            on_stderr: Receives stderr text, batched per line and prefixed.

        Raises:
            InterpreterInterrupt: The flag was raised before or during the run.
            RuntimeFault: The code raised or failed to compile.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._run_sync, code, flag, on_stdout, on_stderr)

    def _install_stdio(self) -> Callable[[], None]:
        installed: List[Tuple[str, Union[_RoutedStream, _RoutedInput]]] = []
        for index, name in enumerate(("stdout", "stderr")):
            current = getattr(sys, name)
            if isinstance(current, _RoutedStream):
                continue
            proxy = _RoutedStream(current, self._local, index)
            setattr(sys, name, proxy)
            installed.append((name, proxy))
        if not isinstance(sys.stdin, _RoutedInput):
            stdin_proxy = _RoutedInput(sys.stdin, self._local)
            sys.stdin = stdin_proxy
            installed.append(("stdin", stdin_proxy))

        def _restore() -> None:
            for name, proxy in installed:
                if getattr(sys, name) is proxy:
                    setattr(sys, name, proxy.original)

        return _restore

    def _run_sync(self, code: str, flag: InterruptFlag, on_stdout: Sink, on_stderr: Sink) -> None:
        if flag.is_set():
            raise InterpreterInterrupt(flag.value)

        try:
            compiled = compile(code, CODE_FILENAME, "exec", flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT, dont_inherit=True)
        except SyntaxError as exc:
            raise RuntimeFault(_format_user_traceback(exc)) from exc

        def _trace(frame, event, arg):  # pylint: disable=unused-argument
            if flag.is_set():
                raise InterpreterInterrupt(flag.value)
            return _trace

        stdout = _LineBatcher(on_stdout)
        stderr = _LineBatcher(on_stderr, prefix=STDERR_PREFIX)
        namespace = {"__name__": "__main__", "__builtins__": builtins}
        self._local.sinks = (stdout, stderr)
        self._local.stdin = io.StringIO()
        restore = self._install_stdio()
        previous_trace = sys.gettrace()
        sys.settrace(_trace)
        try:
            result = eval(compiled, namespace)  # noqa: S307 - executing user code is the purpose of this backend
            if inspect.iscoroutine(result):
                asyncio.run(result)
        except InterpreterInterrupt:
            raise
        except SystemExit as exc:
            if exc.code not in (None, 0):
                raise RuntimeFault(f"SystemExit: {exc.code}") from exc
        except BaseException as exc:
            raise RuntimeFault(_format_user_traceback(exc)) from exc
        finally:
            sys.settrace(previous_trace)
            stdout.flush()
            stderr.flush()
            self._local.sinks = None
            self._local.stdin = None
            restore()


_interpreter: Optional[EmbeddedInterpreter] = None
_init_task: Optional[asyncio.Future] = None


async def _create_interpreter() -> EmbeddedInterpreter:
    interpreter = EmbeddedInterpreter()
    await interpreter.initialize()
    return interpreter


async def get_interpreter() -> EmbeddedInterpreter:
    """Return the shared interpreter, initialising it on first use.

    Concurrent first callers await the same initialisation.

    Returns:
        EmbeddedInterpreter: The process-wide interpreter.
    """
    global _interpreter, _init_task  # pylint: disable=global-statement
    if _interpreter is not None:
        return _interpreter
    if _init_task is None:
        _init_task = asyncio.ensure_future(_create_interpreter())
    task = _init_task
    try:
        interpreter = await asyncio.shield(task)
    except Exception:
        if _init_task is task:
            _init_task = None
        raise
    _interpreter = interpreter
    return interpreter


def shutdown_interpreter() -> None:
    """Release the shared interpreter; the next caller creates a new one."""
    global _interpreter, _init_task  # pylint: disable=global-statement
    if _interpreter is not None:
        _interpreter.shutdown()
    _interpreter = None
    _init_task = None


class EmbeddedBackend(ExecutionBackend):
    """Run Python snippets on the embedded interpreter."""

    language = Language.PYTHON

    def __init__(self, preloader: Optional[DependencyPreloader] = None) -> None:
        """Create the backend.

        Args:
            preloader: Dependency preloader; a default one is created if omitted.
        """
        self._preloader = preloader or DependencyPreloader()
        self._tasks: Set[asyncio.Task] = set()

    async def health_check(self) -> bool:
        """The embedded interpreter is always available."""
        return True

    async def execute(self, request: ExecutionRequest) -> ExecutionStream:
        """Preload dependencies, then start the run and return its stream.

        Args:
            request: Execution request.

        Returns:
            ExecutionStream: Live output stream.

        Raises:
            PreloadFailure: Installing the snippet's dependencies failed.
        """
        interpreter = await get_interpreter()
        await self._preloader.preload(request.code)

        loop = asyncio.get_running_loop()
        flag = InterruptFlag()
        timeout_s = (request.timeout_ms or settings.code_execution_timeout_ms) / 1000
        timer: Optional[asyncio.TimerHandle] = None

        def on_start(controller: StreamController) -> None:
            nonlocal timer
            logger.debug("Starting embedded execution")

            def _on_timeout() -> None:
                logger.warning(f"Embedded execution timed out after {timeout_s}s")
                controller.push(OutputChunk(ChunkOrigin.SYSTEM, TIMEOUT_MESSAGE))
                controller.close()
                flag.raise_to(InterruptSignal.TIMED_OUT)

            timer = loop.call_later(timeout_s, _on_timeout)
            task = loop.create_task(self._run(interpreter, request.code, flag, controller, timer))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        def on_cancel() -> None:
            logger.info("Embedded execution cancelled")
            flag.raise_to(InterruptSignal.CANCELLED)
            if timer is not None:
                timer.cancel()

        return open_stream(on_start, on_cancel, request.token)

    async def _run(
        self,
        interpreter: EmbeddedInterpreter,
        code: str,
        flag: InterruptFlag,
        controller: StreamController,
        timer: asyncio.TimerHandle,
    ) -> None:
        if controller.terminated:
            # Aborted before the run started
            timer.cancel()
            return

        loop = asyncio.get_running_loop()

        def _sink(origin: ChunkOrigin) -> Sink:
            def _push(text: str) -> None:
                loop.call_soon_threadsafe(controller.push, OutputChunk(origin, text))

            return _push

        try:
            await interpreter.run(code, flag, _sink(ChunkOrigin.STDOUT), _sink(ChunkOrigin.STDERR))
        except InterpreterInterrupt as exc:
            logger.info(f"Embedded execution unwound: {exc}")
            controller.error(ExecutionCancelled(str(exc)))
        except ExecutionError as exc:
            controller.error(exc)
        except asyncio.CancelledError:
            flag.raise_to(InterruptSignal.CANCELLED)
            controller.error(ExecutionCancelled("Execution task cancelled"))
            raise
        except Exception as exc:
            logger.error(f"Embedded execution failed: {exc}")
            controller.error(RuntimeFault(str(exc)))
        else:
            controller.close()
        finally:
            timer.cancel()
