# -*- coding: utf-8 -*-
"""Location: ./toolgate/runtimes/subprocess_backend.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Deno subprocess backend.

Each JavaScript execution gets its own ``deno run`` process. The snippet is
piped through stdin, stdout and stderr are streamed back as they are read, and
the process is killed on timeout or cancellation. File access is restricted to
the scratch directory unless permission overrides say otherwise.
"""

# Standard
import asyncio
import codecs
import contextlib
import os
from pathlib import Path
import shutil
from typing import Dict, List, Optional, Sequence, Set

# First-Party
from toolgate.config import settings
from toolgate.runtimes.base import (
    ChunkOrigin,
    ExecutionBackend,
    ExecutionCancelled,
    ExecutionRequest,
    Language,
    OutputChunk,
    RuntimeFault,
    SpawnFailure,
    STDERR_PREFIX,
)
from toolgate.services.logging_service import LoggingService
from toolgate.utils.stream import ExecutionStream, open_stream, StreamController

logger = LoggingService().get_logger(__name__)

TIMEOUT_MESSAGE = "[err][js] timeout"
READ_SIZE = 4096


def build_permission_args(scratch_dir: Path, overrides: Sequence[str] = ()) -> List[str]:
    """Build the Deno permission flags for one run.

    Args:
        scratch_dir: Directory the process may read and write.
        overrides: Extra flags; ``--allow-all`` replaces the defaults entirely.

    Returns:
        List[str]: Permission flags.

    Examples:
        >>> from pathlib import Path
        >>> build_permission_args(Path("/tmp/scratch"))
        ['--allow-read=/tmp/scratch/', '--allow-write=/tmp/scratch/']
        >>> build_permission_args(Path("/tmp/scratch"), ["--allow-net"])
        ['--allow-read=/tmp/scratch/', '--allow-write=/tmp/scratch/', '--allow-net']
        >>> build_permission_args(Path("/tmp/scratch"), ["--allow-all"])
        ['--allow-all']
    """
    overrides = list(overrides)
    if "--allow-all" in overrides:
        return overrides
    return [f"--allow-read={scratch_dir}/", f"--allow-write={scratch_dir}/", *overrides]


class _ProcessHandle:
    """Holds the child process and kills it at most once."""

    def __init__(self) -> None:
        self.proc: Optional[asyncio.subprocess.Process] = None
        self.killed = False

    def attach(self, proc: asyncio.subprocess.Process) -> None:
        self.proc = proc
        if self.killed:
            self._kill()

    def kill(self) -> None:
        self.killed = True
        self._kill()

    def _kill(self) -> None:
        if self.proc is not None and self.proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.proc.kill()


class SubprocessBackend(ExecutionBackend):
    """Run JavaScript snippets in a fresh Deno process."""

    language = Language.JAVASCRIPT

    def __init__(self, deno_path: Optional[str] = None, scratch_dir: Optional[Path] = None) -> None:
        self._deno_path = deno_path or settings.deno_path
        self._scratch_dir = Path(scratch_dir or settings.code_execution_scratch_dir)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def scratch_dir(self) -> Path:
        """Working directory of spawned processes."""
        return self._scratch_dir

    async def health_check(self) -> bool:
        """Return True if the Deno executable can be found."""
        return shutil.which(self._deno_path) is not None

    def _build_command(self, permissions: List[str]) -> List[str]:
        return [self._deno_path, "run", "--quiet", *permissions, "-"]

    def _build_env(self) -> Dict[str, str]:
        return {**os.environ, "DENO_DIR": str(self._scratch_dir / ".deno")}

    async def execute(self, request: ExecutionRequest) -> ExecutionStream:
        """Spawn the process and return its live output stream.

        Args:
            request: Execution request.

        Returns:
            ExecutionStream: Stream that errors with ``SpawnFailure`` if the
            process cannot be started.
        """
        overrides = request.permissions if request.permissions is not None else settings.permission_overrides
        command = self._build_command(build_permission_args(self._scratch_dir, overrides))
        timeout_s = (request.timeout_ms or settings.code_execution_timeout_ms) / 1000
        loop = asyncio.get_running_loop()
        handle = _ProcessHandle()
        timer: Optional[asyncio.TimerHandle] = None

        def on_start(controller: StreamController) -> None:
            nonlocal timer
            logger.debug(f"Spawning subprocess: {' '.join(command)}")

            def _on_timeout() -> None:
                logger.warning(f"Subprocess execution timed out after {timeout_s}s")
                handle.kill()
                controller.push(OutputChunk(ChunkOrigin.SYSTEM, TIMEOUT_MESSAGE))
                controller.close()

            timer = loop.call_later(timeout_s, _on_timeout)
            task = loop.create_task(self._supervise(handle, command, request.code, controller, timer))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        def on_cancel() -> None:
            logger.info("Subprocess execution cancelled")
            handle.kill()
            if timer is not None:
                timer.cancel()

        return open_stream(on_start, on_cancel, request.token)

    async def _supervise(
        self,
        handle: _ProcessHandle,
        command: List[str],
        code: str,
        controller: StreamController,
        timer: asyncio.TimerHandle,
    ) -> None:
        if controller.terminated:
            timer.cancel()
            return

        try:
            self._scratch_dir.mkdir(parents=True, exist_ok=True)
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._scratch_dir),
                env=self._build_env(),
            )
        except OSError as exc:
            timer.cancel()
            logger.error(f"Failed to start {command[0]}: {exc}")
            failure = SpawnFailure(f"Failed to start {command[0]}: {exc}")
            failure.__cause__ = exc
            controller.error(failure)
            return

        handle.attach(proc)
        try:
            await asyncio.gather(
                self._feed(proc, code),
                self._pump(proc.stdout, controller, ChunkOrigin.STDOUT),
                self._pump(proc.stderr, controller, ChunkOrigin.STDERR, STDERR_PREFIX),
            )
            returncode = await proc.wait()
            logger.debug(f"Subprocess exited with code {returncode}")
        except asyncio.CancelledError:
            handle.kill()
            controller.error(ExecutionCancelled("Execution task cancelled"))
            raise
        except Exception as exc:
            handle.kill()
            logger.error(f"Subprocess pipe failed: {exc}")
            fault = RuntimeFault(f"Subprocess pipe failed: {exc}")
            fault.__cause__ = exc
            controller.error(fault)
        else:
            controller.close()
        finally:
            timer.cancel()

    @staticmethod
    async def _feed(proc: asyncio.subprocess.Process, code: str) -> None:
        # The child may exit before consuming its input
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            proc.stdin.write(code.encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()
            await proc.stdin.wait_closed()

    @staticmethod
    async def _pump(reader: asyncio.StreamReader, controller: StreamController, origin: ChunkOrigin, prefix: str = "") -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await reader.read(READ_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                controller.push(OutputChunk(origin, prefix + text))
        tail = decoder.decode(b"", final=True)
        if tail:
            controller.push(OutputChunk(origin, prefix + tail))
