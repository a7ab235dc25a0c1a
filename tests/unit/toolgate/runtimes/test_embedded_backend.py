# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolgate/runtimes/test_embedded_backend.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Unit tests for toolgate.runtimes.embedded_backend.

Snippets run on the real in-process interpreter; package installation is
disabled by the shared conftest.
"""

# Standard
import asyncio
import sys

# Third-Party
import pytest

# First-Party
from toolgate.runtimes.base import ChunkOrigin, ExecutionCancelled, PreloadFailure, RuntimeFault
from toolgate.runtimes.embedded_backend import EmbeddedBackend, get_interpreter, TIMEOUT_MESSAGE
from toolgate.services.dependency_preloader import DependencyPreloader
from toolgate.utils.stream import CancellationToken


class _FailingPreloader(DependencyPreloader):
    async def preload(self, code):
        raise PreloadFailure("pip exploded")


@pytest.fixture
def backend():
    return EmbeddedBackend(DependencyPreloader(enabled=False))


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stdout_is_reproduced_exactly(backend, make_request, drain):
    code = 'print("hello")\nprint("wor", end="")\nprint("ld", end="")\nprint()\nprint("tail", end="")'
    chunks = await drain(await backend.execute(make_request(code)))

    assert all(chunk.origin == ChunkOrigin.STDOUT for chunk in chunks)
    assert "".join(chunk.text for chunk in chunks) == "hello\nworld\ntail"


@pytest.mark.asyncio
async def test_stderr_is_prefixed(backend, make_request, drain):
    code = 'import sys\nprint("oops", file=sys.stderr)\nprint("fine")'
    chunks = await drain(await backend.execute(make_request(code)))

    stderr = [chunk.text for chunk in chunks if chunk.origin == ChunkOrigin.STDERR]
    stdout = [chunk.text for chunk in chunks if chunk.origin == ChunkOrigin.STDOUT]
    assert stderr == ["[stderr] oops\n"]
    assert stdout == ["fine\n"]


@pytest.mark.asyncio
async def test_globals_are_private_per_run(backend, make_request, drain):
    await drain(await backend.execute(make_request("leaked = 42")))
    chunks = await drain(await backend.execute(make_request('print("leaked" in globals(), __name__)')))

    assert "".join(chunk.text for chunk in chunks) == "False __main__\n"


@pytest.mark.asyncio
async def test_top_level_await(backend, make_request, drain):
    code = "import asyncio\nawait asyncio.sleep(0)\nprint('awaited')"
    chunks = await drain(await backend.execute(make_request(code)))

    assert "".join(chunk.text for chunk in chunks) == "awaited\n"


@pytest.mark.asyncio
async def test_stdout_restored_after_run(backend, make_request, drain):
    original = sys.stdout
    await drain(await backend.execute(make_request("print('x')")))
    assert sys.stdout is original


@pytest.mark.asyncio
async def test_sys_exit_zero_closes_normally(backend, make_request, drain):
    chunks = await drain(await backend.execute(make_request("import sys\nprint('bye')\nsys.exit(0)")))
    assert "".join(chunk.text for chunk in chunks) == "bye\n"


@pytest.mark.asyncio
async def test_input_sees_empty_stdin(backend, make_request, drain):
    code = "try:\n    input()\nexcept EOFError:\n    print('eof')\nimport sys\nprint(repr(sys.stdin.read()))"
    chunks = await asyncio.wait_for(drain(await backend.execute(make_request(code))), 5)
    assert "".join(chunk.text for chunk in chunks) == "eof\n''\n"
    assert not hasattr(sys.stdin, "original")


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_runtime_fault_wraps_exception(backend, make_request):
    stream = await backend.execute(make_request("print('before')\nraise ValueError('boom')"))

    received = []
    with pytest.raises(RuntimeFault) as exc_info:
        async for chunk in stream:
            received.append(chunk.text)

    assert received == ["before\n"]
    assert "ValueError: boom" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_syntax_error_is_runtime_fault(backend, make_request, drain):
    with pytest.raises(RuntimeFault, match="SyntaxError"):
        await drain(await backend.execute(make_request("def broken(:")))


@pytest.mark.asyncio
async def test_preload_failure_raised_from_execute(make_request):
    backend = EmbeddedBackend(_FailingPreloader(enabled=True))
    with pytest.raises(PreloadFailure, match="pip exploded"):
        await backend.execute(make_request("import numpy"))


# ---------------------------------------------------------------------------
# Timeout and cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_timeout_pushes_marker_and_closes(backend, make_request, drain):
    stream = await backend.execute(make_request("print('start')\nwhile True:\n    pass", timeout_ms=300))
    chunks = await asyncio.wait_for(drain(stream), 5)

    assert chunks[-1].origin == ChunkOrigin.SYSTEM
    assert chunks[-1].text == TIMEOUT_MESSAGE
    assert stream.error is None

    # The busy loop was interrupted, so the interpreter is free again
    follow_up = await asyncio.wait_for(drain(await backend.execute(make_request("print('next')"))), 5)
    assert "".join(chunk.text for chunk in follow_up) == "next\n"


@pytest.mark.asyncio
async def test_cancel_before_start_yields_no_chunks(backend, make_request):
    token = CancellationToken()
    token.cancel()

    stream = await backend.execute(make_request("print('never')", token=token))
    with pytest.raises(ExecutionCancelled):
        async for _ in stream:
            pytest.fail("no chunk expected")


@pytest.mark.asyncio
async def test_cancel_interrupts_running_code(backend, make_request, drain):
    token = CancellationToken()
    code = "import time\nprint('ready')\nwhile True:\n    time.sleep(0.01)"
    stream = await backend.execute(make_request(code, token=token, timeout_ms=10_000))

    first = await asyncio.wait_for(stream.__anext__(), 5)
    assert first.text == "ready\n"

    token.cancel(ExecutionCancelled("user abort"))
    with pytest.raises(ExecutionCancelled, match="user abort"):
        await stream.__anext__()

    follow_up = await asyncio.wait_for(drain(await backend.execute(make_request("print('after')"))), 5)
    assert "".join(chunk.text for chunk in follow_up) == "after\n"


@pytest.mark.asyncio
async def test_exception_handler_cannot_swallow_interrupt(backend, make_request, drain):
    code = "while True:\n    try:\n        pass\n    except Exception:\n        pass"
    chunks = await asyncio.wait_for(drain(await backend.execute(make_request(code, timeout_ms=200))), 5)
    assert chunks[-1].text == TIMEOUT_MESSAGE


# ---------------------------------------------------------------------------
# Interpreter lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_interpreter():
    first, second = await asyncio.gather(get_interpreter(), get_interpreter())
    assert first is second
    assert await get_interpreter() is first


@pytest.mark.asyncio
async def test_health_check(backend):
    assert await backend.health_check() is True
