# -*- coding: utf-8 -*-
"""Location: ./toolgate/services/orchestration_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

In-flight tool call registry.

Each running ``tools/call`` is registered under its session and JSON-RPC
request id together with an async cancel callback, so that a
``notifications/cancelled`` message, or the session going away, can abort
the execution behind it. State lives in memory for the lifetime of the
process.
"""

# Standard
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

# First-Party
from toolgate.services.logging_service import LoggingService

logger = LoggingService().get_logger(__name__)

CancelCallback = Callable[[Optional[str]], Awaitable[None]]
RequestId = Union[str, int]


def run_key(session_id: str, request_id: RequestId) -> str:
    """Build the registry key of a tool call.

    Args:
        session_id: Owning session.
        request_id: JSON-RPC request id.

    Returns:
        str: Registry key.

    Examples:
        >>> run_key("abc", 7)
        'abc:7'
        >>> run_key("abc", "7") == run_key("abc", 7)
        True
    """
    return f"{session_id}:{request_id}"


class OrchestrationService:
    """Track in-flight runs and cancel them on request.

    Examples:
        >>> import asyncio
        >>> service = OrchestrationService()
        >>> async def demo():
        ...     seen = []
        ...     async def cancel(reason):
        ...         seen.append(reason)
        ...     await service.register_run("s:1", "python-code-runner", cancel)
        ...     first = await service.cancel_run("s:1", "user abort")
        ...     again = await service.cancel_run("s:1")
        ...     return first, again, seen
        >>> asyncio.run(demo())
        (True, True, ['user abort'])
    """

    def __init__(self) -> None:
        self._runs: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def register_run(self, run_id: str, name: Optional[str] = None, cancel_callback: Optional[CancelCallback] = None) -> None:
        """Register a run so it can be cancelled later.

        Args:
            run_id: Registry key, see :func:`run_key`.
            name: Tool name, for logs and status.
            cancel_callback: Async callback receiving the cancellation reason.
        """
        async with self._lock:
            self._runs[run_id] = {"name": name, "registered_at": time.time(), "cancel_callback": cancel_callback, "cancelled": False}
        logger.info(f"Registered run {run_id} ({name})")

    async def unregister_run(self, run_id: str) -> None:
        """Stop tracking a run.

        Args:
            run_id: Registry key.
        """
        async with self._lock:
            entry = self._runs.pop(run_id, None)
        if entry is not None:
            logger.info(f"Unregistered run {run_id}")

    async def is_registered(self, run_id: str) -> bool:
        """Return True if the run is being tracked.

        Args:
            run_id: Registry key.
        """
        async with self._lock:
            return run_id in self._runs

    async def cancel_run(self, run_id: str, reason: Optional[str] = None) -> bool:
        """Cancel a run; the callback fires at most once.

        Args:
            run_id: Registry key.
            reason: Why the run is being cancelled.

        Returns:
            bool: False if the run is not known.
        """
        async with self._lock:
            entry = self._runs.get(run_id)
            if entry is None:
                return False
            if entry["cancelled"]:
                return True
            entry["cancelled"] = True
            callback = entry["cancel_callback"]

        if callback is not None:
            try:
                await callback(reason)
                logger.info(f"Cancelled run {run_id}: {reason or 'no reason given'}")
            except Exception as e:
                logger.error(f"Error in cancel callback for {run_id}: {e}")

        return True

    async def cancel_session(self, session_id: str, reason: Optional[str] = None) -> List[str]:
        """Cancel every run belonging to a session.

        Args:
            session_id: Session whose runs are cancelled.
            reason: Why the runs are being cancelled.

        Returns:
            List[str]: Keys of the runs that were cancelled.
        """
        prefix = f"{session_id}:"
        async with self._lock:
            run_ids = [run_id for run_id in self._runs if run_id.startswith(prefix)]
        cancelled = [run_id for run_id in run_ids if await self.cancel_run(run_id, reason)]
        return cancelled

    async def get_status(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Return the public status of a run.

        Args:
            run_id: Registry key.

        Returns:
            Name, registration time and cancelled flag, or None if unknown.
        """
        async with self._lock:
            entry = self._runs.get(run_id)
            if entry is None:
                return None
            return {"name": entry["name"], "registered_at": entry["registered_at"], "cancelled": entry["cancelled"]}


orchestration_service = OrchestrationService()
