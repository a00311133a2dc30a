"""Named-signal subscription for a tail session.

Listeners are plain callables or coroutine functions; coroutine listeners are
scheduled as tasks on the running loop. A listener that raises is logged and
otherwise ignored so it can never derail the poll loop.
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Set

from .logutil import get_logger

Listener = Callable[[Any], Any]


class SignalChannel:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, name: str, fn: Listener) -> "SignalChannel":
        self._listeners.setdefault(name, []).append(fn)
        return self

    def once(self, name: str, fn: Listener) -> "SignalChannel":
        def _wrapper(payload: Any) -> Any:
            self.off(name, _wrapper)
            return fn(payload)

        return self.on(name, _wrapper)

    def off(self, name: str, fn: Listener) -> "SignalChannel":
        bucket = self._listeners.get(name)
        if bucket and fn in bucket:
            bucket.remove(fn)
        return self

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, ()))

    def emit(self, name: str, payload: Any = None) -> bool:
        """Call every listener of ``name``; returns True if there was at least one."""
        bucket = list(self._listeners.get(name, ()))
        for fn in bucket:
            try:
                result = fn(payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception:  # noqa: BLE001 - listeners must not break the session
                get_logger().exception("listener for %r failed", name)
        return bool(bucket)

    async def wait_for(self, name: str, timeout: Optional[float] = None) -> Any:
        """Await the next emission of ``name`` and return its payload."""
        fut: asyncio.Future = asyncio.get_running_loop().create_future()

        def _resolve(payload: Any) -> None:
            if not fut.done():
                fut.set_result(payload)

        self.on(name, _resolve)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            self.off(name, _resolve)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            get_logger().error("async listener failed: %s", task.exception())


__all__ = ["SignalChannel"]
