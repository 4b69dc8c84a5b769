"""
Per-key debounced tasks

Each key owns at most one pending single-shot timer. Scheduling a key again
cancels the pending timer and starts a new window, so only the last callback
in a burst ever runs. Once a timer fires its callback is no longer
cancellable by rescheduling; it stays tracked until it finishes so callers
can wait for in-flight writes.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[object]]


class ItemDebouncer:
    def __init__(self, delay: float):
        self.delay = delay
        self._timers: Dict[Hashable, asyncio.Task] = {}
        self._tasks: Dict[asyncio.Task, Hashable] = {}

    def schedule(self, key: Hashable, callback: Callback) -> asyncio.Task:
        """Start a new window for `key`, replacing any pending one."""
        self.cancel(key)
        task = asyncio.create_task(self._run(key, callback))
        self._timers[key] = task
        self._tasks[task] = key
        task.add_done_callback(self._forget)
        return task

    async def _run(self, key: Hashable, callback: Callback) -> object:
        await asyncio.sleep(self.delay)
        # Fired: from here on a reschedule starts a separate window
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        return await callback()

    def _forget(self, task: asyncio.Task) -> None:
        key = self._tasks.pop(task, None)
        if self._timers.get(key) is task:
            del self._timers[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Debounced task for {key!r} failed: {task.exception()!r}")

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending timer for `key`. Returns True if one was pending."""
        task = self._timers.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)

    def pending(self, key: Hashable) -> bool:
        """True while `key` has a timer that has not fired yet."""
        return key in self._timers

    def active(self, key: Hashable) -> bool:
        """True while `key` has a pending timer or a running callback."""
        return key in self._tasks.values()

    async def wait(self, key: Optional[Hashable] = None) -> List[object]:
        """
        Wait until the tasks for `key` (or all keys) have finished.

        Returns the results of the callbacks that ran, exceptions included.
        Windows cancelled before firing contribute nothing.
        """
        results: List[object] = []
        seen = set()
        while True:
            tasks = [
                t for t, k in self._tasks.items()
                if (key is None or k == key) and t not in seen
            ]
            if not tasks:
                return results
            seen.update(tasks)
            done = await asyncio.gather(*tasks, return_exceptions=True)
            results.extend(r for r in done if not isinstance(r, asyncio.CancelledError))
