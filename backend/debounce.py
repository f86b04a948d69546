from __future__ import annotations
import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class Debouncer:
    """
    Per-key debounced coroutine calls.

    Scheduling a key cancels whatever is pending for that key, so only the
    last call inside the window runs. Different keys never coordinate.
    """

    def __init__(self) -> None:
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._jobs: dict[Hashable, Job] = {}
        self._running: set[asyncio.Task] = set()

    def schedule(self, key: Hashable, delay: float, job: Job) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._jobs[key] = job
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def cancel(self, key: Hashable) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._jobs.pop(key, None)

    def pending(self, key: Hashable) -> bool:
        return key in self._timers

    @property
    def pending_keys(self) -> list[Hashable]:
        return list(self._timers)

    def _fire(self, key: Hashable) -> None:
        self._timers.pop(key, None)
        job = self._jobs.pop(key, None)
        if job is None:
            return
        task = asyncio.ensure_future(self._run(key, job))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: Hashable, job: Job) -> None:
        try:
            await job()
        except Exception:
            # Jobs report their own failures; this only keeps the loop clean.
            logger.exception("Debounced job %r failed", key)

    async def flush(self) -> None:
        """Run everything pending now and wait for in-flight jobs."""
        for key in list(self._timers):
            timer = self._timers.pop(key)
            timer.cancel()
            job = self._jobs.pop(key, None)
            if job is not None:
                await self._run(key, job)
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
