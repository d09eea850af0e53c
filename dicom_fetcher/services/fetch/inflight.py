"""Deduplication of concurrent requests for the same key."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Generic, TypeVar

from dicom_fetcher.utils.logger import logger

T = TypeVar("T")


class InFlightTable(Generic[T]):
    """At most one in-flight task per key; concurrent callers share its result.

    The first caller for a key starts the work as an ``asyncio.Task`` and
    registers it. Later callers attach to the same task. Callers await it
    through ``asyncio.shield`` so a cancelled caller never cancels the work
    for the others; when the last waiter is gone the task itself is
    cancelled. The key is removed as soon as the task settles, whatever the
    outcome, or as soon as it is abandoned, so the next call hits the cache or
    starts a fresh fetch.

    The table is owned by the event loop: it is only mutated synchronously
    between awaits.
    """

    def __init__(self, name: str = "requests"):
        self.name = name
        self._tasks: dict[str, asyncio.Task[T]] = {}
        self._waiters: dict[str, int] = {}

    def acquire(
        self, key: str, factory: Callable[[], Awaitable[T]]
    ) -> tuple[bool, asyncio.Task[T]]:
        """Get the in-flight task for ``key``, starting it if there is none.

        Args:
            key: Request identity (study ID or instance ID)
            factory: Coroutine factory that performs the work, called only
                when no task for ``key`` is in flight

        Returns:
            Tuple of (already_in_flight, task)
        """
        task = self._tasks.get(key)
        if task is not None:
            return True, task

        task = asyncio.ensure_future(factory())
        self._tasks[key] = task
        self._waiters[key] = 0
        task.add_done_callback(partial(self._release, key))
        return False, task

    def _release(self, key: str, task: asyncio.Task[T]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
            self._waiters.pop(key, None)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory`` for ``key`` or join the run already in flight.

        Args:
            key: Request identity
            factory: Coroutine factory performing the work

        Returns:
            The shared result
        """
        already_in_flight, task = self.acquire(key, factory)
        if already_in_flight:
            logger.debug(f"Joining in-flight {self.name} for {key}")

        self._waiters[key] += 1
        try:
            return await asyncio.shield(task)
        finally:
            if not task.done() and self._tasks.get(key) is task:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    logger.debug(f"Cancelling abandoned {self.name} for {key}")
                    # Unregister first so a caller arriving during teardown starts fresh
                    del self._tasks[key]
                    del self._waiters[key]
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

    def __contains__(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> None:
        """Cancel every in-flight task and wait for them to settle."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight {self.name}")
