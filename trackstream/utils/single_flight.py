"""
Collapses concurrent calls for the same key into a single in-flight task.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """
    The first caller for a key starts the work; callers arriving while it runs
    await the same task. The key is forgotten as soon as the task finishes, so
    a failure is shared by its waiters but never cached.
    """

    def __init__(self, name: str = "single-flight"):
        self.name = name
        self.joined = 0
        self._calls: Dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._calls.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._calls[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            self.joined += 1
            log.debug(f"{self.name}: joined in-flight call for '{key}'.")

        # A waiter going away must not cancel the work for everyone else.
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._calls.get(key) is task:
            del self._calls[key]
        if not task.cancelled():
            # Marks the exception as retrieved when every waiter was cancelled.
            task.exception()
