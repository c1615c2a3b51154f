"""Request coalescing: deduplicate concurrent identical in-flight fetches."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestCoalescer:
    """Registry mapping a caller-supplied key to the in-flight fetch for it.

    Owned by one service instance and passed to the components that need
    it. The registry is only mutated under ``_lock`` (or from the task's own
    done-callback), so two callers racing on the same key never both start
    the upstream call.

    Waiters are shielded: a caller that stops waiting (timeout, cancellation)
    does not cancel the shared fetch or its remaining retries. Other waiters
    still receive the result.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, fetcher: Callable[[], Awaitable[T]]) -> T:
        """Return the result of ``fetcher()``, sharing it with concurrent
        callers using the same ``key``.

        The entry is removed once the fetch settles, whether it succeeded
        or raised. Exceptions propagate to every waiter.
        """
        async with self._lock:
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(fetcher())
                self._inflight[key] = task
                task.add_done_callback(functools.partial(self._settle, key))
            else:
                logger.debug("Joining in-flight request for %s", key)

        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved; waiters re-raise it themselves.
            task.exception()
