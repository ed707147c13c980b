"""
Concurrency-limited batch scheduler.

Runs a list of zero-argument coroutine factories with a fixed number of
cooperative workers pulling from a shared cursor. Consecutive dispatches
are spaced by a minimum interval, results keep the input order, and one
failing unit never affects the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Set

from core.exceptions import UnitTimeoutError

logger = logging.getLogger(__name__)

Unit = Callable[[], Awaitable[Any]]


@dataclass
class BatchResult:
    """Outcome slot for one unit: ``value`` on success, ``error`` otherwise."""
    success: bool
    value: Any = None
    error: Optional[BaseException] = None


class BatchScheduler:
    """
    Run units with at most ``concurrency`` in flight.

    Attributes:
        concurrency: Number of workers (and max in-flight units)
        interval_ms: Minimum gap between two dispatches
        unit_timeout: Seconds before a unit is recorded as timed out and
            abandoned (left running, no longer awaited). None disables it.
        on_progress: Optional ``callback(completed, total)``
        abandoned: Abandoned units that are still running; ``drain`` waits
            for them before shared resources (HTTP clients) are closed
    """

    def __init__(
        self,
        concurrency: int = 15,
        interval_ms: int = 100,
        unit_timeout: Optional[float] = None,
        on_progress: Optional[Callable[[int, int], Any]] = None
    ):
        self.concurrency = max(1, int(concurrency))
        self.interval_ms = max(0, int(interval_ms))
        self.unit_timeout = unit_timeout
        self.on_progress = on_progress
        self._in_flight: Set[asyncio.Task] = set()
        self.abandoned: Set[asyncio.Task] = set()

    async def run(
        self,
        units: Sequence[Unit],
        results: Optional[List[Optional[BatchResult]]] = None
    ) -> List[Optional[BatchResult]]:
        """
        Execute all units.

        Args:
            units: Zero-argument callables returning awaitables
            results: Optional pre-allocated list of ``len(units)`` slots,
                filled in place so callers can read partial progress

        Returns:
            One BatchResult per unit, indexed like ``units``
        """
        total = len(units)
        if results is None:
            results = [None] * total
        if total == 0:
            return results

        loop = asyncio.get_running_loop()
        lock = asyncio.Lock()
        interval = self.interval_ms / 1000
        cursor = 0
        completed = 0
        last_dispatch: Optional[float] = None

        async def claim() -> Optional[int]:
            nonlocal cursor, last_dispatch
            async with lock:
                if cursor >= total:
                    return None
                index = cursor
                cursor += 1
                if last_dispatch is not None and interval > 0:
                    wait = interval - (loop.time() - last_dispatch)
                    if wait > 0:
                        await asyncio.sleep(wait)
                last_dispatch = loop.time()
                return index

        async def worker():
            nonlocal completed
            while True:
                index = await claim()
                if index is None:
                    return
                results[index] = await self._run_unit(units[index], index)
                completed += 1
                self._report_progress(completed, total)

        await asyncio.gather(*(worker() for _ in range(min(self.concurrency, total))))
        return results

    async def run_with_timeout(self, units: Sequence[Unit], timeout: Optional[float]) -> List[BatchResult]:
        """
        Run units, giving up on the whole batch after ``timeout`` seconds.

        Finished slots are kept; slots still empty at the deadline are
        recorded as UnitTimeoutError. Units already dispatched keep running
        in the background and are not awaited.
        """
        results: List[Optional[BatchResult]] = [None] * len(units)
        batch = asyncio.ensure_future(self.run(units, results))
        done, _ = await asyncio.wait({batch}, timeout=timeout)

        if batch in done:
            batch.result()
        else:
            logger.warning(f"Batch exceeded {timeout}s; abandoning unfinished units")
            batch.cancel()
            try:
                await batch
            except asyncio.CancelledError:
                pass
            for task in list(self._in_flight):
                self._abandon(task)

        return [
            slot if slot is not None else BatchResult(False, error=UnitTimeoutError(timeout))
            for slot in results
        ]

    async def _run_unit(self, unit: Unit, index: int) -> BatchResult:
        task = asyncio.ensure_future(unit())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        done, _ = await asyncio.wait({task}, timeout=self.unit_timeout)

        if task not in done:
            logger.warning(f"Unit #{index} exceeded {self.unit_timeout}s; abandoning it")
            self._abandon(task)
            return BatchResult(False, error=UnitTimeoutError(self.unit_timeout))

        if task.cancelled():
            return BatchResult(False, error=asyncio.CancelledError())

        error = task.exception()
        if error is not None:
            return BatchResult(False, error=error)
        return BatchResult(True, value=task.result())

    async def drain(self, timeout: Optional[float]) -> int:
        """
        Wait up to ``timeout`` seconds for abandoned units, then cancel the rest.

        Returns:
            Number of units that had to be cancelled
        """
        return await drain_tasks(self.abandoned, timeout)

    def _abandon(self, task: asyncio.Task):
        if task.done():
            self._reap(task)
            return
        self.abandoned.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task):
        self.abandoned.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Abandoned unit finished with error: {error}")

    def _report_progress(self, completed: int, total: int):
        if self.on_progress is None:
            return
        try:
            self.on_progress(completed, total)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


async def drain_tasks(tasks: Iterable[asyncio.Task], timeout: Optional[float]) -> int:
    """
    Give still-running tasks ``timeout`` seconds to finish, then cancel
    and await the stragglers.

    Returns:
        Number of tasks cancelled
    """
    pending = {task for task in tasks if not task.done()}
    if not pending:
        return 0

    logger.info(f"Waiting up to {timeout}s for {len(pending)} abandoned unit(s)")
    _, pending = await asyncio.wait(pending, timeout=timeout)
    if not pending:
        return 0

    logger.warning(f"Cancelling {len(pending)} abandoned unit(s) still running after {timeout}s")
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    return len(pending)
