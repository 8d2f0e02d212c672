"""Rate limited send queue for bus telegrams.

A single periodic task takes at most one job per tick, and only while the bus
is connected. The queue is unbounded; jobs submitted while disconnected wait
until the connection is back.
"""

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable, Deque, List, Optional

from ..exceptions import TxFailure
from ..models import TxJob

logger = logging.getLogger(__name__)

MIN_INTERVAL_MS = 10
DEFAULT_INTERVAL_MS = 25


def tick_interval_ms(minimum_delay_ms: Optional[Any]) -> int:
    """Timer period: the configured delay (default 25 ms), at least 10 ms."""
    try:
        delay = int(float(minimum_delay_ms or DEFAULT_INTERVAL_MS))
    except (TypeError, ValueError):
        delay = DEFAULT_INTERVAL_MS
    return max(MIN_INTERVAL_MS, delay or DEFAULT_INTERVAL_MS)


class TxQueue:
    """FIFO of deferred bus operations drained by a periodic task"""

    def __init__(self, minimum_delay_ms: Optional[Any] = None,
                 is_active: Optional[Callable[[], bool]] = None):
        """
        Initialize queue.

        Args:
            minimum_delay_ms: Minimum gap between two telegrams
            is_active: Returns True while jobs may be sent
        """
        self.interval_ms = tick_interval_ms(minimum_delay_ms)
        self.is_active = is_active or (lambda: True)
        self._jobs: Deque[TxJob] = deque()
        self._task: Optional[asyncio.Task] = None
        self.executed = 0
        self.failed = 0
        self.last_failure: Optional[TxFailure] = None

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def pending(self) -> List[str]:
        """Descriptions of the queued jobs, oldest first."""
        return [job.description for job in self._jobs]

    def enqueue(self, action: Callable[[], Any], description: str = 'tx') -> TxJob:
        job = TxJob(action=action, description=description or 'tx')
        self._jobs.append(job)
        return job

    async def tick(self) -> bool:
        """
        Execute the oldest job if the bus is active.

        A failing job is logged and discarded, it is never retried.

        Returns:
            True if a job was taken from the queue
        """
        if not self.is_active() or not self._jobs:
            return False

        job = self._jobs.popleft()
        try:
            result = job.action()
            if inspect.isawaitable(result):
                await result
            self.executed += 1
        except Exception as e:
            self.failed += 1
            self.last_failure = TxFailure(f"KNX TX failed ({job.description}): {e}")
            logger.warning(str(self.last_failure))
        return True

    async def _run(self):
        interval = self.interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.tick()

    def start(self) -> bool:
        """
        Start the drain task on the running event loop unless it runs already.

        Returns:
            True if the task is running afterwards
        """
        if self.running:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, TX queue not started ({len(self._jobs)} jobs waiting)")
            return False
        self._task = loop.create_task(self._run())
        logger.debug(f"TX queue started, interval {self.interval_ms} ms")
        return True

    def stop(self):
        """Stop the drain task. Queued jobs are kept."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
