"""
Deferred Flush Scheduler

Lets a trace export outlive the request handler that produced it.

The handler returns its streaming response before the model has finished,
and the tail of the trace is recorded afterwards. The export for that tail
is handed here; the scheduler keeps it running in the background and the
application lifespan drains it before the process exits.

DESIGN RULES:
- schedule() never blocks and never raises
- Holds only the pending operation, never the trace
- drain() is bounded by a ceiling
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set


logger = logging.getLogger(__name__)


class DeferredFlushScheduler:
    """Runs export operations in the background and drains them on shutdown."""

    DEFAULT_CEILING_SECONDS = 15.0

    def __init__(self, ceiling_seconds: float = DEFAULT_CEILING_SECONDS):
        """
        Args:
            ceiling_seconds: Upper bound on drain() when no timeout is given
        """
        self._ceiling_seconds = ceiling_seconds
        self._tasks: Set[asyncio.Task] = set()
        self._scheduled = 0

    @property
    def pending(self) -> int:
        """Operations scheduled but not yet settled."""
        return len(self._tasks)

    @property
    def scheduled_total(self) -> int:
        """Operations scheduled since startup."""
        return self._scheduled

    def schedule(self, operation: Awaitable[None], label: str = "flush") -> Optional[asyncio.Task]:
        """
        Hand an export operation to the background.

        Args:
            operation: Awaitable performing the export
            label: Name used in logs

        Returns:
            The task running the operation, or None if it could not start.
        """
        runner = self._run(operation, label)
        try:
            task = asyncio.get_running_loop().create_task(runner)
        except RuntimeError as e:
            logger.warning(f"[FLUSH] Could not schedule {label}: {e}")
            runner.close()
            if asyncio.iscoroutine(operation):
                operation.close()
            return None

        self._scheduled += 1
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for every pending operation to settle.

        Args:
            timeout: Seconds to wait. Defaults to the ceiling.

        Returns:
            True if everything settled, False if the ceiling was hit.
        """
        if not self._tasks:
            return True

        ceiling = self._ceiling_seconds if timeout is None else timeout
        pending = list(self._tasks)
        logger.info(f"[FLUSH] Draining {len(pending)} pending exports (ceiling {ceiling}s)")

        done, not_done = await asyncio.wait(pending, timeout=ceiling)
        if not_done:
            logger.warning(f"[FLUSH] {len(not_done)} exports still pending after {ceiling}s")
            for task in not_done:
                task.cancel()
            return False
        return True

    @staticmethod
    async def _run(operation: Awaitable[None], label: str) -> None:
        try:
            await operation
        except asyncio.CancelledError:
            logger.warning(f"[FLUSH] {label} cancelled before completion")
            raise
        except Exception as e:
            # Export failures never reach the request.
            logger.warning(f"[FLUSH] {label} failed: {e}")
