from __future__ import annotations

import asyncio

from market_scout.errors import ErrorCode
from market_scout.log import get_logger
from market_scout.services.job_store import JobStore
from market_scout.services.search_processor import SearchProcessor

logger = get_logger(__name__)


class Dispatcher:
    """Runs each submitted job in its own asyncio task.

    Submission never waits on processing and never sees its errors; they
    surface through the job's status. Submissions live only in memory: a
    process exit before a task starts leaves that job ``pending``.
    """

    def __init__(self, processor: SearchProcessor, store: JobStore) -> None:
        self.processor = processor
        self.store = store
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def submit(self, job_id: str) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(job_id), name=f"search-job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("submitted job %s", job_id)

    async def submit_pending(self, limit: int = 10) -> list[str]:
        """Dispatch the oldest ``pending`` jobs. Only runs when explicitly called."""
        job_ids = self.store.list_pending_job_ids(limit)
        for job_id in job_ids:
            self.submit(job_id)
        if job_ids:
            logger.info("dispatched %d pending jobs", len(job_ids))
        return job_ids

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for in-flight jobs. Returns False if some were still running at ``timeout``."""
        if not self._tasks:
            return True
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_running:
            logger.warning("%d jobs still running after %.1fs", len(still_running), timeout or 0)
        return not still_running

    async def _run(self, job_id: str) -> None:
        try:
            await self.processor.run(job_id)
        except Exception as exc:
            logger.exception("unhandled failure while processing job %s", job_id)
            try:
                self.processor.fail(job_id, ErrorCode.UNKNOWN, str(exc) or type(exc).__name__)
            except Exception:
                logger.exception("could not record failure for job %s", job_id)
