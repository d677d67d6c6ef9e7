from __future__ import annotations
import logging
from typing import Awaitable, Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

Tick = Callable[[], Awaitable[None]]


class RepeatingTask(Protocol):
    def cancel(self) -> None:
        """Stop future runs. Safe to call more than once."""
        ...


class Scheduler(Protocol):
    def every(self, seconds: float, tick: Tick) -> RepeatingTask:
        """Run ``tick`` every ``seconds``; the first run is one interval from now."""
        ...


class _JobHandle:
    def __init__(self, scheduler: AsyncIOScheduler, job_id: str):
        self._scheduler = scheduler
        self._job_id: str | None = job_id

    def cancel(self) -> None:
        if self._job_id is None:
            return
        job_id, self._job_id = self._job_id, None
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass


class APSchedulerScheduler:
    """Interval jobs on an AsyncIOScheduler running in the current event loop.

    Runs of the same job never overlap (``max_instances=1``); a run that would
    start while the previous one is still going is skipped and coalesced.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._scheduler = scheduler or AsyncIOScheduler()

    def every(self, seconds: float, tick: Tick) -> RepeatingTask:
        if not self._scheduler.running:
            self._scheduler.start()
        job = self._scheduler.add_job(
            tick, "interval", seconds=seconds, max_instances=1, coalesce=True,
        )
        logger.debug("scheduled job %s every %ss", job.id, seconds)
        return _JobHandle(self._scheduler, job.id)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
