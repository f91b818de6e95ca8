"""
Taskmate — Scheduling Engine.

Owns the in-process timers for pending reminders and timers. Deadlines are
handed to an APScheduler `AsyncIOScheduler` as one-shot `DateTrigger` jobs;
the engine keeps its own job map on top so it can tell a pending job from
one that is already firing.

Per-job lifecycle:

    Pending --deadline--> Firing --> Completed
       |
       +--cancel()--> Cancelled

Jobs are not persisted here. The services own the rows; after a restart
`recover()` asks every registered JobSource for its pending rows and
re-schedules them. Overdue rows fire as soon as the scheduler wakes up
(catch-up). The services' conditional "claim" of a row at fire time is what
keeps a restart from delivering the same notification twice.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from src.core.errors import SchedulingConflictError

logger = logging.getLogger(__name__)

OnFire = Callable[[], Awaitable[None]]


# ---------------------------------------------------------------------------
# Clock and job sources
# ---------------------------------------------------------------------------


class Clock(Protocol):
    """Source of "now" for deadlines; swapped for a fake one in tests."""

    def now(self) -> datetime: ...


class SystemClock:
    """Real time as an aware UTC datetime."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class JobSource(Protocol):
    """A service whose pending rows the engine can reload and fire."""

    kind: str

    def list_pending(self) -> list[tuple[int, datetime]]: ...

    async def fire(self, entity_id: int) -> None: ...


def job_id(kind: str, entity_id: int) -> str:
    """Namespace entity ids so reminder #3 and timer #3 never collide."""
    return f"{kind}:{entity_id}"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SchedulingEngine:
    """One-shot deferred callbacks keyed by job id."""

    def __init__(
        self,
        clock: Clock | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._jobs: dict[str, datetime] = {}
        self._firing: dict[str, asyncio.Task] = {}
        self._sources: dict[str, JobSource] = {}
        self._started = False

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def started(self) -> bool:
        return self._started

    @property
    def pending_count(self) -> int:
        return len(self._jobs) - len(self._firing)

    def is_scheduled(self, job: str) -> bool:
        return job in self._jobs

    def register_source(self, source: JobSource) -> None:
        self._sources[source.kind] = source

    # --- lifecycle ---------------------------------------------------------

    async def start(self) -> int:
        """Start the scheduler and recover pending work.

        Call before inbound messages are processed.
        """
        self._ensure_running()
        count = await self.recover()
        self._started = True
        return count

    async def shutdown(self) -> None:
        """Stop every pending job and wait for in-flight fires to finish.

        Persisted rows are untouched, so everything stopped here is picked
        up again by the next recover().
        """
        for job in list(self._jobs):
            if job not in self._firing:
                self._remove(job)
        if self._firing:
            await asyncio.gather(*self._firing.values(), return_exceptions=True)
        self._jobs.clear()
        self._firing.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._started = False
        logger.info("Scheduling engine shut down")

    def _ensure_running(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    # --- scheduling --------------------------------------------------------

    def schedule(self, job: str, fire_at: datetime, on_fire: OnFire) -> bool:
        """Register a deferred callback.

        Returns False (and logs) if the job id is already tracked; callers
        that want to re-schedule must cancel() first. A deadline in the past
        fires once the scheduler next wakes up, never inside this call.
        Must be called from the running event loop.
        """
        try:
            self._track(job, fire_at, on_fire)
        except SchedulingConflictError as exc:
            logger.warning("Schedule ignored: %s", exc)
            return False
        return True

    def _track(self, job: str, fire_at: datetime, on_fire: OnFire) -> None:
        if job in self._jobs:
            raise SchedulingConflictError(f"job {job} is already scheduled")
        self._ensure_running()
        self._scheduler.add_job(
            self._fire,
            DateTrigger(run_date=self._run_date(fire_at)),
            id=job,
            name=job,
            args=[job, on_fire],
            misfire_grace_time=None,
            replace_existing=False,
        )
        self._jobs[job] = fire_at
        logger.debug("Job %s scheduled for %s", job, fire_at.isoformat())

    def cancel(self, job: str) -> bool:
        """Stop a pending job. Idempotent.

        Returns True if a pending job was stopped. A job that has already
        started firing is left alone and False is returned; the fire goes
        through and the row ends up terminal either way.
        """
        if job in self._firing:
            logger.info("Job %s is already firing; cancel is a no-op", job)
            return False
        if self._jobs.pop(job, None) is None:
            return False
        self._remove(job)
        logger.info("Job %s cancelled", job)
        return True

    def resync(self) -> None:
        """Re-anchor pending deadlines after the clock jumped."""
        for job, fire_at in self._jobs.items():
            if job in self._firing:
                continue
            try:
                self._scheduler.modify_job(job, next_run_time=self._run_date(fire_at))
            except JobLookupError:
                logger.debug("Job %s already handed to the executor", job)

    def _run_date(self, fire_at: datetime) -> datetime:
        # The scheduler reads the system clock; translate from ours.
        return datetime.now(timezone.utc) + (fire_at - self._clock.now())

    def _remove(self, job: str) -> None:
        try:
            self._scheduler.remove_job(job)
        except JobLookupError:
            logger.debug("Job %s was no longer in the scheduler", job)

    async def _fire(self, job: str, on_fire: OnFire) -> None:
        if job not in self._jobs:
            return
        # No await before entering the firing set, so a cancel() either
        # lands before this point or sees the job firing.
        self._firing[job] = asyncio.current_task()
        try:
            await on_fire()
        except Exception:
            logger.exception("Job %s failed while firing", job)
        finally:
            self._firing.pop(job, None)
            self._jobs.pop(job, None)

    # --- recovery ----------------------------------------------------------

    async def recover(self) -> int:
        """Schedule every pending row of every registered source.

        Rows already tracked in-process are skipped, so this is safe to call
        again after a transport reconnect. Returns the number of jobs added.
        """
        now = self._clock.now()
        added = 0
        overdue = 0
        for kind, source in self._sources.items():
            try:
                pending = source.list_pending()
            except Exception:
                logger.exception("Recovery: failed to load pending %s rows", kind)
                continue

            for entity_id, fire_at in pending:
                job = job_id(kind, entity_id)
                if job in self._jobs:
                    continue
                if self.schedule(job, fire_at, functools.partial(source.fire, entity_id)):
                    added += 1
                    if fire_at <= now:
                        overdue += 1

        logger.info("Recovery scheduled %d jobs (%d overdue)", added, overdue)
        return added
