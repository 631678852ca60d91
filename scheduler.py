"""Recurring collection timers and job lifecycle transitions.

Each ``SchedulerCore`` owns its registry of live timers (one per running job)
on top of an APScheduler ``BackgroundScheduler``. Ticks run on the
scheduler's worker threads.

Cancelling a timer never interrupts a cycle already in flight: a ``pause`` or
``stop`` issued mid-cycle still lets that cycle write its snapshots.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from collector import CollectionCycleRunner
from errors import JobNotFound
from models import CollectionJob, utcnow
from services.directions_service import DirectionsClient
from store import JobStore

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL_SECONDS = 300


class TimerHandle:
    def __init__(self, scheduler: BackgroundScheduler, timer_id: str):
        self._scheduler = scheduler
        self.timer_id = timer_id

    def cancel(self) -> None:
        try:
            self._scheduler.remove_job(self.timer_id)
        except JobLookupError:
            pass


class SchedulerCore:
    def __init__(
        self,
        store: JobStore,
        client: DirectionsClient,
        scheduler: BackgroundScheduler | None = None,
        min_interval_seconds: int = DEFAULT_MIN_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self.min_interval_seconds = min_interval_seconds
        self.runner = CollectionCycleRunner(store, client, on_expired=self.stop, clock=clock)

        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        if self._owns_scheduler:
            self.scheduler.start()

        self._timers: dict[str, TimerHandle] = {}
        self._lock = threading.Lock()

    # ----------------
    # Timers
    # ----------------
    def effective_interval(self, job: CollectionJob) -> int:
        return job.effective_interval_seconds(self.min_interval_seconds)

    def _arm(self, job_id: str, interval_seconds: int) -> TimerHandle:
        with self._lock:
            stale = self._timers.pop(job_id, None)
            if stale:
                stale.cancel()
            aps_job = self.scheduler.add_job(
                self._tick,
                "interval",
                seconds=interval_seconds,
                args=[job_id],
                id=f"collect:{job_id}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            handle = TimerHandle(self.scheduler, aps_job.id)
            self._timers[job_id] = handle
        return handle

    def _cancel(self, job_id: str) -> bool:
        with self._lock:
            handle = self._timers.pop(job_id, None)
        if handle:
            handle.cancel()
            return True
        return False

    def _tick(self, job_id: str) -> None:
        try:
            self.runner.run(job_id)
        except Exception:
            logger.exception("Job %s: scheduled tick failed", job_id)

    def get_active_jobs(self) -> list[str]:
        with self._lock:
            return list(self._timers.keys())

    # ----------------
    # Lifecycle
    # ----------------
    def start(self, job_id: str) -> None:
        job = self.store.get_job(job_id)
        if not job:
            raise JobNotFound(job_id)
        if job.status == "running":
            return

        self.client.ensure_configured()
        self._cancel(job_id)
        self.store.set_status(job_id, "running")
        interval = self.effective_interval(job)
        self._arm(job_id, interval)
        logger.info("Job %s: started, collecting every %ds", job_id, interval)

        # First collection happens before returning
        self.runner.run(job_id)

    def pause(self, job_id: str) -> None:
        self._cancel(job_id)
        job = self.store.get_job(job_id)
        if not job or job.status != "running":
            return
        self.store.set_status(job_id, "paused")
        logger.info("Job %s: paused", job_id)

    def resume(self, job_id: str) -> None:
        job = self.store.get_job(job_id)
        if not job:
            raise JobNotFound(job_id)
        if job.status != "paused":
            return
        self.start(job_id)

    def stop(self, job_id: str) -> None:
        self._cancel(job_id)
        job = self.store.get_job(job_id)
        if not job or job.status not in ("running", "paused"):
            return
        self.store.set_status(job_id, "completed")
        logger.info("Job %s: completed", job_id)

    def rearm(self, job_id: str) -> bool:
        """Re-creates the timer of a job still marked running and collects once.

        Returns False when the job left ``running`` in the meantime.
        """
        job = self.store.get_job(job_id)
        if not job:
            raise JobNotFound(job_id)
        if job.status != "running":
            return False
        self._arm(job_id, self.effective_interval(job))
        self.runner.run(job_id)
        return True

    def run_collection_cycle(self, job_id: str) -> int:
        return self.runner.run(job_id)

    def shutdown(self) -> None:
        with self._lock:
            handles = list(self._timers.values())
            self._timers.clear()
        for handle in handles:
            handle.cancel()
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
