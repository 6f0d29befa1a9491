# backend/services/scheduler.py
"""
Fixed-interval background jobs (cart expiry sweep, marketplace sync).

A thin layer over APScheduler's ``AsyncIOScheduler``. Job callables are plain
functions run on the scheduler's thread pool. ``max_instances=1`` keeps a job
from overlapping itself: a trigger that fires while the previous run is still
going is skipped and counted.
"""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from utils.money import utcnow

logger = logging.getLogger(__name__)


@dataclass
class JobStats:
    running: bool = False
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    runs: int = 0
    skipped: int = 0


class Scheduler:
    def __init__(self):
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(
            self._on_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES,
        )
        self._stats: Dict[str, JobStats] = {}
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def add_job(self, name: str, interval: float, task: Callable[[], object]) -> None:
        with self._lock:
            self._stats[name] = JobStats()
        self._scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(seconds=interval, timezone=timezone.utc),
            args=(name, task),
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            # First run right away, then every interval
            next_run_time=datetime.now(timezone.utc),
        )
        logger.info("Scheduler: added job '%s' every %ss", name, interval)

    def remove_job(self, name: str) -> None:
        self._job(name)
        self._scheduler.remove_job(name)
        with self._lock:
            self._stats.pop(name, None)
        logger.info("Scheduler: removed job '%s'", name)

    def enable_job(self, name: str) -> None:
        self._job(name)
        self._scheduler.resume_job(name)

    def disable_job(self, name: str) -> None:
        self._job(name)
        self._scheduler.pause_job(name)

    def start(self) -> None:
        # Needs a running event loop (the app lifespan provides one)
        if self._scheduler.running:
            return
        self._scheduler.start()
        logger.info("Scheduler: started with %s jobs", len(self._scheduler.get_jobs()))

    def stop(self) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=False)
        logger.info("Scheduler: stopped")

    def run_now(self, name: str) -> bool:
        """Schedule an immediate run of a job. False if the job is disabled."""
        job = self._job(name)
        if getattr(job, "next_run_time", None) is None:
            return False
        self._scheduler.modify_job(name, next_run_time=datetime.now(timezone.utc))
        return True

    def job_status(self) -> Dict[str, dict]:
        jobs = self._scheduler.get_jobs()
        with self._lock:
            status = {}
            for job in jobs:
                stats = self._stats.get(job.id) or JobStats()
                next_run = getattr(job, "next_run_time", None)
                status[job.id] = {
                    "enabled": next_run is not None,
                    "running": stats.running,
                    "interval": job.trigger.interval.total_seconds(),
                    "next_run": next_run,
                    "last_run": stats.last_run,
                    "last_error": stats.last_error,
                    "runs": stats.runs,
                    "skipped": stats.skipped,
                }
            return status

    def _job(self, name: str):
        job = self._scheduler.get_job(name)
        if job is None:
            raise KeyError(name)
        return job

    def _run(self, name: str, task: Callable[[], object]):
        with self._lock:
            stats = self._stats.setdefault(name, JobStats())
            stats.running = True
        started = time.monotonic()
        try:
            return task()
        finally:
            with self._lock:
                stats.running = False
                stats.last_run = utcnow()
                stats.runs += 1
            logger.info("Scheduler: job '%s' finished in %.2fs", name, time.monotonic() - started)

    def _on_event(self, event) -> None:
        # Called from the scheduler loop or from a pool thread
        with self._lock:
            stats = self._stats.get(event.job_id)
            if stats is None:
                return
            if event.code == EVENT_JOB_MAX_INSTANCES:
                stats.skipped += 1
                logger.warning("Scheduler: job '%s' still running, skipping this run", event.job_id)
            elif event.code == EVENT_JOB_ERROR:
                stats.last_error = str(event.exception)
                logger.error("Scheduler: job '%s' failed: %s", event.job_id, event.exception)
            else:
                stats.last_error = None
