from datetime import timedelta
from threading import Lock
from typing import Callable, Optional
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from .config import settings
from .db import SessionLocal
from .errors import Unavailable
from .extraction import run_extraction, unfinished_records
from .logger import log_event
from .metrics import resync_summaries
from .ocr import RegionReader
from .utils import plant_today

EXTRACTION_EXECUTOR = "extraction"

class InlineDispatcher:
    """Runs extraction in the caller's thread. Used by tests and one-off scripts."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, reader: Optional[RegionReader] = None):
        self.session_factory = session_factory
        self.reader = reader
        self.submitted = []

    def submit(self, company_id: str, record_id: int) -> None:
        self.submitted.append((company_id, record_id))
        run_extraction(self.session_factory, company_id, record_id, reader=self.reader)

class SchedulerDispatcher:
    """Queues extraction jobs on the scheduler's extraction thread pool.

    At most ``max_pending`` jobs may be queued or running; beyond that
    :meth:`submit` raises :class:`Unavailable` so the upload is refused
    instead of piling up.
    """

    def __init__(self, scheduler: BackgroundScheduler, session_factory: Callable[[], Session] = SessionLocal,
                 max_pending: int = settings.EXTRACTION_MAX_PENDING, reader: Optional[RegionReader] = None):
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.max_pending = max(1, max_pending)
        self.reader = reader
        self._lock = Lock()
        self._in_flight = 0
        scheduler.add_listener(self._on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MISSED)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def submit(self, company_id: str, record_id: int) -> None:
        with self._lock:
            if self._in_flight >= self.max_pending:
                raise Unavailable("Extraction queue is full, retry shortly")
            self._in_flight += 1
        try:
            self.scheduler.add_job(
                self._run, args=[company_id, record_id],
                id=f"extract-{company_id}-{record_id}", name="screenshot extraction",
                executor=EXTRACTION_EXECUTOR, misfire_grace_time=None, replace_existing=True,
            )
        except Exception:
            with self._lock:
                self._in_flight -= 1
            raise

    def _run(self, company_id: str, record_id: int) -> None:
        try:
            run_extraction(self.session_factory, company_id, record_id, reader=self.reader)
        finally:
            with self._lock:
                self._in_flight -= 1

    def _on_job_event(self, event) -> None:
        if not str(event.job_id).startswith("extract-"):
            return
        if event.code == EVENT_JOB_MISSED:
            with self._lock:
                self._in_flight -= 1
        log_event("extraction.job_error", level="error", job_id=event.job_id,
                  error=str(getattr(event, "exception", None) or "missed"))

def nightly_resync() -> None:
    today = plant_today()
    with SessionLocal() as db:
        resync_summaries(db, [today - timedelta(days=1), today])

def build_scheduler() -> BackgroundScheduler:
    sched = BackgroundScheduler(
        timezone=settings.TZ,
        executors={
            "default": ThreadPoolExecutor(1),
            EXTRACTION_EXECUTOR: ThreadPoolExecutor(max(1, settings.EXTRACTION_WORKERS)),
        },
    )
    sched.add_job(nightly_resync, CronTrigger(hour=settings.RESYNC_HOUR, minute=settings.RESYNC_MINUTE),
                  id="nightly-resync", replace_existing=True)
    return sched

def resume_unfinished(dispatcher, session_factory: Callable[[], Session] = SessionLocal) -> int:
    """Re-queue records left pending/processing by a previous run."""
    with session_factory() as db:
        pending = [(r.company_id, r.id) for r in unfinished_records(db)]
    queued = 0
    for company_id, record_id in pending:
        try:
            dispatcher.submit(company_id, record_id)
            queued += 1
        except Unavailable:
            log_event("extraction.resume_deferred", level="warning", company_id=company_id, record_id=record_id)
            break
    log_event("extraction.resumed", queued=queued, found=len(pending))
    return queued
