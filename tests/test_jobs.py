from datetime import date

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from fabtrack import jobs, production
from fabtrack.errors import Unavailable
from fabtrack.models import DailySummary, ScreenshotRecord
from fabtrack.schemas import ShiftEntryIn
from fabtrack.store import get_summary
from fabtrack.utils import plant_today


class CollectingDispatcher:
    def __init__(self, capacity=None):
        self.capacity = capacity
        self.submitted = []

    def submit(self, company_id, record_id):
        if self.capacity is not None and len(self.submitted) >= self.capacity:
            raise Unavailable("full")
        self.submitted.append((company_id, record_id))


def screenshot(db, company_id, status):
    rec = ScreenshotRecord(company_id=company_id, machine_id=1, date=date(2025, 1, 5), shift="day",
                           image_path="/nonexistent.png", image_size=0, status=status)
    db.add(rec)
    db.commit()
    return rec


def test_scheduler_dispatcher_applies_backpressure(db):
    sched = BackgroundScheduler()
    dispatcher = jobs.SchedulerDispatcher(sched, max_pending=2)
    dispatcher.submit("acme", 1)
    dispatcher.submit("acme", 2)
    with pytest.raises(Unavailable):
        dispatcher.submit("acme", 3)

    assert dispatcher.in_flight == 2
    assert sorted(j.id for j in sched.get_jobs()) == ["extract-acme-1", "extract-acme-2"]

    # a finished job frees a slot even when the record has vanished
    dispatcher._run("acme", 1)
    assert dispatcher.in_flight == 1
    dispatcher.submit("acme", 3)
    assert dispatcher.in_flight == 2


def test_build_scheduler_registers_nightly_resync():
    sched = jobs.build_scheduler()
    job = sched.get_job("nightly-resync")
    assert job is not None
    assert isinstance(job.trigger, CronTrigger)


def test_resume_requeues_unfinished_records(db):
    pending = screenshot(db, "acme", "pending")
    processing = screenshot(db, "globex", "processing")
    screenshot(db, "acme", "completed")
    screenshot(db, "acme", "failed")

    dispatcher = CollectingDispatcher()
    assert jobs.resume_unfinished(dispatcher) == 2
    assert sorted(dispatcher.submitted) == sorted([("acme", pending.id), ("globex", processing.id)])


def test_resume_stops_when_queue_is_full(db):
    screenshot(db, "acme", "pending")
    screenshot(db, "acme", "pending")
    dispatcher = CollectingDispatcher(capacity=1)
    assert jobs.resume_unfinished(dispatcher) == 1


def test_inline_dispatcher_records_failure_for_missing_template(db):
    rec = screenshot(db, "acme", "pending")
    dispatcher = jobs.InlineDispatcher()
    dispatcher.submit("acme", rec.id)
    assert dispatcher.submitted == [("acme", rec.id)]
    db.expire_all()
    rec = db.get(ScreenshotRecord, rec.id)
    assert rec.status == "failed"
    assert "template" in rec.processing_error


def test_nightly_resync_rebuilds_today(db, make_machine, make_worker):
    m, w = make_machine(), make_worker()
    today = plant_today()
    production.upsert_shift_entry(db, "acme", ShiftEntryIn.model_validate(
        {"machine": m.id, "worker": w.id, "productionDate": today.isoformat(), "shift": "night", "meter": 33}))
    db.query(DailySummary).delete()
    db.commit()

    jobs.nightly_resync()
    db.expire_all()
    assert get_summary(db, "acme", today).night_meter == 33
