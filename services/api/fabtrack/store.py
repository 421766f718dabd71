"""Tenant-scoped lookups.

Every query here takes the company id and filters on it; callers never build
unscoped queries against tenant tables.
"""
from datetime import date, timedelta
from typing import Optional
from sqlalchemy.orm import Session

from .errors import NotFound
from .models import Machine, Worker, ShiftRecord, DailySettings, DailySummary, ScreenshotTemplate, ScreenshotRecord, WorkerNameMapping


def get_machine(db: Session, company_id: str, machine_id: int, active_only: bool = False) -> Machine:
    q = db.query(Machine).filter(Machine.company_id == company_id, Machine.id == machine_id)
    if active_only:
        q = q.filter(Machine.is_active.is_(True))
    machine = q.first()
    if machine is None:
        raise NotFound("Machine not found")
    return machine


def get_worker(db: Session, company_id: str, worker_id: int) -> Worker:
    worker = db.query(Worker).filter(Worker.company_id == company_id, Worker.id == worker_id).first()
    if worker is None:
        raise NotFound("Worker not found")
    return worker


def get_shift_record(db: Session, company_id: str, record_id: int) -> ShiftRecord:
    rec = db.query(ShiftRecord).filter(ShiftRecord.company_id == company_id, ShiftRecord.id == record_id).first()
    if rec is None:
        raise NotFound("Production record not found")
    return rec


def find_shift_record(db: Session, company_id: str, machine_id: int, day: date, shift: str) -> Optional[ShiftRecord]:
    return db.query(ShiftRecord).filter(
        ShiftRecord.company_id == company_id,
        ShiftRecord.machine_id == machine_id,
        ShiftRecord.production_date == day,
        ShiftRecord.shift == shift,
    ).first()


def find_daily_settings(db: Session, company_id: str, machine_id: int, day: date) -> Optional[DailySettings]:
    return db.query(DailySettings).filter(
        DailySettings.company_id == company_id,
        DailySettings.machine_id == machine_id,
        DailySettings.production_date == day,
    ).first()


def find_prior_day_reading(db: Session, company_id: str, machine_id: int, day: date) -> Optional[float]:
    """Current meter reading recorded for the machine on the previous calendar day."""
    prior = find_daily_settings(db, company_id, machine_id, day - timedelta(days=1))
    if prior is None:
        return None
    return prior.current_reading


def get_summary(db: Session, company_id: str, day: date) -> Optional[DailySummary]:
    return db.query(DailySummary).filter(DailySummary.company_id == company_id, DailySummary.date == day).first()


def get_template(db: Session, company_id: str, template_id: int) -> ScreenshotTemplate:
    t = db.query(ScreenshotTemplate).filter(
        ScreenshotTemplate.company_id == company_id, ScreenshotTemplate.id == template_id
    ).first()
    if t is None:
        raise NotFound("Mapping template not found")
    return t


def get_screenshot_record(db: Session, company_id: str, record_id: int) -> ScreenshotRecord:
    r = db.query(ScreenshotRecord).filter(
        ScreenshotRecord.company_id == company_id, ScreenshotRecord.id == record_id
    ).first()
    if r is None:
        raise NotFound("Screenshot record not found")
    return r


def get_worker_mapping(db: Session, company_id: str, mapping_id: int) -> WorkerNameMapping:
    m = db.query(WorkerNameMapping).filter(
        WorkerNameMapping.company_id == company_id, WorkerNameMapping.id == mapping_id
    ).first()
    if m is None:
        raise NotFound("Worker name mapping not found")
    return m
