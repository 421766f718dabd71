from datetime import date
from typing import Dict, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import ShiftRecord, DailySettings
from .schemas import ShiftEntryIn, ShiftEntryUpdate, DayWideFields
from .metrics import recompute_daily_summary
from .store import (
    get_machine, get_worker, get_shift_record, find_shift_record,
    find_daily_settings, find_prior_day_reading,
)
from .utils import to_day

SHIFT_FIELDS = ("runtime", "efficiency", "h1", "h2", "worph", "meter", "total_pick")

def units_consumed(previous: Optional[float], current: Optional[float]) -> Optional[float]:
    if previous is None or current is None:
        return None
    return max(0.0, current - previous)

def resolve_electricity(db: Session, company_id: str, machine_id: int, day: date,
                        previous: Optional[float], current: Optional[float],
                        existing: Optional[DailySettings] = None) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    """Returns (previous, current, units). Units stay None when not computable."""
    if current is not None and previous is None:
        previous = find_prior_day_reading(db, company_id, machine_id, day)
        if previous is None and existing is not None:
            previous = existing.previous_reading
    return previous, current, units_consumed(previous, current)

def upsert_daily_settings(db: Session, company_id: str, machine_id: int, day: date,
                          fields: DayWideFields, user_id: Optional[str]) -> DailySettings:
    """Write the supplied day-wide fields for (machine, day). Not committed."""
    row = find_daily_settings(db, company_id, machine_id, day)
    if row is None:
        row = DailySettings(company_id=company_id, machine_id=machine_id, production_date=day,
                            speed=0, cfm=0, pik=0, created_by=user_id)
        db.add(row)
    for name in ("speed", "cfm", "pik"):
        value = getattr(fields, name)
        if value is not None:
            setattr(row, name, value)

    if fields.current_reading is not None:
        prev, curr, units = resolve_electricity(
            db, company_id, machine_id, day, fields.previous_reading, fields.current_reading, existing=row)
        row.previous_reading = prev
        row.current_reading = curr
        row.units_consumed = units
    elif fields.previous_reading is not None:
        row.previous_reading = fields.previous_reading
        row.units_consumed = units_consumed(row.previous_reading, row.current_reading)
    return row

def _write_shift_record(db: Session, company_id: str, entry: ShiftEntryIn, day: date, user_id: Optional[str]) -> ShiftRecord:
    rec = find_shift_record(db, company_id, entry.machine, day, entry.shift)
    if rec is None:
        rec = ShiftRecord(company_id=company_id, machine_id=entry.machine, production_date=day, shift=entry.shift,
                          created_by=user_id)
        db.add(rec)
    rec.worker_id = entry.worker
    for name in SHIFT_FIELDS:
        setattr(rec, name, getattr(entry, name) or 0)
    rec.notes = entry.notes
    return rec

def upsert_shift_entry(db: Session, company_id: str, entry: ShiftEntryIn, user_id: Optional[str] = None) -> ShiftRecord:
    """Create or replace the shift record for (machine, day, shift), then refresh the day summary."""
    get_machine(db, company_id, entry.machine, active_only=True)
    get_worker(db, company_id, entry.worker)
    day = to_day(entry.production_date, "productionDate")

    rec = _write_shift_record(db, company_id, entry, day, user_id)
    if entry.day_wide_supplied():
        upsert_daily_settings(db, company_id, entry.machine, day, entry, user_id)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent submission inserted the same key first; apply ours as an update
        db.rollback()
        rec = _write_shift_record(db, company_id, entry, day, user_id)
        if entry.day_wide_supplied():
            upsert_daily_settings(db, company_id, entry.machine, day, entry, user_id)
        db.commit()

    recompute_daily_summary(db, company_id, day)
    db.refresh(rec)
    return rec

def update_shift_record(db: Session, company_id: str, record_id: int, patch: ShiftEntryUpdate,
                        user_id: Optional[str] = None) -> ShiftRecord:
    rec = get_shift_record(db, company_id, record_id)
    if patch.worker is not None:
        get_worker(db, company_id, patch.worker)
        rec.worker_id = patch.worker
    for name in SHIFT_FIELDS + ("notes",):
        value = getattr(patch, name)
        if value is not None:
            setattr(rec, name, value)
    if patch.day_wide_supplied():
        upsert_daily_settings(db, company_id, rec.machine_id, rec.production_date, patch, user_id)
    db.commit()

    recompute_daily_summary(db, company_id, rec.production_date)
    db.refresh(rec)
    return rec

def delete_shift_record(db: Session, company_id: str, record_id: int) -> date:
    rec = get_shift_record(db, company_id, record_id)
    day = rec.production_date
    db.delete(rec)
    db.commit()
    recompute_daily_summary(db, company_id, day)
    return day

def list_shift_records(db: Session, company_id: str, start: Optional[date] = None, end: Optional[date] = None,
                       machine_id: Optional[int] = None, worker_id: Optional[int] = None,
                       shift: Optional[str] = None) -> List[ShiftRecord]:
    q = db.query(ShiftRecord).filter(ShiftRecord.company_id == company_id)
    if start:
        q = q.filter(ShiftRecord.production_date >= start)
    if end:
        q = q.filter(ShiftRecord.production_date <= end)
    if machine_id:
        q = q.filter(ShiftRecord.machine_id == machine_id)
    if worker_id:
        q = q.filter(ShiftRecord.worker_id == worker_id)
    if shift:
        q = q.filter(ShiftRecord.shift == shift)
    return q.order_by(ShiftRecord.production_date.desc(), ShiftRecord.shift.asc()).all()

def day_detail(db: Session, company_id: str, day: date) -> Dict[str, list]:
    records = list_shift_records(db, company_id, start=day, end=day)
    settings_rows = (
        db.query(DailySettings)
          .filter(DailySettings.company_id == company_id, DailySettings.production_date == day)
          .all()
    )
    return {"productions": records, "dailyProductions": settings_rows}
