from dataclasses import dataclass, asdict
from datetime import date
from threading import Lock
from typing import Dict, Iterable, List, Sequence, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import ShiftRecord, DailySettings, DailySummary
from .logger import log_event

# scheduled hours per shift, used as static weights
DAY_SHIFT_HOURS = 14
NIGHT_SHIFT_HOURS = 10
SHIFT_HOURS = {"day": DAY_SHIFT_HOURS, "night": NIGHT_SHIFT_HOURS}

@dataclass(frozen=True)
class ShiftSummary:
    avg_efficiency: float = 0.0
    total_meter: float = 0.0
    total_pick: float = 0.0
    machine_count: int = 0
    avg_runtime: float = 0.0

@dataclass(frozen=True)
class SummaryValues:
    day_efficiency: float
    day_meter: float
    day_pick: float
    day_machine: float
    avg_day_runtime: float
    night_efficiency: float
    night_meter: float
    night_pick: float
    night_machine: float
    avg_night_runtime: float
    total_efficiency: float
    total_meter: float
    total_pick: float
    total_machine: float
    total_avg_runtime: float
    avg_cfm: float
    total_units_consumed: float
    units_per_meter: float
    machines_reported: int

def machine_multiplier(record) -> int:
    machine = getattr(record, "machine", None)
    return 2 if machine is not None and machine.type == "double" else 1

def compute_shift_summary(records: Sequence) -> ShiftSummary:
    if not records:
        return ShiftSummary()
    total_eff = 0.0
    eff_count = 0
    total_meter = 0.0
    total_pick = 0.0
    total_runtime = 0.0
    for r in records:
        # zero efficiency means "not reported", so it stays out of the average
        if (r.efficiency or 0) > 0:
            total_eff += r.efficiency
            eff_count += 1
        m = machine_multiplier(r)
        total_meter += (r.meter or 0) * m
        total_pick += (r.total_pick or 0) * m
        total_runtime += r.runtime or 0
    return ShiftSummary(
        avg_efficiency=total_eff / eff_count if eff_count else 0.0,
        total_meter=total_meter,
        total_pick=total_pick,
        machine_count=eff_count,
        avg_runtime=total_runtime / len(records),
    )

def weighted_efficiency(day_eff: float, night_eff: float) -> float:
    return (DAY_SHIFT_HOURS * day_eff + NIGHT_SHIFT_HOURS * night_eff) / (DAY_SHIFT_HOURS + NIGHT_SHIFT_HOURS)

def compute_summary(shift_records: Iterable, daily_settings: Sequence) -> SummaryValues:
    """Build the whole day summary from source rows. No I/O, no hidden state."""
    day_rows: List = []
    night_rows: List = []
    for r in shift_records:
        (day_rows if r.shift == "day" else night_rows).append(r)
    day = compute_shift_summary(day_rows)
    night = compute_shift_summary(night_rows)

    avg_cfm = sum((d.cfm or 0) for d in daily_settings) / len(daily_settings) if daily_settings else 0.0
    total_meter = day.total_meter + night.total_meter

    total_units = sum((d.units_consumed or 0) for d in daily_settings)
    machines_reported = sum(1 for d in daily_settings if (d.units_consumed or 0) > 0)

    return SummaryValues(
        day_efficiency=day.avg_efficiency,
        day_meter=day.total_meter,
        day_pick=day.total_pick,
        day_machine=day.machine_count,
        avg_day_runtime=day.avg_runtime,
        night_efficiency=night.avg_efficiency,
        night_meter=night.total_meter,
        night_pick=night.total_pick,
        night_machine=night.machine_count,
        avg_night_runtime=night.avg_runtime,
        total_efficiency=weighted_efficiency(day.avg_efficiency, night.avg_efficiency),
        total_meter=total_meter,
        total_pick=day.total_pick + night.total_pick,
        total_machine=(day.machine_count + night.machine_count) / 2,
        total_avg_runtime=day.avg_runtime + night.avg_runtime,
        avg_cfm=avg_cfm,
        total_units_consumed=total_units,
        units_per_meter=total_units / total_meter if total_meter > 0 else 0.0,
        machines_reported=machines_reported,
    )

SUMMARY_LOCK_STRIPES = 64
# fixed pool; one (company, day) always maps to the same stripe
_summary_locks: Tuple[Lock, ...] = tuple(Lock() for _ in range(SUMMARY_LOCK_STRIPES))

def summary_lock(company_id: str, day: date) -> Lock:
    return _summary_locks[hash((company_id, day)) % SUMMARY_LOCK_STRIPES]

def recompute_daily_summary(db: Session, company_id: str, day: date) -> bool:
    """Recompute and replace the (company, day) summary.

    Must be called after the triggering write has committed. Returns False on
    a database failure; the caller's own write is left untouched.
    """
    with summary_lock(company_id, day):
        try:
            records = (
                db.query(ShiftRecord)
                  .filter(ShiftRecord.company_id == company_id, ShiftRecord.production_date == day)
                  .all()
            )
            settings_rows = (
                db.query(DailySettings)
                  .filter(DailySettings.company_id == company_id, DailySettings.production_date == day)
                  .all()
            )
            values = compute_summary(records, settings_rows)
            # full replace: delete existing for (company, day) then add
            db.query(DailySummary).filter(DailySummary.company_id == company_id, DailySummary.date == day).delete()
            db.add(DailySummary(company_id=company_id, date=day, **asdict(values)))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            log_event("summary.failed", level="error", company_id=company_id, date=day.isoformat(), error=str(exc))
            return False
    log_event("summary.recomputed", company_id=company_id, date=day.isoformat(),
              records=len(records), total_meter=values.total_meter)
    return True

def companies_with_data(db: Session, days: Sequence[date]) -> List[str]:
    rows = (
        db.query(ShiftRecord.company_id)
          .filter(ShiftRecord.production_date.in_(list(days)))
          .distinct()
          .all()
    )
    return sorted(r[0] for r in rows)

def resync_summaries(db: Session, days: Sequence[date]) -> Dict[str, int]:
    """Recompute every company's summary for the given days (nightly job)."""
    stats = {"ok": 0, "failed": 0}
    for company_id in companies_with_data(db, days):
        for d in days:
            if recompute_daily_summary(db, company_id, d):
                stats["ok"] += 1
            else:
                stats["failed"] += 1
    log_event("resync.finished", days=[d.isoformat() for d in days], **stats)
    return stats
