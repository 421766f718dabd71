from datetime import date
from typing import Dict, List, Optional
import pandas as pd
from sqlalchemy.orm import Session

from .models import ShiftRecord, DailySummary
from .metrics import SHIFT_HOURS, DAY_SHIFT_HOURS, NIGHT_SHIFT_HOURS, machine_multiplier
from .schemas import summary_out
from .store import get_machine, get_worker

_SHIFT_KEYS = {"day": "dayShift", "night": "nightShift"}
_COLUMNS = ["date", "shift", "worker_id", "worker_name", "efficiency", "meter", "pick", "runtime", "multiplier"]

def _records_frame(records: List[ShiftRecord], multiplier: Optional[int] = None) -> pd.DataFrame:
    rows = []
    for r in records:
        m = multiplier if multiplier is not None else machine_multiplier(r)
        rows.append({
            "date": r.production_date.isoformat(),
            "shift": r.shift,
            "worker_id": str(r.worker_id) if r.worker_id is not None else "Unknown",
            "worker_name": r.worker.name if r.worker is not None else "Unknown",
            "efficiency": float(r.efficiency or 0),
            "meter": float(r.meter or 0) * m,
            "pick": float(r.total_pick or 0) * m,
            "runtime": float(r.runtime or 0),
            "multiplier": m,
        })
    return pd.DataFrame(rows, columns=_COLUMNS)

def _empty_bucket() -> Dict[str, float]:
    return {"efficiency": 0.0, "meter": 0.0, "pick": 0.0, "runtime": 0.0, "count": 0, "machineCount": 0,
            "avgEfficiency": 0.0, "avgRuntime": 0.0}

def daily_buckets(df: pd.DataFrame, with_rates: bool = False) -> List[dict]:
    """Group shift rows by production date and shift, summing rows that share a bucket."""
    if df.empty:
        return []
    grouped = df.groupby(["date", "shift"]).agg(
        efficiency=("efficiency", "sum"),
        meter=("meter", "sum"),
        pick=("pick", "sum"),
        runtime=("runtime", "sum"),
        count=("efficiency", "size"),
        machineCount=("multiplier", "sum"),
    )
    days: Dict[str, dict] = {}
    for (day_key, shift), row in grouped.iterrows():
        entry = days.setdefault(day_key, {"date": day_key, "dayShift": _empty_bucket(), "nightShift": _empty_bucket()})
        b = entry[_SHIFT_KEYS[shift]]
        count = int(row["count"])
        b.update({
            "efficiency": float(row["efficiency"]), "meter": float(row["meter"]),
            "pick": float(row["pick"]), "runtime": float(row["runtime"]),
            "count": count, "machineCount": int(row["machineCount"]),
            "avgEfficiency": float(row["efficiency"]) / count,
            "avgRuntime": float(row["runtime"]) / count,
        })
        if with_rates:
            b["meterPerHour"] = b["meter"] / (SHIFT_HOURS[shift] * count)
    out = []
    for day_key in sorted(days):
        entry = days[day_key]
        if with_rates:
            for key in ("dayShift", "nightShift"):
                entry[key].setdefault("meterPerHour", 0.0)
            hours = DAY_SHIFT_HOURS * entry["dayShift"]["count"] + NIGHT_SHIFT_HOURS * entry["nightShift"]["count"]
            total = entry["dayShift"]["meter"] + entry["nightShift"]["meter"]
            entry["totalMeterPerHour"] = total / hours if hours else 0.0
        out.append(entry)
    return out

def _overall(df: pd.DataFrame) -> dict:
    if df.empty:
        return {"avgEfficiency": 0.0, "totalMeter": 0.0, "totalPick": 0.0, "totalRuntime": 0.0,
                "avgRuntime": 0.0, "totalShifts": 0}
    eff = df.loc[df["efficiency"] > 0, "efficiency"]
    return {
        "avgEfficiency": float(eff.mean()) if len(eff) else 0.0,
        "totalMeter": float(df["meter"].sum()),
        "totalPick": float(df["pick"].sum()),
        "totalRuntime": float(df["runtime"].sum()),
        "avgRuntime": float(df["runtime"].mean()),
        "totalShifts": int(len(df)),
    }

def _range(start: date, end: date) -> dict:
    return {"start": start.isoformat(), "end": end.isoformat()}

def _records_between(db: Session, company_id: str, start: date, end: date):
    return (
        db.query(ShiftRecord)
          .filter(ShiftRecord.company_id == company_id,
                  ShiftRecord.production_date >= start,
                  ShiftRecord.production_date <= end)
    )

def worker_analytics(db: Session, company_id: str, worker_id: int, start: date, end: date) -> dict:
    get_worker(db, company_id, worker_id)
    records = (
        _records_between(db, company_id, start, end)
          .filter(ShiftRecord.worker_id == worker_id)
          .order_by(ShiftRecord.production_date.asc())
          .all()
    )
    df = _records_frame(records)
    overall = _overall(df)
    overall["dateRange"] = _range(start, end)
    return {"dailyData": daily_buckets(df), "overall": overall}

def _worker_performance(df: pd.DataFrame) -> List[dict]:
    if df.empty:
        return []
    out = []
    for worker_id, group in df.groupby("worker_id", sort=False):
        eff = group.loc[group["efficiency"] > 0, "efficiency"]
        # each shift on a double machine counts twice
        count = int(group["multiplier"].sum())
        runtime = float(group["runtime"].sum())
        out.append({
            "workerId": worker_id,
            "workerName": group["worker_name"].iloc[0],
            "avgEfficiency": float(eff.mean()) if len(eff) else 0.0,
            "meter": float(group["meter"].sum()),
            "pick": float(group["pick"].sum()),
            "runtime": runtime,
            "count": count,
            "machineCount": count,
            "avgRuntime": runtime / count if count else 0.0,
        })
    return out

def machine_analytics(db: Session, company_id: str, machine_id: int, start: date, end: date) -> dict:
    machine = get_machine(db, company_id, machine_id)
    records = (
        _records_between(db, company_id, start, end)
          .filter(ShiftRecord.machine_id == machine_id)
          .order_by(ShiftRecord.production_date.asc())
          .all()
    )
    df = _records_frame(records, multiplier=machine.multiplier)
    overall = _overall(df)

    day_rows = df[df["shift"] == "day"]
    night_rows = df[df["shift"] == "night"]
    day_shifts, night_shifts = int(len(day_rows)), int(len(night_rows))
    day_meter, night_meter = float(day_rows["meter"].sum()), float(night_rows["meter"].sum())
    hours = DAY_SHIFT_HOURS * day_shifts + NIGHT_SHIFT_HOURS * night_shifts
    overall.update({
        "dayShifts": day_shifts,
        "nightShifts": night_shifts,
        "dayMeterPerHour": day_meter / (DAY_SHIFT_HOURS * day_shifts) if day_shifts else 0.0,
        "nightMeterPerHour": night_meter / (NIGHT_SHIFT_HOURS * night_shifts) if night_shifts else 0.0,
        "overallMeterPerHour": overall["totalMeter"] / hours if hours else 0.0,
        "dateRange": _range(start, end),
    })
    return {
        "machine": {"id": machine.id, "machineNumber": machine.machine_number, "type": machine.type},
        "dailyData": daily_buckets(df, with_rates=True),
        "workerPerformance": _worker_performance(df),
        "overall": overall,
    }

def summaries_between(db: Session, company_id: str, start: Optional[date], end: Optional[date]) -> List[DailySummary]:
    q = db.query(DailySummary).filter(DailySummary.company_id == company_id)
    if start:
        q = q.filter(DailySummary.date >= start)
    if end:
        q = q.filter(DailySummary.date <= end)
    return q.order_by(DailySummary.date.asc()).all()

def electricity_analytics(db: Session, company_id: str, start: date, end: date) -> dict:
    summaries = summaries_between(db, company_id, start, end)
    date_wise = [{
        "date": s.date.isoformat(),
        "totalUnits": s.total_units_consumed or 0,
        "totalMeter": s.total_meter or 0,
        "unitsPerMeter": s.units_per_meter or 0,
        "machinesReported": s.machines_reported or 0,
    } for s in summaries]
    total_units = sum(s.total_units_consumed or 0 for s in summaries)
    total_meter = sum(s.total_meter or 0 for s in summaries)
    days_with_data = sum(1 for s in summaries if (s.total_units_consumed or 0) > 0)
    return {
        "dateWiseData": date_wise,
        "overall": {
            "totalUnits": total_units,
            "totalMeter": total_meter,
            "avgUnitsPerMeter": total_units / total_meter if total_meter > 0 else 0.0,
            "avgDailyUnits": total_units / days_with_data if days_with_data else 0.0,
            "daysTracked": len(summaries),
            "dateRange": _range(start, end),
        },
    }

def summaries_frame(db: Session, company_id: str, start: Optional[date], end: Optional[date]) -> pd.DataFrame:
    rows = [summary_out(s) for s in summaries_between(db, company_id, start, end)]
    return pd.DataFrame(rows)
