from contextlib import suppress
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional
import uuid

import pandas as pd
from fastapi import FastAPI, Depends, Query, Header, HTTPException, Request, Response, UploadFile, File, Form
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db import engine, SessionLocal, Base
from .config import settings
from .errors import AppError, Conflict, ValidationFailed, Unavailable
from .models import Machine, Worker
from .schemas import (
    MachineIn, WorkerIn, ShiftEntryIn, ShiftEntryUpdate, TemplateIn, WorkerNameMappingIn, VerifyIn,
    machine_out, worker_out, shift_record_out, daily_settings_out, summary_out, template_out,
    worker_mapping_out, screenshot_out,
)
from . import production, analytics, templates, extraction
from .metrics import recompute_daily_summary
from .jobs import SchedulerDispatcher, build_scheduler, resume_unfinished
from .logger import log_event
from .store import get_machine, get_template, get_summary, get_screenshot_record, get_shift_record, find_daily_settings
from .utils import to_day, date_range

app = FastAPI(title="Fabric Production Tracker API", version="1.0.0")

ALLOWED_IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".gif", ".bmp"}
_UPLOAD_CHUNK_BYTES = 1024 * 1024

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def auth_ok(x_token: str | None) -> bool:
    if not settings.API_TOKEN:
        return True
    return x_token == settings.API_TOKEN

@dataclass(frozen=True)
class Tenant:
    company_id: str
    user_id: Optional[str]

def get_tenant(x_company_id: str | None = Header(None), x_user_id: str | None = Header(None),
               x_token: str | None = Header(None)) -> Tenant:
    if not auth_ok(x_token):
        raise HTTPException(status_code=401, detail="invalid token")
    if not x_company_id or not x_company_id.strip():
        raise ValidationFailed("X-Company-Id header is required",
                               errors=[{"field": "X-Company-Id", "message": "missing"}])
    return Tenant(company_id=x_company_id.strip(), user_id=(x_user_id or None))

def get_dispatcher(request: Request):
    return request.app.state.dispatcher

@app.exception_handler(AppError)
def handle_app_error(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = [{"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg")}
              for e in exc.errors()]
    return JSONResponse(status_code=ValidationFailed.status_code, content={
        "success": False, "category": "validation", "message": "Validation failed", "errors": errors,
    })

@app.on_event("startup")
def startup():
    # create tables
    Base.metadata.create_all(bind=engine)
    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    # nightly summary resync + extraction worker pool
    sched = build_scheduler()
    sched.start()
    app.state.scheduler = sched
    app.state.dispatcher = SchedulerDispatcher(sched)
    resume_unfinished(app.state.dispatcher)

@app.on_event("shutdown")
def shutdown():
    sched = getattr(app.state, "scheduler", None)
    if sched:
        sched.shutdown(wait=False)

@app.get("/health")
def health():
    return {"ok": True}

# ---------- machines / workers ----------

@app.get("/api/machines")
def list_machines(tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    rows = (db.query(Machine)
              .filter(Machine.company_id == tenant.company_id, Machine.is_active.is_(True))
              .order_by(Machine.created_at.desc()).all())
    return {"success": True, "count": len(rows), "data": [machine_out(m) for m in rows]}

@app.get("/api/machines/{machine_id}")
def read_machine(machine_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    return {"success": True, "data": machine_out(get_machine(db, tenant.company_id, machine_id))}

@app.post("/api/machines", status_code=201)
def create_machine(body: MachineIn, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    m = Machine(company_id=tenant.company_id, machine_number=body.machine_number.strip(), type=body.type,
                description=body.description, created_by=tenant.user_id)
    db.add(m)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"Machine number {body.machine_number!r} already exists")
    db.refresh(m)
    return {"success": True, "data": machine_out(m)}

@app.get("/api/workers")
def list_workers(tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    rows = (db.query(Worker)
              .filter(Worker.company_id == tenant.company_id, Worker.is_active.is_(True))
              .order_by(Worker.name.asc()).all())
    return {"success": True, "count": len(rows), "data": [worker_out(w) for w in rows]}

@app.post("/api/workers", status_code=201)
def create_worker(body: WorkerIn, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    w = Worker(company_id=tenant.company_id, name=body.name.strip(), aadhaar_number=body.aadhaar_number,
               phone=body.phone, created_by=tenant.user_id)
    db.add(w)
    db.commit()
    db.refresh(w)
    return {"success": True, "data": worker_out(w)}

# ---------- production entries ----------

@app.get("/api/production")
def list_production(startDate: str = Query(None), endDate: str = Query(None), machineId: int = Query(None),
                    workerId: int = Query(None), shift: str = Query(None),
                    tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    start = to_day(startDate, "startDate") if startDate else None
    end = to_day(endDate, "endDate") if endDate else None
    rows = production.list_shift_records(db, tenant.company_id, start, end, machineId, workerId, shift)
    return {"success": True, "count": len(rows), "data": [shift_record_out(r) for r in rows]}

@app.post("/api/production", status_code=201)
def create_production(body: ShiftEntryIn, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    rec = production.upsert_shift_entry(db, tenant.company_id, body, tenant.user_id)
    return {"success": True, "data": shift_record_out(rec)}

@app.get("/api/production/summary/daily")
def daily_summary(date: str = Query(None), tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    summary = get_summary(db, tenant.company_id, to_day(date))
    if summary is None:
        return {"success": True, "data": None, "message": "No summary available for this date"}
    return {"success": True, "data": summary_out(summary)}

@app.get("/api/production/summary/{day}")
def date_summary(day: str, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    d = to_day(day)
    detail = production.day_detail(db, tenant.company_id, d)
    return {"success": True, "data": {
        "summary": summary_out(get_summary(db, tenant.company_id, d)),
        "productions": [shift_record_out(r) for r in detail["productions"]],
        "dailyProductions": [daily_settings_out(s) for s in detail["dailyProductions"]],
    }}

@app.post("/api/production/summary/{day}/resync")
def resync_summary(day: str, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    d = to_day(day)
    ok = recompute_daily_summary(db, tenant.company_id, d)
    if not ok:
        raise Unavailable("Summary recompute failed, see server logs")
    return {"success": True, "data": summary_out(get_summary(db, tenant.company_id, d))}

@app.get("/api/production/summaries")
def list_summaries(startDate: str = Query(None), endDate: str = Query(None),
                   tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    start = to_day(startDate, "startDate") if startDate else None
    end = to_day(endDate, "endDate") if endDate else None
    rows = analytics.summaries_between(db, tenant.company_id, start, end)
    return [summary_out(s) for s in reversed(rows)]

@app.get("/api/production/summaries.csv")
def export_summaries_csv(startDate: str = Query(None), endDate: str = Query(None),
                         tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    start = to_day(startDate, "startDate") if startDate else None
    end = to_day(endDate, "endDate") if endDate else None
    df = analytics.summaries_frame(db, tenant.company_id, start, end)
    return Response(df.to_csv(index=False), media_type="text/csv", headers={
        "Content-Disposition": "attachment; filename=summaries.csv"
    })

@app.get("/api/production/summaries.xlsx")
def export_summaries_xlsx(startDate: str = Query(None), endDate: str = Query(None),
                          tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    start = to_day(startDate, "startDate") if startDate else None
    end = to_day(endDate, "endDate") if endDate else None
    df = analytics.summaries_frame(db, tenant.company_id, start, end)
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="summaries")
    return Response(buf.getvalue(), media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", headers={
        "Content-Disposition": "attachment; filename=summaries.xlsx"
    })

@app.get("/api/production/analytics/worker/{worker_id}")
def worker_analytics(worker_id: int, startDate: str = Query(None), endDate: str = Query(None),
                     days: int = Query(7, ge=1, le=366),
                     tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    start, end = date_range(startDate, endDate, days)
    return {"success": True, "data": analytics.worker_analytics(db, tenant.company_id, worker_id, start, end)}

@app.get("/api/production/analytics/machine/{machine_id}")
def machine_analytics(machine_id: int, startDate: str = Query(None), endDate: str = Query(None),
                      days: int = Query(7, ge=1, le=366),
                      tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    start, end = date_range(startDate, endDate, days)
    return {"success": True, "data": analytics.machine_analytics(db, tenant.company_id, machine_id, start, end)}

@app.get("/api/production/analytics/electricity")
def electricity_analytics(startDate: str = Query(None), endDate: str = Query(None),
                          days: int = Query(30, ge=1, le=366),
                          tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    start, end = date_range(startDate, endDate, days)
    return {"success": True, "data": analytics.electricity_analytics(db, tenant.company_id, start, end)}

@app.get("/api/production/{record_id}")
def read_production(record_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    rec = get_shift_record(db, tenant.company_id, record_id)
    daily = find_daily_settings(db, tenant.company_id, rec.machine_id, rec.production_date)
    return {"success": True, "data": {**shift_record_out(rec), "dailyData": daily_settings_out(daily)}}

@app.put("/api/production/{record_id}")
def update_production(record_id: int, body: ShiftEntryUpdate, tenant: Tenant = Depends(get_tenant),
                      db: Session = Depends(get_db)):
    rec = production.update_shift_record(db, tenant.company_id, record_id, body, tenant.user_id)
    return {"success": True, "data": shift_record_out(rec)}

@app.delete("/api/production/{record_id}")
def delete_production(record_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    production.delete_shift_record(db, tenant.company_id, record_id)
    return {"success": True, "message": "Production record deleted successfully"}

# ---------- screenshot templates ----------

@app.get("/api/screenshots/templates")
def list_templates(tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    return {"success": True, "data": [template_out(t) for t in templates.list_templates(db, tenant.company_id)]}

@app.get("/api/screenshots/templates/default")
def default_template(tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    return {"success": True, "data": template_out(templates.get_default_template(db, tenant.company_id))}

@app.get("/api/screenshots/templates/{template_id}")
def read_template(template_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    return {"success": True, "data": template_out(get_template(db, tenant.company_id, template_id))}

@app.post("/api/screenshots/templates", status_code=201)
def create_template(body: TemplateIn, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    t = templates.create_template(db, tenant.company_id, body, tenant.user_id)
    return {"success": True, "message": "Mapping template created successfully", "data": template_out(t)}

@app.put("/api/screenshots/templates/{template_id}")
def update_template(template_id: int, body: TemplateIn, tenant: Tenant = Depends(get_tenant),
                    db: Session = Depends(get_db)):
    t = templates.update_template(db, tenant.company_id, template_id, body)
    return {"success": True, "message": "Mapping template updated successfully", "data": template_out(t)}

@app.delete("/api/screenshots/templates/{template_id}")
def delete_template(template_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    templates.delete_template(db, tenant.company_id, template_id)
    return {"success": True, "message": "Mapping template deleted successfully"}

# ---------- worker name mappings ----------

@app.get("/api/screenshots/worker-mappings")
def list_worker_mappings(tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    rows = templates.list_worker_mappings(db, tenant.company_id)
    return {"success": True, "data": [worker_mapping_out(m) for m in rows]}

@app.get("/api/screenshots/worker-mappings/resolve")
def resolve_worker_mapping(name: str = Query(..., min_length=1), tenant: Tenant = Depends(get_tenant),
                           db: Session = Depends(get_db)):
    return {"success": True, "data": {"input": name,
                                      "systemName": templates.resolve_worker_name(db, tenant.company_id, name)}}

@app.post("/api/screenshots/worker-mappings", status_code=201)
def create_worker_mapping(body: WorkerNameMappingIn, tenant: Tenant = Depends(get_tenant),
                          db: Session = Depends(get_db)):
    m = templates.create_worker_mapping(db, tenant.company_id, body)
    return {"success": True, "message": "Worker name mapping created successfully", "data": worker_mapping_out(m)}

@app.put("/api/screenshots/worker-mappings/{mapping_id}")
def update_worker_mapping(mapping_id: int, body: WorkerNameMappingIn, tenant: Tenant = Depends(get_tenant),
                          db: Session = Depends(get_db)):
    m = templates.update_worker_mapping(db, tenant.company_id, mapping_id, body)
    return {"success": True, "message": "Worker name mapping updated successfully", "data": worker_mapping_out(m)}

@app.delete("/api/screenshots/worker-mappings/{mapping_id}")
def delete_worker_mapping(mapping_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    templates.delete_worker_mapping(db, tenant.company_id, mapping_id)
    return {"success": True, "message": "Worker name mapping deleted successfully"}

# ---------- screenshot processing ----------

def _save_upload(upload: UploadFile) -> tuple[str, int]:
    suffix = Path(upload.filename or "").suffix.lower()
    if suffix not in ALLOWED_IMAGE_SUFFIXES or not (upload.content_type or "").startswith("image/"):
        raise ValidationFailed("Only image files are allowed",
                               errors=[{"field": "screenshot", "message": f"unsupported file {upload.filename!r}"}])
    limit = settings.MAX_UPLOAD_MB * 1024 * 1024
    out_dir = Path(settings.UPLOAD_DIR)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"screenshot-{uuid.uuid4().hex}{suffix}"
    size = 0
    with open(path, "wb") as fh:
        while True:
            chunk = upload.file.read(_UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            size += len(chunk)
            if size > limit:
                fh.close()
                path.unlink(missing_ok=True)
                raise HTTPException(status_code=413, detail=f"screenshot exceeds {settings.MAX_UPLOAD_MB} MB")
            fh.write(chunk)
    return str(path), size

@app.post("/api/screenshots/upload")
def upload_screenshot(screenshot: UploadFile = File(...), templateId: int = Form(...), machineId: int = Form(...),
                      shift: str = Form(...), date: str = Form(...),
                      tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db),
                      dispatcher=Depends(get_dispatcher)):
    if shift not in ("day", "night"):
        raise ValidationFailed("shift must be 'day' or 'night'", errors=[{"field": "shift", "message": shift}])
    day = to_day(date)
    get_template(db, tenant.company_id, templateId)
    get_machine(db, tenant.company_id, machineId)
    path, size = _save_upload(screenshot)

    record = extraction.create_pending_record(db, tenant.company_id, templateId, machineId, day, shift,
                                              path, size, tenant.user_id)
    extraction.mark_processing(db, record)
    try:
        dispatcher.submit(tenant.company_id, record.id)
    except Exception as exc:
        record.status = "failed"
        record.processing_error = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        db.commit()
        log_event("extraction.dispatch_failed", level="error", company_id=tenant.company_id,
                  record_id=record.id, error=record.processing_error)
        if isinstance(exc, Unavailable):
            raise
        raise Unavailable("Extraction could not be scheduled, retry shortly") from exc
    log_event("extraction.queued", company_id=tenant.company_id, record_id=record.id)
    return {"success": True, "message": "Screenshot uploaded and processing started",
            "data": {"recordId": record.id, "status": "processing"}}

@app.get("/api/screenshots/status/{record_id}")
def screenshot_status(record_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    rec = get_screenshot_record(db, tenant.company_id, record_id)
    db.refresh(rec)
    return {"success": True, "data": screenshot_out(rec)}

@app.get("/api/screenshots/records")
def screenshot_records(date: str = Query(None), shift: str = Query(None), machineId: int = Query(None),
                       status: str = Query(None), tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    day = to_day(date) if date else None
    rows = extraction.list_records(db, tenant.company_id, day, shift, machineId, status)
    return {"success": True, "data": [screenshot_out(r) for r in rows]}

@app.put("/api/screenshots/verify/{record_id}")
def verify_screenshot(record_id: int, body: VerifyIn, tenant: Tenant = Depends(get_tenant),
                      db: Session = Depends(get_db)):
    rec = extraction.verify_record(db, tenant.company_id, record_id, body.extracted_data, tenant.user_id)
    return {"success": True, "message": "Screenshot data verified successfully", "data": screenshot_out(rec)}

@app.delete("/api/screenshots/records/{record_id}")
def delete_screenshot(record_id: int, tenant: Tenant = Depends(get_tenant), db: Session = Depends(get_db)):
    rec = get_screenshot_record(db, tenant.company_id, record_id)
    with suppress(OSError):
        Path(rec.image_path).unlink(missing_ok=True)
    db.delete(rec)
    db.commit()
    return {"success": True, "message": "Screenshot record deleted successfully"}
