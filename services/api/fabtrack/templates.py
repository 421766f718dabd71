from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict, NotFound
from .models import ScreenshotTemplate, FieldMapping, WorkerNameMapping
from .schemas import TemplateIn, WorkerNameMappingIn
from .store import get_template, get_worker, get_worker_mapping
from .logger import log_event

def _field_rows(payload: TemplateIn) -> List[FieldMapping]:
    return [
        FieldMapping(position=i, field_name=f.field_name, x=f.x, y=f.y, width=f.width,
                     height=f.height, preprocessing_hint=f.preprocessing_hint)
        for i, f in enumerate(payload.field_mappings)
    ]

def _clear_other_defaults(db: Session, company_id: str, keep_id: Optional[int]) -> None:
    # lock the company's template rows so two default switches cannot interleave
    db.query(ScreenshotTemplate.id).filter(ScreenshotTemplate.company_id == company_id).with_for_update().all()
    q = db.query(ScreenshotTemplate).filter(
        ScreenshotTemplate.company_id == company_id, ScreenshotTemplate.is_default.is_(True))
    if keep_id is not None:
        q = q.filter(ScreenshotTemplate.id != keep_id)
    q.update({ScreenshotTemplate.is_default: False}, synchronize_session="fetch")

def _commit_template(db: Session, name: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"A mapping template named {name!r} already exists")

def create_template(db: Session, company_id: str, payload: TemplateIn, user_id: Optional[str] = None) -> ScreenshotTemplate:
    if payload.is_default:
        _clear_other_defaults(db, company_id, keep_id=None)
    t = ScreenshotTemplate(
        company_id=company_id,
        template_name=payload.template_name.strip(),
        description=payload.description,
        machine_display_type=payload.machine_display_type,
        sample_image_url=payload.sample_image_url,
        is_default=payload.is_default,
        created_by=user_id,
        field_mappings=_field_rows(payload),
    )
    db.add(t)
    _commit_template(db, payload.template_name)
    db.refresh(t)
    return t

def update_template(db: Session, company_id: str, template_id: int, payload: TemplateIn) -> ScreenshotTemplate:
    t = get_template(db, company_id, template_id)
    if payload.is_default:
        _clear_other_defaults(db, company_id, keep_id=t.id)
    t.template_name = payload.template_name.strip()
    t.description = payload.description
    t.machine_display_type = payload.machine_display_type
    t.sample_image_url = payload.sample_image_url
    t.is_default = payload.is_default
    t.field_mappings = _field_rows(payload)
    _commit_template(db, payload.template_name)
    db.refresh(t)
    return t

def delete_template(db: Session, company_id: str, template_id: int) -> None:
    t = get_template(db, company_id, template_id)
    db.delete(t)
    db.commit()

def list_templates(db: Session, company_id: str) -> List[ScreenshotTemplate]:
    return (
        db.query(ScreenshotTemplate)
          .filter(ScreenshotTemplate.company_id == company_id)
          .order_by(ScreenshotTemplate.is_default.desc(), ScreenshotTemplate.created_at.desc())
          .all()
    )

def get_default_template(db: Session, company_id: str) -> ScreenshotTemplate:
    t = db.query(ScreenshotTemplate).filter(
        ScreenshotTemplate.company_id == company_id, ScreenshotTemplate.is_default.is_(True)
    ).first()
    if t is None:
        raise NotFound("No default template found")
    return t


# ---- worker name mappings ----

def _normalize_name(name: str) -> str:
    return name.strip().upper()

def _apply_mapping(m: WorkerNameMapping, payload: WorkerNameMappingIn) -> None:
    m.display_name = _normalize_name(payload.display_name)
    m.system_name = payload.system_name.strip()
    m.worker_id = payload.worker_id
    m.aliases = [_normalize_name(a) for a in payload.aliases if a.strip()]
    m.is_active = payload.is_active

def _commit_mapping(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("A mapping for this display name already exists")

def create_worker_mapping(db: Session, company_id: str, payload: WorkerNameMappingIn) -> WorkerNameMapping:
    if payload.worker_id is not None:
        get_worker(db, company_id, payload.worker_id)
    m = WorkerNameMapping(company_id=company_id)
    _apply_mapping(m, payload)
    db.add(m)
    _commit_mapping(db)
    db.refresh(m)
    return m

def update_worker_mapping(db: Session, company_id: str, mapping_id: int, payload: WorkerNameMappingIn) -> WorkerNameMapping:
    m = get_worker_mapping(db, company_id, mapping_id)
    if payload.worker_id is not None:
        get_worker(db, company_id, payload.worker_id)
    _apply_mapping(m, payload)
    _commit_mapping(db)
    db.refresh(m)
    return m

def delete_worker_mapping(db: Session, company_id: str, mapping_id: int) -> None:
    m = get_worker_mapping(db, company_id, mapping_id)
    db.delete(m)
    db.commit()

def list_worker_mappings(db: Session, company_id: str) -> List[WorkerNameMapping]:
    return (
        db.query(WorkerNameMapping)
          .filter(WorkerNameMapping.company_id == company_id, WorkerNameMapping.is_active.is_(True))
          .order_by(WorkerNameMapping.display_name.asc())
          .all()
    )

def resolve_worker_name(db: Session, company_id: str, display_name_raw: str) -> str:
    """Map an on-screen worker name to the registry name; unknown names pass through."""
    key = _normalize_name(display_name_raw or "")
    if not key:
        return display_name_raw
    active = list_worker_mappings(db, company_id)
    for m in active:
        if m.display_name == key:
            return m.system_name
    for m in active:
        if key in (m.aliases or []):
            return m.system_name
    log_event("worker_name.unresolved", level="debug", company_id=company_id, name=display_name_raw)
    return display_name_raw
