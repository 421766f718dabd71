"""Template-driven screenshot extraction and its record lifecycle.

pending -> processing -> completed | manual_review | failed

Manual verification may move a record to ``completed`` from any state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from PIL import Image
from sqlalchemy.orm import Session

from .config import settings
from .errors import NotFound
from .logger import log_event
from .models import ScreenshotRecord, ScreenshotTemplate, utc_now
from .ocr import PercentBox, RegionReader, extract_region
from .store import get_screenshot_record

_TRANSITIONS = {
    "pending": {"processing"},
    "processing": {"completed", "manual_review", "failed"},
}


class InvalidTransition(Exception):
    pass


@dataclass
class ExtractionResult:
    extracted_data: Dict[str, str] = field(default_factory=dict)
    confidence_scores: Dict[str, float] = field(default_factory=dict)
    overall_confidence: float = 0.0


def transition(record: ScreenshotRecord, new_status: str) -> None:
    if new_status not in _TRANSITIONS.get(record.status, set()):
        raise InvalidTransition(f"{record.status} -> {new_status}")
    record.status = new_status
    record.updated_at = utc_now()


def status_for(overall_confidence: float, threshold: Optional[float] = None) -> str:
    threshold = settings.MANUAL_REVIEW_THRESHOLD if threshold is None else threshold
    return "manual_review" if overall_confidence < threshold else "completed"


def process_screenshot(image: Image.Image, mappings: Iterable, reader: Optional[RegionReader] = None) -> ExtractionResult:
    """Run every field mapping against ``image``.

    ``mappings`` are objects with ``field_name``, ``x``, ``y``, ``width``,
    ``height`` and ``preprocessing_hint``. A failing region yields an empty
    value with zero confidence and does not stop the others.
    """
    result = ExtractionResult()
    scores: List[float] = []
    for m in mappings:
        region = extract_region(image, PercentBox(m.x, m.y, m.width, m.height), m.preprocessing_hint, reader=reader)
        result.extracted_data[m.field_name] = region.text
        result.confidence_scores[m.field_name] = region.confidence
        scores.append(region.confidence)
    result.overall_confidence = sum(scores) / len(scores) if scores else 0.0
    return result


def create_pending_record(db: Session, company_id: str, template_id: int, machine_id: int, day: date, shift: str,
                          image_path: str, image_size: int, user_id: Optional[str]) -> ScreenshotRecord:
    rec = ScreenshotRecord(
        company_id=company_id, template_id=template_id, machine_id=machine_id,
        date=day, shift=shift, image_path=image_path, image_size=image_size,
        uploaded_by=user_id, status="pending", extracted_data={}, confidence_scores={},
    )
    db.add(rec)
    db.commit()
    db.refresh(rec)
    return rec


def mark_processing(db: Session, record: ScreenshotRecord) -> ScreenshotRecord:
    if record.status != "processing":
        transition(record, "processing")
        db.commit()
    return record


def run_extraction(session_factory: Callable[[], Session], company_id: str, record_id: int,
                   reader: Optional[RegionReader] = None) -> Optional[str]:
    """Background entry point. Returns the terminal status written, if any."""
    with session_factory() as db:
        try:
            record = get_screenshot_record(db, company_id, record_id)
        except NotFound:
            log_event("extraction.missing_record", level="warning", company_id=company_id, record_id=record_id)
            return None
        if record.status not in ("pending", "processing"):
            return record.status
        try:
            mark_processing(db, record)
            template = None
            if record.template_id is not None:
                template = db.query(ScreenshotTemplate).filter(
                    ScreenshotTemplate.company_id == company_id, ScreenshotTemplate.id == record.template_id
                ).first()
            if template is None:
                raise NotFound("Mapping template not found")

            with Image.open(record.image_path) as image:
                image.load()
                result = process_screenshot(image, template.field_mappings, reader=reader)

            record.extracted_data = result.extracted_data
            record.confidence_scores = result.confidence_scores
            record.overall_confidence = result.overall_confidence
            record.processing_error = None
            transition(record, status_for(result.overall_confidence))
            db.commit()
            log_event("extraction.finished", company_id=company_id, record_id=record_id,
                      status=record.status, overall_confidence=round(result.overall_confidence, 2))
            return record.status
        except Exception as exc:
            db.rollback()
            record = get_screenshot_record(db, company_id, record_id)
            record.status = "failed"
            record.processing_error = str(exc) or exc.__class__.__name__
            record.updated_at = utc_now()
            db.commit()
            log_event("extraction.failed", level="error", company_id=company_id, record_id=record_id, error=str(exc))
            return "failed"


def verify_record(db: Session, company_id: str, record_id: int, corrected: Dict[str, Any],
                  user_id: Optional[str]) -> ScreenshotRecord:
    """Accept human-corrected values. Always ends in ``completed``."""
    record = get_screenshot_record(db, company_id, record_id)
    record.extracted_data = dict(corrected)
    record.manually_verified = True
    record.verified_by = user_id
    record.verified_at = utc_now()
    record.status = "completed"
    record.updated_at = record.verified_at
    db.commit()
    db.refresh(record)
    log_event("extraction.verified", company_id=company_id, record_id=record_id, verified_by=user_id)
    return record


def list_records(db: Session, company_id: str, day: Optional[date] = None, shift: Optional[str] = None,
                 machine_id: Optional[int] = None, status: Optional[str] = None, limit: int = 50) -> List[ScreenshotRecord]:
    q = db.query(ScreenshotRecord).filter(ScreenshotRecord.company_id == company_id)
    if day:
        q = q.filter(ScreenshotRecord.date == day)
    if shift:
        q = q.filter(ScreenshotRecord.shift == shift)
    if machine_id:
        q = q.filter(ScreenshotRecord.machine_id == machine_id)
    if status:
        q = q.filter(ScreenshotRecord.status == status)
    return q.order_by(ScreenshotRecord.created_at.desc(), ScreenshotRecord.id.desc()).limit(limit).all()


def unfinished_records(db: Session) -> List[ScreenshotRecord]:
    return db.query(ScreenshotRecord).filter(ScreenshotRecord.status.in_(("pending", "processing"))).all()
