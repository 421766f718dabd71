from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Date, Boolean, Float, Text, JSON, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from .db import Base

SHIFTS = ("day", "night")
MACHINE_TYPES = ("single", "double")
FIELD_NAMES = ("machineName", "productionLength", "totalPick", "speed", "h1", "h2", "worph", "other")
PREPROCESSING_HINTS = ("text", "number", "time", "mixed")
EXTRACTION_STATUSES = ("pending", "processing", "completed", "manual_review", "failed")

def utc_now() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Machine(Base):
    __tablename__ = "machines"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False)
    machine_number = Column(String(64), nullable=False)
    type = Column(String(16), nullable=False)  # single | double
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
    __table_args__ = (
        UniqueConstraint("company_id", "machine_number", name="uq_machine_company_number"),
    )

    @property
    def multiplier(self) -> int:
        return 2 if self.type == "double" else 1

class Worker(Base):
    __tablename__ = "workers"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    aadhaar_number = Column(String(32), nullable=True)
    phone = Column(String(32), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

class ShiftRecord(Base):
    __tablename__ = "shift_records"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False)
    machine_id = Column(Integer, ForeignKey("machines.id"), nullable=False)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=True)
    production_date = Column(Date, nullable=False)
    shift = Column(String(8), nullable=False)  # day | night

    runtime = Column(Float, default=0, nullable=False)  # minutes
    efficiency = Column(Float, default=0, nullable=False)  # percent
    h1 = Column(Float, default=0, nullable=False)
    h2 = Column(Float, default=0, nullable=False)
    worph = Column(Float, default=0, nullable=False)
    meter = Column(Float, default=0, nullable=False)
    total_pick = Column(Float, default=0, nullable=False)
    notes = Column(Text, nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    machine = relationship("Machine", lazy="joined")
    worker = relationship("Worker", lazy="joined")
    __table_args__ = (
        UniqueConstraint("company_id", "machine_id", "production_date", "shift", name="uq_shift_key"),
        Index("idx_shift_company_date", "company_id", "production_date"),
    )

class DailySettings(Base):
    __tablename__ = "daily_settings"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False)
    machine_id = Column(Integer, ForeignKey("machines.id"), nullable=False)
    production_date = Column(Date, nullable=False)

    speed = Column(Float, default=0, nullable=False)
    cfm = Column(Float, default=0, nullable=False)
    pik = Column(Float, default=0, nullable=False)

    # electricity; unset means "not measured", which is not the same as zero
    previous_reading = Column(Float, nullable=True)
    current_reading = Column(Float, nullable=True)
    units_consumed = Column(Float, nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    machine = relationship("Machine", lazy="joined")
    __table_args__ = (
        UniqueConstraint("company_id", "machine_id", "production_date", name="uq_daily_settings_key"),
    )

class DailySummary(Base):
    __tablename__ = "daily_summaries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)

    day_efficiency = Column(Float, nullable=False, default=0)
    day_meter = Column(Float, nullable=False, default=0)
    day_pick = Column(Float, nullable=False, default=0)
    day_machine = Column(Float, nullable=False, default=0)
    avg_day_runtime = Column(Float, nullable=False, default=0)

    night_efficiency = Column(Float, nullable=False, default=0)
    night_meter = Column(Float, nullable=False, default=0)
    night_pick = Column(Float, nullable=False, default=0)
    night_machine = Column(Float, nullable=False, default=0)
    avg_night_runtime = Column(Float, nullable=False, default=0)

    total_efficiency = Column(Float, nullable=False, default=0)
    total_meter = Column(Float, nullable=False, default=0)
    total_pick = Column(Float, nullable=False, default=0)
    total_machine = Column(Float, nullable=False, default=0)
    total_avg_runtime = Column(Float, nullable=False, default=0)
    avg_cfm = Column(Float, nullable=False, default=0)

    total_units_consumed = Column(Float, nullable=False, default=0)
    units_per_meter = Column(Float, nullable=False, default=0)
    machines_reported = Column(Integer, nullable=False, default=0)

    computed_at = Column(DateTime, default=utc_now, nullable=False)
    __table_args__ = (
        UniqueConstraint("company_id", "date", name="uq_summary_company_date"),
        Index("idx_summary_company_date", "company_id", "date"),
    )

class ScreenshotTemplate(Base):
    __tablename__ = "screenshot_templates"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False)
    template_name = Column(String(128), nullable=False)
    description = Column(Text, nullable=True)
    machine_display_type = Column(String(64), nullable=False, default="standard")
    sample_image_url = Column(String(512), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    field_mappings = relationship(
        "FieldMapping", order_by="FieldMapping.position",
        cascade="all, delete-orphan", lazy="selectin",
    )
    __table_args__ = (
        UniqueConstraint("company_id", "template_name", name="uq_template_company_name"),
        Index("idx_template_default", "company_id", "is_default"),
    )

class FieldMapping(Base):
    __tablename__ = "field_mappings"
    id = Column(Integer, primary_key=True, autoincrement=True)
    template_id = Column(Integer, ForeignKey("screenshot_templates.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    field_name = Column(String(32), nullable=False)
    # percentages of the source image, 0..100
    x = Column(Float, nullable=False)
    y = Column(Float, nullable=False)
    width = Column(Float, nullable=False)
    height = Column(Float, nullable=False)
    preprocessing_hint = Column(String(16), nullable=False, default="text")

class WorkerNameMapping(Base):
    __tablename__ = "worker_name_mappings"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False)
    display_name = Column(String(128), nullable=False)  # upper-cased
    system_name = Column(String(128), nullable=False)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=True)
    aliases = Column(JSON, nullable=False, default=list)  # upper-cased strings
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
    __table_args__ = (
        UniqueConstraint("company_id", "display_name", name="uq_worker_mapping_display"),
    )

class ScreenshotRecord(Base):
    __tablename__ = "screenshot_records"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False)
    template_id = Column(Integer, ForeignKey("screenshot_templates.id", ondelete="SET NULL"), nullable=True)
    machine_id = Column(Integer, ForeignKey("machines.id"), nullable=False)
    date = Column(Date, nullable=False)
    shift = Column(String(8), nullable=False)

    image_path = Column(String(512), nullable=False)
    image_size = Column(Integer, nullable=True)

    extracted_data = Column(JSON, nullable=False, default=dict)
    confidence_scores = Column(JSON, nullable=False, default=dict)
    overall_confidence = Column(Float, nullable=True)

    status = Column(String(16), nullable=False, default="pending")
    processing_error = Column(Text, nullable=True)

    manually_verified = Column(Boolean, nullable=False, default=False)
    verified_by = Column(String(64), nullable=True)
    verified_at = Column(DateTime, nullable=True)

    uploaded_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
    __table_args__ = (
        Index("idx_screenshot_lookup", "company_id", "date", "shift", "machine_id"),
        Index("idx_screenshot_status", "company_id", "status"),
    )
