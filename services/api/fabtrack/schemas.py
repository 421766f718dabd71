from datetime import date
from typing import Optional, List, Dict, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

Shift = Literal["day", "night"]
FieldName = Literal["machineName", "productionLength", "totalPick", "speed", "h1", "h2", "worph", "other"]
PreprocessingHint = Literal["text", "number", "time", "mixed"]

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

class MachineIn(_CamelModel):
    machine_number: str = Field(..., alias="machineNumber", min_length=1, max_length=64)
    type: Literal["single", "double"]
    description: Optional[str] = None

class WorkerIn(_CamelModel):
    name: str = Field(..., min_length=1, max_length=128)
    aadhaar_number: Optional[str] = Field(None, alias="aadhaarNumber")
    phone: Optional[str] = None

class DayWideFields(_CamelModel):
    speed: Optional[float] = Field(None, ge=0)
    cfm: Optional[float] = Field(None, ge=0)
    pik: Optional[float] = Field(None, ge=0)
    previous_reading: Optional[float] = Field(None, alias="previousReading", ge=0)
    current_reading: Optional[float] = Field(None, alias="currentReading", ge=0)

    def day_wide_supplied(self) -> bool:
        return any(v is not None for v in (self.speed, self.cfm, self.pik, self.previous_reading, self.current_reading))

class ShiftEntryIn(DayWideFields):
    machine: int
    worker: int
    production_date: Optional[Union[date, str]] = Field(None, alias="productionDate")
    shift: Shift
    runtime: Optional[float] = Field(None, ge=0)
    efficiency: Optional[float] = Field(None, ge=0, le=100)
    h1: Optional[float] = Field(None, ge=0)
    h2: Optional[float] = Field(None, ge=0)
    worph: Optional[float] = Field(None, ge=0)
    meter: Optional[float] = Field(None, ge=0)
    total_pick: Optional[float] = Field(None, alias="totalPick", ge=0)
    notes: Optional[str] = None

class ShiftEntryUpdate(DayWideFields):
    worker: Optional[int] = None
    runtime: Optional[float] = Field(None, ge=0)
    efficiency: Optional[float] = Field(None, ge=0, le=100)
    h1: Optional[float] = Field(None, ge=0)
    h2: Optional[float] = Field(None, ge=0)
    worph: Optional[float] = Field(None, ge=0)
    meter: Optional[float] = Field(None, ge=0)
    total_pick: Optional[float] = Field(None, alias="totalPick", ge=0)
    notes: Optional[str] = None

class FieldMappingIn(_CamelModel):
    field_name: FieldName = Field(..., alias="fieldName")
    x: float
    y: float
    width: float
    height: float
    preprocessing_hint: PreprocessingHint = Field("text", alias="preprocessingHint")

    @field_validator("x", "y", "width", "height", mode="after")
    @classmethod
    def _clamp_percent(cls, v: float) -> float:
        return min(100.0, max(0.0, v))

class TemplateIn(_CamelModel):
    template_name: str = Field(..., alias="templateName", min_length=1, max_length=128)
    description: Optional[str] = None
    machine_display_type: str = Field("standard", alias="machineDisplayType")
    sample_image_url: Optional[str] = Field(None, alias="sampleImageUrl")
    field_mappings: List[FieldMappingIn] = Field(default_factory=list, alias="fieldMappings")
    is_default: bool = Field(False, alias="isDefault")

class WorkerNameMappingIn(_CamelModel):
    display_name: str = Field(..., alias="displayName", min_length=1)
    system_name: str = Field(..., alias="systemName", min_length=1)
    worker_id: Optional[int] = Field(None, alias="workerId")
    aliases: List[str] = Field(default_factory=list)
    is_active: bool = Field(True, alias="isActive")

class VerifyIn(_CamelModel):
    # corrections are stored as typed; numbers stay numbers
    extracted_data: Dict[str, Union[str, int, float, None]] = Field(..., alias="extractedData")


# ---- output shaping ----

def machine_out(m) -> dict:
    return {
        "id": m.id, "machineNumber": m.machine_number, "type": m.type,
        "description": m.description, "isActive": m.is_active,
    }

def worker_out(w) -> dict:
    return {"id": w.id, "name": w.name, "aadhaarNumber": w.aadhaar_number, "phone": w.phone, "isActive": w.is_active}

def shift_record_out(r) -> dict:
    return {
        "id": r.id,
        "machine": machine_out(r.machine) if r.machine is not None else r.machine_id,
        "worker": worker_out(r.worker) if r.worker is not None else r.worker_id,
        "productionDate": r.production_date.isoformat(),
        "shift": r.shift,
        "runtime": r.runtime, "efficiency": r.efficiency,
        "h1": r.h1, "h2": r.h2, "worph": r.worph,
        "meter": r.meter, "totalPick": r.total_pick,
        "notes": r.notes,
        "createdBy": r.created_by,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
        "updatedAt": r.updated_at.isoformat() if r.updated_at else None,
    }

def daily_settings_out(d) -> Optional[dict]:
    if d is None:
        return None
    return {
        "id": d.id, "machine": d.machine_id, "productionDate": d.production_date.isoformat(),
        "speed": d.speed, "cfm": d.cfm, "pik": d.pik,
        "previousReading": d.previous_reading, "currentReading": d.current_reading,
        "unitsConsumed": d.units_consumed,
    }

def summary_out(s) -> Optional[dict]:
    if s is None:
        return None
    return {
        "date": s.date.isoformat(),
        "dayEfficiency": s.day_efficiency, "dayMeter": s.day_meter, "dayPick": s.day_pick,
        "dayMachine": s.day_machine, "avgDayRuntime": s.avg_day_runtime,
        "nightEfficiency": s.night_efficiency, "nightMeter": s.night_meter, "nightPick": s.night_pick,
        "nightMachine": s.night_machine, "avgNightRuntime": s.avg_night_runtime,
        "totalEfficiency": s.total_efficiency, "totalMeter": s.total_meter, "totalPick": s.total_pick,
        "totalMachine": s.total_machine, "totalAvgRuntime": s.total_avg_runtime, "avgCFM": s.avg_cfm,
        "totalUnitsConsumed": s.total_units_consumed, "unitsPerMeter": s.units_per_meter,
        "machinesReported": s.machines_reported,
    }

def template_out(t) -> dict:
    return {
        "id": t.id, "templateName": t.template_name, "description": t.description,
        "machineDisplayType": t.machine_display_type, "sampleImageUrl": t.sample_image_url,
        "isDefault": t.is_default,
        "fieldMappings": [{
            "fieldName": f.field_name, "x": f.x, "y": f.y, "width": f.width, "height": f.height,
            "preprocessingHint": f.preprocessing_hint,
        } for f in t.field_mappings],
    }

def worker_mapping_out(m) -> dict:
    return {
        "id": m.id, "displayName": m.display_name, "systemName": m.system_name,
        "workerId": m.worker_id, "aliases": list(m.aliases or []), "isActive": m.is_active,
    }

def screenshot_out(r) -> dict:
    return {
        "id": r.id, "templateId": r.template_id, "machineId": r.machine_id,
        "date": r.date.isoformat(), "shift": r.shift,
        "imageSize": r.image_size,
        "status": r.status,
        "extractedData": r.extracted_data or {},
        "confidenceScores": r.confidence_scores or {},
        "overallConfidence": r.overall_confidence,
        "processingError": r.processing_error,
        "manuallyVerified": r.manually_verified,
        "verifiedBy": r.verified_by,
        "verifiedAt": r.verified_at.isoformat() if r.verified_at else None,
        "uploadedBy": r.uploaded_by,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }
