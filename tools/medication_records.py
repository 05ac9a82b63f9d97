"""
Medication Record Variants
Legacy (flat) and unified (nested) medication records as one tagged union.

Callers dispatch on `record_type` through the capability functions below
instead of probing which keys a record happens to have.
"""

import logging
from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from models import FrequencyCode
from tools.frequency_normalizer import match_frequency_code, normalize_frequency
from tools.scheduler import normalize_times


logger = logging.getLogger(__name__)


class LegacyMedicationRecord(BaseModel):
    """Flat record shape used by older data sources"""
    model_config = ConfigDict(populate_by_name=True)

    record_type: Literal["legacy"] = "legacy"
    name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)
    instructions: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True
    is_prn: bool = False
    max_daily_dose: Optional[int] = Field(None, ge=1)
    has_reminders: bool = False
    reminder_times: List[str] = Field(default_factory=list)

    @field_validator("reminder_times")
    @classmethod
    def _check_times(cls, value: List[str]) -> List[str]:
        return normalize_times(value)


class RecordStatus(BaseModel):
    is_active: bool = True
    is_prn: bool = False
    current: Literal["active", "held", "discontinued"] = "active"


class RecordSchedule(BaseModel):
    frequency: FrequencyCode = FrequencyCode.DAILY
    times: List[str] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("times")
    @classmethod
    def _check_times(cls, value: List[str]) -> List[str]:
        return normalize_times(value)


class RecordReminders(BaseModel):
    enabled: bool = True
    minutes_before: List[int] = Field(default_factory=lambda: [15, 5])


class UnifiedMedicationRecord(BaseModel):
    """Nested record shape with embedded status, schedule and reminders"""
    record_type: Literal["unified"] = "unified"
    name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)
    instructions: Optional[str] = None
    max_daily_dose: Optional[int] = Field(None, ge=1)
    status: RecordStatus = Field(default_factory=RecordStatus)
    schedule: RecordSchedule = Field(default_factory=RecordSchedule)
    reminders: RecordReminders = Field(default_factory=RecordReminders)


MedicationRecord = Annotated[
    Union[LegacyMedicationRecord, UnifiedMedicationRecord],
    Field(discriminator="record_type"),
]

_record_adapter = TypeAdapter(MedicationRecord)


def parse_medication_record(data: Dict[str, Any]):
    """Validate a raw dict carrying a record_type discriminator"""
    try:
        return _record_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid medication record",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        )


# ==================== CAPABILITIES ====================

def is_prn(record) -> bool:
    if isinstance(record, UnifiedMedicationRecord):
        return record.status.is_prn or record.schedule.frequency == FrequencyCode.AS_NEEDED
    return record.is_prn or match_frequency_code(record.frequency) == FrequencyCode.AS_NEEDED


def reminders_enabled(record) -> bool:
    if isinstance(record, UnifiedMedicationRecord):
        return record.reminders.enabled
    return record.has_reminders


def is_active(record) -> bool:
    if isinstance(record, UnifiedMedicationRecord):
        return record.status.is_active and record.status.current != "discontinued"
    return record.is_active


def frequency_code(record) -> FrequencyCode:
    if is_prn(record):
        return FrequencyCode.AS_NEEDED
    if isinstance(record, UnifiedMedicationRecord):
        return FrequencyCode(record.schedule.frequency)
    return normalize_frequency(record.frequency).code


def schedule_times(record) -> List[str]:
    """Explicit times carried by the record; empty means use defaults"""
    if isinstance(record, UnifiedMedicationRecord):
        return list(record.schedule.times)
    return list(record.reminder_times)


def to_unified(record) -> UnifiedMedicationRecord:
    if isinstance(record, UnifiedMedicationRecord):
        return record

    unified = UnifiedMedicationRecord(
        name=record.name,
        dosage=record.dosage,
        frequency=record.frequency,
        instructions=record.instructions,
        max_daily_dose=record.max_daily_dose,
        status=RecordStatus(
            is_active=record.is_active,
            is_prn=is_prn(record),
            current="active" if record.is_active else "discontinued",
        ),
        schedule=RecordSchedule(
            frequency=frequency_code(record),
            times=record.reminder_times,
            start_date=record.start_date,
            end_date=record.end_date,
        ),
        reminders=RecordReminders(enabled=record.has_reminders),
    )
    logger.debug(f"Converted legacy record {record.name!r} to unified")
    return unified
