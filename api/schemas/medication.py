"""
Medication Schemas
Pydantic models for medication-related API requests and responses
"""

from typing import Optional, List, Dict, Any
from datetime import datetime, date
from pydantic import BaseModel, Field, ConfigDict

from models import FrequencyCode, StatusChangeType


# ==================== BASE SCHEMAS ====================

class MedicationBase(BaseModel):
    """Base medication schema"""
    name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)


# ==================== REQUEST SCHEMAS ====================

class MedicationCreate(MedicationBase):
    """Schema for creating a new medication"""
    patient_id: str
    instructions: Optional[str] = None
    times: Optional[List[str]] = Field(None, description="Times of day in HH:MM format")
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_prn: bool = False
    reminders_enabled: bool = True
    max_daily_dose: Optional[int] = Field(None, ge=1)


class MedicationImport(BaseModel):
    """Legacy or unified medication record, selected by record_type"""
    patient_id: str
    record: Dict[str, Any]
    performed_by: str = Field(default="import", max_length=100)


class FrequencyNormalizeRequest(BaseModel):
    """Schema for normalizing a frequency label"""
    frequency: str = Field(..., max_length=100)
    patient_id: Optional[str] = None


class StatusChangeRequest(BaseModel):
    """Schema for a lifecycle transition"""
    change_type: StatusChangeType
    payload: Dict[str, Any] = Field(default_factory=dict)
    performed_by: str = Field(default="patient", min_length=1, max_length=100)
    notes: Optional[str] = None


class PRNDoseCreate(BaseModel):
    """Schema for logging an as-needed dose"""
    reason: str = Field(..., min_length=1, max_length=30)
    taken_at: Optional[datetime] = None
    dosage_amount: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    logged_by: str = Field(default="patient", max_length=100)


# ==================== RESPONSE SCHEMAS ====================

class MedicationResponse(MedicationBase):
    """Schema for medication response"""
    id: str
    patient_id: str
    frequency_code: FrequencyCode
    instructions: Optional[str] = None
    is_active: bool = True
    is_prn: bool = False
    reminders_enabled: bool = True
    max_daily_dose: Optional[int] = None
    current_status: str
    status_reason: Optional[str] = None
    status_changed_at: Optional[datetime] = None
    source_record_type: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MedicationList(BaseModel):
    """List of medications"""
    medications: List[MedicationResponse]
    total: int
    active_count: int


class FrequencyNormalizeResponse(BaseModel):
    """Canonical frequency and its default times"""
    source_text: str
    code: FrequencyCode
    description: str
    recognized: bool
    default_times: List[str]
    default_buckets: List[str]


class StatusChangeResponse(BaseModel):
    """Appended status change record"""
    id: str
    medication_id: str
    change_type: StatusChangeType
    payload: Dict[str, Any]
    performed_by: str
    performed_at: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class MedicationStatusResponse(BaseModel):
    """Derived current status of a medication"""
    medication_id: str
    status: str
    recorded_status: str
    auto_resume_pending: bool
    reason: Optional[str] = None
    hold_until: Optional[date] = None
    changed_at: Optional[datetime] = None
    changed_by: Optional[str] = None
    active_schedules: int = 0


class PRNDoseResponse(BaseModel):
    """Logged as-needed dose"""
    id: str
    medication_id: str
    patient_id: str
    taken_at: datetime
    dosage_amount: Optional[str] = None
    reason: str
    notes: Optional[str] = None
    logged_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReasonCount(BaseModel):
    reason: str
    count: int


class PRNUsageResponse(BaseModel):
    """Recent as-needed usage"""
    medication_id: str
    is_prn: bool
    max_daily_dose: Optional[int] = None
    doses_last_24h: int
    doses_last_7_days: int
    remaining_today: Optional[int] = None
    last_taken_at: Optional[datetime] = None
    common_reasons: List[ReasonCount] = Field(default_factory=list)
