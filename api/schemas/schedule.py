"""
Schedule Schemas
Pydantic models for schedules, dose events and today's buckets
"""

from typing import Optional, List, Dict, Any
from datetime import datetime, date
from pydantic import BaseModel, Field, ConfigDict

from models import FrequencyCode, SkipReason


# ==================== REQUEST SCHEMAS ====================

class ScheduleGenerateRequest(BaseModel):
    """Schema for generating dose events over a date range"""
    medication_id: str
    range_start: date
    range_end: date
    frequency: Optional[FrequencyCode] = None
    times: Optional[List[str]] = Field(None, description="Times of day in HH:MM format")
    start_date: Optional[date] = None


class TakeDoseRequest(BaseModel):
    taken_at: Optional[datetime] = None
    taken_by: Optional[str] = Field(None, max_length=100)


class SkipDoseRequest(BaseModel):
    reason: SkipReason
    notes: Optional[str] = None


class SnoozeDoseRequest(BaseModel):
    minutes: int = Field(..., gt=0, le=24 * 60)
    reason: Optional[str] = Field(None, max_length=200)
    snoozed_by: Optional[str] = Field(None, max_length=100)


class RescheduleDoseRequest(BaseModel):
    new_time: datetime
    reason: str = Field(..., min_length=1, max_length=500)
    is_one_time: bool = True


# ==================== RESPONSE SCHEMAS ====================

class ScheduleResponse(BaseModel):
    """Schedule template"""
    id: str
    medication_id: str
    frequency: FrequencyCode
    times: List[str]
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    is_paused: bool
    generate_calendar_events: bool
    superseded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DoseEventResponse(BaseModel):
    """Dose event with its derived status"""
    id: str
    schedule_id: str
    medication_id: str
    patient_id: str
    scheduled_at: datetime
    effective_due_at: datetime
    status: str
    stored_status: str
    taken_at: Optional[datetime] = None
    taken_by: Optional[str] = None
    skip_reason: Optional[str] = None
    skip_notes: Optional[str] = None
    snooze_count: int = 0
    snoozed_until: Optional[datetime] = None
    snooze_history: List[Dict[str, Any]] = Field(default_factory=list)
    reschedule_to: Optional[datetime] = None
    reschedule_reason: Optional[str] = None
    reschedule_is_one_time: Optional[bool] = None
    rescheduled_from_id: Optional[str] = None
    is_cancelled: bool = False
    cancel_reason: Optional[str] = None


class ScheduleGenerateResponse(BaseModel):
    medication_id: str
    range_start: date
    range_end: date
    total: int
    events: List[DoseEventResponse]


class MedicationScheduleView(BaseModel):
    medication_id: str
    schedules: List[ScheduleResponse]
    events: List[DoseEventResponse]


class RescheduleResponse(BaseModel):
    original: DoseEventResponse
    replacement: DoseEventResponse


class BucketAssignmentResponse(BaseModel):
    event_id: str
    bucket: str
    label: str
    minutes_until_due: int


class TodayEventEntry(BaseModel):
    event_id: str
    medication_id: str
    scheduled_at: datetime
    effective_due_at: datetime
    status: str
    bucket: str
    minutes_until_due: int
    snooze_count: int = 0
    is_terminal: bool


class BucketGroupResponse(BaseModel):
    name: str
    label: str
    start: str
    end: str
    is_complete: bool
    events: List[TodayEventEntry]


class TodayBucketsResponse(BaseModel):
    """Today's doses by time-of-day bucket and by urgency"""
    date: date
    buckets: List[BucketGroupResponse]
    overdue: List[TodayEventEntry]
    now: List[TodayEventEntry]
    due_soon: List[TodayEventEntry]
    completed: List[TodayEventEntry]
    generated_at: Optional[datetime] = None


class RepairResponse(BaseModel):
    patient_id: str
    dry_run: bool
    issues_found: int
    fixes_applied: int
    details: List[Dict[str, Any]]
