"""
Patient Schemas
Pydantic models for patient-related API requests and responses
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict


# ==================== BASE SCHEMAS ====================

class TimeBucketSchema(BaseModel):
    """A time-of-day bucket definition"""
    name: str = Field(..., min_length=1, max_length=50)
    label: str = Field(..., min_length=1, max_length=100)
    default_time: str = Field(..., pattern=r"^\d{1,2}:\d{2}$", description="Anchor time in HH:MM format")


class PatientBase(BaseModel):
    """Base patient schema with common fields"""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    # Use plain string for email to allow special-use/test domains in fixtures
    email: Optional[str] = None
    timezone: str = Field(default="UTC", max_length=50)


# ==================== REQUEST SCHEMAS ====================

class PatientCreate(PatientBase):
    """Schema for creating a new patient"""
    time_buckets: Optional[List[TimeBucketSchema]] = None


class TimeBucketsUpdate(BaseModel):
    """Schema for replacing a patient's time buckets"""
    time_buckets: List[TimeBucketSchema] = Field(..., min_length=1)


# ==================== RESPONSE SCHEMAS ====================

class BucketWindowResponse(BaseModel):
    """Bucket with the window derived from neighbouring anchors"""
    name: str
    label: str
    default_time: str
    start: str
    end: str


class PatientResponse(PatientBase):
    """Schema for patient response"""
    id: str
    is_active: bool = True
    time_buckets: List[BucketWindowResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
