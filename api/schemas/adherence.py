"""
Adherence Schemas
Pydantic models for adherence API responses
"""

from typing import Optional, List
from datetime import date
from pydantic import BaseModel, ConfigDict

from models import RiskLevel


class AdherenceRecordResponse(BaseModel):
    """Derived adherence statistics"""
    medication_id: Optional[str] = None
    window_start: date
    window_end: date
    scheduled: int
    taken: int
    missed: int
    skipped: int
    pending: int
    adherence_rate: float
    on_time: int
    on_time_rate: float
    average_delay_minutes: float
    longest_delay_minutes: int
    current_streak: int
    risk_level: RiskLevel

    model_config = ConfigDict(from_attributes=True)


class MedicationAdherenceItem(BaseModel):
    medication_name: Optional[str] = None
    record: AdherenceRecordResponse


class PatientAdherenceResponse(BaseModel):
    """Overall and per-medication adherence for a patient"""
    patient_id: str
    overall: AdherenceRecordResponse
    by_medication: List[MedicationAdherenceItem]
