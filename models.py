"""
Database Models
SQLAlchemy ORM models for CareCadence
"""

import uuid
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Date, Index, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum

from database import Base
from config import TableNames


def _uuid() -> str:
    return str(uuid.uuid4())


# ==================== ENUMS ====================

class FrequencyCode(str, PyEnum):
    """Canonical medication frequency"""
    DAILY = "daily"
    TWICE_DAILY = "twice_daily"
    THREE_TIMES_DAILY = "three_times_daily"
    FOUR_TIMES_DAILY = "four_times_daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    AS_NEEDED = "as_needed"


class MedicationStatus(str, PyEnum):
    """Lifecycle status of a medication"""
    ACTIVE = "active"
    HELD = "held"
    DISCONTINUED = "discontinued"
    REPLACED = "replaced"


class DoseStatus(str, PyEnum):
    """Status of a single dose event"""
    SCHEDULED = "scheduled"
    TAKEN = "taken"
    MISSED = "missed"
    SKIPPED = "skipped"
    RESCHEDULED = "rescheduled"


class StatusChangeType(str, PyEnum):
    """Kinds of medication lifecycle transitions"""
    HOLD = "hold"
    RESUME = "resume"
    DISCONTINUE = "discontinue"
    REPLACE = "replace"


class SkipReason(str, PyEnum):
    """Why a patient skipped a dose"""
    FORGOT = "forgot"
    FELT_SICK = "felt_sick"
    RAN_OUT = "ran_out"
    SIDE_EFFECTS = "side_effects"
    OTHER = "other"


class RiskLevel(str, PyEnum):
    """Adherence risk classification"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ==================== MODELS ====================

class Patient(Base):
    """Patient profile with time-of-day bucket preferences"""
    __tablename__ = TableNames.PATIENTS

    id = Column(String(36), primary_key=True, default=_uuid)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True)
    timezone = Column(String(50), default="UTC")

    # List of {"name", "label", "default_time"}; None means the defaults
    time_buckets = Column(JSON)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    medications = relationship("Medication", back_populates="patient", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Medication(Base):
    """A patient's medication; never deleted, only status-transitioned"""
    __tablename__ = TableNames.MEDICATIONS

    id = Column(String(36), primary_key=True, default=_uuid)
    patient_id = Column(String(36), ForeignKey(f"{TableNames.PATIENTS}.id"), nullable=False)

    name = Column(String(255), nullable=False)
    dosage = Column(String(100), nullable=False)  # e.g. "10mg"
    instructions = Column(Text)

    # Frequency as entered and as normalized
    frequency = Column(String(100), nullable=False)  # "Once daily", "bid"
    frequency_code = Column(String(30), nullable=False, default=FrequencyCode.DAILY.value)

    is_active = Column(Boolean, default=True)
    is_prn = Column(Boolean, default=False)
    reminders_enabled = Column(Boolean, default=True)
    max_daily_dose = Column(Integer)  # PRN only

    current_status = Column(String(20), nullable=False, default=MedicationStatus.ACTIVE.value)
    status_reason = Column(Text)
    status_changed_at = Column(DateTime)
    status_changed_by = Column(String(100))

    # Set when imported from another record shape
    source_record_type = Column(String(20))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="medications")
    schedules = relationship("MedicationSchedule", back_populates="medication", cascade="all, delete-orphan")
    events = relationship("MedicationCalendarEvent", back_populates="medication", cascade="all, delete-orphan")
    status_changes = relationship(
        "MedicationStatusChange",
        back_populates="medication",
        cascade="all, delete-orphan",
        order_by="MedicationStatusChange.performed_at"
    )
    prn_logs = relationship("PRNDoseLog", back_populates="medication", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_medications_patient_status", "patient_id", "current_status"),
    )


class MedicationSchedule(Base):
    """Recurring schedule template used to generate dose events"""
    __tablename__ = TableNames.MEDICATION_SCHEDULES

    id = Column(String(36), primary_key=True, default=_uuid)
    medication_id = Column(String(36), ForeignKey(f"{TableNames.MEDICATIONS}.id"), nullable=False)

    frequency = Column(String(30), nullable=False)
    times = Column(JSON, nullable=False, default=list)  # sorted unique "HH:MM"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)

    is_active = Column(Boolean, default=True)
    is_paused = Column(Boolean, default=False)
    generate_calendar_events = Column(Boolean, default=True)

    # Set when a replace transition supersedes this schedule
    superseded_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    medication = relationship("Medication", back_populates="schedules")
    events = relationship("MedicationCalendarEvent", back_populates="schedule")

    __table_args__ = (
        Index("ix_medication_schedules_medication_active", "medication_id", "is_active"),
    )


class MedicationCalendarEvent(Base):
    """One concrete dose event; (schedule_id, scheduled_at) is the slot key"""
    __tablename__ = TableNames.MEDICATION_CALENDAR_EVENTS

    id = Column(String(36), primary_key=True, default=_uuid)
    schedule_id = Column(String(36), ForeignKey(f"{TableNames.MEDICATION_SCHEDULES}.id"), nullable=False)
    medication_id = Column(String(36), ForeignKey(f"{TableNames.MEDICATIONS}.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey(f"{TableNames.PATIENTS}.id"), nullable=False)

    scheduled_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=DoseStatus.SCHEDULED.value)

    # Take
    taken_at = Column(DateTime)
    taken_by = Column(String(100))

    # Skip
    skip_reason = Column(String(30))
    skip_notes = Column(Text)

    # Snooze
    snooze_count = Column(Integer, nullable=False, default=0)
    snoozed_until = Column(DateTime)
    snooze_history = Column(JSON, default=list)

    # Reschedule
    reschedule_to = Column(DateTime)
    reschedule_reason = Column(Text)
    reschedule_is_one_time = Column(Boolean)
    rescheduled_from_id = Column(String(36), ForeignKey(f"{TableNames.MEDICATION_CALENDAR_EVENTS}.id"))

    # Suppression (hold, discontinue, schedule change); orthogonal to status
    is_cancelled = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime)
    cancel_reason = Column(String(100))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    schedule = relationship("MedicationSchedule", back_populates="events")
    medication = relationship("Medication", back_populates="events")

    __table_args__ = (
        Index("ix_calendar_events_slot", "schedule_id", "scheduled_at"),
        Index("ix_calendar_events_patient_time", "patient_id", "scheduled_at"),
        Index("ix_calendar_events_medication_time", "medication_id", "scheduled_at"),
    )

    @property
    def effective_due_at(self) -> datetime:
        return self.snoozed_until or self.scheduled_at


class MedicationStatusChange(Base):
    """Append-only audit record of a medication lifecycle transition"""
    __tablename__ = TableNames.MEDICATION_STATUS_CHANGES

    id = Column(String(36), primary_key=True, default=_uuid)
    medication_id = Column(String(36), ForeignKey(f"{TableNames.MEDICATIONS}.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey(f"{TableNames.PATIENTS}.id"), nullable=False)

    change_type = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False)  # serialized per-type payload

    performed_by = Column(String(100), nullable=False)
    performed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    notes = Column(Text)

    medication = relationship("Medication", back_populates="status_changes")

    __table_args__ = (
        Index("ix_status_changes_medication_time", "medication_id", "performed_at"),
    )


class PRNDoseLog(Base):
    """Ad-hoc intake of an as-needed medication"""
    __tablename__ = TableNames.PRN_DOSE_LOGS

    id = Column(String(36), primary_key=True, default=_uuid)
    medication_id = Column(String(36), ForeignKey(f"{TableNames.MEDICATIONS}.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey(f"{TableNames.PATIENTS}.id"), nullable=False)

    taken_at = Column(DateTime, nullable=False)
    dosage_amount = Column(String(100))
    reason = Column(String(30), nullable=False)
    notes = Column(Text)
    logged_by = Column(String(100), default="patient")

    created_at = Column(DateTime, default=datetime.utcnow)

    medication = relationship("Medication", back_populates="prn_logs")

    __table_args__ = (
        Index("ix_prn_logs_medication_time", "medication_id", "taken_at"),
    )
