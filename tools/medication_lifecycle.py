"""
Medication Lifecycle
Per-medication state machine:

    active -> held -> active (resume)
    active | held -> discontinued   (terminal)
    active | held -> replaced       (terminal)

Every transition is recorded as an append-only status change whose
payload is a tagged union keyed by change_type.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import StateConflictError, ValidationError
from models import MedicationStatus, StatusChangeType


logger = logging.getLogger(__name__)


# ==================== PAYLOADS ====================

class HoldPayload(BaseModel):
    change_type: Literal["hold"] = "hold"
    reason: str = Field(..., min_length=1, max_length=500)
    hold_until: Optional[date] = None  # None means indefinite
    auto_resume: bool = False
    instructions: Optional[str] = None

    @model_validator(mode="after")
    def _auto_resume_needs_date(self):
        if self.auto_resume and self.hold_until is None:
            raise ValueError("auto_resume requires hold_until")
        return self


class ResumePayload(BaseModel):
    change_type: Literal["resume"] = "resume"
    reason: Optional[str] = Field(None, max_length=500)
    automatic: bool = False


class DiscontinuePayload(BaseModel):
    change_type: Literal["discontinue"] = "discontinue"
    reason: str = Field(..., min_length=1, max_length=500)
    stop_date: Optional[date] = None  # last day of dosing, defaults to today
    follow_up_required: bool = False
    follow_up_instructions: Optional[str] = None


class ReplacePayload(BaseModel):
    change_type: Literal["replace"] = "replace"
    reason: str = Field(..., min_length=1, max_length=500)
    new_medication_id: Optional[str] = None
    transition_plan: Optional[str] = None
    overlap_days: int = Field(default=0, ge=0, le=90)


StatusChangePayload = Annotated[
    Union[HoldPayload, ResumePayload, DiscontinuePayload, ReplacePayload],
    Field(discriminator="change_type"),
]

_payload_adapter = TypeAdapter(StatusChangePayload)


def parse_payload(change_type: str, data: Optional[Dict[str, Any]] = None):
    """Validate a raw payload dict into the payload type for change_type"""
    try:
        change_type = StatusChangeType(change_type).value
    except ValueError:
        raise ValidationError(
            f"Unknown change type {change_type!r}",
            allowed=[c.value for c in StatusChangeType],
        )
    raw = dict(data or {})
    raw["change_type"] = change_type
    try:
        return _payload_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {change_type} payload",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        )


# ==================== TRANSITIONS ====================

ALLOWED_FROM = {
    StatusChangeType.HOLD: {MedicationStatus.ACTIVE},
    StatusChangeType.RESUME: {MedicationStatus.HELD},
    StatusChangeType.DISCONTINUE: {MedicationStatus.ACTIVE, MedicationStatus.HELD},
    StatusChangeType.REPLACE: {MedicationStatus.ACTIVE, MedicationStatus.HELD},
}

RESULTING_STATUS = {
    StatusChangeType.HOLD: MedicationStatus.HELD,
    StatusChangeType.RESUME: MedicationStatus.ACTIVE,
    StatusChangeType.DISCONTINUE: MedicationStatus.DISCONTINUED,
    StatusChangeType.REPLACE: MedicationStatus.REPLACED,
}

TERMINAL_STATUSES = {MedicationStatus.DISCONTINUED, MedicationStatus.REPLACED}


def check_transition(current: str, change_type: str) -> MedicationStatus:
    """Return the status after change_type, or raise if not allowed"""
    current = MedicationStatus(current)
    change_type = StatusChangeType(change_type)
    if current not in ALLOWED_FROM[change_type]:
        raise StateConflictError(
            f"Cannot {change_type.value} a medication that is {current.value}",
            current_status=current.value,
            action=change_type.value,
        )
    return RESULTING_STATUS[change_type]


def validate_payload_dates(payload, today: date) -> None:
    if isinstance(payload, HoldPayload) and payload.hold_until and payload.hold_until < today:
        raise ValidationError("hold_until cannot be in the past", hold_until=payload.hold_until.isoformat())


def status_after(change_type: Optional[str]) -> MedicationStatus:
    if change_type is None:
        return MedicationStatus.ACTIVE
    return RESULTING_STATUS[StatusChangeType(change_type)]


def latest_change(changes: Sequence) -> Optional[Any]:
    """Most recent change; on equal timestamps the later-appended one wins"""
    if not changes:
        return None
    return max(enumerate(changes), key=lambda pair: (pair[1].performed_at, pair[0]))[1]


def due_auto_resume(changes: Sequence, today: date) -> Optional[HoldPayload]:
    """The latest hold payload if it is due to auto-resume as of today"""
    latest = latest_change(changes)
    if latest is None or latest.change_type != StatusChangeType.HOLD.value:
        return None
    payload = parse_payload(latest.change_type, latest.payload)
    if payload.auto_resume and payload.hold_until and today > payload.hold_until:
        return payload
    return None


def derive_current_status(changes: Sequence, today: Optional[date] = None) -> MedicationStatus:
    """
    Status implied by the change log, as of today.

    A hold with auto-resume reads as active once its hold_until date has
    passed, without anything being written.
    """
    today = today or date.today()
    latest = latest_change(changes)
    if latest is None:
        return MedicationStatus.ACTIVE
    if due_auto_resume(changes, today):
        return MedicationStatus.ACTIVE
    return status_after(latest.change_type)


@dataclass
class SuppressionWindow:
    """Live scheduled events with start <= scheduled_at (< end) get cancelled"""
    start: datetime
    end: Optional[datetime] = None
    reason: str = ""

    def covers(self, moment: datetime) -> bool:
        if moment < self.start:
            return False
        return self.end is None or moment < self.end


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def schedule_end_date(payload, today: date) -> Optional[date]:
    """Last dosing day imposed on the medication's schedules, if any"""
    if isinstance(payload, DiscontinuePayload):
        return payload.stop_date or today
    if isinstance(payload, ReplacePayload):
        return today + timedelta(days=payload.overlap_days)
    return None


def suppression_window(payload, now: datetime) -> Optional[SuppressionWindow]:
    """Which already generated future events a transition cancels"""
    if isinstance(payload, HoldPayload):
        end = _start_of_day(payload.hold_until + timedelta(days=1)) if payload.hold_until else None
        return SuppressionWindow(start=now, end=end, reason="hold")

    last_day = schedule_end_date(payload, now.date())
    if last_day is None:
        return None
    start = max(now, _start_of_day(last_day + timedelta(days=1)))
    return SuppressionWindow(start=start, end=None, reason=payload.change_type)


def payload_reason(payload) -> Optional[str]:
    return getattr(payload, "reason", None)


def describe_history(changes: Sequence) -> List[Dict[str, Any]]:
    """Change log oldest first, payloads expanded"""
    return [
        {
            "id": c.id,
            "change_type": c.change_type,
            "payload": c.payload,
            "performed_by": c.performed_by,
            "performed_at": c.performed_at.isoformat() if c.performed_at else None,
            "notes": c.notes,
        }
        for c in sorted(changes, key=lambda c: c.performed_at)
    ]
