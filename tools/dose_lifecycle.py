"""
Dose Lifecycle
State machine for a single dose event:

    scheduled -> taken | skipped | missed | rescheduled

Snooze is a time shift inside `scheduled`. `missed` is never stored by a
user action; it is derived at read time once the effective due time plus
the grace period has passed.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from config import settings, scheduling_config
from errors import StateConflictError, ValidationError
from models import DoseStatus, SkipReason


logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {
    DoseStatus.TAKEN,
    DoseStatus.MISSED,
    DoseStatus.SKIPPED,
    DoseStatus.RESCHEDULED,
}

# Clock skew allowed when checking that taken_at is not in the future
TAKEN_AT_SKEW = timedelta(minutes=5)


def is_terminal(status) -> bool:
    return DoseStatus(status) in TERMINAL_STATUSES


def derive_status(event, now: Optional[datetime] = None, grace_minutes: Optional[int] = None) -> DoseStatus:
    """Stored status, with scheduled doses past due + grace reported as missed"""
    status = DoseStatus(event.status)
    if status != DoseStatus.SCHEDULED:
        return status

    now = now or datetime.now()
    if grace_minutes is None:
        grace_minutes = settings.MISSED_GRACE_MINUTES
    due_at = event.snoozed_until or event.scheduled_at
    if now > due_at + timedelta(minutes=grace_minutes):
        return DoseStatus.MISSED
    return DoseStatus.SCHEDULED


def _require_scheduled(event, action: str, now: datetime, grace_minutes: Optional[int]) -> None:
    if event.is_cancelled:
        raise StateConflictError(
            f"Cannot {action} a cancelled dose",
            current_status="cancelled",
            action=action,
        )
    status = derive_status(event, now, grace_minutes)
    if status != DoseStatus.SCHEDULED:
        raise StateConflictError(
            f"Cannot {action} a dose that is {status.value}",
            current_status=status.value,
            action=action,
        )


def apply_take(
    event,
    taken_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
    taken_by: Optional[str] = None,
    grace_minutes: Optional[int] = None,
) -> bool:
    """
    Mark a dose taken.

    Returns False without touching the event when it is already taken so a
    repeated tap never double counts.
    """
    now = now or datetime.now()
    taken_at = taken_at or now

    if DoseStatus(event.status) == DoseStatus.TAKEN:
        return False
    if taken_at > now + TAKEN_AT_SKEW:
        raise ValidationError("taken_at cannot be in the future", taken_at=taken_at.isoformat())

    # A dose taken within its grace period counts even when recorded later
    _require_scheduled(event, "take", min(taken_at, now), grace_minutes)
    event.status = DoseStatus.TAKEN.value
    event.taken_at = taken_at
    event.taken_by = taken_by
    return True


def apply_skip(
    event,
    reason: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    grace_minutes: Optional[int] = None,
) -> None:
    if not reason:
        raise ValidationError("A skip reason is required", allowed=scheduling_config.SKIP_REASONS)
    try:
        reason = SkipReason(reason)
    except ValueError:
        raise ValidationError(
            f"Unknown skip reason {reason!r}", allowed=scheduling_config.SKIP_REASONS
        )

    now = now or datetime.now()
    _require_scheduled(event, "skip", now, grace_minutes)
    event.status = DoseStatus.SKIPPED.value
    event.skip_reason = reason.value
    event.skip_notes = notes


def apply_snooze(
    event,
    minutes: int,
    now: Optional[datetime] = None,
    reason: Optional[str] = None,
    snoozed_by: Optional[str] = None,
    grace_minutes: Optional[int] = None,
) -> datetime:
    """Push the effective due time forward; status stays scheduled"""
    if minutes is None or minutes <= 0:
        raise ValidationError("Snooze minutes must be positive", minutes=minutes)

    now = now or datetime.now()
    _require_scheduled(event, "snooze", now, grace_minutes)

    base = max(event.snoozed_until or event.scheduled_at, now)
    event.snoozed_until = base + timedelta(minutes=minutes)
    event.snooze_count = (event.snooze_count or 0) + 1
    # Reassign so the JSON column registers the change
    event.snooze_history = list(event.snooze_history or []) + [{
        "snoozed_at": now.isoformat(),
        "snooze_minutes": minutes,
        "snoozed_until": event.snoozed_until.isoformat(),
        "reason": reason,
        "snoozed_by": snoozed_by,
    }]
    return event.snoozed_until


def apply_reschedule(
    event,
    new_time: datetime,
    reason: str,
    is_one_time: bool = True,
    now: Optional[datetime] = None,
    grace_minutes: Optional[int] = None,
) -> None:
    """
    Close out the original event as rescheduled.

    The caller creates the replacement `scheduled` event at `new_time`.
    """
    now = now or datetime.now()
    if not reason or not reason.strip():
        raise ValidationError("A reschedule reason is required")
    if new_time <= now:
        raise ValidationError("Cannot reschedule to a time in the past", new_time=new_time.isoformat())

    _require_scheduled(event, "reschedule", now, grace_minutes)
    event.status = DoseStatus.RESCHEDULED.value
    event.reschedule_to = new_time
    event.reschedule_reason = reason.strip()
    event.reschedule_is_one_time = is_one_time
