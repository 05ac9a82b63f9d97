"""
Dose Service
Business logic for dose actions: take, skip, snooze and reschedule
"""

import logging
from typing import Any, Dict, Optional, Tuple
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context, transaction
from errors import NotFoundError, ValidationError
import models
from models import DoseStatus
from services.schedule_service import fill_schedule, generated_horizon, retime_schedule
from tools.dose_lifecycle import (
    apply_reschedule,
    apply_skip,
    apply_snooze,
    apply_take,
    derive_status,
)
from tools.scheduler import normalize_times
from tools.time_buckets import BucketAssignment, classify_bucket, format_hhmm, load_bucket_definitions


logger = logging.getLogger(__name__)


def _get_event_or_raise(session: Session, event_id: str) -> models.MedicationCalendarEvent:
    event = session.get(models.MedicationCalendarEvent, event_id)
    if not event:
        raise NotFoundError(f"Dose event {event_id} not found")
    return event


def describe_event(event: models.MedicationCalendarEvent, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Event as a dict with its derived status"""
    now = now or datetime.now()
    return {
        "id": event.id,
        "schedule_id": event.schedule_id,
        "medication_id": event.medication_id,
        "patient_id": event.patient_id,
        "scheduled_at": event.scheduled_at,
        "effective_due_at": event.effective_due_at,
        "status": derive_status(event, now).value,
        "stored_status": event.status,
        "taken_at": event.taken_at,
        "taken_by": event.taken_by,
        "skip_reason": event.skip_reason,
        "skip_notes": event.skip_notes,
        "snooze_count": event.snooze_count or 0,
        "snoozed_until": event.snoozed_until,
        "snooze_history": event.snooze_history or [],
        "reschedule_to": event.reschedule_to,
        "reschedule_reason": event.reschedule_reason,
        "reschedule_is_one_time": event.reschedule_is_one_time,
        "rescheduled_from_id": event.rescheduled_from_id,
        "is_cancelled": event.is_cancelled,
        "cancel_reason": event.cancel_reason,
    }


class DoseService:
    """
    Service for dose event transitions
    """

    async def get_event(
        self,
        event_id: str,
        db: Optional[Session] = None
    ) -> Optional[models.MedicationCalendarEvent]:
        """Get dose event by ID"""
        def _get(session: Session) -> Optional[models.MedicationCalendarEvent]:
            return session.get(models.MedicationCalendarEvent, event_id)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def take_dose(
        self,
        event_id: str,
        taken_at: Optional[datetime] = None,
        taken_by: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.MedicationCalendarEvent:
        """
        Mark a dose taken

        Taking an already taken dose returns it unchanged.

        Args:
            event_id: Dose event ID
            taken_at: When it was taken, defaults to now
            taken_by: Who recorded it
            now: Current time
            db: Database session

        Returns:
            Updated event
        """
        now = now or datetime.now()

        def _take(session: Session) -> models.MedicationCalendarEvent:
            with transaction(session, "take_dose"):
                event = _get_event_or_raise(session, event_id)
                changed = apply_take(event, taken_at, now, taken_by)

            if changed:
                logger.info(f"Dose {event_id} taken at {event.taken_at}")
            else:
                logger.info(f"Dose {event_id} already taken, nothing to do")
            return event

        if db:
            return _take(db)

        with get_db_context() as session:
            return _take(session)

    async def skip_dose(
        self,
        event_id: str,
        reason: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.MedicationCalendarEvent:
        """Skip a dose with a reason from the closed set"""
        now = now or datetime.now()

        def _skip(session: Session) -> models.MedicationCalendarEvent:
            with transaction(session, "skip_dose"):
                event = _get_event_or_raise(session, event_id)
                apply_skip(event, reason, notes, now)

            logger.info(f"Dose {event_id} skipped ({reason})")
            return event

        if db:
            return _skip(db)

        with get_db_context() as session:
            return _skip(session)

    async def snooze_dose(
        self,
        event_id: str,
        minutes: int,
        reason: Optional[str] = None,
        snoozed_by: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.MedicationCalendarEvent:
        """Push a dose's effective due time forward; it stays scheduled"""
        now = now or datetime.now()

        def _snooze(session: Session) -> models.MedicationCalendarEvent:
            with transaction(session, "snooze_dose"):
                event = _get_event_or_raise(session, event_id)
                until = apply_snooze(event, minutes, now, reason, snoozed_by)

            logger.info(f"Dose {event_id} snoozed {minutes}m until {until} (#{event.snooze_count})")
            return event

        if db:
            return _snooze(db)

        with get_db_context() as session:
            return _snooze(session)

    async def reschedule_dose(
        self,
        event_id: str,
        new_time: datetime,
        reason: str,
        is_one_time: bool = True,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Tuple[models.MedicationCalendarEvent, models.MedicationCalendarEvent]:
        """
        Move a dose to a new time

        The original is closed as rescheduled and a new scheduled event is
        created at new_time. A recurring reschedule also swaps the old
        time of day for the new one in the schedule, cancelling later doses
        at the old time and filling the new time over the generated horizon.

        Returns:
            (original event, replacement event)
        """
        now = now or datetime.now()

        def _reschedule(session: Session):
            with transaction(session, "reschedule_dose"):
                event = _get_event_or_raise(session, event_id)

                clash = session.query(models.MedicationCalendarEvent).filter(
                    and_(
                        models.MedicationCalendarEvent.schedule_id == event.schedule_id,
                        models.MedicationCalendarEvent.scheduled_at == new_time,
                        models.MedicationCalendarEvent.is_cancelled == False,  # noqa: E712
                        models.MedicationCalendarEvent.status != DoseStatus.RESCHEDULED.value,
                        models.MedicationCalendarEvent.id != event.id,
                    )
                ).first()
                if clash:
                    raise ValidationError(
                        "Another dose of this schedule is already at that time",
                        new_time=new_time.isoformat(),
                        event_id=clash.id,
                    )

                apply_reschedule(event, new_time, reason, is_one_time, now)

                replacement = models.MedicationCalendarEvent(
                    schedule_id=event.schedule_id,
                    medication_id=event.medication_id,
                    patient_id=event.patient_id,
                    scheduled_at=new_time,
                    status=DoseStatus.SCHEDULED.value,
                    snooze_count=0,
                    snooze_history=[],
                    rescheduled_from_id=event.id,
                    is_cancelled=False,
                )
                session.add(replacement)
                session.flush()

                if not is_one_time:
                    schedule = event.schedule
                    old_time = format_hhmm(event.scheduled_at.hour * 60 + event.scheduled_at.minute)
                    new_tod = format_hhmm(new_time.hour * 60 + new_time.minute)
                    times = [t for t in (schedule.times or []) if t != old_time] + [new_tod]
                    retime_schedule(session, schedule, schedule.frequency, normalize_times(times), now)

                    horizon = generated_horizon(session, event.medication_id)
                    fill_schedule(
                        session, schedule, event.medication,
                        now.date(), horizon, now, not_before=now
                    )

            logger.info(
                f"Dose {event_id} rescheduled to {new_time} "
                f"({'one-time' if is_one_time else 'recurring'}), replacement {replacement.id}"
            )
            return event, replacement

        if db:
            return _reschedule(db)

        with get_db_context() as session:
            return _reschedule(session)

    async def classify_dose(
        self,
        event_id: str,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> BucketAssignment:
        """Bucket and minutes until due for one dose, using the patient's buckets"""
        now = now or datetime.now()

        def _classify(session: Session) -> BucketAssignment:
            event = _get_event_or_raise(session, event_id)
            patient = session.get(models.Patient, event.patient_id)
            buckets = load_bucket_definitions(patient.time_buckets if patient else None)
            return classify_bucket(
                event.scheduled_at, buckets, now, due_at=event.effective_due_at
            )

        if db:
            return _classify(db)

        with get_db_context() as session:
            return _classify(session)


# Singleton instance
dose_service = DoseService()
