"""
Schedule Service
Business logic for medication schedules and dose event generation
"""

import logging
from typing import List, Optional, Sequence, Tuple
from datetime import datetime, date, time, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import and_

from config import settings
from database import get_db_context, transaction
from errors import NotFoundError, StateConflictError, ValidationError
import models
from models import DoseStatus, FrequencyCode, MedicationStatus
from tools.frequency_normalizer import default_times_for
from tools.medication_lifecycle import SuppressionWindow, derive_current_status
from tools.scheduler import ScheduleTemplate, medication_scheduler, normalize_times
from tools.time_buckets import TodayBuckets, build_today_buckets, load_bucket_definitions


logger = logging.getLogger(__name__)


def _day_bounds(start: date, end: date) -> Tuple[datetime, datetime]:
    """[start 00:00, day after end 00:00)"""
    return datetime.combine(start, time.min), datetime.combine(end + timedelta(days=1), time.min)


def rolling_window(now: datetime, days: Optional[int] = None) -> Tuple[date, date]:
    days = days or settings.GENERATION_WINDOW_DAYS
    return now.date(), now.date() + timedelta(days=days - 1)


def template_for(schedule: models.MedicationSchedule) -> ScheduleTemplate:
    return ScheduleTemplate(
        frequency=schedule.frequency,
        times=schedule.times or [],
        start_date=schedule.start_date,
        end_date=schedule.end_date,
    )


def get_medication_or_raise(session: Session, medication_id: str) -> models.Medication:
    medication = session.get(models.Medication, medication_id)
    if not medication:
        raise NotFoundError(f"Medication {medication_id} not found")
    return medication


def active_schedules(medication: models.Medication) -> List[models.MedicationSchedule]:
    return [s for s in medication.schedules if s.is_active]


# ==================== SESSION-LEVEL OPERATIONS ====================
# Used inside another service's transaction; they flush but never commit.

def create_schedule_row(
    session: Session,
    medication: models.Medication,
    frequency: FrequencyCode,
    times: Optional[Sequence[str]],
    start_date: date,
    end_date: Optional[date] = None,
    generate_calendar_events: bool = True,
) -> models.MedicationSchedule:
    """Add a schedule; times default to the patient's bucket anchors for the frequency"""
    frequency = FrequencyCode(frequency)
    if frequency == FrequencyCode.AS_NEEDED:
        raise ValidationError("As-needed medications do not have schedules")
    if end_date and end_date < start_date:
        raise ValidationError(
            "Schedule end date is before its start date",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )

    if times:
        times = normalize_times(times)
    else:
        buckets = load_bucket_definitions(medication.patient.time_buckets if medication.patient else None)
        times = default_times_for(frequency, buckets)

    schedule = models.MedicationSchedule(
        medication_id=medication.id,
        frequency=frequency.value,
        times=times,
        start_date=start_date,
        end_date=end_date,
        is_active=True,
        is_paused=False,
        generate_calendar_events=generate_calendar_events,
    )
    session.add(schedule)
    medication.schedules.append(schedule)
    session.flush()
    logger.info(
        f"Created {frequency.value} schedule {schedule.id} for medication {medication.id} "
        f"at {', '.join(times)}"
    )
    return schedule


def fill_schedule(
    session: Session,
    schedule: models.MedicationSchedule,
    medication: models.Medication,
    range_start: date,
    range_end: date,
    now: datetime,
    not_before: Optional[datetime] = None,
) -> List[models.MedicationCalendarEvent]:
    """
    Create events for the schedule's unoccupied slots in the range.

    A slot is occupied by a live event, or by a cancelled one in the past:
    suppressed past doses stay suppressed, future ones may be regenerated.
    """
    if not schedule.is_active or schedule.is_paused or not schedule.generate_calendar_events:
        return []

    start_at, end_at = _day_bounds(range_start, range_end)
    rows = session.query(
        models.MedicationCalendarEvent.scheduled_at,
        models.MedicationCalendarEvent.is_cancelled,
    ).filter(
        and_(
            models.MedicationCalendarEvent.schedule_id == schedule.id,
            models.MedicationCalendarEvent.scheduled_at >= start_at,
            models.MedicationCalendarEvent.scheduled_at < end_at,
        )
    ).all()
    occupied = {r.scheduled_at for r in rows if not r.is_cancelled or r.scheduled_at < now}

    plan = medication_scheduler.plan(
        template_for(schedule), range_start, range_end, occupied, not_before
    )

    created = []
    for slot in plan.missing:
        event = models.MedicationCalendarEvent(
            schedule_id=schedule.id,
            medication_id=medication.id,
            patient_id=medication.patient_id,
            scheduled_at=slot,
            status=DoseStatus.SCHEDULED.value,
            snooze_count=0,
            snooze_history=[],
            is_cancelled=False,
        )
        session.add(event)
        created.append(event)

    if created:
        session.flush()
        logger.info(
            f"Generated {len(created)} dose events for schedule {schedule.id} "
            f"({range_start} to {range_end}, {len(plan.existing)} already present)"
        )
    return created


def medication_events(
    session: Session,
    medication_id: str,
    range_start: Optional[date] = None,
    range_end: Optional[date] = None,
    include_cancelled: bool = False,
) -> List[models.MedicationCalendarEvent]:
    query = session.query(models.MedicationCalendarEvent).filter(
        models.MedicationCalendarEvent.medication_id == medication_id
    )
    if range_start:
        query = query.filter(models.MedicationCalendarEvent.scheduled_at >= _day_bounds(range_start, range_start)[0])
    if range_end:
        query = query.filter(models.MedicationCalendarEvent.scheduled_at < _day_bounds(range_end, range_end)[1])
    if not include_cancelled:
        query = query.filter(models.MedicationCalendarEvent.is_cancelled == False)  # noqa: E712
    return query.order_by(models.MedicationCalendarEvent.scheduled_at).all()


def cancel_live_events(
    session: Session,
    medication_id: str,
    window: SuppressionWindow,
    now: datetime,
    schedule_id: Optional[str] = None,
) -> int:
    """Suppress live, still scheduled events inside the window; returns how many"""
    query = session.query(models.MedicationCalendarEvent).filter(
        and_(
            models.MedicationCalendarEvent.medication_id == medication_id,
            models.MedicationCalendarEvent.is_cancelled == False,  # noqa: E712
            models.MedicationCalendarEvent.status == DoseStatus.SCHEDULED.value,
            models.MedicationCalendarEvent.scheduled_at >= window.start,
        )
    )
    if window.end is not None:
        query = query.filter(models.MedicationCalendarEvent.scheduled_at < window.end)
    if schedule_id:
        query = query.filter(models.MedicationCalendarEvent.schedule_id == schedule_id)

    count = 0
    for event in query.all():
        cancel_event(event, now, window.reason)
        count += 1

    if count:
        session.flush()
        logger.info(f"Cancelled {count} dose events for medication {medication_id} ({window.reason})")
    return count


def cancel_event(event: models.MedicationCalendarEvent, now: datetime, reason: str) -> None:
    event.is_cancelled = True
    event.cancelled_at = now
    event.cancel_reason = reason


def retime_schedule(
    session: Session,
    schedule: models.MedicationSchedule,
    frequency: FrequencyCode,
    times: Sequence[str],
    now: datetime,
) -> int:
    """
    Change a schedule's frequency and times.

    Future live scheduled events that no longer match the template are
    cancelled; events created by a one-time reschedule are left alone.
    """
    schedule.frequency = FrequencyCode(frequency).value
    schedule.times = normalize_times(times)
    template = template_for(schedule)

    future = session.query(models.MedicationCalendarEvent).filter(
        and_(
            models.MedicationCalendarEvent.schedule_id == schedule.id,
            models.MedicationCalendarEvent.is_cancelled == False,  # noqa: E712
            models.MedicationCalendarEvent.status == DoseStatus.SCHEDULED.value,
            models.MedicationCalendarEvent.rescheduled_from_id.is_(None),
            models.MedicationCalendarEvent.scheduled_at > now,
        )
    ).all()

    cancelled = 0
    for event in future:
        day = event.scheduled_at.date()
        if event.scheduled_at not in medication_scheduler.expand_slots(template, day, day):
            cancel_event(event, now, "schedule_changed")
            cancelled += 1

    session.flush()
    logger.info(
        f"Schedule {schedule.id} now {schedule.frequency} at {', '.join(schedule.times)}; "
        f"cancelled {cancelled} future events"
    )
    return cancelled


def generated_horizon(session: Session, medication_id: str) -> Optional[date]:
    """Latest date any event was generated for, cancelled or not"""
    latest = session.query(models.MedicationCalendarEvent.scheduled_at).filter(
        models.MedicationCalendarEvent.medication_id == medication_id
    ).order_by(models.MedicationCalendarEvent.scheduled_at.desc()).first()
    return latest.scheduled_at.date() if latest else None


def regenerate_window(
    session: Session,
    medication: models.Medication,
    now: datetime,
) -> List[models.MedicationCalendarEvent]:
    """Fill every active schedule from now through the rolling window or the generated horizon"""
    window_start, window_end = rolling_window(now)
    horizon = generated_horizon(session, medication.id)
    if horizon and horizon > window_end:
        window_end = horizon

    created = []
    for schedule in active_schedules(medication):
        created.extend(fill_schedule(session, schedule, medication, window_start, window_end, now, not_before=now))
    return created


def set_paused(medication: models.Medication, paused: bool) -> None:
    for schedule in active_schedules(medication):
        schedule.is_paused = paused


def end_schedules(
    medication: models.Medication,
    last_day: date,
    now: datetime,
    superseded: bool = False,
) -> None:
    """Bound every active schedule to last_day; replaced ones are marked superseded"""
    for schedule in active_schedules(medication):
        if schedule.end_date is None or schedule.end_date > last_day:
            schedule.end_date = last_day
        if superseded and schedule.superseded_at is None:
            schedule.superseded_at = now


class ScheduleService:
    """
    Service for medication schedule management and dose event generation
    """

    async def generate_schedule(
        self,
        medication_id: str,
        range_start: date,
        range_end: date,
        frequency: Optional[FrequencyCode] = None,
        times: Optional[List[str]] = None,
        start_date: Optional[date] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[models.MedicationCalendarEvent]:
        """
        Materialize dose events covering a date range. Idempotent.

        Args:
            medication_id: Medication to generate for
            range_start: First date to cover
            range_end: Last date to cover (inclusive)
            frequency: Canonical frequency; changes the schedule if it differs
            times: Times of day (HH:MM); change the schedule if they differ
            start_date: Anchor date when a schedule has to be created
            now: Current time
            db: Database session

        Returns:
            Every live event of the medication in the range, oldest first
        """
        now = now or datetime.now()
        if range_end < range_start:
            raise ValidationError(
                "Range end is before range start",
                range_start=range_start.isoformat(),
                range_end=range_end.isoformat(),
            )

        def _generate(session: Session) -> List[models.MedicationCalendarEvent]:
            from services.medication_service import materialize_auto_resume

            with transaction(session, "generate_schedule"):
                medication = get_medication_or_raise(session, medication_id)
                materialize_auto_resume(session, medication, now)

                status = derive_current_status(medication.status_changes, now.date())
                if status == MedicationStatus.HELD:
                    raise StateConflictError(
                        "Cannot generate doses while the medication is held",
                        current_status=status.value,
                        action="generate",
                    )

                if medication.is_prn or medication.frequency_code == FrequencyCode.AS_NEEDED.value:
                    return []

                schedules = active_schedules(medication)
                code = FrequencyCode(frequency) if frequency else None
                if not schedules:
                    if status != MedicationStatus.ACTIVE:
                        return medication_events(session, medication.id, range_start, range_end)
                    create_schedule_row(
                        session,
                        medication,
                        code or FrequencyCode(medication.frequency_code),
                        times,
                        start_date or range_start,
                    )
                elif code or times:
                    primary = schedules[0]
                    new_code = code or FrequencyCode(primary.frequency)
                    new_times = normalize_times(times) if times else list(primary.times or [])
                    if new_code == FrequencyCode.AS_NEEDED:
                        raise ValidationError("Use a PRN medication for as-needed dosing")
                    if new_code.value != primary.frequency or new_times != list(primary.times or []):
                        if new_code.value != primary.frequency and not times:
                            buckets = load_bucket_definitions(medication.patient.time_buckets)
                            new_times = default_times_for(new_code, buckets)
                        retime_schedule(session, primary, new_code, new_times, now)
                        medication.frequency_code = new_code.value

                for schedule in active_schedules(medication):
                    fill_schedule(session, schedule, medication, range_start, range_end, now)

                events = medication_events(session, medication.id, range_start, range_end)

            logger.info(
                f"Medication {medication_id} has {len(events)} live events "
                f"from {range_start} to {range_end}"
            )
            return events

        if db:
            return _generate(db)

        with get_db_context() as session:
            return _generate(session)

    async def get_medication_events(
        self,
        medication_id: str,
        range_start: Optional[date] = None,
        range_end: Optional[date] = None,
        include_cancelled: bool = False,
        db: Optional[Session] = None
    ) -> List[models.MedicationCalendarEvent]:
        """Events for a medication, oldest first"""
        def _get(session: Session) -> List[models.MedicationCalendarEvent]:
            get_medication_or_raise(session, medication_id)
            return medication_events(session, medication_id, range_start, range_end, include_cancelled)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_schedules(
        self,
        medication_id: str,
        include_inactive: bool = False,
        db: Optional[Session] = None
    ) -> List[models.MedicationSchedule]:
        def _get(session: Session) -> List[models.MedicationSchedule]:
            medication = get_medication_or_raise(session, medication_id)
            if include_inactive:
                return list(medication.schedules)
            return active_schedules(medication)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_today_buckets(
        self,
        patient_id: str,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> TodayBuckets:
        """
        Today's doses grouped by time-of-day bucket and urgency.

        Read-only and safe to poll: statuses are derived, nothing is written.
        """
        now = now or datetime.now()

        def _get(session: Session) -> TodayBuckets:
            patient = session.get(models.Patient, patient_id)
            if not patient:
                raise NotFoundError(f"Patient {patient_id} not found")

            start_at, end_at = _day_bounds(now.date(), now.date())
            events = session.query(models.MedicationCalendarEvent).filter(
                and_(
                    models.MedicationCalendarEvent.patient_id == patient_id,
                    models.MedicationCalendarEvent.is_cancelled == False,  # noqa: E712
                    models.MedicationCalendarEvent.scheduled_at >= start_at,
                    models.MedicationCalendarEvent.scheduled_at < end_at,
                )
            ).order_by(models.MedicationCalendarEvent.scheduled_at).all()

            return build_today_buckets(
                events,
                buckets=load_bucket_definitions(patient.time_buckets),
                now=now,
            )

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
schedule_service = ScheduleService()
