"""
Repair Service
Diagnoses and repairs schedule inconsistencies for a patient.

Every fix is idempotent: a second run over a repaired patient finds
nothing to do.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, date, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context, transaction
from errors import NotFoundError
import models
from models import DoseStatus, FrequencyCode, MedicationStatus
from services.medication_service import materialize_auto_resume
from services.schedule_service import (
    active_schedules,
    cancel_event,
    create_schedule_row,
    fill_schedule,
    rolling_window,
    template_for,
)
from tools.medication_lifecycle import (
    TERMINAL_STATUSES,
    derive_current_status,
    due_auto_resume,
    latest_change,
    parse_payload,
    suppression_window,
)
from tools.scheduler import medication_scheduler, normalize_times


logger = logging.getLogger(__name__)


ISSUE_AUTO_RESUME_DUE = "auto_resume_due"
ISSUE_MISSING_SCHEDULE = "missing_schedule"
ISSUE_INVALID_TIMES = "invalid_times"
ISSUE_PAUSE_MISMATCH = "pause_mismatch"
ISSUE_GENERATION_DISABLED = "generation_disabled"
ISSUE_DUPLICATE_EVENTS = "duplicate_events"
ISSUE_UNSUPPRESSED_EVENTS = "unsuppressed_events"
ISSUE_MISSING_EVENTS = "missing_events"


@dataclass
class RepairReport:
    patient_id: str
    dry_run: bool = False
    issues_found: int = 0
    fixes_applied: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, issue: str, medication: models.Medication, description: str, fixed: bool, **extra) -> None:
        self.issues_found += 1
        if fixed:
            self.fixes_applied += 1
        self.details.append({
            "issue": issue,
            "medication_id": medication.id,
            "medication_name": medication.name,
            "description": description,
            "fixed": fixed,
            **extra,
        })
        logger.warning(f"[{issue}] {medication.name}: {description}{'' if fixed else ' (not fixed)'}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _live_events(session: Session, medication_id: str) -> List[models.MedicationCalendarEvent]:
    return session.query(models.MedicationCalendarEvent).filter(
        and_(
            models.MedicationCalendarEvent.medication_id == medication_id,
            models.MedicationCalendarEvent.is_cancelled == False,  # noqa: E712
        )
    ).order_by(models.MedicationCalendarEvent.scheduled_at).all()


def _keeper(events: List[models.MedicationCalendarEvent]) -> models.MedicationCalendarEvent:
    """Which duplicate survives: one the patient acted on, else the oldest"""
    acted = [e for e in events if DoseStatus(e.status) != DoseStatus.SCHEDULED or e.snooze_count]
    pool = acted or events
    return min(pool, key=lambda e: e.created_at or datetime.min)


class RepairService:
    """
    Service for detecting and fixing schedule drift
    """

    def _check_medication(
        self,
        session: Session,
        medication: models.Medication,
        report: RepairReport,
        now: datetime,
        apply: bool,
    ) -> None:
        today = now.date()

        if due_auto_resume(medication.status_changes, today):
            if apply:
                materialize_auto_resume(session, medication, now)
            report.add(ISSUE_AUTO_RESUME_DUE, medication, "Hold ended but was never resumed", apply)

        status = derive_current_status(medication.status_changes, today)
        schedules = active_schedules(medication)

        if medication.is_prn or medication.frequency_code == FrequencyCode.AS_NEEDED.value:
            return

        # Reminders on but nothing to generate from
        if status == MedicationStatus.ACTIVE and medication.reminders_enabled and not schedules:
            if apply:
                create_schedule_row(
                    session, medication, FrequencyCode(medication.frequency_code), None, today
                )
                schedules = active_schedules(medication)
            report.add(ISSUE_MISSING_SCHEDULE, medication, "Reminders enabled but no active schedule", apply)

        for schedule in schedules:
            raw = list(schedule.times or [])
            cleaned = normalize_times([t for t in raw if _parses(t)])
            if cleaned != raw:
                if apply:
                    schedule.times = cleaned
                report.add(
                    ISSUE_INVALID_TIMES, medication,
                    f"Schedule times {raw} should be {cleaned}", apply,
                    schedule_id=schedule.id,
                )

            should_pause = status == MedicationStatus.HELD
            if status not in TERMINAL_STATUSES and bool(schedule.is_paused) != should_pause:
                if apply:
                    schedule.is_paused = should_pause
                report.add(
                    ISSUE_PAUSE_MISMATCH, medication,
                    f"Schedule is {'paused' if schedule.is_paused else 'running'} while medication is {status.value}",
                    apply, schedule_id=schedule.id,
                )

            if medication.reminders_enabled and not schedule.generate_calendar_events:
                if apply:
                    schedule.generate_calendar_events = True
                report.add(
                    ISSUE_GENERATION_DISABLED, medication,
                    "Reminders enabled but schedule does not generate events", apply,
                    schedule_id=schedule.id,
                )

        if apply:
            session.flush()

        live = _live_events(session, medication.id)

        # More than one live event for a slot; a rescheduled original no longer holds it
        by_slot = defaultdict(list)
        for event in live:
            if DoseStatus(event.status) == DoseStatus.RESCHEDULED:
                continue
            by_slot[(event.schedule_id, event.scheduled_at)].append(event)
        for (schedule_id, slot), events in by_slot.items():
            if len(events) < 2:
                continue
            keep = _keeper(events)
            extras = [e for e in events if e.id != keep.id]
            if apply:
                for event in extras:
                    cancel_event(event, now, "duplicate")
            report.add(
                ISSUE_DUPLICATE_EVENTS, medication,
                f"{len(events)} live events for slot {slot.isoformat()}", apply,
                schedule_id=schedule_id, cancelled=len(extras) if apply else 0,
            )

        # Future doses that a hold or a schedule end date should have suppressed
        window = None
        latest = latest_change(medication.status_changes)
        if status == MedicationStatus.HELD and latest is not None:
            window = suppression_window(parse_payload(latest.change_type, latest.payload), now)

        end_dates = {s.id: s.end_date for s in medication.schedules if s.end_date}
        stray = [
            e for e in live
            if not e.is_cancelled
            and DoseStatus(e.status) == DoseStatus.SCHEDULED
            and e.scheduled_at >= now
            and (
                (window is not None and window.covers(e.scheduled_at))
                or (e.schedule_id in end_dates and e.scheduled_at.date() > end_dates[e.schedule_id])
            )
        ]
        if stray:
            reason = window.reason if window is not None else "schedule_ended"
            if apply:
                for event in stray:
                    cancel_event(event, now, reason)
            report.add(
                ISSUE_UNSUPPRESSED_EVENTS, medication,
                f"{len(stray)} future doses should be suppressed while {status.value}", apply,
                cancelled=len(stray) if apply else 0,
            )

        if apply:
            session.flush()

        # Rolling window coverage
        if status == MedicationStatus.HELD:
            return
        window_start, window_end = rolling_window(now)
        for schedule in active_schedules(medication):
            if schedule.is_paused or not schedule.generate_calendar_events:
                continue
            if apply:
                created = fill_schedule(
                    session, schedule, medication, window_start, window_end, now, not_before=now
                )
                missing = len(created)
            else:
                missing = self._count_missing(session, schedule, window_start, window_end, now)
            if missing:
                report.add(
                    ISSUE_MISSING_EVENTS, medication,
                    f"{missing} dose events missing between {window_start} and {window_end}", apply,
                    schedule_id=schedule.id, missing=missing,
                )

    def _count_missing(
        self,
        session: Session,
        schedule: models.MedicationSchedule,
        window_start: date,
        window_end: date,
        now: datetime,
    ) -> int:
        start_at = datetime.combine(window_start, datetime.min.time())
        end_at = datetime.combine(window_end + timedelta(days=1), datetime.min.time())
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
        plan = medication_scheduler.plan(template_for(schedule), window_start, window_end, occupied, now)
        return len(plan.missing)

    async def diagnose_and_repair_schedules(
        self,
        patient_id: str,
        dry_run: bool = False,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Find and fix schedule problems for every medication of a patient

        Args:
            patient_id: Patient ID
            dry_run: Only diagnose; write nothing
            now: Current time
            db: Database session

        Returns:
            Dict with issues_found, fixes_applied and per-issue details
        """
        now = now or datetime.now()

        def _repair(session: Session) -> Dict[str, Any]:
            report = RepairReport(patient_id=patient_id, dry_run=dry_run)
            with transaction(session, "diagnose_and_repair_schedules"):
                patient = session.get(models.Patient, patient_id)
                if not patient:
                    raise NotFoundError(f"Patient {patient_id} not found")

                for medication in patient.medications:
                    self._check_medication(session, medication, report, now, apply=not dry_run)

            logger.info(
                f"Schedule repair for patient {patient_id}: {report.issues_found} issues, "
                f"{report.fixes_applied} fixed{' (dry run)' if dry_run else ''}"
            )
            return report.to_dict()

        if db:
            return _repair(db)

        with get_db_context() as session:
            return _repair(session)


def _parses(value: str) -> bool:
    try:
        normalize_times([value])
        return True
    except ValueError:
        return False


# Singleton instance
repair_service = RepairService()
