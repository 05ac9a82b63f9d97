"""
Medication Service
Business logic for medication management, lifecycle transitions and PRN intake
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Any
from datetime import datetime, date, time, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import and_

from config import settings, scheduling_config
from database import get_db_context, transaction
from errors import NotFoundError, StateConflictError, ValidationError
import models
from models import FrequencyCode, MedicationStatus
from services.schedule_service import (
    active_schedules,
    cancel_live_events,
    create_schedule_row,
    end_schedules,
    fill_schedule,
    get_medication_or_raise,
    regenerate_window,
    rolling_window,
    set_paused,
)
from tools.dose_lifecycle import TAKEN_AT_SKEW
from tools.frequency_normalizer import normalize_frequency
from tools.medication_lifecycle import (
    DiscontinuePayload,
    HoldPayload,
    ReplacePayload,
    ResumePayload,
    TERMINAL_STATUSES,
    check_transition,
    derive_current_status,
    describe_history,
    due_auto_resume,
    latest_change,
    parse_payload,
    payload_reason,
    schedule_end_date,
    status_after,
    suppression_window,
    validate_payload_dates,
)
from tools import medication_records as records
from tools.time_buckets import load_bucket_definitions


logger = logging.getLogger(__name__)


# ==================== SESSION-LEVEL OPERATIONS ====================

def append_status_change(
    session: Session,
    medication: models.Medication,
    payload,
    performed_by: str,
    performed_at: datetime,
    notes: Optional[str] = None,
) -> models.MedicationStatusChange:
    """Append an immutable audit record and mirror it on the medication"""
    change = models.MedicationStatusChange(
        medication_id=medication.id,
        patient_id=medication.patient_id,
        change_type=payload.change_type,
        payload=payload.model_dump(mode="json"),
        performed_by=performed_by,
        performed_at=performed_at,
        notes=notes,
    )
    session.add(change)
    medication.status_changes.append(change)

    new_status = status_after(payload.change_type)
    medication.current_status = new_status.value
    medication.status_reason = payload_reason(payload)
    medication.status_changed_at = performed_at
    medication.status_changed_by = performed_by
    medication.is_active = new_status not in TERMINAL_STATUSES
    session.flush()
    return change


def materialize_auto_resume(
    session: Session,
    medication: models.Medication,
    now: datetime,
) -> Optional[models.MedicationStatusChange]:
    """
    Write the resume that reads already report for an expired auto-resume hold.

    The resume is recorded at the start of the day after hold_until, when
    the hold actually ended.
    """
    hold = due_auto_resume(medication.status_changes, now.date())
    if hold is None:
        return None

    resumed_at = datetime.combine(hold.hold_until + timedelta(days=1), time.min)
    change = append_status_change(
        session,
        medication,
        ResumePayload(reason=f"Hold ended {hold.hold_until.isoformat()}", automatic=True),
        scheduling_config.SYSTEM_ACTOR,
        resumed_at,
    )
    set_paused(medication, False)
    regenerate_window(session, medication, now)
    logger.info(f"Auto-resumed medication {medication.id} after hold until {hold.hold_until}")
    return change


def apply_status_change(
    session: Session,
    medication: models.Medication,
    payload,
    performed_by: str,
    now: datetime,
    notes: Optional[str] = None,
) -> models.MedicationStatusChange:
    """Validate a transition against the derived status and apply its schedule effects"""
    materialize_auto_resume(session, medication, now)
    current = derive_current_status(medication.status_changes, now.date())
    check_transition(current, payload.change_type)

    if isinstance(payload, HoldPayload):
        set_paused(medication, True)
        cancel_live_events(session, medication.id, suppression_window(payload, now), now)

    elif isinstance(payload, ResumePayload):
        set_paused(medication, False)
        regenerate_window(session, medication, now)

    elif isinstance(payload, (DiscontinuePayload, ReplacePayload)):
        if isinstance(payload, ReplacePayload) and payload.new_medication_id:
            successor = session.get(models.Medication, payload.new_medication_id)
            if not successor or successor.patient_id != medication.patient_id:
                raise NotFoundError(
                    f"Replacement medication {payload.new_medication_id} not found for this patient"
                )
            if successor.id == medication.id:
                raise ValidationError("A medication cannot replace itself")

        last_day = schedule_end_date(payload, now.date())
        end_schedules(medication, last_day, now, superseded=isinstance(payload, ReplacePayload))
        cancel_live_events(session, medication.id, suppression_window(payload, now), now)

    change = append_status_change(session, medication, payload, performed_by, now, notes)
    logger.info(
        f"Medication {medication.id} {current.value} -> {medication.current_status} "
        f"({payload.change_type} by {performed_by})"
    )
    return change


def busiest_prn_window(session: Session, medication_id: str, taken_at: datetime) -> int:
    """
    Most intakes already logged in any guard window that would also
    hold a new intake at taken_at.

    A window's peak is reached at one of its intakes, so only windows
    ending at taken_at or at a later intake need checking.
    """
    span = timedelta(hours=settings.PRN_GUARD_HOURS)
    nearby = [
        row.taken_at for row in session.query(models.PRNDoseLog.taken_at).filter(
            and_(
                models.PRNDoseLog.medication_id == medication_id,
                models.PRNDoseLog.taken_at > taken_at - span,
                models.PRNDoseLog.taken_at < taken_at + span,
            )
        ).all()
    ]

    busiest = 0
    for end in [taken_at] + [t for t in nearby if t > taken_at]:
        busiest = max(busiest, sum(1 for t in nearby if end - span < t <= end))
    return busiest


def add_medication_row(
    session: Session,
    patient_id: str,
    name: str,
    dosage: str,
    frequency: str,
    now: datetime,
    instructions: Optional[str] = None,
    times: Optional[List[str]] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    is_prn: bool = False,
    reminders_enabled: bool = True,
    max_daily_dose: Optional[int] = None,
    code: Optional[FrequencyCode] = None,
    source_record_type: Optional[str] = None,
    generate_window: bool = True,
) -> models.Medication:
    if not name or not name.strip():
        raise ValidationError("Medication name is required")
    if not dosage or not dosage.strip():
        raise ValidationError("Medication dosage is required")

    patient = session.get(models.Patient, patient_id)
    if not patient:
        raise NotFoundError(f"Patient {patient_id} not found")

    # PRN medications bypass normalization and never get a schedule
    if is_prn or code == FrequencyCode.AS_NEEDED:
        is_prn = True
        code = FrequencyCode.AS_NEEDED
    elif code is None:
        code = normalize_frequency(frequency, load_bucket_definitions(patient.time_buckets)).code
        is_prn = code == FrequencyCode.AS_NEEDED

    if max_daily_dose is not None and not is_prn:
        raise ValidationError("max_daily_dose only applies to as-needed medications")

    medication = models.Medication(
        patient=patient,
        name=name.strip(),
        dosage=dosage.strip(),
        frequency=frequency,
        frequency_code=FrequencyCode(code).value,
        instructions=instructions,
        is_active=True,
        is_prn=is_prn,
        reminders_enabled=reminders_enabled,
        max_daily_dose=max_daily_dose,
        current_status=MedicationStatus.ACTIVE.value,
        source_record_type=source_record_type,
    )
    session.add(medication)
    session.flush()

    if not is_prn:
        start = start_date or now.date()
        schedule = create_schedule_row(
            session, medication, code, times, start, end_date,
            generate_calendar_events=reminders_enabled,
        )
        if generate_window:
            window_start, window_end = rolling_window(now)
            fill_schedule(
                session, schedule, medication,
                max(window_start, start), window_end, now, not_before=now
            )

    return medication


class MedicationService:
    """
    Service for medication-related operations
    """

    async def add_medication(
        self,
        patient_id: str,
        name: str,
        dosage: str,
        frequency: str,
        instructions: Optional[str] = None,
        times: Optional[List[str]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        is_prn: bool = False,
        reminders_enabled: bool = True,
        max_daily_dose: Optional[int] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.Medication:
        """
        Add a medication for a patient

        The frequency text is normalized against the patient's buckets. Non
        PRN medications get a schedule and their first rolling window of
        dose events.

        Args:
            patient_id: Patient ID
            name: Medication name
            dosage: Dosage string (e.g., "10mg")
            frequency: Frequency as entered (e.g., "twice daily", "bid")
            instructions: Special instructions
            times: Explicit times of day (HH:MM); defaults from buckets
            start_date: First dosing day, defaults to today
            end_date: Last dosing day
            is_prn: As-needed medication
            reminders_enabled: Whether dose events are generated
            max_daily_dose: PRN intake limit per rolling day
            now: Current time
            db: Database session

        Returns:
            Created Medication object
        """
        now = now or datetime.now()

        def _add(session: Session) -> models.Medication:
            with transaction(session, "add_medication"):
                medication = add_medication_row(
                    session, patient_id, name, dosage, frequency, now,
                    instructions=instructions,
                    times=times,
                    start_date=start_date,
                    end_date=end_date,
                    is_prn=is_prn,
                    reminders_enabled=reminders_enabled,
                    max_daily_dose=max_daily_dose,
                )

            logger.info(
                f"Added medication {medication.name} ({medication.frequency_code}) "
                f"for patient {patient_id}"
            )
            return medication

        if db:
            return _add(db)

        with get_db_context() as session:
            return _add(session)

    async def import_medication_record(
        self,
        patient_id: str,
        record: Dict[str, Any],
        performed_by: str = "import",
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.Medication:
        """
        Import a legacy or unified medication record.

        The record's `record_type` selects the shape. Inactive records are
        imported and then discontinued so the audit log explains their status.
        """
        now = now or datetime.now()
        parsed = records.parse_medication_record(record)
        unified = records.to_unified(parsed)
        active = records.is_active(parsed)

        def _import(session: Session) -> models.Medication:
            with transaction(session, "import_medication_record"):
                medication = add_medication_row(
                    session, patient_id, unified.name, unified.dosage, unified.frequency, now,
                    instructions=unified.instructions,
                    times=records.schedule_times(parsed) or None,
                    start_date=unified.schedule.start_date,
                    end_date=unified.schedule.end_date,
                    is_prn=records.is_prn(parsed),
                    reminders_enabled=records.reminders_enabled(parsed),
                    max_daily_dose=unified.max_daily_dose if records.is_prn(parsed) else None,
                    code=records.frequency_code(parsed),
                    source_record_type=parsed.record_type,
                    generate_window=active and unified.status.current == "active",
                )
                if not active:
                    apply_status_change(
                        session, medication,
                        DiscontinuePayload(reason="Imported as inactive"),
                        performed_by, now,
                    )
                elif unified.status.current == "held":
                    apply_status_change(
                        session, medication,
                        HoldPayload(reason="Imported as held"),
                        performed_by, now,
                    )

            logger.info(
                f"Imported {parsed.record_type} record {medication.name} for patient {patient_id}"
            )
            return medication

        if db:
            return _import(db)

        with get_db_context() as session:
            return _import(session)

    async def get_medication(
        self,
        medication_id: str,
        db: Optional[Session] = None
    ) -> Optional[models.Medication]:
        """Get medication by ID"""
        def _get(session: Session) -> Optional[models.Medication]:
            return session.query(models.Medication).filter(
                models.Medication.id == medication_id
            ).first()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_patient_medications(
        self,
        patient_id: str,
        active_only: bool = True,
        db: Optional[Session] = None
    ) -> List[models.Medication]:
        """Get all medications for a patient"""
        def _get(session: Session) -> List[models.Medication]:
            query = session.query(models.Medication).filter(
                models.Medication.patient_id == patient_id
            )
            if active_only:
                query = query.filter(models.Medication.is_active == True)  # noqa: E712
            return query.order_by(models.Medication.created_at).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def change_medication_status(
        self,
        medication_id: str,
        change_type: str,
        payload: Optional[Dict[str, Any]] = None,
        performed_by: str = "patient",
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.MedicationStatusChange:
        """
        Apply a lifecycle transition (hold, resume, discontinue, replace)

        Args:
            medication_id: Medication ID
            change_type: One of hold, resume, discontinue, replace
            payload: Type-specific fields (reason, hold_until, stop_date, ...)
            performed_by: Who made the change
            notes: Free-text note for the audit log
            now: Current time
            db: Database session

        Returns:
            The appended MedicationStatusChange record
        """
        now = now or datetime.now()
        parsed = parse_payload(change_type, payload)
        validate_payload_dates(parsed, now.date())

        def _change(session: Session) -> models.MedicationStatusChange:
            with transaction(session, "change_medication_status"):
                medication = get_medication_or_raise(session, medication_id)
                change = apply_status_change(session, medication, parsed, performed_by, now, notes)
            return change

        if db:
            return _change(db)

        with get_db_context() as session:
            return _change(session)

    async def get_medication_status(
        self,
        medication_id: str,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Derived current status; an expired auto-resume hold reads as active without a write"""
        now = now or datetime.now()

        def _get(session: Session) -> Dict[str, Any]:
            medication = get_medication_or_raise(session, medication_id)
            changes = medication.status_changes
            status = derive_current_status(changes, now.date())
            latest = latest_change(changes)
            pending_resume = due_auto_resume(changes, now.date())

            hold_until = None
            if status == MedicationStatus.HELD and latest is not None:
                hold_until = parse_payload(latest.change_type, latest.payload).hold_until

            return {
                "medication_id": medication.id,
                "status": status.value,
                "recorded_status": medication.current_status,
                "auto_resume_pending": pending_resume is not None,
                "reason": None if pending_resume else medication.status_reason,
                "hold_until": hold_until.isoformat() if hold_until else None,
                "changed_at": medication.status_changed_at.isoformat() if medication.status_changed_at else None,
                "changed_by": medication.status_changed_by,
                "active_schedules": len(active_schedules(medication)),
            }

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_status_history(
        self,
        medication_id: str,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Status change log, oldest first"""
        def _get(session: Session) -> List[Dict[str, Any]]:
            medication = get_medication_or_raise(session, medication_id)
            return describe_history(medication.status_changes)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def log_prn_dose(
        self,
        medication_id: str,
        reason: str,
        taken_at: Optional[datetime] = None,
        dosage_amount: Optional[str] = None,
        notes: Optional[str] = None,
        logged_by: str = "patient",
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.PRNDoseLog:
        """
        Record an ad-hoc intake of an as-needed medication

        Rejected when it would push the count in the trailing guard window
        past the medication's max_daily_dose.
        """
        now = now or datetime.now()
        taken_at = taken_at or now
        if taken_at > now + TAKEN_AT_SKEW:
            raise ValidationError("taken_at cannot be in the future", taken_at=taken_at.isoformat())
        if reason not in scheduling_config.PRN_REASONS:
            raise ValidationError(f"Unknown PRN reason {reason!r}", allowed=scheduling_config.PRN_REASONS)

        def _log(session: Session) -> models.PRNDoseLog:
            with transaction(session, "log_prn_dose"):
                medication = get_medication_or_raise(session, medication_id)
                if not medication.is_prn:
                    raise ValidationError(f"{medication.name} is not an as-needed medication")

                materialize_auto_resume(session, medication, now)
                status = derive_current_status(medication.status_changes, now.date())
                if status != MedicationStatus.ACTIVE:
                    raise StateConflictError(
                        f"Cannot log a dose of a {status.value} medication",
                        current_status=status.value,
                        action="log_prn_dose",
                    )

                if medication.max_daily_dose:
                    recent = busiest_prn_window(session, medication_id, taken_at)
                    if recent + 1 > medication.max_daily_dose:
                        logger.warning(
                            f"PRN guard rejected dose of {medication.name}: "
                            f"{recent} already taken in {settings.PRN_GUARD_HOURS}h"
                        )
                        raise ValidationError(
                            "Maximum daily dose reached",
                            max_daily_dose=medication.max_daily_dose,
                            taken_in_window=recent,
                        )

                log = models.PRNDoseLog(
                    medication_id=medication.id,
                    patient_id=medication.patient_id,
                    taken_at=taken_at,
                    dosage_amount=dosage_amount or medication.dosage,
                    reason=reason,
                    notes=notes,
                    logged_by=logged_by,
                )
                session.add(log)

            logger.info(f"Logged PRN dose of {medication.name} at {taken_at} ({reason})")
            return log

        if db:
            return _log(db)

        with get_db_context() as session:
            return _log(session)

    async def get_prn_usage(
        self,
        medication_id: str,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Recent PRN usage: last 24h and 7 days, remaining allowance, common reasons"""
        now = now or datetime.now()

        def _get(session: Session) -> Dict[str, Any]:
            medication = get_medication_or_raise(session, medication_id)
            logs = session.query(models.PRNDoseLog).filter(
                and_(
                    models.PRNDoseLog.medication_id == medication_id,
                    models.PRNDoseLog.taken_at > now - timedelta(days=7),
                    models.PRNDoseLog.taken_at <= now,
                )
            ).order_by(models.PRNDoseLog.taken_at.desc()).all()

            guard_start = now - timedelta(hours=settings.PRN_GUARD_HOURS)
            last_day = [log for log in logs if log.taken_at > guard_start]
            remaining = None
            if medication.max_daily_dose:
                remaining = max(0, medication.max_daily_dose - len(last_day))

            reasons = Counter(log.reason for log in logs)
            return {
                "medication_id": medication.id,
                "is_prn": medication.is_prn,
                "max_daily_dose": medication.max_daily_dose,
                "doses_last_24h": len(last_day),
                "doses_last_7_days": len(logs),
                "remaining_today": remaining,
                "last_taken_at": logs[0].taken_at.isoformat() if logs else None,
                "common_reasons": [
                    {"reason": reason, "count": count}
                    for reason, count in reasons.most_common(3)
                ],
            }

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
medication_service = MedicationService()
