"""
Adherence Service
Business logic for medication adherence tracking and analysis
"""

import logging
from typing import Dict, Optional, Any, Tuple
from datetime import datetime, date, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context
from errors import NotFoundError, ValidationError
import models
from services.schedule_service import get_medication_or_raise, medication_events
from tools.adherence_calculator import (
    AdherenceRecord,
    compute_adherence,
    compute_adherence_by_medication,
)


logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


def resolve_window(
    now: datetime,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    days: Optional[int] = None,
) -> Tuple[date, date]:
    """Explicit dates win; otherwise the last `days` days ending today"""
    end = end_date or now.date()
    start = start_date or end - timedelta(days=(days or DEFAULT_WINDOW_DAYS) - 1)
    if end < start:
        raise ValidationError(
            "Window end is before window start",
            start_date=start.isoformat(),
            end_date=end.isoformat(),
        )
    return start, end


class AdherenceService:
    """
    Service for adherence tracking and analysis

    Nothing here is stored: every figure is recomputed from dose events.
    """

    async def get_medication_adherence(
        self,
        medication_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> AdherenceRecord:
        """
        Adherence for one medication over a window

        Args:
            medication_id: Medication ID
            start_date: First day of the window
            end_date: Last day of the window, defaults to today
            days: Window length when start_date is omitted
            now: Current time
            db: Database session

        Returns:
            AdherenceRecord (zeroed when nothing is due yet)
        """
        now = now or datetime.now()
        window_start, window_end = resolve_window(now, start_date, end_date, days)

        def _get(session: Session) -> AdherenceRecord:
            get_medication_or_raise(session, medication_id)
            events = medication_events(session, medication_id, window_start, window_end)
            record = compute_adherence(events, window_start, window_end, now, medication_id)
            logger.debug(
                f"Adherence for medication {medication_id}: {record.adherence_rate}% "
                f"({record.taken}/{record.scheduled})"
            )
            return record

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_patient_adherence(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Overall and per-medication adherence for a patient

        Returns:
            Dict with overall record, by_medication records and names
        """
        now = now or datetime.now()
        window_start, window_end = resolve_window(now, start_date, end_date, days)

        def _get(session: Session) -> Dict[str, Any]:
            patient = session.get(models.Patient, patient_id)
            if not patient:
                raise NotFoundError(f"Patient {patient_id} not found")

            start_at = datetime.combine(window_start, datetime.min.time())
            end_at = datetime.combine(window_end + timedelta(days=1), datetime.min.time())
            events = session.query(models.MedicationCalendarEvent).filter(
                and_(
                    models.MedicationCalendarEvent.patient_id == patient_id,
                    models.MedicationCalendarEvent.is_cancelled == False,  # noqa: E712
                    models.MedicationCalendarEvent.scheduled_at >= start_at,
                    models.MedicationCalendarEvent.scheduled_at < end_at,
                )
            ).all()

            overall = compute_adherence(events, window_start, window_end, now)
            by_medication = compute_adherence_by_medication(events, window_start, window_end, now)
            names = {m.id: m.name for m in patient.medications}

            return {
                "patient_id": patient_id,
                "overall": overall,
                "by_medication": [
                    {"medication_name": names.get(med_id), "record": record}
                    for med_id, record in sorted(by_medication.items(), key=lambda kv: names.get(kv[0]) or "")
                ],
            }

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
adherence_service = AdherenceService()
