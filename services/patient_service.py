"""
Patient Service
Business logic for patient management and time-of-day bucket preferences
"""

import logging
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from database import get_db_context, transaction
from errors import NotFoundError, ValidationError
import models
from tools.time_buckets import (
    TimeBucketDefinition,
    load_bucket_definitions,
    parse_bucket_definitions,
)


logger = logging.getLogger(__name__)


def _serialize_buckets(buckets: List[TimeBucketDefinition]) -> List[Dict]:
    return [b.model_dump() for b in buckets]


class PatientService:
    """
    Service for patient-related operations
    """

    async def create_patient(
        self,
        first_name: str,
        last_name: str,
        email: Optional[str] = None,
        timezone: str = "UTC",
        time_buckets: Optional[List[Dict]] = None,
        db: Optional[Session] = None
    ) -> models.Patient:
        """
        Create a new patient record

        Args:
            first_name: First name
            last_name: Last name
            email: Patient email (unique when given)
            timezone: Timezone label
            time_buckets: Custom bucket definitions; defaults when omitted
            db: Database session (optional)

        Returns:
            Created Patient object
        """
        buckets = parse_bucket_definitions(time_buckets) if time_buckets else None

        def _create(session: Session) -> models.Patient:
            with transaction(session, "create_patient"):
                if email:
                    existing = session.query(models.Patient).filter(
                        models.Patient.email == email
                    ).first()
                    if existing:
                        raise ValidationError(f"Patient with email {email} already exists")

                patient = models.Patient(
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    timezone=timezone,
                    time_buckets=_serialize_buckets(buckets) if buckets else None,
                    is_active=True
                )
                session.add(patient)

            session.refresh(patient)
            logger.info(f"Created patient {patient.id}: {patient.full_name}")
            return patient

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def get_patient(
        self,
        patient_id: str,
        db: Optional[Session] = None
    ) -> Optional[models.Patient]:
        """Get patient by ID"""
        def _get(session: Session) -> Optional[models.Patient]:
            return session.query(models.Patient).filter(
                models.Patient.id == patient_id
            ).first()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_time_buckets(
        self,
        patient_id: str,
        db: Optional[Session] = None
    ) -> List[TimeBucketDefinition]:
        """The patient's bucket definitions, or the defaults when none are stored"""
        def _get(session: Session) -> List[TimeBucketDefinition]:
            patient = session.get(models.Patient, patient_id)
            if not patient:
                raise NotFoundError(f"Patient {patient_id} not found")
            return load_bucket_definitions(patient.time_buckets)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def update_time_buckets(
        self,
        patient_id: str,
        time_buckets: List[Dict],
        db: Optional[Session] = None
    ) -> models.Patient:
        """
        Replace the patient's bucket definitions.

        Already generated dose events keep their times; only classification
        and default times for new medications change.
        """
        buckets = parse_bucket_definitions(time_buckets)

        def _update(session: Session) -> models.Patient:
            with transaction(session, "update_time_buckets"):
                patient = session.get(models.Patient, patient_id)
                if not patient:
                    raise NotFoundError(f"Patient {patient_id} not found")
                patient.time_buckets = _serialize_buckets(buckets)

            session.refresh(patient)
            logger.info(
                f"Updated time buckets for patient {patient_id}: "
                f"{', '.join(f'{b.name}@{b.default_time}' for b in buckets)}"
            )
            return patient

        if db:
            return _update(db)

        with get_db_context() as session:
            return _update(session)


# Singleton instance
patient_service = PatientService()
