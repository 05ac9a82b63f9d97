"""
Patients API Router
Endpoints for patients and their time-of-day buckets
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.patient import (
    BucketWindowResponse,
    PatientCreate,
    PatientResponse,
    TimeBucketsUpdate,
)
from errors import NotFoundError
from tools.time_buckets import bucket_windows, load_bucket_definitions


router = APIRouter(prefix="/patients", tags=["patients"])


def _patient_response(patient) -> PatientResponse:
    buckets = load_bucket_definitions(patient.time_buckets)
    anchors = {b.name: b.default_time for b in buckets}
    return PatientResponse(
        id=patient.id,
        first_name=patient.first_name,
        last_name=patient.last_name,
        email=patient.email,
        timezone=patient.timezone,
        is_active=patient.is_active,
        created_at=patient.created_at,
        updated_at=patient.updated_at,
        time_buckets=[
            BucketWindowResponse(
                name=w.name, label=w.label, default_time=anchors[w.name], start=w.start, end=w.end
            )
            for w in bucket_windows(buckets)
        ],
    )


@router.post("/", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient_data: PatientCreate,
    db: Session = Depends(get_db)
):
    """
    Register a patient

    - **time_buckets**: optional custom buckets; defaults are morning,
      lunch, evening and before bed
    """
    patient_service = services.get_patient_service()
    patient = await patient_service.create_patient(
        first_name=patient_data.first_name,
        last_name=patient_data.last_name,
        email=patient_data.email,
        timezone=patient_data.timezone,
        time_buckets=[b.model_dump() for b in patient_data.time_buckets] if patient_data.time_buckets else None,
        db=db
    )
    return _patient_response(patient)


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: str,
    db: Session = Depends(get_db)
):
    """Get a patient with their bucket windows"""
    patient_service = services.get_patient_service()
    patient = await patient_service.get_patient(patient_id, db=db)
    if not patient:
        raise NotFoundError(f"Patient {patient_id} not found")
    return _patient_response(patient)


@router.put("/{patient_id}/time-buckets", response_model=PatientResponse)
async def update_time_buckets(
    patient_id: str,
    update: TimeBucketsUpdate,
    db: Session = Depends(get_db)
):
    """Replace a patient's time-of-day buckets"""
    patient_service = services.get_patient_service()
    patient = await patient_service.update_time_buckets(
        patient_id,
        [b.model_dump() for b in update.time_buckets],
        db=db
    )
    return _patient_response(patient)
