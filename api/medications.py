"""
Medications API Router
Endpoints for medication management, lifecycle transitions and PRN intake
"""

from typing import List
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.medication import (
    FrequencyNormalizeRequest,
    FrequencyNormalizeResponse,
    MedicationCreate,
    MedicationImport,
    MedicationList,
    MedicationResponse,
    MedicationStatusResponse,
    PRNDoseCreate,
    PRNDoseResponse,
    PRNUsageResponse,
    StatusChangeRequest,
    StatusChangeResponse,
)
from errors import NotFoundError
from tools.frequency_normalizer import normalize_frequency
from tools.time_buckets import bucket_for_time, to_time


router = APIRouter(prefix="/medications", tags=["medications"])


@router.post("/", response_model=MedicationResponse, status_code=status.HTTP_201_CREATED)
async def create_medication(
    medication_data: MedicationCreate,
    db: Session = Depends(get_db)
):
    """
    Add a new medication for a patient

    - **patient_id**: Patient ID
    - **name**: Medication name
    - **dosage**: Dosage (e.g., "10mg")
    - **frequency**: Frequency as entered ("Once daily", "bid", "as needed")
    - **times**: Optional explicit times of day
    """
    medication_service = services.get_medication_service()
    return await medication_service.add_medication(
        patient_id=medication_data.patient_id,
        name=medication_data.name,
        dosage=medication_data.dosage,
        frequency=medication_data.frequency,
        instructions=medication_data.instructions,
        times=medication_data.times,
        start_date=medication_data.start_date,
        end_date=medication_data.end_date,
        is_prn=medication_data.is_prn,
        reminders_enabled=medication_data.reminders_enabled,
        max_daily_dose=medication_data.max_daily_dose,
        db=db
    )


@router.post("/import", response_model=MedicationResponse, status_code=status.HTTP_201_CREATED)
async def import_medication(
    import_data: MedicationImport,
    db: Session = Depends(get_db)
):
    """Import a legacy or unified medication record"""
    medication_service = services.get_medication_service()
    return await medication_service.import_medication_record(
        patient_id=import_data.patient_id,
        record=import_data.record,
        performed_by=import_data.performed_by,
        db=db
    )


@router.post("/normalize-frequency", response_model=FrequencyNormalizeResponse)
async def normalize_frequency_label(
    request: FrequencyNormalizeRequest,
    db: Session = Depends(get_db)
):
    """Map a frequency label to its canonical code and default times"""
    buckets = None
    if request.patient_id:
        patient_service = services.get_patient_service()
        buckets = await patient_service.get_time_buckets(request.patient_id, db=db)

    result = normalize_frequency(request.frequency, buckets)
    return FrequencyNormalizeResponse(
        source_text=request.frequency,
        code=result.code,
        description=result.description,
        recognized=result.recognized,
        default_times=result.default_times,
        default_buckets=[bucket_for_time(to_time(t), buckets).name for t in result.default_times],
    )


@router.get("/patient/{patient_id}", response_model=MedicationList)
async def get_patient_medications(
    patient_id: str,
    active_only: bool = Query(True, description="Only return active medications"),
    db: Session = Depends(get_db)
):
    """
    Get all medications for a patient
    """
    medication_service = services.get_medication_service()

    medications = await medication_service.get_patient_medications(
        patient_id,
        active_only=active_only,
        db=db
    )

    return MedicationList(
        medications=[MedicationResponse.model_validate(m) for m in medications],
        total=len(medications),
        active_count=sum(1 for m in medications if m.is_active)
    )


@router.get("/{medication_id}", response_model=MedicationResponse)
async def get_medication(
    medication_id: str,
    db: Session = Depends(get_db)
):
    """Get medication by ID"""
    medication_service = services.get_medication_service()
    medication = await medication_service.get_medication(medication_id, db=db)
    if not medication:
        raise NotFoundError(f"Medication {medication_id} not found")
    return medication


@router.post("/{medication_id}/status", response_model=StatusChangeResponse, status_code=status.HTTP_201_CREATED)
async def change_medication_status(
    medication_id: str,
    request: StatusChangeRequest,
    db: Session = Depends(get_db)
):
    """
    Hold, resume, discontinue or replace a medication

    - **hold**: reason, hold_until, auto_resume, instructions
    - **resume**: reason
    - **discontinue**: reason, stop_date, follow_up_required
    - **replace**: reason, new_medication_id, transition_plan, overlap_days
    """
    medication_service = services.get_medication_service()
    return await medication_service.change_medication_status(
        medication_id,
        request.change_type.value,
        payload=request.payload,
        performed_by=request.performed_by,
        notes=request.notes,
        db=db
    )


@router.get("/{medication_id}/status", response_model=MedicationStatusResponse)
async def get_medication_status(
    medication_id: str,
    db: Session = Depends(get_db)
):
    """Current status, with any expired auto-resume hold already applied"""
    medication_service = services.get_medication_service()
    return await medication_service.get_medication_status(medication_id, db=db)


@router.get("/{medication_id}/status-history", response_model=List[StatusChangeResponse])
async def get_status_history(
    medication_id: str,
    db: Session = Depends(get_db)
):
    """Lifecycle audit log, oldest first"""
    medication_service = services.get_medication_service()
    return await medication_service.get_status_history(medication_id, db=db)


@router.post("/{medication_id}/prn-doses", response_model=PRNDoseResponse, status_code=status.HTTP_201_CREATED)
async def log_prn_dose(
    medication_id: str,
    dose: PRNDoseCreate,
    db: Session = Depends(get_db)
):
    """Record an as-needed intake; rejected past the daily maximum"""
    medication_service = services.get_medication_service()
    return await medication_service.log_prn_dose(
        medication_id,
        reason=dose.reason,
        taken_at=dose.taken_at,
        dosage_amount=dose.dosage_amount,
        notes=dose.notes,
        logged_by=dose.logged_by,
        db=db
    )


@router.get("/{medication_id}/prn-usage", response_model=PRNUsageResponse)
async def get_prn_usage(
    medication_id: str,
    db: Session = Depends(get_db)
):
    """Recent as-needed usage and remaining allowance"""
    medication_service = services.get_medication_service()
    return await medication_service.get_prn_usage(medication_id, db=db)
