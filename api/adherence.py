"""
Adherence API Router
Endpoints for derived adherence statistics
"""

from typing import Optional
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.adherence import AdherenceRecordResponse, PatientAdherenceResponse


router = APIRouter(prefix="/adherence", tags=["adherence"])


@router.get("/medication/{medication_id}", response_model=AdherenceRecordResponse)
async def get_medication_adherence(
    medication_id: str,
    start_date: Optional[date] = Query(None, description="First day of the window"),
    end_date: Optional[date] = Query(None, description="Last day of the window, defaults to today"),
    days: Optional[int] = Query(None, ge=1, le=365, description="Window length when start_date is omitted"),
    db: Session = Depends(get_db)
):
    """
    Adherence for one medication

    Only doses that are taken, missed or skipped count; doses still
    pending are reported separately.
    """
    adherence_service = services.get_adherence_service()
    record = await adherence_service.get_medication_adherence(
        medication_id,
        start_date=start_date,
        end_date=end_date,
        days=days,
        db=db
    )
    return record.to_dict()


@router.get("/patient/{patient_id}", response_model=PatientAdherenceResponse)
async def get_patient_adherence(
    patient_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    days: Optional[int] = Query(None, ge=1, le=365),
    db: Session = Depends(get_db)
):
    """Overall and per-medication adherence for a patient"""
    adherence_service = services.get_adherence_service()
    result = await adherence_service.get_patient_adherence(
        patient_id,
        start_date=start_date,
        end_date=end_date,
        days=days,
        db=db
    )
    return {
        "patient_id": result["patient_id"],
        "overall": result["overall"].to_dict(),
        "by_medication": [
            {"medication_name": item["medication_name"], "record": item["record"].to_dict()}
            for item in result["by_medication"]
        ],
    }
