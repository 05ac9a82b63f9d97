"""
Schedules API Router
Endpoints for dose generation, today's view and schedule repair
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.schedule import (
    MedicationScheduleView,
    RepairResponse,
    ScheduleGenerateRequest,
    ScheduleGenerateResponse,
    ScheduleResponse,
    TodayBucketsResponse,
)
from services.dose_service import describe_event


router = APIRouter(prefix="/schedules", tags=["schedules"])


@router.post("/generate", response_model=ScheduleGenerateResponse)
async def generate_schedule(
    request: ScheduleGenerateRequest,
    db: Session = Depends(get_db)
):
    """
    Materialize dose events for a medication over a date range

    Safe to repeat: a slot that already has an event is never duplicated.
    Passing a different frequency or times changes the schedule first.
    """
    schedule_service = services.get_schedule_service()
    events = await schedule_service.generate_schedule(
        request.medication_id,
        request.range_start,
        request.range_end,
        frequency=request.frequency,
        times=request.times,
        start_date=request.start_date,
        db=db
    )
    return ScheduleGenerateResponse(
        medication_id=request.medication_id,
        range_start=request.range_start,
        range_end=request.range_end,
        total=len(events),
        events=[describe_event(e) for e in events],
    )


@router.get("/medication/{medication_id}", response_model=MedicationScheduleView)
async def get_medication_schedule(
    medication_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    include_cancelled: bool = Query(False),
    db: Session = Depends(get_db)
):
    """Schedules of a medication with its dose events"""
    schedule_service = services.get_schedule_service()
    schedules = await schedule_service.get_schedules(medication_id, include_inactive=True, db=db)
    events = await schedule_service.get_medication_events(
        medication_id,
        range_start=start_date,
        range_end=end_date,
        include_cancelled=include_cancelled,
        db=db
    )
    return MedicationScheduleView(
        medication_id=medication_id,
        schedules=[ScheduleResponse.model_validate(s) for s in schedules],
        events=[describe_event(e) for e in events],
    )


@router.get("/patient/{patient_id}/today", response_model=TodayBucketsResponse)
async def get_today(
    patient_id: str,
    db: Session = Depends(get_db)
):
    """
    Today's doses by time-of-day bucket, plus overdue / now / due soon lists

    Read-only; suitable for polling.
    """
    schedule_service = services.get_schedule_service()
    today = await schedule_service.get_today_buckets(patient_id, db=db)
    return today.to_dict()


@router.post("/patient/{patient_id}/repair", response_model=RepairResponse)
async def repair_schedules(
    patient_id: str,
    dry_run: bool = Query(False, description="Report issues without fixing them"),
    db: Session = Depends(get_db)
):
    """Diagnose and fix schedule inconsistencies for a patient"""
    repair_service = services.get_repair_service()
    return await repair_service.diagnose_and_repair_schedules(patient_id, dry_run=dry_run, db=db)
