"""
Doses API Router
Endpoints for acting on individual dose events
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.schedule import (
    BucketAssignmentResponse,
    DoseEventResponse,
    RescheduleDoseRequest,
    RescheduleResponse,
    SkipDoseRequest,
    SnoozeDoseRequest,
    TakeDoseRequest,
)
from errors import NotFoundError
from services.dose_service import describe_event


router = APIRouter(prefix="/doses", tags=["doses"])


@router.get("/{event_id}", response_model=DoseEventResponse)
async def get_dose(
    event_id: str,
    db: Session = Depends(get_db)
):
    """Get a dose event with its derived status"""
    dose_service = services.get_dose_service()
    event = await dose_service.get_event(event_id, db=db)
    if not event:
        raise NotFoundError(f"Dose event {event_id} not found")
    return describe_event(event)


@router.post("/{event_id}/take", response_model=DoseEventResponse)
async def take_dose(
    event_id: str,
    request: TakeDoseRequest,
    db: Session = Depends(get_db)
):
    """
    Mark a dose taken

    Only a dose that is still scheduled can be taken; repeating it is a no-op.
    """
    dose_service = services.get_dose_service()
    event = await dose_service.take_dose(
        event_id,
        taken_at=request.taken_at,
        taken_by=request.taken_by,
        db=db
    )
    return describe_event(event)


@router.post("/{event_id}/skip", response_model=DoseEventResponse)
async def skip_dose(
    event_id: str,
    request: SkipDoseRequest,
    db: Session = Depends(get_db)
):
    """Skip a dose with a reason"""
    dose_service = services.get_dose_service()
    event = await dose_service.skip_dose(
        event_id,
        reason=request.reason.value,
        notes=request.notes,
        db=db
    )
    return describe_event(event)


@router.post("/{event_id}/snooze", response_model=DoseEventResponse)
async def snooze_dose(
    event_id: str,
    request: SnoozeDoseRequest,
    db: Session = Depends(get_db)
):
    """Snooze a dose by some minutes"""
    dose_service = services.get_dose_service()
    event = await dose_service.snooze_dose(
        event_id,
        minutes=request.minutes,
        reason=request.reason,
        snoozed_by=request.snoozed_by,
        db=db
    )
    return describe_event(event)


@router.post("/{event_id}/reschedule", response_model=RescheduleResponse)
async def reschedule_dose(
    event_id: str,
    request: RescheduleDoseRequest,
    db: Session = Depends(get_db)
):
    """
    Move a dose to a new time

    - **is_one_time**: false also moves every later dose of the schedule
    """
    dose_service = services.get_dose_service()
    original, replacement = await dose_service.reschedule_dose(
        event_id,
        new_time=request.new_time,
        reason=request.reason,
        is_one_time=request.is_one_time,
        db=db
    )
    return RescheduleResponse(
        original=describe_event(original),
        replacement=describe_event(replacement),
    )


@router.get("/{event_id}/bucket", response_model=BucketAssignmentResponse)
async def get_dose_bucket(
    event_id: str,
    db: Session = Depends(get_db)
):
    """Time-of-day bucket for a dose and minutes until it is due"""
    dose_service = services.get_dose_service()
    assignment = await dose_service.classify_dose(event_id, db=db)
    return BucketAssignmentResponse(
        event_id=event_id,
        bucket=assignment.bucket,
        label=assignment.label,
        minutes_until_due=assignment.minutes_until_due,
    )
