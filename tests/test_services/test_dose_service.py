"""
Tests for Dose Service
Take, skip, snooze and reschedule against persisted events
"""

from datetime import datetime, timedelta

import pytest

from errors import NotFoundError, StateConflictError, ValidationError
from models import MedicationCalendarEvent
from services.dose_service import describe_event, dose_service
from services.repair_service import repair_service
from services.schedule_service import schedule_service
from tests.conftest import NOW, event_at, live_events


MAR_11 = datetime(2025, 3, 11, 8, 0)


@pytest.fixture
def first_dose(db_session, daily_medication):
    return event_at(db_session, daily_medication.id, MAR_11)


@pytest.mark.database
class TestTakeSkipSnooze:

    @pytest.mark.asyncio
    async def test_take(self, db_session, first_dose):
        taken_at = MAR_11 + timedelta(minutes=4)

        event = await dose_service.take_dose(
            first_dose.id, taken_at=taken_at, taken_by="patient", now=MAR_11 + timedelta(minutes=5), db=db_session
        )

        assert event.status == "taken"
        assert event.taken_at == taken_at

    @pytest.mark.asyncio
    async def test_take_logged_hours_later(self, db_session, first_dose):
        taken_at = MAR_11 + timedelta(minutes=10)

        event = await dose_service.take_dose(
            first_dose.id, taken_at=taken_at, now=MAR_11 + timedelta(hours=4), db=db_session
        )

        assert event.status == "taken"
        assert event.taken_at == taken_at

    @pytest.mark.asyncio
    async def test_take_twice_keeps_first_time(self, db_session, first_dose):
        now = MAR_11 + timedelta(minutes=5)
        await dose_service.take_dose(first_dose.id, now=now, db=db_session)

        event = await dose_service.take_dose(first_dose.id, now=now + timedelta(minutes=10), db=db_session)

        assert event.taken_at == now

    @pytest.mark.asyncio
    async def test_missed_dose_cannot_be_taken(self, db_session, first_dose):
        with pytest.raises(StateConflictError):
            await dose_service.take_dose(first_dose.id, now=MAR_11 + timedelta(hours=3), db=db_session)

        db_session.refresh(first_dose)
        assert first_dose.status == "scheduled"

    @pytest.mark.asyncio
    async def test_skip(self, db_session, first_dose):
        event = await dose_service.skip_dose(first_dose.id, "side_effects", "dizzy", now=NOW, db=db_session)

        assert event.status == "skipped"
        assert event.skip_reason == "side_effects"

    @pytest.mark.asyncio
    async def test_snooze_three_times(self, db_session, first_dose):
        now = MAR_11 - timedelta(minutes=5)
        for _ in range(3):
            await dose_service.snooze_dose(first_dose.id, 10, now=now, db=db_session)

        event = await dose_service.get_event(first_dose.id, db=db_session)
        data = describe_event(event, now)

        assert data["status"] == "scheduled"
        assert data["snooze_count"] == 3
        assert data["effective_due_at"] == MAR_11 + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_unknown_event(self, db_session):
        with pytest.raises(NotFoundError):
            await dose_service.take_dose("missing", now=NOW, db=db_session)


@pytest.mark.database
class TestReschedule:

    @pytest.mark.asyncio
    async def test_one_time_reschedule(self, db_session, daily_medication, first_dose):
        new_time = datetime(2025, 3, 11, 10, 0)

        original, replacement = await dose_service.reschedule_dose(
            first_dose.id, new_time, "Lab work in the morning", now=NOW, db=db_session
        )

        assert original.status == "rescheduled"
        assert original.reschedule_to == new_time
        assert replacement.scheduled_at == new_time
        assert replacement.status == "scheduled"
        assert replacement.rescheduled_from_id == original.id
        assert daily_medication.schedules[0].times == ["08:00"]
        assert event_at(db_session, daily_medication.id, datetime(2025, 3, 12, 8, 0)) is not None

    @pytest.mark.asyncio
    async def test_recurring_reschedule_moves_later_doses(self, db_session, daily_medication, first_dose):
        await dose_service.reschedule_dose(
            first_dose.id, datetime(2025, 3, 11, 9, 0), "Takes it with breakfast now",
            is_one_time=False, now=NOW, db=db_session,
        )

        schedules = await schedule_service.get_schedules(daily_medication.id, db=db_session)
        old_slots = db_session.query(MedicationCalendarEvent).filter(
            MedicationCalendarEvent.medication_id == daily_medication.id,
            MedicationCalendarEvent.cancel_reason == "schedule_changed",
        ).all()
        scheduled = [e for e in live_events(db_session, daily_medication.id) if e.status == "scheduled"]

        assert schedules[0].times == ["09:00"]
        assert sorted(e.scheduled_at.day for e in old_slots) == [12, 13, 14, 15, 16]
        assert all(e.scheduled_at.hour == 8 for e in old_slots)
        assert [e.scheduled_at for e in scheduled] == [
            datetime(2025, 3, day, 9, 0) for day in range(11, 17)
        ]

    @pytest.mark.asyncio
    async def test_reschedule_into_past(self, db_session, first_dose):
        with pytest.raises(ValidationError):
            await dose_service.reschedule_dose(
                first_dose.id, NOW - timedelta(hours=1), "oops", now=NOW, db=db_session
            )

    @pytest.mark.asyncio
    async def test_reschedule_onto_existing_dose(self, db_session, first_dose):
        with pytest.raises(ValidationError):
            await dose_service.reschedule_dose(
                first_dose.id, datetime(2025, 3, 12, 8, 0), "double up", now=NOW, db=db_session
            )

    @pytest.mark.asyncio
    async def test_reschedule_back_to_original_time(self, db_session, daily_medication, first_dose):
        _, moved = await dose_service.reschedule_dose(
            first_dose.id, datetime(2025, 3, 11, 10, 0), "Lab work", now=NOW, db=db_session
        )

        original, back = await dose_service.reschedule_dose(
            moved.id, MAR_11, "Lab work cancelled", now=NOW, db=db_session
        )
        report = await repair_service.diagnose_and_repair_schedules(
            daily_medication.patient_id, dry_run=True, now=NOW, db=db_session
        )

        assert original.status == "rescheduled"
        assert back.scheduled_at == MAR_11
        assert back.status == "scheduled"
        assert back.rescheduled_from_id == moved.id
        assert report["issues_found"] == 0

    @pytest.mark.asyncio
    async def test_taken_dose_cannot_move(self, db_session, first_dose):
        await dose_service.take_dose(first_dose.id, now=MAR_11, db=db_session)

        with pytest.raises(StateConflictError):
            await dose_service.reschedule_dose(
                first_dose.id, datetime(2025, 3, 11, 12, 0), "later", now=MAR_11, db=db_session
            )


@pytest.mark.database
@pytest.mark.asyncio
async def test_classify_dose(db_session, first_dose):
    assignment = await dose_service.classify_dose(first_dose.id, now=MAR_11 - timedelta(hours=1), db=db_session)

    assert assignment.bucket == "morning"
    assert assignment.minutes_until_due == 60


@pytest.mark.database
@pytest.mark.asyncio
async def test_classify_snoozed_dose(db_session, first_dose):
    now = MAR_11 + timedelta(minutes=5)
    await dose_service.snooze_dose(first_dose.id, 30, now=now, db=db_session)

    assignment = await dose_service.classify_dose(first_dose.id, now=now, db=db_session)

    assert assignment.bucket == "morning"
    assert assignment.minutes_until_due == 30
