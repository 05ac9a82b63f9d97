"""
Tests for Medication Scheduler Tool
Tests slot expansion for every frequency and idempotent planning
"""

from datetime import date, datetime

import pytest

from errors import ValidationError
from models import FrequencyCode
from tools.scheduler import ScheduleTemplate, medication_scheduler, normalize_times


@pytest.fixture
def scheduler():
    return medication_scheduler


# =============================================================================
# Date expansion
# =============================================================================

@pytest.mark.unit
class TestDoseDates:

    def test_daily_family_every_day(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.THREE_TIMES_DAILY, ["08:00", "12:00", "18:00"], date(2025, 3, 1))

        dates = scheduler.dose_dates(template, date(2025, 3, 1), date(2025, 3, 7))

        assert dates == [date(2025, 3, d) for d in range(1, 8)]

    def test_weekly_anchors_on_start_weekday(self, scheduler):
        # 2025-03-10 is a Monday
        template = ScheduleTemplate(FrequencyCode.WEEKLY, ["08:00"], date(2025, 3, 10))

        dates = scheduler.dose_dates(template, date(2025, 3, 1), date(2025, 3, 31))

        assert dates == [date(2025, 3, 10), date(2025, 3, 17), date(2025, 3, 24), date(2025, 3, 31)]
        assert all(d.weekday() == 0 for d in dates)

    def test_weekly_range_starting_mid_week(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.WEEKLY, ["08:00"], date(2025, 3, 10))

        dates = scheduler.dose_dates(template, date(2025, 3, 12), date(2025, 3, 20))

        assert dates == [date(2025, 3, 17)]

    def test_monthly_clamps_to_last_day(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.MONTHLY, ["09:00"], date(2025, 1, 31))

        dates = scheduler.dose_dates(template, date(2025, 1, 1), date(2025, 4, 30))

        assert dates == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)]

    def test_monthly_leap_year(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.MONTHLY, ["09:00"], date(2024, 1, 30))

        dates = scheduler.dose_dates(template, date(2024, 2, 1), date(2024, 3, 31))

        assert dates == [date(2024, 2, 29), date(2024, 3, 30)]

    def test_monthly_across_year_end(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.MONTHLY, ["09:00"], date(2024, 11, 15))

        dates = scheduler.dose_dates(template, date(2024, 11, 1), date(2025, 1, 31))

        assert dates == [date(2024, 11, 15), date(2024, 12, 15), date(2025, 1, 15)]

    def test_respects_start_and_end_dates(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.DAILY, ["08:00"], date(2025, 3, 5), date(2025, 3, 7))

        dates = scheduler.dose_dates(template, date(2025, 3, 1), date(2025, 3, 31))

        assert dates == [date(2025, 3, 5), date(2025, 3, 6), date(2025, 3, 7)]

    def test_as_needed_never_generates(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.AS_NEEDED, [], date(2025, 3, 1))

        assert scheduler.dose_dates(template, date(2025, 3, 1), date(2025, 3, 31)) == []

    def test_reversed_range_rejected(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.DAILY, ["08:00"], date(2025, 3, 1))

        with pytest.raises(ValidationError):
            scheduler.dose_dates(template, date(2025, 3, 10), date(2025, 3, 1))

    def test_frequency_string_is_coerced(self):
        template = ScheduleTemplate("weekly", ["08:00"], date(2025, 3, 10))

        assert template.frequency == FrequencyCode.WEEKLY


# =============================================================================
# Slot expansion and planning
# =============================================================================

@pytest.mark.unit
class TestSlots:

    def test_every_time_on_every_day(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.TWICE_DAILY, ["18:00", "08:00"], date(2025, 3, 10))

        slots = scheduler.expand_slots(template, date(2025, 3, 10), date(2025, 3, 11))

        assert slots == [
            datetime(2025, 3, 10, 8, 0),
            datetime(2025, 3, 10, 18, 0),
            datetime(2025, 3, 11, 8, 0),
            datetime(2025, 3, 11, 18, 0),
        ]

    def test_not_before_drops_earlier_slots(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.TWICE_DAILY, ["08:00", "18:00"], date(2025, 3, 10))

        slots = scheduler.expand_slots(
            template, date(2025, 3, 10), date(2025, 3, 10), not_before=datetime(2025, 3, 10, 12, 0)
        )

        assert slots == [datetime(2025, 3, 10, 18, 0)]

    def test_plan_splits_existing_and_missing(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.DAILY, ["08:00"], date(2025, 3, 10))
        occupied = [datetime(2025, 3, 11, 8, 0)]

        plan = scheduler.plan(template, date(2025, 3, 10), date(2025, 3, 12), occupied)

        assert plan.existing == [datetime(2025, 3, 11, 8, 0)]
        assert plan.missing == [datetime(2025, 3, 10, 8, 0), datetime(2025, 3, 12, 8, 0)]
        assert len(plan.slots) == 3

    def test_plan_is_empty_once_everything_exists(self, scheduler):
        template = ScheduleTemplate(FrequencyCode.FOUR_TIMES_DAILY, ["08:00", "12:00", "18:00", "22:00"], date(2025, 3, 10))
        first = scheduler.plan(template, date(2025, 3, 10), date(2025, 3, 16), [])

        second = scheduler.plan(template, date(2025, 3, 10), date(2025, 3, 16), first.missing)

        assert len(first.missing) == 28
        assert second.missing == []


@pytest.mark.unit
class TestNormalizeTimes:

    def test_sorts_and_dedupes(self):
        assert normalize_times(["18:00", "8:00", "08:00"]) == ["08:00", "18:00"]

    def test_rejects_invalid(self):
        with pytest.raises(ValidationError):
            normalize_times(["25:00"])
