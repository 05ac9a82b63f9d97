"""
Medication Scheduler Tool
Expands a schedule template into concrete dose slots
"""

import calendar
import logging
from typing import Iterable, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta

from errors import ValidationError
from models import FrequencyCode
from tools.time_buckets import format_hhmm, parse_hhmm


logger = logging.getLogger(__name__)


DAILY_FAMILY = {
    FrequencyCode.DAILY,
    FrequencyCode.TWICE_DAILY,
    FrequencyCode.THREE_TIMES_DAILY,
    FrequencyCode.FOUR_TIMES_DAILY,
}


@dataclass
class ScheduleTemplate:
    """What a schedule row says about when doses fall"""
    frequency: FrequencyCode
    times: List[str]
    start_date: date
    end_date: Optional[date] = None

    def __post_init__(self):
        self.frequency = FrequencyCode(self.frequency)


@dataclass
class SlotPlan:
    """Slots covering a date range, split by whether they already exist"""
    slots: List[datetime] = field(default_factory=list)
    existing: List[datetime] = field(default_factory=list)
    missing: List[datetime] = field(default_factory=list)


def normalize_times(times: Iterable[str]) -> List[str]:
    """Validate HH:MM strings, drop duplicates and sort"""
    minutes = sorted({parse_hhmm(t) for t in times})
    return [format_hhmm(m) for m in minutes]


def _clamped_day(year: int, month: int, day: int) -> date:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


class MedicationScheduler:
    """
    Turns schedule templates into dose slots.

    Daily-family frequencies produce every configured time on every day,
    weekly ones on the start date's weekday, monthly ones on the start
    date's day of month (clamped to the month's last day).
    """

    def dose_dates(
        self,
        template: ScheduleTemplate,
        range_start: date,
        range_end: date
    ) -> List[date]:
        if range_end < range_start:
            raise ValidationError(
                "Range end is before range start",
                range_start=range_start.isoformat(),
                range_end=range_end.isoformat(),
            )
        if template.frequency == FrequencyCode.AS_NEEDED:
            return []

        first = max(range_start, template.start_date)
        last = min(range_end, template.end_date) if template.end_date else range_end
        if last < first:
            return []

        dates = []
        if template.frequency in DAILY_FAMILY:
            current = first
            while current <= last:
                dates.append(current)
                current += timedelta(days=1)

        elif template.frequency == FrequencyCode.WEEKLY:
            anchor = template.start_date.weekday()
            current = first + timedelta(days=(anchor - first.weekday()) % 7)
            while current <= last:
                dates.append(current)
                current += timedelta(days=7)

        elif template.frequency == FrequencyCode.MONTHLY:
            anchor_day = template.start_date.day
            year, month = first.year, first.month
            while True:
                candidate = _clamped_day(year, month, anchor_day)
                if candidate > last:
                    break
                if candidate >= first:
                    dates.append(candidate)
                month += 1
                if month > 12:
                    year, month = year + 1, 1

        return dates

    def expand_slots(
        self,
        template: ScheduleTemplate,
        range_start: date,
        range_end: date,
        not_before: Optional[datetime] = None
    ) -> List[datetime]:
        """
        All dose slots in [range_start, range_end] (dates inclusive).

        Args:
            template: Schedule to expand
            range_start: First date to cover
            range_end: Last date to cover
            not_before: Drop slots earlier than this moment

        Returns:
            Sorted slot datetimes
        """
        times = [time.fromisoformat(t) for t in normalize_times(template.times)]
        slots = [
            datetime.combine(day, t)
            for day in self.dose_dates(template, range_start, range_end)
            for t in times
        ]
        if not_before is not None:
            slots = [s for s in slots if s >= not_before]
        return sorted(slots)

    def plan(
        self,
        template: ScheduleTemplate,
        range_start: date,
        range_end: date,
        occupied: Iterable[datetime],
        not_before: Optional[datetime] = None
    ) -> SlotPlan:
        """Split the covering slots into those already materialized and those to create"""
        occupied = set(occupied)
        plan = SlotPlan()
        for slot in self.expand_slots(template, range_start, range_end, not_before):
            plan.slots.append(slot)
            if slot in occupied:
                plan.existing.append(slot)
            else:
                plan.missing.append(slot)
        return plan


# Singleton instance
medication_scheduler = MedicationScheduler()
