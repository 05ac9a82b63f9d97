"""
Adherence Calculator
Pure adherence math over dose events
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from config import settings, scheduling_config
from models import DoseStatus, RiskLevel
from tools.dose_lifecycle import derive_status


logger = logging.getLogger(__name__)

COUNTED_STATUSES = {DoseStatus.TAKEN, DoseStatus.MISSED, DoseStatus.SKIPPED}


@dataclass
class AdherenceRecord:
    """Derived adherence statistics for one medication or a whole patient"""
    window_start: date
    window_end: date
    medication_id: Optional[str] = None
    scheduled: int = 0
    taken: int = 0
    missed: int = 0
    skipped: int = 0
    pending: int = 0
    adherence_rate: float = 0.0
    on_time: int = 0
    on_time_rate: float = 0.0
    average_delay_minutes: float = 0.0
    longest_delay_minutes: int = 0
    current_streak: int = 0
    risk_level: RiskLevel = RiskLevel.LOW

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["window_start"] = self.window_start.isoformat()
        data["window_end"] = self.window_end.isoformat()
        data["risk_level"] = RiskLevel(self.risk_level).value
        return data


def classify_risk(rate: float) -> RiskLevel:
    """Risk band for an adherence percentage; each lower bound is inclusive"""
    if rate >= scheduling_config.RISK_LOW_THRESHOLD:
        return RiskLevel.LOW
    if rate >= scheduling_config.RISK_MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    if rate >= scheduling_config.RISK_HIGH_THRESHOLD:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 1)


def _in_window(event, window_start: date, window_end: date, today: date) -> bool:
    if event.is_cancelled or DoseStatus(event.status) == DoseStatus.RESCHEDULED:
        return False
    day = event.scheduled_at.date()
    return window_start <= day <= window_end and day <= today


def current_streak(
    outcomes_by_day: Dict[date, List[DoseStatus]],
    window_start: date,
    today: date
) -> int:
    """
    Consecutive fully adherent days ending yesterday.

    Days without counted doses (e.g. between weekly doses) neither extend
    nor break the streak.
    """
    streak = 0
    day = today - timedelta(days=1)
    while day >= window_start:
        outcomes = outcomes_by_day.get(day)
        if outcomes:
            if any(o != DoseStatus.TAKEN for o in outcomes):
                break
            streak += 1
        day -= timedelta(days=1)
    return streak


def compute_adherence(
    events: Sequence,
    window_start: date,
    window_end: date,
    now: Optional[datetime] = None,
    medication_id: Optional[str] = None,
    on_time_tolerance_minutes: Optional[int] = None,
    grace_minutes: Optional[int] = None,
) -> AdherenceRecord:
    """
    Adherence over [window_start, window_end] as of now.

    Only doses on or before today with a resolved outcome are counted;
    doses still pending are reported but excluded from the denominator.
    Empty input yields a zeroed record.
    """
    now = now or datetime.now()
    if on_time_tolerance_minutes is None:
        on_time_tolerance_minutes = settings.ON_TIME_TOLERANCE_MINUTES
    today = now.date()

    record = AdherenceRecord(
        window_start=window_start,
        window_end=window_end,
        medication_id=medication_id,
    )

    outcomes_by_day: Dict[date, List[DoseStatus]] = defaultdict(list)
    late_delays: List[int] = []

    for event in events:
        if not _in_window(event, window_start, window_end, today):
            continue
        status = derive_status(event, now, grace_minutes)
        if status not in COUNTED_STATUSES:
            record.pending += 1
            continue

        record.scheduled += 1
        outcomes_by_day[event.scheduled_at.date()].append(status)

        if status == DoseStatus.MISSED:
            record.missed += 1
        elif status == DoseStatus.SKIPPED:
            record.skipped += 1
        else:
            record.taken += 1
            taken_at = event.taken_at or event.scheduled_at
            delay = int(round((taken_at - event.scheduled_at).total_seconds() / 60))
            if abs(delay) <= on_time_tolerance_minutes:
                record.on_time += 1
            elif delay > 0:
                late_delays.append(delay)

    record.adherence_rate = _percent(record.taken, record.scheduled)
    record.on_time_rate = _percent(record.on_time, record.taken)
    if late_delays:
        record.average_delay_minutes = round(sum(late_delays) / len(late_delays), 1)
        record.longest_delay_minutes = max(late_delays)
    record.current_streak = current_streak(outcomes_by_day, window_start, today)

    if record.scheduled:
        record.risk_level = classify_risk(record.taken / record.scheduled * 100)

    return record


def compute_adherence_by_medication(
    events: Sequence,
    window_start: date,
    window_end: date,
    now: Optional[datetime] = None,
    on_time_tolerance_minutes: Optional[int] = None,
    grace_minutes: Optional[int] = None,
) -> Dict[str, AdherenceRecord]:
    grouped = defaultdict(list)
    for event in events:
        grouped[event.medication_id].append(event)
    return {
        med_id: compute_adherence(
            med_events, window_start, window_end, now, med_id,
            on_time_tolerance_minutes, grace_minutes
        )
        for med_id, med_events in grouped.items()
    }
