"""
Time Bucket Classifier
Assigns dose events to time-of-day buckets and urgency groups
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from config import settings, scheduling_config
from errors import ValidationError
from tools.dose_lifecycle import derive_status, is_terminal


logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

URGENCY_OVERDUE = "overdue"
URGENCY_NOW = "now"
URGENCY_DUE_SOON = "due_soon"


def parse_hhmm(value: str) -> int:
    """Convert 'HH:MM' to minutes after midnight"""
    try:
        hour_str, minute_str = value.strip().split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid time of day {value!r}, expected HH:MM")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValidationError(f"Invalid time of day {value!r}, expected HH:MM")
    return hour * 60 + minute


def format_hhmm(minutes: int) -> str:
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def to_time(value: str) -> time:
    minutes = parse_hhmm(value)
    return time(minutes // 60, minutes % 60)


class TimeBucketDefinition(BaseModel):
    """A patient-configurable bucket: name, display label and anchor time"""
    name: str = Field(..., min_length=1, max_length=50)
    label: str = Field(..., min_length=1, max_length=100)
    default_time: str = Field(..., description="Anchor time in HH:MM format")

    @field_validator("default_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return format_hhmm(parse_hhmm(value))


def default_bucket_definitions() -> List[TimeBucketDefinition]:
    return [TimeBucketDefinition(**b) for b in scheduling_config.DEFAULT_TIME_BUCKETS]


def parse_bucket_definitions(raw: Sequence) -> List[TimeBucketDefinition]:
    """Validate raw bucket dicts, raising ValidationError on bad input"""
    try:
        buckets = [b if isinstance(b, TimeBucketDefinition) else TimeBucketDefinition(**b) for b in raw]
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid time bucket definition",
            errors=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in exc.errors()],
        )
    return validate_bucket_definitions(buckets)


def load_bucket_definitions(raw: Optional[Sequence[dict]]) -> List[TimeBucketDefinition]:
    """Build validated bucket definitions from stored JSON, falling back to defaults"""
    if not raw:
        return default_bucket_definitions()
    return parse_bucket_definitions(raw)


def validate_bucket_definitions(buckets: Sequence[TimeBucketDefinition]) -> List[TimeBucketDefinition]:
    if not buckets:
        raise ValidationError("At least one time bucket is required")

    names = [b.name for b in buckets]
    if len(set(names)) != len(names):
        raise ValidationError("Time bucket names must be unique")

    anchors = [b.default_time for b in buckets]
    if len(set(anchors)) != len(anchors):
        raise ValidationError("Time bucket anchor times must be unique")

    return sorted(buckets, key=lambda b: parse_hhmm(b.default_time))


@dataclass
class BucketWindow:
    """Half-open window [start_minute, end_minute) that may wrap past midnight"""
    name: str
    label: str
    anchor_minute: int
    start_minute: float
    end_minute: float

    def contains(self, minute: float) -> bool:
        if self.start_minute == self.end_minute:
            return True
        if self.start_minute < self.end_minute:
            return self.start_minute <= minute < self.end_minute
        return minute >= self.start_minute or minute < self.end_minute

    @property
    def start(self) -> str:
        return format_hhmm(int(self.start_minute))

    @property
    def end(self) -> str:
        return format_hhmm(int(self.end_minute))


def bucket_windows(buckets: Optional[Sequence[TimeBucketDefinition]] = None) -> List[BucketWindow]:
    """
    Derive each bucket's window from the midpoints between adjacent anchors.

    The last and first anchors are adjacent across midnight.
    """
    ordered = validate_bucket_definitions(list(buckets or default_bucket_definitions()))
    anchors = [parse_hhmm(b.default_time) for b in ordered]
    count = len(ordered)

    windows = []
    for i, bucket in enumerate(ordered):
        anchor = anchors[i]
        prev_anchor = anchors[i - 1] if i > 0 else anchors[-1] - MINUTES_PER_DAY
        next_anchor = anchors[i + 1] if i < count - 1 else anchors[0] + MINUTES_PER_DAY
        start = ((prev_anchor + anchor) / 2) % MINUTES_PER_DAY
        end = ((anchor + next_anchor) / 2) % MINUTES_PER_DAY
        windows.append(BucketWindow(
            name=bucket.name,
            label=bucket.label,
            anchor_minute=anchor,
            start_minute=start,
            end_minute=end,
        ))
    return windows


def bucket_for_time(
    value: time,
    buckets: Optional[Sequence[TimeBucketDefinition]] = None
) -> BucketWindow:
    minute = value.hour * 60 + value.minute + value.second / 60
    windows = bucket_windows(buckets)
    for window in windows:
        if window.contains(minute):
            return window
    # Unreachable with well-formed windows; they tile the whole day
    return windows[0]


def minutes_between(later: datetime, earlier: datetime) -> int:
    return int(round((later - earlier).total_seconds() / 60))


@dataclass
class BucketAssignment:
    """Bucket chosen for a dose plus how far away it is"""
    bucket: str
    label: str
    minutes_until_due: int


def classify_bucket(
    scheduled_at: datetime,
    buckets: Optional[Sequence[TimeBucketDefinition]] = None,
    now: Optional[datetime] = None,
    due_at: Optional[datetime] = None,
) -> BucketAssignment:
    """
    Assign a dose to the bucket whose window contains its scheduled time.

    Minutes until due count from due_at when given, so a snoozed dose
    keeps its bucket but reports its shifted due time.
    """
    now = now or datetime.now()
    window = bucket_for_time(scheduled_at.time(), buckets)
    return BucketAssignment(
        bucket=window.name,
        label=window.label,
        minutes_until_due=minutes_between(due_at or scheduled_at, now),
    )


def classify_urgency(
    due_at: datetime,
    now: datetime,
    now_window_minutes: Optional[int] = None,
    due_soon_minutes: Optional[int] = None,
) -> Optional[str]:
    """
    Time-relative grouping for a dose that has not been acted on.

    Returns overdue, now, due_soon, or None when the dose is further out.
    """
    if now_window_minutes is None:
        now_window_minutes = settings.NOW_WINDOW_MINUTES
    if due_soon_minutes is None:
        due_soon_minutes = settings.DUE_SOON_MINUTES

    minutes_until = (due_at - now).total_seconds() / 60
    if minutes_until < -now_window_minutes:
        return URGENCY_OVERDUE
    if minutes_until <= now_window_minutes:
        return URGENCY_NOW
    if minutes_until <= due_soon_minutes:
        return URGENCY_DUE_SOON
    return None


@dataclass
class BucketGroup:
    name: str
    label: str
    start: str
    end: str
    events: List = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return all(entry["is_terminal"] for entry in self.events)


@dataclass
class TodayBuckets:
    """Today's doses grouped by time-of-day bucket and by urgency"""
    date: str
    buckets: List[BucketGroup] = field(default_factory=list)
    overdue: List[Dict] = field(default_factory=list)
    now: List[Dict] = field(default_factory=list)
    due_soon: List[Dict] = field(default_factory=list)
    completed: List[Dict] = field(default_factory=list)
    generated_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            "date": self.date,
            "buckets": [
                {
                    "name": b.name,
                    "label": b.label,
                    "start": b.start,
                    "end": b.end,
                    "is_complete": b.is_complete,
                    "events": b.events,
                }
                for b in self.buckets
            ],
            "overdue": self.overdue,
            "now": self.now,
            "due_soon": self.due_soon,
            "completed": self.completed,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }


def build_today_buckets(
    events: Sequence,
    buckets: Optional[Sequence[TimeBucketDefinition]] = None,
    now: Optional[datetime] = None,
    grace_minutes: Optional[int] = None,
    now_window_minutes: Optional[int] = None,
    due_soon_minutes: Optional[int] = None,
) -> TodayBuckets:
    """
    Group dose events by bucket and urgency.

    Read-only: statuses are derived, nothing on the events is modified.
    """
    now = now or datetime.now()
    windows = bucket_windows(buckets)
    result = TodayBuckets(
        date=now.date().isoformat(),
        buckets=[BucketGroup(w.name, w.label, w.start, w.end) for w in windows],
        generated_at=now,
    )
    groups = {g.name: g for g in result.buckets}

    for event in sorted(events, key=lambda e: e.scheduled_at):
        if event.is_cancelled:
            continue
        status = derive_status(event, now, grace_minutes)
        terminal = is_terminal(status)
        window = bucket_for_time(event.scheduled_at.time(), buckets)
        entry = {
            "event_id": event.id,
            "medication_id": event.medication_id,
            "scheduled_at": event.scheduled_at.isoformat(),
            "effective_due_at": event.effective_due_at.isoformat(),
            "status": status.value,
            "bucket": window.name,
            "minutes_until_due": minutes_between(event.effective_due_at, now),
            "snooze_count": event.snooze_count or 0,
            "is_terminal": terminal,
        }
        groups[window.name].events.append(entry)

        if terminal:
            result.completed.append(entry)
            continue

        urgency = classify_urgency(
            event.effective_due_at, now, now_window_minutes, due_soon_minutes
        )
        if urgency == URGENCY_OVERDUE:
            result.overdue.append(entry)
        elif urgency == URGENCY_NOW:
            result.now.append(entry)
        elif urgency == URGENCY_DUE_SOON:
            result.due_soon.append(entry)

    return result
