"""
Frequency Normalizer
Maps free-text medication frequencies to a canonical code and default times
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from models import FrequencyCode
from tools.time_buckets import TimeBucketDefinition, default_bucket_definitions


logger = logging.getLogger(__name__)


# Display labels offered by medication entry forms
DISPLAY_FREQUENCIES: List[str] = [
    "Once daily",
    "Twice daily",
    "Three times daily",
    "Four times daily",
    "Every 12 hours",
    "Every 8 hours",
    "Every 6 hours",
    "Every 4 hours",
    "Once weekly",
    "Monthly",
    "As needed",
]

FREQUENCY_DESCRIPTIONS = {
    FrequencyCode.DAILY: "Once daily",
    FrequencyCode.TWICE_DAILY: "Twice daily (BID)",
    FrequencyCode.THREE_TIMES_DAILY: "Three times daily (TID)",
    FrequencyCode.FOUR_TIMES_DAILY: "Four times daily (QID)",
    FrequencyCode.WEEKLY: "Weekly",
    FrequencyCode.MONTHLY: "Monthly",
    FrequencyCode.AS_NEEDED: "As needed (PRN)",
}

# Which bucket anchors each code uses, by position in the bucket list
_BUCKET_SLOTS = {
    FrequencyCode.DAILY: [0],
    FrequencyCode.TWICE_DAILY: [0, 2],
    FrequencyCode.THREE_TIMES_DAILY: [0, 1, 2],
    FrequencyCode.FOUR_TIMES_DAILY: [0, 1, 2, 3],
    FrequencyCode.WEEKLY: [0],
    FrequencyCode.MONTHLY: [0],
    FrequencyCode.AS_NEEDED: [],
}

# Checked in order; weekly/monthly/PRN come first so "once weekly" is not daily
_PATTERNS = [
    (FrequencyCode.AS_NEEDED, [
        r"\bas[\s-]+needed\b", r"\bp\.?\s?r\.?\s?n\.?(?![a-z])", r"\bwhen needed\b", r"\bif needed\b",
    ]),
    (FrequencyCode.WEEKLY, [
        r"\bweekly\b", r"\bonce a week\b", r"\bevery week\b", r"\bper week\b", r"\bq\.?\s?w(?:k)?\.?(?![a-z])",
    ]),
    (FrequencyCode.MONTHLY, [
        r"\bmonthly\b", r"\bonce a month\b", r"\bevery month\b", r"\bper month\b",
    ]),
    (FrequencyCode.FOUR_TIMES_DAILY, [
        r"\bfour\b", r"\b4\s?x\b", r"\bq\.?\s?i\.?\s?d\.?(?![a-z])", r"\bevery\s+[46]\s*(?:hours|hrs?|h)\b",
        r"\bq\s?[46]\s?h\b",
    ]),
    (FrequencyCode.THREE_TIMES_DAILY, [
        r"\bthree\b", r"\b3\s?x\b", r"\bt\.?\s?i\.?\s?d\.?(?![a-z])", r"\bevery\s+8\s*(?:hours|hrs?|h)\b",
        r"\bq\s?8\s?h\b",
    ]),
    (FrequencyCode.TWICE_DAILY, [
        r"\btwice\b", r"\btwo times\b", r"\b2\s?x\b", r"\bb\.?\s?i\.?\s?d\.?(?![a-z])",
        r"\bevery\s+12\s*(?:hours|hrs?|h)\b", r"\bq\s?12\s?h\b",
    ]),
    (FrequencyCode.DAILY, [
        r"\bdaily\b", r"\bonce\b", r"\bevery day\b", r"\bq\.?\s?d\.?(?![a-z])", r"\b1\s?x\b",
        r"\bnightly\b", r"\bat bedtime\b", r"\bevery morning\b", r"\bevery\s+24\s*(?:hours|hrs?|h)\b",
    ]),
]

_COMPILED = [
    (code, [re.compile(p) for p in patterns])
    for code, patterns in _PATTERNS
]


@dataclass
class NormalizedFrequency:
    """Result of frequency normalization"""
    code: FrequencyCode
    default_times: List[str] = field(default_factory=list)
    recognized: bool = True
    source_text: Optional[str] = None

    @property
    def description(self) -> str:
        return describe_frequency(self.code)


def describe_frequency(code: FrequencyCode) -> str:
    """Human readable description of a canonical frequency"""
    return FREQUENCY_DESCRIPTIONS.get(FrequencyCode(code), "Daily")


def match_frequency_code(text: Optional[str]) -> Optional[FrequencyCode]:
    """Return the canonical code for text, or None when nothing matches"""
    if not text:
        return None

    cleaned = " ".join(text.lower().strip().split())
    for value in FrequencyCode:
        if cleaned == value.value:
            return value

    for code, patterns in _COMPILED:
        if any(p.search(cleaned) for p in patterns):
            return code
    return None


def default_times_for(
    code: FrequencyCode,
    buckets: Optional[Sequence[TimeBucketDefinition]] = None
) -> List[str]:
    """
    Default ordered times-of-day for a code.

    Times come from the bucket anchors so a default dose always lands in
    the bucket it was meant for, including for patients with custom
    bucket times.
    """
    anchors = [b.default_time for b in (buckets or default_bucket_definitions())]
    anchors.sort()
    times = []
    for slot in _BUCKET_SLOTS[FrequencyCode(code)]:
        if slot < len(anchors):
            times.append(anchors[slot])
        elif anchors:
            times.append(anchors[-1])
    return sorted(set(times))


def normalize_frequency(
    text: Optional[str],
    buckets: Optional[Sequence[TimeBucketDefinition]] = None
) -> NormalizedFrequency:
    """
    Normalize a free-text or preset frequency label.

    Unrecognized text never fails: it degrades to daily and logs a warning.
    """
    code = match_frequency_code(text)
    recognized = code is not None
    if not recognized:
        logger.warning(f"Unrecognized frequency {text!r}, defaulting to daily")
        code = FrequencyCode.DAILY

    return NormalizedFrequency(
        code=code,
        default_times=default_times_for(code, buckets),
        recognized=recognized,
        source_text=text,
    )
