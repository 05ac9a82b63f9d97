"""
Tools Package
Pure scheduling engine algorithms for CareCadence
"""

from .dose_lifecycle import (
    derive_status,
    is_terminal,
    apply_take,
    apply_skip,
    apply_snooze,
    apply_reschedule
)

from .time_buckets import (
    TimeBucketDefinition,
    BucketWindow,
    BucketAssignment,
    TodayBuckets,
    default_bucket_definitions,
    load_bucket_definitions,
    bucket_windows,
    classify_bucket,
    classify_urgency,
    build_today_buckets
)

from .frequency_normalizer import (
    NormalizedFrequency,
    DISPLAY_FREQUENCIES,
    describe_frequency,
    default_times_for,
    normalize_frequency
)

from .scheduler import (
    MedicationScheduler,
    ScheduleTemplate,
    SlotPlan,
    medication_scheduler,
    normalize_times
)

from .medication_lifecycle import (
    HoldPayload,
    ResumePayload,
    DiscontinuePayload,
    ReplacePayload,
    SuppressionWindow,
    parse_payload,
    check_transition,
    derive_current_status,
    suppression_window
)

from .medication_records import (
    LegacyMedicationRecord,
    UnifiedMedicationRecord,
    parse_medication_record,
    to_unified
)

from .adherence_calculator import (
    AdherenceRecord,
    classify_risk,
    compute_adherence,
    compute_adherence_by_medication
)

__all__ = [
    # Dose Lifecycle
    "derive_status",
    "is_terminal",
    "apply_take",
    "apply_skip",
    "apply_snooze",
    "apply_reschedule",

    # Time Buckets
    "TimeBucketDefinition",
    "BucketWindow",
    "BucketAssignment",
    "TodayBuckets",
    "default_bucket_definitions",
    "load_bucket_definitions",
    "bucket_windows",
    "classify_bucket",
    "classify_urgency",
    "build_today_buckets",

    # Frequency Normalizer
    "NormalizedFrequency",
    "DISPLAY_FREQUENCIES",
    "describe_frequency",
    "default_times_for",
    "normalize_frequency",

    # Scheduler
    "MedicationScheduler",
    "ScheduleTemplate",
    "SlotPlan",
    "medication_scheduler",
    "normalize_times",

    # Medication Lifecycle
    "HoldPayload",
    "ResumePayload",
    "DiscontinuePayload",
    "ReplacePayload",
    "SuppressionWindow",
    "parse_payload",
    "check_transition",
    "derive_current_status",
    "suppression_window",

    # Medication Records
    "LegacyMedicationRecord",
    "UnifiedMedicationRecord",
    "parse_medication_record",
    "to_unified",

    # Adherence Calculator
    "AdherenceRecord",
    "classify_risk",
    "compute_adherence",
    "compute_adherence_by_medication"
]
