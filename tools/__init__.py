"""
Tools Package
Recurrence, progress and email utilities for the DoseReminder system
"""

from .recurrence import (
    InvalidScheduleError,
    InvalidBackfillError,
    BackfillPlan,
    parse_start_time,
    validate_frequency,
    validate_duration,
    next_occurrences,
    continue_occurrences,
    backfill,
    treatment_end,
    local_today,
)

from .progress import (
    TreatmentProgress,
    TreatmentStatus,
    calculate_progress,
    treatment_status,
)

from .email_sender import (
    EmailSender,
    SMTPConfig,
    DeliveryFailure,
    email_sender,
)

__all__ = [
    # Recurrence
    "InvalidScheduleError",
    "InvalidBackfillError",
    "BackfillPlan",
    "parse_start_time",
    "validate_frequency",
    "validate_duration",
    "next_occurrences",
    "continue_occurrences",
    "backfill",
    "treatment_end",
    "local_today",

    # Progress
    "TreatmentProgress",
    "TreatmentStatus",
    "calculate_progress",
    "treatment_status",

    # Email
    "EmailSender",
    "SMTPConfig",
    "DeliveryFailure",
    "email_sender",
]
