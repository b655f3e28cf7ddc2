"""
Treatment Progress
Derived view of how far a finite treatment has advanced
"""

from typing import Optional
from dataclasses import dataclass, asdict
from datetime import date
from enum import Enum


class TreatmentStatus(str, Enum):
    CONTINUOUS = "continuous"
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class TreatmentProgress:
    """Progress of a treatment with a fixed duration"""
    days_passed: int
    days_remaining: int
    total_days: int
    progress_percentage: float
    is_completed: bool
    is_active: bool

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_progress(duration_days: Optional[int], started_at: Optional[date],
                       today: date) -> Optional[TreatmentProgress]:
    """
    Days passed/remaining and percentage for a finite treatment.

    Returns None for continuous treatments. A treatment whose start
    date has not been recorded yet counts from today.
    """
    if duration_days is None:
        return None

    start = started_at or today
    days_passed = max(0, (today - start).days)
    days_remaining = max(0, duration_days - days_passed)
    percentage = min(100.0, max(0.0, days_passed / duration_days * 100))

    return TreatmentProgress(
        days_passed=days_passed,
        days_remaining=days_remaining,
        total_days=duration_days,
        progress_percentage=round(percentage, 1),
        is_completed=days_passed >= duration_days,
        is_active=0 <= days_passed < duration_days,
    )


def treatment_status(duration_days: Optional[int], started_at: Optional[date],
                     today: date) -> TreatmentStatus:
    if duration_days is None:
        return TreatmentStatus.CONTINUOUS
    if started_at is not None and started_at > today:
        return TreatmentStatus.NOT_STARTED

    progress = calculate_progress(duration_days, started_at, today)
    if progress.is_completed:
        return TreatmentStatus.COMPLETED
    return TreatmentStatus.ACTIVE
