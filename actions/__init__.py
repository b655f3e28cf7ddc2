"""
Actions Module
Reminder dispatch and the periodic scheduler that drives it
"""

from .reminder_dispatcher import (
    DispatchOutcome,
    DispatchSummary,
    ReminderDispatcher,
)

from .reminder_scheduler import (
    ReminderScheduler,
    TASK_NOTIFICATIONS,
    TASK_SCHEDULES,
    TASK_CLEANUP,
)


__all__ = [
    # Dispatcher
    "DispatchOutcome",
    "DispatchSummary",
    "ReminderDispatcher",

    # Scheduler
    "ReminderScheduler",
    "TASK_NOTIFICATIONS",
    "TASK_SCHEDULES",
    "TASK_CLEANUP",
]
