"""
Reminder Scheduler
Periodic due-sweep, schedule replenishment and retention cleanup
"""

import asyncio
import logging
from typing import Any, Callable, ContextManager, Dict, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Settings, settings as default_settings
from database import get_db_context
from actions.reminder_dispatcher import ReminderDispatcher
from services.medication_service import medication_service
from services.schedule_service import schedule_service
from tools.recurrence import (
    continue_occurrences,
    next_occurrences,
    operating_timezone,
    treatment_end,
    utc_now,
)


logger = logging.getLogger(__name__)


TASK_NOTIFICATIONS = "notifications"
TASK_SCHEDULES = "schedules"
TASK_CLEANUP = "cleanup"


class ReminderScheduler:
    """
    Owns the three periodic jobs and their lifecycle.

    Jobs run on the asyncio loop of the process that calls start(). Each
    job is limited to one concurrent run, and a failing run is logged
    without stopping later ones.
    """

    def __init__(
        self,
        dispatcher: Optional[ReminderDispatcher] = None,
        session_factory: Optional[Callable[[], ContextManager[Session]]] = None,
        config: Optional[Settings] = None
    ):
        self.session_factory = session_factory or get_db_context
        self.dispatcher = dispatcher or ReminderDispatcher(session_factory=self.session_factory)
        self.config = config or default_settings
        self.timezone = operating_timezone(self.config.TIMEZONE)
        self._scheduler: Optional[AsyncIOScheduler] = None

        self._tasks = {
            TASK_NOTIFICATIONS: self.send_due_notifications,
            TASK_SCHEDULES: self.replenish_schedules,
            TASK_CLEANUP: self.cleanup,
        }
        # Manual runs and triggered runs of the same job never overlap
        self._locks = {name: asyncio.Lock() for name in self._tasks}

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # ==================== LIFECYCLE ====================

    def start(self) -> bool:
        """Register the jobs and start; a second call is a no-op"""
        if self.is_running:
            logger.warning("Reminder scheduler is already running")
            return False

        scheduler = AsyncIOScheduler(timezone=self.timezone)
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        scheduler.add_job(
            self._guarded,
            IntervalTrigger(seconds=self.config.NOTIFICATION_INTERVAL_SECONDS, timezone=self.timezone),
            args=[TASK_NOTIFICATIONS],
            id=TASK_NOTIFICATIONS,
            name="Send due medication reminders",
            **job_defaults
        )
        scheduler.add_job(
            self._guarded,
            CronTrigger(minute=0, timezone=self.timezone),
            args=[TASK_SCHEDULES],
            id=TASK_SCHEDULES,
            name="Replenish upcoming doses",
            **job_defaults
        )
        scheduler.add_job(
            self._guarded,
            CronTrigger(hour=self.config.CLEANUP_HOUR, minute=0, timezone=self.timezone),
            args=[TASK_CLEANUP],
            id=TASK_CLEANUP,
            name="Remove old doses and notification logs",
            **job_defaults
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            f"Reminder scheduler started ({len(scheduler.get_jobs())} jobs, timezone {self.config.TIMEZONE})"
        )
        return True

    def stop(self) -> bool:
        """Stop all triggers; in-flight runs are not awaited"""
        if not self.is_running:
            logger.warning("Reminder scheduler is not running")
            return False

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Reminder scheduler stopped")
        return True

    def get_status(self) -> Dict[str, Any]:
        jobs = self._scheduler.get_jobs() if self.is_running else []
        return {
            "is_running": self.is_running,
            "tasks_count": len(jobs),
            "jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in jobs
            ],
        }

    async def run_task(self, name: str) -> Dict[str, Any]:
        """Run one job immediately, outside its trigger"""
        if name not in self._tasks:
            raise ValueError(f"Unknown task '{name}'. Available: {', '.join(self._tasks)}")

        logger.info(f"Running task {name} manually")
        return await self._run_exclusive(name)

    async def _run_exclusive(self, name: str) -> Dict[str, Any]:
        lock = self._locks[name]
        if lock.locked():
            logger.info(f"Task {name} is already running, waiting for it to finish")
        async with lock:
            return await self._tasks[name]()

    async def _guarded(self, name: str):
        try:
            await self._run_exclusive(name)
        except Exception:
            logger.exception(f"Scheduled task {name} failed")

    # ==================== JOBS ====================

    async def send_due_notifications(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        summary = await self.dispatcher.process_due(self.config.DUE_TOLERANCE_MINUTES, now=now)
        return summary.to_dict()

    async def replenish_schedules(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Top up medications running low on future doses.

        A medication with fewer than REPLENISH_LOW_WATER future pending
        doses gets the next SCHEDULE_HORIZON_DAYS generated, continuing
        from its latest stored dose so the spacing is preserved.
        """
        now = now or utc_now()

        with self.session_factory() as session:
            medications = await medication_service.get_schedulable_medications(now=now, db=session)
            rules = [
                (m.id, m.start_time, m.frequency_hours, treatment_end(m.started_at, m.duration_days, self.timezone))
                for m in medications
            ]

        checked = replenished = created = 0
        for medication_id, start_time, frequency_hours, until in rules:
            checked += 1
            try:
                with self.session_factory() as session:
                    inserted = await self._replenish_one(
                        session, medication_id, start_time, frequency_hours, until, now
                    )
            except Exception:
                logger.exception(f"Replenishing medication {medication_id} failed")
                continue

            if inserted:
                replenished += 1
                created += inserted

        if created:
            logger.info(f"Replenished {replenished} medications with {created} new doses")
        return {"checked": checked, "replenished": replenished, "created": created}

    async def _replenish_one(self, session: Session, medication_id: int, start_time: str,
                             frequency_hours: float, until: Optional[datetime], now: datetime) -> int:
        upcoming = await schedule_service.count_future_pending(medication_id, now=now, db=session)
        if upcoming >= self.config.REPLENISH_LOW_WATER:
            return 0

        latest = await schedule_service.latest_scheduled_time(medication_id, db=session)
        if latest is not None:
            timestamps = continue_occurrences(
                latest, frequency_hours, now=now,
                horizon_days=self.config.SCHEDULE_HORIZON_DAYS, until=until
            )
        else:
            timestamps = next_occurrences(
                start_time, frequency_hours, now=now,
                horizon_days=self.config.SCHEDULE_HORIZON_DAYS, until=until, tz=self.timezone
            )

        return await schedule_service.insert_missing(medication_id, timestamps, db=session)

    async def cleanup(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        with self.session_factory() as session:
            doses = await schedule_service.cleanup(
                self.config.SCHEDULE_RETENTION_DAYS, now=now, db=session
            )
            logs = await schedule_service.cleanup_notification_logs(
                self.config.LOG_RETENTION_DAYS, now=now, db=session
            )

        logger.info(f"Cleanup removed {doses} old doses and {logs} notification logs")
        return {"schedules_removed": doses, "logs_removed": logs}
