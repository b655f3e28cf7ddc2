"""
Reminder Dispatcher
Sends the reminder for each due dose and records the outcome
"""

import logging
from typing import Any, Callable, ContextManager, Dict, Optional
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
from models import DoseStatus, NotificationOutcome
from services.schedule_service import DueDose, schedule_service
from services.settings_service import ConfigIncomplete, settings_service
from tools.email_sender import DeliveryFailure, email_sender


logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    """What happened to one due dose"""
    SENT = "sent"           # Delivered and marked sent
    FAILED = "failed"       # Delivery failed, dose left pending
    SKIPPED = "skipped"     # User cannot receive notifications, marked sent
    STALE = "stale"         # No longer pending by the time it was handled


@dataclass
class DispatchSummary:
    """Counts for one due-sweep"""
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    stale: int = 0

    def record(self, outcome: DispatchOutcome):
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReminderDispatcher:
    """
    Turns due doses into delivered reminders.

    A dose is marked sent once its reminder went out, or straight away
    when its owner has no usable delivery settings. A failed delivery is
    logged and the dose stays pending, so a later sweep still inside the
    due window retries it.
    """

    def __init__(
        self,
        schedule_store=None,
        settings_store=None,
        sender=None,
        session_factory: Optional[Callable[[], ContextManager[Session]]] = None
    ):
        self.schedules = schedule_store or schedule_service
        self.settings = settings_store or settings_service
        self.sender = sender or email_sender
        self.session_factory = session_factory or get_db_context

    async def dispatch(self, due: DueDose, db: Session) -> DispatchOutcome:
        """Handle one due dose within the given session"""
        current = await self.schedules.get_schedule(due.schedule_id, db=db)
        if not current or current.status != DoseStatus.PENDING.value:
            logger.debug(f"Dose {due.schedule_id} no longer pending, skipping")
            return DispatchOutcome.STALE

        try:
            target = await self.settings.resolve_delivery(due.user_id, db=db)
        except ConfigIncomplete as e:
            await self.schedules.mark_sent(due.schedule_id, db=db)
            logger.info(f"Reminder for dose {due.schedule_id} not sent: {e}")
            return DispatchOutcome.SKIPPED

        try:
            await self.sender.send_medication_reminder(
                target.smtp,
                target.destination,
                medication_name=due.medication_name,
                frequency_hours=due.frequency_hours,
                scheduled_time=due.scheduled_time,
                dosage=due.dosage,
                description=due.description,
                user_name=due.user_name
            )
        except DeliveryFailure as e:
            await self.schedules.log_notification(
                due.medication_id,
                due.schedule_id,
                NotificationOutcome.FAILED.value,
                message=e.reason,
                db=db
            )
            logger.warning(
                f"Reminder for {due.medication_name} (dose {due.schedule_id}) failed: {e.reason}"
            )
            return DispatchOutcome.FAILED

        await self.schedules.mark_sent(due.schedule_id, db=db)
        await self.schedules.log_notification(
            due.medication_id,
            due.schedule_id,
            NotificationOutcome.SENT.value,
            message=f"Reminder sent to {target.destination}",
            db=db
        )
        logger.info(f"Reminder for {due.medication_name} sent to user {due.user_id}")
        return DispatchOutcome.SENT

    async def process_due(
        self,
        tolerance_minutes: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> DispatchSummary:
        """
        One due-sweep. Each dose is handled in its own session and a
        failure on one never stops the others.
        """
        if tolerance_minutes is None:
            tolerance_minutes = settings.DUE_TOLERANCE_MINUTES

        with self.session_factory() as session:
            due_doses = await self.schedules.find_due(tolerance_minutes, now=now, db=session)

        summary = DispatchSummary(due=len(due_doses))
        if not due_doses:
            return summary

        logger.info(f"Processing {len(due_doses)} due reminders")

        for due in due_doses:
            try:
                with self.session_factory() as session:
                    outcome = await self.dispatch(due, session)
            except Exception as e:
                logger.exception(f"Unexpected error dispatching dose {due.schedule_id}")
                outcome = DispatchOutcome.FAILED
                await self._log_unexpected(due, e)
            summary.record(outcome)

        logger.info(
            f"Reminder sweep finished: {summary.sent} sent, {summary.failed} failed, "
            f"{summary.skipped} skipped"
        )
        return summary

    async def _log_unexpected(self, due: DueDose, error: Exception):
        try:
            with self.session_factory() as session:
                await self.schedules.log_notification(
                    due.medication_id,
                    due.schedule_id,
                    NotificationOutcome.FAILED.value,
                    message=f"Unexpected error: {error}",
                    db=session
                )
        except Exception:
            logger.exception(f"Could not record failure for dose {due.schedule_id}")
