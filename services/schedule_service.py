"""
Schedule Service
Persistence of dose instances: insertion, due lookup, transitions and cleanup
"""

import logging
from typing import Dict, Iterable, List, Optional, Any
from dataclasses import dataclass
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import and_, func

from database import get_db_context
import models
from models import DoseStatus, CLEANABLE_STATUSES
from tools.recurrence import BackfillPlan, as_naive_utc, utc_now


logger = logging.getLogger(__name__)


@dataclass
class DueDose:
    """A pending dose together with what is needed to notify about it"""
    schedule_id: int
    scheduled_time: datetime
    medication_id: int
    medication_name: str
    dosage: Optional[str]
    description: Optional[str]
    frequency_hours: float
    user_id: int
    user_name: str
    user_email: str


def _naive_now(now: Optional[datetime]) -> datetime:
    return as_naive_utc(now or utc_now())


class ScheduleService:
    """
    Service for persisted dose instances
    """

    # ==================== INSERTION ====================

    async def insert_missing(
        self,
        medication_id: int,
        timestamps: Iterable[datetime],
        status: str = DoseStatus.PENDING.value,
        db: Optional[Session] = None
    ) -> int:
        """
        Insert dose instances for timestamps not already stored.

        Safe to call repeatedly with overlapping input; duplicates in
        the batch collapse and existing rows are left untouched.

        Returns:
            Number of rows inserted
        """
        wanted = sorted({as_naive_utc(ts) for ts in timestamps})

        def _insert(session: Session) -> int:
            if not wanted:
                return 0

            existing = {
                row[0] for row in session.query(models.DoseSchedule.scheduled_time).filter(
                    and_(
                        models.DoseSchedule.medication_id == medication_id,
                        models.DoseSchedule.scheduled_time >= wanted[0],
                        models.DoseSchedule.scheduled_time <= wanted[-1]
                    )
                )
            }
            missing = [ts for ts in wanted if ts not in existing]
            if not missing:
                return 0

            taken = status == DoseStatus.TAKEN.value
            try:
                session.add_all([
                    models.DoseSchedule(
                        medication_id=medication_id,
                        scheduled_time=ts,
                        status=status,
                        taken_at=ts if taken else None
                    )
                    for ts in missing
                ])
                session.commit()
                inserted = len(missing)
            except IntegrityError:
                # A concurrent writer got some of them first; go row by row
                session.rollback()
                inserted = 0
                for ts in missing:
                    session.add(models.DoseSchedule(
                        medication_id=medication_id,
                        scheduled_time=ts,
                        status=status,
                        taken_at=ts if taken else None
                    ))
                    try:
                        session.commit()
                        inserted += 1
                    except IntegrityError:
                        session.rollback()

            logger.debug(f"Inserted {inserted} {status} doses for medication {medication_id}")
            return inserted

        if db:
            return _insert(db)
        with get_db_context() as session:
            return _insert(session)

    async def insert_backfill(
        self,
        medication_id: int,
        plan: BackfillPlan,
        db: Optional[Session] = None
    ) -> Dict[str, int]:
        """Store reconstructed history as taken and its continuation as pending"""
        async def _insert(session: Session) -> Dict[str, int]:
            taken = await self.insert_missing(
                medication_id, plan.taken, status=DoseStatus.TAKEN.value, db=session
            )
            upcoming = await self.insert_missing(medication_id, plan.upcoming, db=session)
            return {"taken": taken, "upcoming": upcoming}

        if db:
            return await _insert(db)
        with get_db_context() as session:
            return await _insert(session)

    # ==================== QUERIES ====================

    async def find_due(
        self,
        tolerance_minutes: int = 2,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[DueDose]:
        """
        Pending doses of active medications scheduled within
        [now, now + tolerance], earliest first.
        """
        window_start = _naive_now(now)
        window_end = window_start + timedelta(minutes=tolerance_minutes)

        def _find(session: Session) -> List[DueDose]:
            rows = session.query(models.DoseSchedule, models.Medication, models.User).join(
                models.Medication, models.DoseSchedule.medication_id == models.Medication.id
            ).join(
                models.User, models.Medication.user_id == models.User.id
            ).filter(
                and_(
                    models.DoseSchedule.status == DoseStatus.PENDING.value,
                    models.DoseSchedule.scheduled_time >= window_start,
                    models.DoseSchedule.scheduled_time <= window_end,
                    models.Medication.active == True  # noqa: E712
                )
            ).order_by(models.DoseSchedule.scheduled_time.asc()).all()

            return [
                DueDose(
                    schedule_id=schedule.id,
                    scheduled_time=schedule.scheduled_time,
                    medication_id=medication.id,
                    medication_name=medication.name,
                    dosage=medication.dosage,
                    description=medication.description,
                    frequency_hours=medication.frequency_hours,
                    user_id=user.id,
                    user_name=user.name,
                    user_email=user.email
                )
                for schedule, medication, user in rows
            ]

        if db:
            return _find(db)
        with get_db_context() as session:
            return _find(session)

    async def get_schedule(
        self,
        schedule_id: int,
        db: Optional[Session] = None
    ) -> Optional[models.DoseSchedule]:
        def _get(session: Session):
            return session.query(models.DoseSchedule).filter(
                models.DoseSchedule.id == schedule_id
            ).first()

        if db:
            return _get(db)
        with get_db_context() as session:
            return _get(session)

    async def get_medication_schedules(
        self,
        medication_id: int,
        limit: int = 50,
        db: Optional[Session] = None
    ) -> List[models.DoseSchedule]:
        """Dose instances of one medication, latest first"""
        def _list(session: Session):
            return session.query(models.DoseSchedule).filter(
                models.DoseSchedule.medication_id == medication_id
            ).order_by(models.DoseSchedule.scheduled_time.desc()).limit(limit).all()

        if db:
            return _list(db)
        with get_db_context() as session:
            return _list(session)

    async def get_user_schedules(
        self,
        user_id: int,
        status: Optional[str] = None,
        limit: int = 50,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Dose instances across a user's medications, latest first"""
        def _list(session: Session) -> List[Dict[str, Any]]:
            query = session.query(models.DoseSchedule, models.Medication).join(
                models.Medication, models.DoseSchedule.medication_id == models.Medication.id
            ).filter(models.Medication.user_id == user_id)

            if status:
                query = query.filter(models.DoseSchedule.status == status)

            rows = query.order_by(models.DoseSchedule.scheduled_time.desc()).limit(limit).all()
            return [
                {
                    "id": schedule.id,
                    "medication_id": medication.id,
                    "medication_name": medication.name,
                    "dosage": medication.dosage,
                    "scheduled_time": schedule.scheduled_time,
                    "status": schedule.status,
                    "taken_at": schedule.taken_at,
                }
                for schedule, medication in rows
            ]

        if db:
            return _list(db)
        with get_db_context() as session:
            return _list(session)

    async def count_future_pending(
        self,
        medication_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        threshold = _naive_now(now)

        def _count(session: Session) -> int:
            return session.query(func.count(models.DoseSchedule.id)).filter(
                and_(
                    models.DoseSchedule.medication_id == medication_id,
                    models.DoseSchedule.status == DoseStatus.PENDING.value,
                    models.DoseSchedule.scheduled_time > threshold
                )
            ).scalar() or 0

        if db:
            return _count(db)
        with get_db_context() as session:
            return _count(session)

    async def latest_scheduled_time(
        self,
        medication_id: int,
        db: Optional[Session] = None
    ) -> Optional[datetime]:
        """Most recent stored dose time regardless of status"""
        def _latest(session: Session):
            return session.query(func.max(models.DoseSchedule.scheduled_time)).filter(
                models.DoseSchedule.medication_id == medication_id
            ).scalar()

        if db:
            return _latest(db)
        with get_db_context() as session:
            return _latest(session)

    async def user_stats(
        self,
        user_id: int,
        window_days: int = 30,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Status counts over doses scheduled in [now - window_days, now].

        adherence_rate is taken / (taken + missed) as a percentage, 0 when
        nothing has been taken or missed yet.
        """
        window_end = _naive_now(now)
        window_start = window_end - timedelta(days=window_days)

        def _stats(session: Session) -> Dict[str, Any]:
            rows = session.query(
                models.DoseSchedule.status, func.count(models.DoseSchedule.id)
            ).join(
                models.Medication, models.DoseSchedule.medication_id == models.Medication.id
            ).filter(
                and_(
                    models.Medication.user_id == user_id,
                    models.DoseSchedule.scheduled_time >= window_start,
                    models.DoseSchedule.scheduled_time <= window_end
                )
            ).group_by(models.DoseSchedule.status).all()

            counts = {s.value: 0 for s in DoseStatus}
            for status, count in rows:
                counts[status] = count

            decided = counts["taken"] + counts["missed"]
            adherence_rate = round(counts["taken"] / decided * 100, 1) if decided else 0.0

            return {
                "total": sum(counts.values()),
                "taken": counts["taken"],
                "missed": counts["missed"],
                "sent": counts["sent"],
                "pending": counts["pending"],
                "adherence_rate": adherence_rate,
                "period": window_days,
            }

        if db:
            return _stats(db)
        with get_db_context() as session:
            return _stats(session)

    # ==================== TRANSITIONS ====================

    async def mark_sent(
        self,
        schedule_id: int,
        db: Optional[Session] = None
    ) -> bool:
        """
        Move a dose from pending to sent.

        Only pending rows are touched, so a dose the user already marked
        taken or missed keeps that status.

        Returns:
            True if this call performed the transition
        """
        def _mark(session: Session) -> bool:
            updated = session.query(models.DoseSchedule).filter(
                and_(
                    models.DoseSchedule.id == schedule_id,
                    models.DoseSchedule.status == DoseStatus.PENDING.value
                )
            ).update(
                {"status": DoseStatus.SENT.value, "updated_at": datetime.utcnow()},
                synchronize_session=False
            )
            session.commit()
            return updated == 1

        if db:
            return _mark(db)
        with get_db_context() as session:
            return _mark(session)

    def _record_outcome(self, session: Session, schedule_id: int, status: DoseStatus,
                        taken_at: Optional[datetime] = None) -> models.DoseSchedule:
        schedule = session.query(models.DoseSchedule).filter(
            models.DoseSchedule.id == schedule_id
        ).first()

        if not schedule:
            raise ValueError(f"Schedule {schedule_id} not found")

        if schedule.status not in (DoseStatus.PENDING.value, DoseStatus.SENT.value):
            raise ValueError(f"Dose already recorded as {schedule.status}")

        schedule.status = status.value
        schedule.taken_at = taken_at
        session.commit()
        session.refresh(schedule)
        return schedule

    async def mark_taken(
        self,
        schedule_id: int,
        taken_at: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.DoseSchedule:
        """Record that the user took this dose"""
        when = _naive_now(taken_at)

        def _mark(session: Session):
            schedule = self._record_outcome(session, schedule_id, DoseStatus.TAKEN, when)
            logger.info(f"Dose {schedule_id} marked taken")
            return schedule

        if db:
            return _mark(db)
        with get_db_context() as session:
            return _mark(session)

    async def mark_missed(
        self,
        schedule_id: int,
        db: Optional[Session] = None
    ) -> models.DoseSchedule:
        def _mark(session: Session):
            schedule = self._record_outcome(session, schedule_id, DoseStatus.MISSED)
            logger.info(f"Dose {schedule_id} marked missed")
            return schedule

        if db:
            return _mark(db)
        with get_db_context() as session:
            return _mark(session)

    # ==================== DELETION ====================

    async def invalidate_future_pending(
        self,
        medication_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """
        Delete pending doses scheduled after now. Past and already
        notified or recorded doses are kept.
        """
        threshold = _naive_now(now)

        def _delete(session: Session) -> int:
            deleted = session.query(models.DoseSchedule).filter(
                and_(
                    models.DoseSchedule.medication_id == medication_id,
                    models.DoseSchedule.status == DoseStatus.PENDING.value,
                    models.DoseSchedule.scheduled_time > threshold
                )
            ).delete(synchronize_session=False)
            session.commit()

            if deleted:
                logger.info(f"Removed {deleted} future pending doses for medication {medication_id}")
            return deleted

        if db:
            return _delete(db)
        with get_db_context() as session:
            return _delete(session)

    async def cleanup(
        self,
        max_age_days: int = 30,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """Delete sent, taken and missed doses older than max_age_days"""
        threshold = _naive_now(now) - timedelta(days=max_age_days)

        def _cleanup(session: Session) -> int:
            deleted = session.query(models.DoseSchedule).filter(
                and_(
                    models.DoseSchedule.scheduled_time < threshold,
                    models.DoseSchedule.status.in_(CLEANABLE_STATUSES)
                )
            ).delete(synchronize_session=False)
            session.commit()
            return deleted

        if db:
            return _cleanup(db)
        with get_db_context() as session:
            return _cleanup(session)

    async def cleanup_notification_logs(
        self,
        max_age_days: int = 90,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        threshold = _naive_now(now) - timedelta(days=max_age_days)

        def _cleanup(session: Session) -> int:
            deleted = session.query(models.NotificationLog).filter(
                models.NotificationLog.sent_at < threshold
            ).delete(synchronize_session=False)
            session.commit()
            return deleted

        if db:
            return _cleanup(db)
        with get_db_context() as session:
            return _cleanup(session)

    # ==================== NOTIFICATION LOG ====================

    async def log_notification(
        self,
        medication_id: int,
        schedule_id: int,
        status: str,
        message: Optional[str] = None,
        channel: str = models.NotificationChannel.EMAIL.value,
        db: Optional[Session] = None
    ) -> models.NotificationLog:
        """Append one delivery attempt to the notification log"""
        def _log(session: Session) -> models.NotificationLog:
            entry = models.NotificationLog(
                medication_id=medication_id,
                schedule_id=schedule_id,
                channel=channel,
                status=status,
                message=message,
                sent_at=datetime.utcnow()
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

        if db:
            return _log(db)
        with get_db_context() as session:
            return _log(session)

    async def get_notification_logs(
        self,
        medication_id: int,
        limit: int = 50,
        db: Optional[Session] = None
    ) -> List[models.NotificationLog]:
        def _list(session: Session):
            return session.query(models.NotificationLog).filter(
                models.NotificationLog.medication_id == medication_id
            ).order_by(models.NotificationLog.sent_at.desc()).limit(limit).all()

        if db:
            return _list(db)
        with get_db_context() as session:
            return _list(session)


# Singleton instance
schedule_service = ScheduleService()
