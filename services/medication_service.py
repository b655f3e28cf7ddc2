"""
Medication Service
Business logic for medication management and dose generation on change
"""

import logging
from typing import Dict, List, Optional, Any
from datetime import datetime
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
import models
from services.schedule_service import schedule_service
from tools.progress import calculate_progress, treatment_status, TreatmentStatus
from tools.recurrence import (
    InvalidBackfillError,
    backfill,
    from_client,
    local_date_of,
    local_today,
    next_occurrences,
    normalize_start_time,
    treatment_end,
    utc_now,
    validate_duration,
    validate_frequency,
)


logger = logging.getLogger(__name__)


UPDATABLE_FIELDS = (
    "name", "dosage", "description", "frequency_hours", "start_time", "duration_days", "active"
)

# Changing any of these makes already generated future doses stale
RULE_FIELDS = ("frequency_hours", "start_time", "duration_days")

REQUIRED_FIELDS = ("name", "frequency_hours", "start_time", "active")


class MedicationService:
    """
    Service for medication-related operations.

    Every mutation that affects when doses fall goes through here, so
    generated schedules always follow the current recurrence rule.
    """

    async def create_medication(
        self,
        user_id: int,
        name: str,
        frequency_hours: float,
        start_time: str,
        dosage: Optional[str] = None,
        description: Optional[str] = None,
        duration_days: Optional[int] = None,
        last_taken_at: Optional[datetime] = None,
        doses_taken: Optional[int] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.Medication:
        """
        Register a medication and generate its first doses

        Args:
            user_id: Owner
            name: Medication name
            frequency_hours: Hours between doses
            start_time: First dose time of day, "HH:MM"
            dosage: Free-text dosage, e.g. "500mg"
            description: Free-text notes
            duration_days: Treatment length, None for continuous
            last_taken_at: When the most recent dose was already taken
            doses_taken: How many doses were taken before registering
            now: Reference instant
            db: Database session

        Returns:
            Created Medication object
        """
        frequency = validate_frequency(frequency_hours)
        start = normalize_start_time(start_time)
        duration = validate_duration(duration_days)
        now = now or utc_now()

        wants_backfill = last_taken_at is not None or doses_taken is not None
        if wants_backfill and (last_taken_at is None or doses_taken is None):
            raise InvalidBackfillError(
                "Both the last dose time and the number of doses taken are required"
            )

        plan = None
        if wants_backfill:
            plan = backfill(
                from_client(last_taken_at), doses_taken, frequency, now,
                horizon_days=settings.SCHEDULE_HORIZON_DAYS
            )

        async def _create(session: Session) -> models.Medication:
            user = session.query(models.User).filter(models.User.id == user_id).first()
            if not user:
                raise ValueError(f"User {user_id} not found")

            started_at = None
            if duration is not None:
                started_at = local_date_of(plan.taken[0]) if plan else local_today(now)

            medication = models.Medication(
                user_id=user_id,
                name=name,
                dosage=dosage,
                description=description,
                frequency_hours=frequency,
                start_time=start,
                duration_days=duration,
                started_at=started_at,
                active=True
            )
            session.add(medication)
            session.commit()
            session.refresh(medication)

            if plan:
                until = treatment_end(started_at, duration)
                if until is not None:
                    plan.upcoming = [ts for ts in plan.upcoming if ts < until]
                counts = await schedule_service.insert_backfill(medication.id, plan, db=session)
                logger.info(
                    f"Created medication {name} for user {user_id} with "
                    f"{counts['taken']} back-filled and {counts['upcoming']} upcoming doses"
                )
            else:
                created = await self._generate(session, medication, now)
                logger.info(f"Created medication {name} for user {user_id} with {created} doses")

            session.refresh(medication)
            return medication

        if db:
            return await _create(db)
        with get_db_context() as session:
            return await _create(session)

    async def _generate(self, session: Session, medication: models.Medication,
                        now: Optional[datetime] = None) -> int:
        until = treatment_end(medication.started_at, medication.duration_days)
        timestamps = next_occurrences(
            medication.start_time,
            medication.frequency_hours,
            now=now,
            horizon_days=settings.SCHEDULE_HORIZON_DAYS,
            until=until
        )
        return await schedule_service.insert_missing(medication.id, timestamps, db=session)

    async def _regenerate(self, session: Session, medication: models.Medication,
                          now: Optional[datetime] = None) -> int:
        """Replace future pending doses with ones matching the current rule"""
        now = now or utc_now()
        await schedule_service.invalidate_future_pending(medication.id, now=now, db=session)
        return await self._generate(session, medication, now)

    async def get_medication(
        self,
        medication_id: int,
        db: Optional[Session] = None
    ) -> Optional[models.Medication]:
        def _get(session: Session) -> Optional[models.Medication]:
            return session.query(models.Medication).filter(
                models.Medication.id == medication_id
            ).first()

        if db:
            return _get(db)
        with get_db_context() as session:
            return _get(session)

    async def get_user_medications(
        self,
        user_id: int,
        active_only: bool = False,
        db: Optional[Session] = None
    ) -> List[models.Medication]:
        def _get(session: Session) -> List[models.Medication]:
            query = session.query(models.Medication).filter(
                models.Medication.user_id == user_id
            )
            if active_only:
                query = query.filter(models.Medication.active == True)  # noqa: E712
            return query.order_by(models.Medication.created_at.desc()).all()

        if db:
            return _get(db)
        with get_db_context() as session:
            return _get(session)

    async def get_schedulable_medications(
        self,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[models.Medication]:
        """Active medications whose treatment has not finished"""
        today = local_today(now)

        def _get(session: Session) -> List[models.Medication]:
            medications = session.query(models.Medication).filter(
                models.Medication.active == True  # noqa: E712
            ).all()
            return [
                m for m in medications
                if treatment_status(m.duration_days, m.started_at, today) != TreatmentStatus.COMPLETED
            ]

        if db:
            return _get(db)
        with get_db_context() as session:
            return _get(session)

    async def update_medication(
        self,
        medication_id: int,
        updates: Dict[str, Any],
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Optional[models.Medication]:
        """
        Apply field updates. A changed frequency, start time or duration
        replaces the future pending doses.
        """
        now = now or utc_now()
        updates = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        for field in REQUIRED_FIELDS:
            if field in updates and updates[field] is None:
                raise ValueError(f"{field} cannot be empty")

        if "frequency_hours" in updates:
            updates["frequency_hours"] = validate_frequency(updates["frequency_hours"])
        if "start_time" in updates:
            updates["start_time"] = normalize_start_time(updates["start_time"])
        if "duration_days" in updates:
            updates["duration_days"] = validate_duration(updates["duration_days"])

        async def _update(session: Session) -> Optional[models.Medication]:
            medication = session.query(models.Medication).filter(
                models.Medication.id == medication_id
            ).first()

            if not medication:
                return None

            rule_changed = any(
                field in updates and updates[field] != getattr(medication, field)
                for field in RULE_FIELDS
            )
            reactivated = updates.get("active") is True and not medication.active

            for key, value in updates.items():
                setattr(medication, key, value)

            # started_at is set once and kept even if the duration is later cleared
            if medication.duration_days is not None and medication.started_at is None:
                medication.started_at = local_today(now)

            medication.updated_at = datetime.utcnow()
            session.commit()
            session.refresh(medication)

            if medication.active and (rule_changed or reactivated):
                created = await self._regenerate(session, medication, now)
                logger.info(f"Regenerated {created} doses for medication {medication_id}")
            elif rule_changed:
                await schedule_service.invalidate_future_pending(medication_id, now=now, db=session)

            logger.info(f"Updated medication {medication_id}: {list(updates.keys())}")
            session.refresh(medication)
            return medication

        if db:
            return await _update(db)
        with get_db_context() as session:
            return await _update(session)

    async def toggle_active(
        self,
        medication_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Optional[models.Medication]:
        """
        Pause or resume a medication. Paused medications keep their doses
        but are neither notified nor replenished; resuming rebuilds the
        future series from the current time.
        """
        async def _toggle(session: Session) -> Optional[models.Medication]:
            medication = session.query(models.Medication).filter(
                models.Medication.id == medication_id
            ).first()

            if not medication:
                return None

            medication.active = not medication.active
            medication.updated_at = datetime.utcnow()
            session.commit()
            session.refresh(medication)

            if medication.active:
                await self._regenerate(session, medication, now)

            logger.info(
                f"Medication {medication_id} {'resumed' if medication.active else 'paused'}"
            )
            session.refresh(medication)
            return medication

        if db:
            return await _toggle(db)
        with get_db_context() as session:
            return await _toggle(session)

    async def delete_medication(
        self,
        medication_id: int,
        db: Optional[Session] = None
    ) -> bool:
        """Delete a medication together with its doses and notification log"""
        def _delete(session: Session) -> bool:
            medication = session.query(models.Medication).filter(
                models.Medication.id == medication_id
            ).first()

            if not medication:
                return False

            session.delete(medication)
            session.commit()
            logger.info(f"Deleted medication {medication_id}")
            return True

        if db:
            return _delete(db)
        with get_db_context() as session:
            return _delete(session)

    def describe(self, medication: models.Medication, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Medication fields plus derived treatment progress"""
        today = local_today(now)
        progress = calculate_progress(medication.duration_days, medication.started_at, today)
        return {
            "id": medication.id,
            "user_id": medication.user_id,
            "name": medication.name,
            "dosage": medication.dosage,
            "description": medication.description,
            "frequency_hours": medication.frequency_hours,
            "start_time": medication.start_time,
            "duration_days": medication.duration_days,
            "started_at": medication.started_at,
            "active": medication.active,
            "created_at": medication.created_at,
            "updated_at": medication.updated_at,
            "progress": progress.to_dict() if progress else None,
            "treatment_status": treatment_status(
                medication.duration_days, medication.started_at, today
            ).value,
        }


# Singleton instance
medication_service = MedicationService()
