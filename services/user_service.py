"""
User Service
Minimal user records owning medications and notification settings
"""

import logging
from typing import Optional
from sqlalchemy.orm import Session

from database import get_db_context
import models


logger = logging.getLogger(__name__)


class UserService:
    """
    Service for user records
    """

    async def create_user(
        self,
        name: str,
        email: str,
        db: Optional[Session] = None
    ) -> models.User:
        def _create(session: Session) -> models.User:
            existing = session.query(models.User).filter(
                models.User.email == email
            ).first()

            if existing:
                raise ValueError(f"User with email {email} already exists")

            user = models.User(name=name, email=email)
            session.add(user)
            session.commit()
            session.refresh(user)

            logger.info(f"Created user {user.id}")
            return user

        if db:
            return _create(db)
        with get_db_context() as session:
            return _create(session)

    async def get_user(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> Optional[models.User]:
        def _get(session: Session) -> Optional[models.User]:
            return session.query(models.User).filter(
                models.User.id == user_id
            ).first()

        if db:
            return _get(db)
        with get_db_context() as session:
            return _get(session)


# Singleton instance
user_service = UserService()
