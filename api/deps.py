"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

# Routers and test overrides share the one session dependency
from database import get_db


async def get_current_user_id(
    user_id: int,
    db: Session = Depends(get_db)
) -> int:
    """
    Validate user exists and return user ID
    """
    from models import User

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found"
        )

    return user_id


class ServiceDependency:
    """
    Dependency injection for services
    """

    @staticmethod
    def get_user_service():
        from services.user_service import user_service
        return user_service

    @staticmethod
    def get_medication_service():
        from services.medication_service import medication_service
        return medication_service

    @staticmethod
    def get_schedule_service():
        from services.schedule_service import schedule_service
        return schedule_service

    @staticmethod
    def get_settings_service():
        from services.settings_service import settings_service
        return settings_service


# Service dependency instances
services = ServiceDependency()
