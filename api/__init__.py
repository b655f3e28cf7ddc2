"""
API Module
FastAPI routers for the DoseReminder application
"""

from api.users import router as users_router
from api.medications import router as medications_router
from api.schedules import router as schedules_router
from api.notification_settings import router as settings_router

from api.deps import (
    get_db,
    get_current_user_id,
    services,
)


__all__ = [
    # Routers
    "users_router",
    "medications_router",
    "schedules_router",
    "settings_router",
    # Dependencies
    "get_db",
    "get_current_user_id",
    "services",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(users_router, prefix=prefix)
    app.include_router(medications_router, prefix=prefix)
    app.include_router(schedules_router, prefix=prefix)
    app.include_router(settings_router, prefix=prefix)
