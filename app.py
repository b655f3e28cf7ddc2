"""
DoseReminder Backend
Main FastAPI application with the in-process reminder scheduler
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime

# Configuration and database
from config import settings
from database import init_db, DatabaseHealthCheck

from api import include_routers
from actions.reminder_scheduler import ReminderScheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


# ==================== LIFESPAN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENV}")

    # Initialize database
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    app.state.scheduler = ReminderScheduler()
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler.start()
    else:
        logger.info("Reminder scheduler disabled by configuration")

    yield

    # Shutdown
    if app.state.scheduler.is_running:
        app.state.scheduler.stop()
    logger.info(f"Shutting down {settings.APP_NAME}")


# ==================== APP INITIALIZATION ====================

app = FastAPI(
    title=settings.APP_NAME,
    description="""
    ## DoseReminder API

    Medication reminders delivered through your own email account.

    ### Features
    - **Recurring schedules**: Doses generated from a frequency in hours and a start time
    - **Treatment tracking**: Optional duration with progress, or continuous use
    - **Back-fill**: Register a treatment that is already under way
    - **Email reminders**: Sent to a push-gateway address using per-user SMTP settings
    - **Adherence stats**: Taken versus missed doses over a trailing window
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Attach modular API routers (prefix /api/v1)
include_routers(app, prefix=settings.API_PREFIX)


# ==================== EXCEPTION HANDLERS ====================

@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "message": exc.detail,
            "status_code": exc.status_code,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "message": "An unexpected error occurred" if not settings.DEBUG else str(exc),
            "status_code": 500,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


def _scheduler(request: Request) -> ReminderScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Reminder scheduler not initialized")
    return scheduler


# ==================== HEALTH ENDPOINTS ====================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic health check"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Detailed health check endpoint"""
    db_connected = DatabaseHealthCheck.is_connected()
    scheduler = getattr(request.app.state, "scheduler", None)

    return {
        "status": "healthy" if db_connected else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {
            "database": {
                "status": "up" if db_connected else "down",
                "type": "sqlite" if "sqlite" in settings.DATABASE_URL else "postgresql"
            },
            "scheduler": scheduler.get_status() if scheduler else {"is_running": False, "tasks_count": 0},
        },
        "config": {
            "timezone": settings.TIMEZONE,
            "notification_interval_seconds": settings.NOTIFICATION_INTERVAL_SECONDS,
            "schedule_horizon_days": settings.SCHEDULE_HORIZON_DAYS
        },
        "version": settings.APP_VERSION,
        "environment": settings.ENV
    }


# ==================== SCHEDULER ENDPOINTS ====================

@app.get(f"{settings.API_PREFIX}/scheduler/status", tags=["Scheduler"])
async def scheduler_status(request: Request):
    """Whether the periodic jobs are running and when they fire next"""
    return _scheduler(request).get_status()


@app.post(f"{settings.API_PREFIX}/scheduler/run/{{task_name}}", tags=["Scheduler"])
async def run_scheduler_task(task_name: str, request: Request):
    """Run one periodic job now: notifications, schedules or cleanup"""
    try:
        result = await _scheduler(request).run_task(task_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"task": task_name, "result": result}


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
