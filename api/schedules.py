"""
Schedules API Router
Endpoints for dose instances and adherence statistics
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from config import schedule_limits
from api.schemas.schedule import (
    DoseStatusEnum,
    DoseTaken,
    DoseScheduleResponse,
    UserDoseEntry,
    UserDoseList,
    AdherenceStats,
)


router = APIRouter(prefix="/schedules", tags=["schedules"])


def _outcome_error(error: ValueError) -> HTTPException:
    message = str(error)
    code = status.HTTP_404_NOT_FOUND if "not found" in message else status.HTTP_409_CONFLICT
    return HTTPException(status_code=code, detail=message)


@router.get("/user/{user_id}", response_model=UserDoseList)
async def get_user_schedules(
    user_id: int = Depends(get_current_user_id),
    status_filter: Optional[DoseStatusEnum] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """
    Get dose instances across all of a user's medications, latest first
    """
    schedule_service = services.get_schedule_service()

    entries = await schedule_service.get_user_schedules(
        user_id,
        status=status_filter.value if status_filter else None,
        limit=limit,
        db=db
    )

    return UserDoseList(
        user_id=user_id,
        schedules=[UserDoseEntry(**entry) for entry in entries],
        total=len(entries)
    )


@router.get("/user/{user_id}/stats", response_model=AdherenceStats)
async def get_user_stats(
    user_id: int = Depends(get_current_user_id),
    days: int = Query(schedule_limits.STATS_DEFAULT_WINDOW_DAYS, ge=1, le=365),
    db: Session = Depends(get_db)
):
    """
    Dose status counts and adherence rate over the last N days
    """
    schedule_service = services.get_schedule_service()
    return await schedule_service.user_stats(user_id, window_days=days, db=db)


@router.post("/{schedule_id}/taken", response_model=DoseScheduleResponse)
async def mark_dose_taken(
    schedule_id: int,
    dose_data: Optional[DoseTaken] = None,
    db: Session = Depends(get_db)
):
    """
    Record a dose as taken
    """
    schedule_service = services.get_schedule_service()

    try:
        return await schedule_service.mark_taken(
            schedule_id,
            taken_at=dose_data.taken_at if dose_data else None,
            db=db
        )
    except ValueError as e:
        raise _outcome_error(e)


@router.post("/{schedule_id}/missed", response_model=DoseScheduleResponse)
async def mark_dose_missed(
    schedule_id: int,
    db: Session = Depends(get_db)
):
    """
    Record a dose as missed
    """
    schedule_service = services.get_schedule_service()

    try:
        return await schedule_service.mark_missed(schedule_id, db=db)
    except ValueError as e:
        raise _outcome_error(e)
