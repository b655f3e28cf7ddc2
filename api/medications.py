"""
Medications API Router
Endpoints for medication management
"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.medication import (
    MedicationCreate,
    MedicationUpdate,
    MedicationResponse,
    MedicationList,
)
from api.schemas.schedule import DoseScheduleResponse


router = APIRouter(prefix="/medications", tags=["medications"])


def _not_found(medication_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Medication {medication_id} not found"
    )


@router.post("/", response_model=MedicationResponse, status_code=status.HTTP_201_CREATED)
async def create_medication(
    medication_data: MedicationCreate,
    db: Session = Depends(get_db)
):
    """
    Register a medication and generate its upcoming doses

    - **frequency_hours**: Hours between doses (0.5 to 8760)
    - **start_time**: First dose time of day, HH:MM
    - **duration_days**: Optional treatment length (1 to 365)
    - **last_taken_at** / **doses_taken**: Back-fill a treatment already under way
    """
    user = await services.get_user_service().get_user(medication_data.user_id, db=db)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {medication_data.user_id} not found"
        )

    medication_service = services.get_medication_service()

    try:
        medication = await medication_service.create_medication(
            user_id=medication_data.user_id,
            name=medication_data.name,
            frequency_hours=medication_data.frequency_hours,
            start_time=medication_data.start_time,
            dosage=medication_data.dosage,
            description=medication_data.description,
            duration_days=medication_data.duration_days,
            last_taken_at=medication_data.last_taken_at,
            doses_taken=medication_data.doses_taken,
            db=db
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return medication_service.describe(medication)


@router.get("/user/{user_id}", response_model=MedicationList)
async def get_user_medications(
    user_id: int,
    active_only: bool = Query(False, description="Only return active medications"),
    db: Session = Depends(get_db)
):
    """
    Get all medications for a user
    """
    medication_service = services.get_medication_service()

    medications = await medication_service.get_user_medications(
        user_id,
        active_only=active_only,
        db=db
    )

    return MedicationList(
        medications=[medication_service.describe(m) for m in medications],
        total=len(medications),
        active_count=sum(1 for m in medications if m.active)
    )


@router.get("/{medication_id}", response_model=MedicationResponse)
async def get_medication(
    medication_id: int,
    db: Session = Depends(get_db)
):
    """
    Get a medication with its treatment progress
    """
    medication_service = services.get_medication_service()

    medication = await medication_service.get_medication(medication_id, db=db)
    if not medication:
        raise _not_found(medication_id)

    return medication_service.describe(medication)


@router.put("/{medication_id}", response_model=MedicationResponse)
async def update_medication(
    medication_id: int,
    medication_data: MedicationUpdate,
    db: Session = Depends(get_db)
):
    """
    Update medication information

    Changing frequency, start time or duration replaces the upcoming
    pending doses.
    """
    medication_service = services.get_medication_service()

    updates = medication_data.model_dump(exclude_unset=True)

    try:
        medication = await medication_service.update_medication(medication_id, updates, db=db)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    if not medication:
        raise _not_found(medication_id)

    return medication_service.describe(medication)


@router.post("/{medication_id}/toggle", response_model=MedicationResponse)
async def toggle_medication(
    medication_id: int,
    db: Session = Depends(get_db)
):
    """
    Pause or resume a medication
    """
    medication_service = services.get_medication_service()

    medication = await medication_service.toggle_active(medication_id, db=db)
    if not medication:
        raise _not_found(medication_id)

    return medication_service.describe(medication)


@router.delete("/{medication_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_medication(
    medication_id: int,
    db: Session = Depends(get_db)
):
    """
    Delete a medication and all its doses
    """
    medication_service = services.get_medication_service()

    deleted = await medication_service.delete_medication(medication_id, db=db)
    if not deleted:
        raise _not_found(medication_id)

    return None


@router.get("/{medication_id}/schedules", response_model=List[DoseScheduleResponse])
async def get_medication_schedules(
    medication_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """
    Get dose instances for a medication, latest first
    """
    medication = await services.get_medication_service().get_medication(medication_id, db=db)
    if not medication:
        raise _not_found(medication_id)

    return await services.get_schedule_service().get_medication_schedules(
        medication_id,
        limit=limit,
        db=db
    )
