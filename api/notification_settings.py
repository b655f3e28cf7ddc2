"""
Notification Settings API Router
Endpoints for per-user delivery settings and SMTP checks
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from api.schemas.settings import (
    NotificationSettingsUpdate,
    NotificationSettingsResponse,
    SMTPCheckResponse,
)
from services.settings_service import ConfigIncomplete, to_public_dict
from tools.email_sender import DeliveryFailure


router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/{user_id}", response_model=NotificationSettingsResponse)
async def get_settings(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Get a user's notification settings, creating defaults on first access
    """
    config = await services.get_settings_service().get_or_create(user_id, db=db)
    return to_public_dict(config)


@router.put("/{user_id}", response_model=NotificationSettingsResponse)
async def update_settings(
    settings_data: NotificationSettingsUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Update notification settings

    - **smtp_password**: Leave out to keep the stored password
    """
    updates = settings_data.model_dump(exclude_unset=True)

    try:
        config = await services.get_settings_service().update(user_id, updates, db=db)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return to_public_dict(config)


@router.post("/{user_id}/verify", response_model=SMTPCheckResponse)
async def verify_smtp(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Check that the stored SMTP account accepts a login
    """
    try:
        await services.get_settings_service().verify_smtp(user_id, db=db)
    except (ConfigIncomplete, DeliveryFailure) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return SMTPCheckResponse(success=True, message="SMTP configuration is valid")


@router.post("/{user_id}/test", response_model=SMTPCheckResponse)
async def send_test_email(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Send a test message using the stored settings
    """
    try:
        result = await services.get_settings_service().send_test_email(user_id, db=db)
    except (ConfigIncomplete, DeliveryFailure) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return SMTPCheckResponse(
        success=True,
        message="Test email sent",
        destination=result["destination"]
    )
