"""
Notification Settings Schemas
Pydantic models for per-user delivery settings
"""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


# ==================== REQUEST SCHEMAS ====================

class NotificationSettingsUpdate(BaseModel):
    """Schema for updating notification settings; omitted fields are kept"""
    pushover_email: Optional[EmailStr] = None
    smtp_host: Optional[str] = Field(None, max_length=255)
    smtp_port: Optional[int] = Field(None, ge=1, le=65535)
    smtp_secure: Optional[bool] = None
    smtp_user: Optional[str] = Field(None, max_length=255)
    smtp_password: Optional[str] = Field(None, max_length=255)
    notifications_enabled: Optional[bool] = None


# ==================== RESPONSE SCHEMAS ====================

class NotificationSettingsResponse(BaseModel):
    """Settings with the SMTP password masked"""
    user_id: int
    pushover_email: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    smtp_secure: bool = False
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    notifications_enabled: bool = True
    is_configured: bool = False
    updated_at: Optional[datetime] = None


class SMTPCheckResponse(BaseModel):
    success: bool
    message: str
    destination: Optional[str] = None
