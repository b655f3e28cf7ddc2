"""
Schedule Schemas
Pydantic models for dose schedule API requests and responses
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict
from enum import Enum


class DoseStatusEnum(str, Enum):
    """Dose status values"""
    PENDING = "pending"
    SENT = "sent"
    TAKEN = "taken"
    MISSED = "missed"


# ==================== REQUEST SCHEMAS ====================

class DoseTaken(BaseModel):
    """Schema for recording a taken dose"""
    taken_at: Optional[datetime] = None


# ==================== RESPONSE SCHEMAS ====================

class DoseScheduleResponse(BaseModel):
    """Single dose instance; times are UTC"""
    id: int
    medication_id: int
    scheduled_time: datetime
    status: DoseStatusEnum
    taken_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserDoseEntry(DoseScheduleResponse):
    """Dose instance with its medication"""
    medication_name: str
    dosage: Optional[str] = None


class UserDoseList(BaseModel):
    user_id: int
    schedules: List[UserDoseEntry]
    total: int


class AdherenceStats(BaseModel):
    """Dose status counts and adherence rate over a trailing window"""
    total: int
    taken: int
    missed: int
    sent: int
    pending: int
    adherence_rate: float = Field(..., ge=0, le=100)
    period: int
