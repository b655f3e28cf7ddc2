"""
Medication Schemas
Pydantic models for medication-related API requests and responses
"""

from typing import Optional, List
from datetime import datetime, date
from pydantic import BaseModel, Field, ConfigDict


# ==================== BASE SCHEMAS ====================

class MedicationBase(BaseModel):
    """Base medication schema"""
    name: str = Field(..., min_length=1, max_length=255)
    dosage: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    frequency_hours: float = Field(..., description="Hours between doses (0.5 to 8760)")
    start_time: str = Field(..., description="First dose time of day, HH:MM")
    duration_days: Optional[int] = Field(None, description="Treatment length in days; omit for continuous")


# ==================== REQUEST SCHEMAS ====================

class MedicationCreate(MedicationBase):
    """Schema for creating a new medication"""
    user_id: int
    last_taken_at: Optional[datetime] = Field(
        None, description="When the latest dose was taken, for treatments already under way; "
                    "times without an offset are read in the operating timezone"
    )
    doses_taken: Optional[int] = Field(None, description="Doses already taken before registering")


class MedicationUpdate(BaseModel):
    """Schema for updating medication"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    dosage: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    frequency_hours: Optional[float] = None
    start_time: Optional[str] = None
    duration_days: Optional[int] = None
    active: Optional[bool] = None


# ==================== RESPONSE SCHEMAS ====================

class TreatmentProgressResponse(BaseModel):
    """Progress of a finite treatment"""
    days_passed: int
    days_remaining: int
    total_days: int
    progress_percentage: float = Field(..., ge=0, le=100)
    is_completed: bool
    is_active: bool


class MedicationResponse(MedicationBase):
    """Schema for medication response"""
    id: int
    user_id: int
    started_at: Optional[date] = None
    active: bool = True
    created_at: datetime
    updated_at: datetime
    progress: Optional[TreatmentProgressResponse] = None
    treatment_status: str

    model_config = ConfigDict(from_attributes=True)


class MedicationList(BaseModel):
    """List of medications"""
    medications: List[MedicationResponse]
    total: int
    active_count: int
