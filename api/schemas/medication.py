"""
Medication Schemas
Pydantic models for medication-related API requests and responses
"""

from typing import Optional, List
from datetime import datetime, date
from pydantic import BaseModel, Field, ConfigDict, field_validator

from errors import ConfigurationError
from models import MedicationFrequency
from tools.clock import parse_time_slot


def _validate_slots(times: Optional[List[str]]) -> Optional[List[str]]:
    if times is None:
        return times
    for slot in times:
        try:
            parse_time_slot(slot)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
    return times


# ==================== BASE SCHEMAS ====================

class MedicationBase(BaseModel):
    """Base medication schema"""
    name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: MedicationFrequency = MedicationFrequency.DAILY
    times: List[str] = Field(..., min_length=1, description='Time slots as "HH:MM"')


# ==================== REQUEST SCHEMAS ====================

class MedicationCreate(MedicationBase):
    """Schema for adding a medication to a patient"""
    instructions: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("times")
    @classmethod
    def check_times(cls, times):
        return _validate_slots(times)


class MedicationUpdate(BaseModel):
    """Schema for updating medication"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    dosage: Optional[str] = Field(None, min_length=1, max_length=100)
    frequency: Optional[MedicationFrequency] = None
    times: Optional[List[str]] = Field(None, min_length=1)
    instructions: Optional[str] = None
    is_active: Optional[bool] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("times")
    @classmethod
    def check_times(cls, times):
        return _validate_slots(times)


# ==================== RESPONSE SCHEMAS ====================

class MedicationResponse(BaseModel):
    """Schema for medication response"""
    id: int
    patient_id: int
    name: str
    dosage: str
    frequency: str
    times: List[str] = []
    instructions: Optional[str] = None
    is_active: bool = True
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
