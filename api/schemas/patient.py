"""
Patient Schemas
Pydantic models for patient and family member API requests and responses
"""

from typing import Optional, List
from datetime import datetime, date
from pydantic import BaseModel, Field, ConfigDict, field_validator

from errors import ConfigurationError
from models import NotificationMethod
from api.schemas.medication import MedicationResponse
from tools.clock import resolve_timezone


LANGUAGE_PATTERN = r"^(en|hi|es|fr)$"


def _validate_timezone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        resolve_timezone(value)
    except ConfigurationError as e:
        raise ValueError(str(e)) from e
    return value


# ==================== BASE SCHEMAS ====================

class PatientBase(BaseModel):
    """Base patient schema"""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=5, max_length=20)


# ==================== REQUEST SCHEMAS ====================

class PatientCreate(PatientBase):
    """Schema for creating a new patient"""
    date_of_birth: Optional[date] = None
    preferred_language: str = Field(default="en", pattern=LANGUAGE_PATTERN)
    timezone: str = Field(default="Asia/Kolkata", max_length=50)
    voice_call_enabled: bool = True
    sms_backup_enabled: bool = True
    max_call_attempts: int = Field(default=3, ge=1, le=10)
    call_retry_interval: int = Field(default=15, ge=1, le=240, description="Minutes between retries")

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value):
        return _validate_timezone(value)


class PatientSettingsUpdate(BaseModel):
    """Schema for updating reminder settings"""
    preferred_language: Optional[str] = Field(None, pattern=LANGUAGE_PATTERN)
    timezone: Optional[str] = Field(None, max_length=50)
    voice_call_enabled: Optional[bool] = None
    sms_backup_enabled: Optional[bool] = None
    max_call_attempts: Optional[int] = Field(None, ge=1, le=10)
    call_retry_interval: Optional[int] = Field(None, ge=1, le=240)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value):
        return _validate_timezone(value)


class FamilyMemberCreate(BaseModel):
    """Schema for linking a family member to a patient"""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    phone_number: str = Field(..., min_length=5, max_length=20)
    relationship_to_patient: str = Field(default="other", max_length=20)
    preferred_method: NotificationMethod = NotificationMethod.BOTH


# ==================== RESPONSE SCHEMAS ====================

class FamilyMemberResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone_number: str
    relationship_to_patient: Optional[str] = None
    preferred_method: str
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class PatientResponse(PatientBase):
    """Schema for patient response"""
    id: int
    date_of_birth: Optional[date] = None
    preferred_language: str = "en"
    timezone: str
    voice_call_enabled: bool = True
    sms_backup_enabled: bool = True
    max_call_attempts: int = 3
    call_retry_interval: int = 15
    is_active: bool = True
    created_at: datetime
    medications: List[MedicationResponse] = []

    model_config = ConfigDict(from_attributes=True)
