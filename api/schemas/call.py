"""
Call Schemas
Pydantic models for reminder calls, call history and adherence reports
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, ConfigDict


# ==================== REQUEST SCHEMAS ====================

class CallInitiateRequest(BaseModel):
    """Schema for placing a reminder call outside the schedule"""
    patient_id: int
    medication_id: int


# ==================== RESPONSE SCHEMAS ====================

class FollowupActionResponse(BaseModel):
    action: str
    status: str
    details: Optional[str] = None
    timestamp: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CallAttemptResponse(BaseModel):
    """Schema for a recorded call attempt"""
    call_sid: str
    patient_id: int
    medication_id: int
    medication_name: Optional[str] = None
    status: str
    attempt_number: int
    max_attempts: int
    scheduled_time: datetime
    confirmed: Optional[bool] = None
    followup_actions: List[FollowupActionResponse] = []

    model_config = ConfigDict(from_attributes=True)


class CallInitiateResponse(BaseModel):
    message: str
    call: CallAttemptResponse


class CallSummary(BaseModel):
    call_sid: str
    medication_id: int
    medication_name: Optional[str] = None
    scheduled_time: datetime
    status: str
    duration: Optional[int] = None
    confirmed: bool = False
    attempt_number: int
    followup_actions: List[FollowupActionResponse] = []


class CallHistoryResponse(BaseModel):
    """Paginated call history"""
    call_history: List[CallSummary]
    total: int
    total_pages: int
    current_page: int


class MedicationAdherence(BaseModel):
    medication_id: int
    medication_name: str
    scheduled_doses: int
    confirmed_doses: int
    adherence_rate: int
    missed_doses: int


class AdherenceReport(BaseModel):
    """Adherence over a trailing window"""
    patient_id: int
    days: int
    overall_rate: int
    medications: List[MedicationAdherence]


class AdherenceHistoryEntry(BaseModel):
    date: datetime
    medication_name: Optional[str] = None
    status: str
    call_status: str
    response_time: Optional[datetime] = None
    attempt_number: int


class DashboardMedication(BaseModel):
    medication_id: int
    name: str
    dosage: str
    times: List[str]
    next_reminder: Optional[datetime] = None


class DashboardResponse(BaseModel):
    """Current medications and recent reminder outcomes for one patient"""
    patient_id: int
    name: str
    timezone: str
    medications: List[DashboardMedication]
    history: List[AdherenceHistoryEntry]
    last_updated: Optional[datetime] = None
