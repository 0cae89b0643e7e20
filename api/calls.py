"""
Calls API Router
Manual reminder calls, call history and adherence
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.deps import get_components, pagination_params
from api.schemas.call import (
    AdherenceReport,
    CallHistoryResponse,
    CallInitiateRequest,
    CallInitiateResponse,
    CallAttemptResponse,
    DashboardResponse,
)
from errors import PatientNotFoundError
from services import ReminderComponents


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["calls"])


@router.post("/initiate", response_model=CallInitiateResponse, status_code=status.HTTP_201_CREATED)
async def initiate_call(
    request: CallInitiateRequest,
    components: ReminderComponents = Depends(get_components)
):
    """
    Place a reminder call now, outside the schedule

    The call follows the normal retry and escalation policy.
    """
    patient = await components.store.find_patient(request.patient_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")

    medication = patient.get_medication(request.medication_id)
    if medication is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medication not found")

    attempt = await components.orchestrator.start_attempt(patient, medication, 1)
    logger.info(f"Manual voice call initiated: {attempt.call_sid}")

    message = "Voice call initiated successfully"
    if attempt.is_terminal:
        message = "Voice call could not be placed; SMS fallback attempted"

    return CallInitiateResponse(message=message, call=CallAttemptResponse.model_validate(attempt))


@router.get("/{patient_id}", response_model=CallHistoryResponse)
async def get_call_history(
    patient_id: int,
    pagination: dict = Depends(pagination_params),
    components: ReminderComponents = Depends(get_components)
):
    """
    Call history for a patient, newest first
    """
    return await components.adherence.get_call_history(
        patient_id, page=pagination["page"], limit=pagination["page_size"]
    )


@router.get("/{patient_id}/adherence", response_model=AdherenceReport)
async def get_adherence(
    patient_id: int,
    days: int = Query(30, ge=1, le=365),
    components: ReminderComponents = Depends(get_components)
):
    """
    Adherence rate per active medication over the last `days` days
    """
    try:
        return await components.adherence.calculate_adherence(patient_id, days=days)
    except PatientNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{patient_id}/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    patient_id: int,
    days: int = Query(7, ge=1, le=90),
    components: ReminderComponents = Depends(get_components)
):
    """
    Current medications with their next reminder, plus taken/missed outcomes
    over the last `days` days
    """
    try:
        return await components.adherence.get_dashboard(patient_id, days=days)
    except PatientNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
