"""
Patients API Router
Patient, medication and family member management

Every change that affects when a patient should be called updates the
live reminder schedule before the response is returned.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from api.deps import get_components, get_db, get_patient_or_404
from api.schemas.medication import MedicationCreate, MedicationResponse, MedicationUpdate
from api.schemas.patient import (
    FamilyMemberCreate,
    FamilyMemberResponse,
    PatientCreate,
    PatientResponse,
    PatientSettingsUpdate,
)
from services import ReminderComponents
import models


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["patients"])


def _get_medication_or_404(patient: models.Patient, medication_id: int) -> models.Medication:
    medication = patient.get_medication(medication_id)
    if medication is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Medication {medication_id} not found for patient {patient.id}"
        )
    return medication


# ==================== PATIENTS ====================

@router.post("/", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient_data: PatientCreate,
    db: Session = Depends(get_db)
):
    """
    Register a patient

    - **phone_number**: number reminder calls are placed to (unique)
    - **timezone**: IANA zone the medication time slots are read in
    """
    if db.query(models.Patient).filter(models.Patient.phone_number == patient_data.phone_number).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Patient with phone {patient_data.phone_number} already exists"
        )

    patient = models.Patient(**patient_data.model_dump())
    db.add(patient)
    db.commit()
    db.refresh(patient)

    logger.info(f"Created patient {patient.id}: {patient.full_name}")
    return patient


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(patient: models.Patient = Depends(get_patient_or_404)):
    """
    Get patient by ID with medications
    """
    return patient


@router.patch("/{patient_id}/settings", response_model=PatientResponse)
async def update_patient_settings(
    settings_data: PatientSettingsUpdate,
    patient: models.Patient = Depends(get_patient_or_404),
    db: Session = Depends(get_db),
    components: ReminderComponents = Depends(get_components)
):
    """
    Update language, timezone and call settings
    """
    updates = settings_data.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in updates.items():
        setattr(patient, key, value)
    db.commit()
    db.refresh(patient)

    if "timezone" in updates:
        await components.scheduler.reschedule_patient(patient.id)
    return patient


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_patient(
    patient: models.Patient = Depends(get_patient_or_404),
    db: Session = Depends(get_db),
    components: ReminderComponents = Depends(get_components)
):
    """
    Deactivate a patient and stop all of their reminders and pending retries
    """
    patient.is_active = False
    db.commit()

    await components.scheduler.cancel_patient(patient.id)
    logger.info(f"Deactivated patient {patient.id}")


# ==================== MEDICATIONS ====================

@router.post(
    "/{patient_id}/medications",
    response_model=MedicationResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_medication(
    medication_data: MedicationCreate,
    patient: models.Patient = Depends(get_patient_or_404),
    db: Session = Depends(get_db),
    components: ReminderComponents = Depends(get_components)
):
    """
    Add a medication and schedule its reminders
    """
    data = medication_data.model_dump(exclude_none=True)
    data["frequency"] = medication_data.frequency.value
    medication = models.Medication(patient_id=patient.id, **data)
    db.add(medication)
    db.commit()
    db.refresh(medication)

    await components.scheduler.reschedule_patient(patient.id)
    return medication


@router.patch("/{patient_id}/medications/{medication_id}", response_model=MedicationResponse)
async def update_medication(
    medication_id: int,
    medication_data: MedicationUpdate,
    patient: models.Patient = Depends(get_patient_or_404),
    db: Session = Depends(get_db),
    components: ReminderComponents = Depends(get_components)
):
    """
    Edit a medication; its reminders are rebuilt from the new times
    """
    medication = _get_medication_or_404(patient, medication_id)

    updates = medication_data.model_dump(exclude_unset=True, exclude_none=True)
    if "frequency" in updates:
        updates["frequency"] = medication_data.frequency.value
    for key, value in updates.items():
        setattr(medication, key, value)
    db.commit()
    db.refresh(medication)

    await components.scheduler.reschedule_patient(patient.id)
    return medication


@router.delete("/{patient_id}/medications/{medication_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_medication(
    medication_id: int,
    patient: models.Patient = Depends(get_patient_or_404),
    db: Session = Depends(get_db),
    components: ReminderComponents = Depends(get_components)
):
    """
    Stop reminders for a medication; its call history is kept
    """
    medication = _get_medication_or_404(patient, medication_id)
    medication.is_active = False
    db.commit()

    await components.scheduler.reschedule_patient(patient.id)


# ==================== FAMILY MEMBERS ====================

@router.post(
    "/{patient_id}/family-members",
    response_model=FamilyMemberResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_family_member(
    member_data: FamilyMemberCreate,
    patient: models.Patient = Depends(get_patient_or_404),
    db: Session = Depends(get_db)
):
    """
    Link a family member to the patient; an existing member (same email) is reused
    """
    member = db.query(models.FamilyMember).filter(models.FamilyMember.email == member_data.email).first()
    if member is None:
        data = member_data.model_dump()
        data["preferred_method"] = member_data.preferred_method.value
        member = models.FamilyMember(**data)
        db.add(member)

    if patient not in member.patients:
        member.patients.append(patient)
    db.commit()
    db.refresh(member)

    logger.info(f"Linked family member {member.id} to patient {patient.id}")
    return member
