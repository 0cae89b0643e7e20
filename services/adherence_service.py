"""
Adherence Service
Adherence rates and call history derived from recorded call attempts
"""

import logging
import math
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta, timezone

import models
from errors import ConfigurationError
from services.reminder_store import ReminderStore
from tools.clock import next_trigger_instant


logger = logging.getLogger(__name__)


class AdherenceService:
    """
    Service for adherence tracking and analysis

    A dose counts as taken when a reminder call for it was confirmed with
    the confirm key; every other scheduled dose counts as missed.
    """

    def __init__(self, store: ReminderStore):
        self.store = store

    @staticmethod
    def calculate_scheduled_doses(medication: models.Medication, days: int) -> int:
        """Doses a medication calls for over `days` days"""
        slots = len(medication.times or [])
        frequency = medication.frequency

        if frequency == models.MedicationFrequency.TWICE_DAILY.value:
            return 2 * days
        if frequency == models.MedicationFrequency.THREE_TIMES_DAILY.value:
            return 3 * days
        if frequency == models.MedicationFrequency.WEEKLY.value:
            return math.ceil(days / 7) * slots
        return slots * days

    async def calculate_adherence(self, patient_id: int, days: int = 30) -> Dict[str, Any]:
        """
        Adherence per active medication over the last `days` days

        Raises:
            PatientNotFoundError: if the patient does not exist
        """
        patient = await self.store.get_patient(patient_id)
        since = datetime.utcnow() - timedelta(days=days)

        medications: List[Dict[str, Any]] = []
        total_scheduled = 0
        total_confirmed = 0

        for medication in patient.medications:
            if not medication.is_active:
                continue

            scheduled = self.calculate_scheduled_doses(medication, days)
            confirmed = await self.store.count_confirmed(patient_id, medication.id, since)
            rate = round(confirmed / scheduled * 100) if scheduled > 0 else 0

            medications.append({
                "medication_id": medication.id,
                "medication_name": medication.name,
                "scheduled_doses": scheduled,
                "confirmed_doses": confirmed,
                "adherence_rate": rate,
                "missed_doses": max(scheduled - confirmed, 0),
            })
            total_scheduled += scheduled
            total_confirmed += confirmed

        overall = round(total_confirmed / total_scheduled * 100) if total_scheduled > 0 else 0
        logger.info(f"Adherence for patient {patient_id} over {days} days: {overall}%")

        return {
            "patient_id": patient_id,
            "days": days,
            "overall_rate": overall,
            "medications": medications,
        }

    async def get_adherence_history(self, patient_id: int, days: int = 7) -> List[Dict[str, Any]]:
        """Newest-first taken/missed entries for the patient dashboard"""
        since = datetime.utcnow() - timedelta(days=days)
        attempts = await self.store.list_attempts(patient_id, since=since)

        return [
            {
                "date": attempt.created_at,
                "medication_name": attempt.medication_name,
                "status": "taken" if attempt.confirmed else "missed",
                "call_status": attempt.status,
                "response_time": attempt.response_time,
                "attempt_number": attempt.attempt_number,
            }
            for attempt in attempts
        ]

    async def get_dashboard(self, patient_id: int, days: int = 7) -> Dict[str, Any]:
        """
        Patient overview: current medications with their next reminder, and recent outcomes

        Raises:
            PatientNotFoundError: if the patient does not exist
        """
        patient = await self.store.get_patient(patient_id)
        now = datetime.now(timezone.utc)

        medications = [
            {
                "medication_id": medication.id,
                "name": medication.name,
                "dosage": medication.dosage,
                "times": list(medication.times or []),
                "next_reminder": self.next_reminder(patient, medication, now),
            }
            for medication in patient.medications
            if medication.is_current()
        ]

        return {
            "patient_id": patient.id,
            "name": patient.full_name,
            "timezone": patient.timezone,
            "medications": medications,
            "history": await self.get_adherence_history(patient_id, days=days),
            "last_updated": patient.updated_at,
        }

    @staticmethod
    def next_reminder(patient, medication, now: Optional[datetime] = None) -> Optional[datetime]:
        """Earliest upcoming slot in the patient's timezone; None when no reminder will fire"""
        if not patient.is_active or not medication.times:
            return None

        now = now or datetime.now(timezone.utc)
        weekday = None
        if medication.frequency == models.MedicationFrequency.WEEKLY.value:
            weekday = (medication.start_date or now.date()).weekday()

        try:
            upcoming = min(
                next_trigger_instant(slot, patient.timezone, now=now, weekday=weekday)
                for slot in medication.times
            )
        except ConfigurationError as e:
            logger.warning(f"No next reminder for medication {medication.id}: {e}")
            return None

        if medication.end_date is not None and upcoming.date() > medication.end_date:
            return None
        return upcoming

    async def get_call_history(self, patient_id: int, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Paginated call attempt summaries, newest first"""
        page = max(page, 1)
        attempts = await self.store.list_attempts(patient_id, limit=limit, offset=(page - 1) * limit)
        total = await self.store.count_attempts(patient_id)

        return {
            "call_history": [
                {
                    "call_sid": attempt.call_sid,
                    "medication_id": attempt.medication_id,
                    "medication_name": attempt.medication_name,
                    "scheduled_time": attempt.scheduled_time,
                    "status": attempt.status,
                    "duration": attempt.duration,
                    "confirmed": bool(attempt.confirmed),
                    "attempt_number": attempt.attempt_number,
                    "followup_actions": [
                        {"action": f.action, "status": f.status, "details": f.details}
                        for f in attempt.followup_actions
                    ],
                }
                for attempt in attempts
            ],
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 1,
            "current_page": page,
        }
