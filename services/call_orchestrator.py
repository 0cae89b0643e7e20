"""
Call Orchestrator
Turns reminder firings and retries into outbound calls and attempt records
"""

import logging
import uuid
from functools import partial
from typing import Optional
from datetime import datetime, timezone

import models
from config import settings, reminder_config
from errors import TransportError
from services.reminder_scheduler import ReminderScheduler, RetryTimer
from services.reminder_store import ReminderStore
from tools.clock import occurrence_time, resolve_timezone
from tools.twilio_transport import TwilioTransport
from tools.voice_scripts import render_script


logger = logging.getLogger(__name__)


SMS_REMINDER_TEMPLATE = (
    "Hello {first_name}, this is a reminder to take your {medication} medication. "
    "Please take it as prescribed."
)
SMS_URGENT_TEMPLATE = (
    "URGENT: Medication reminder for {medication}. Please take your medication immediately "
    "and contact your family if you need assistance."
)


class CallOrchestrator:
    """
    Places reminder calls and arms retries

    Every entry point re-reads the patient from the store, so a trigger or
    retry that fires after the patient or medication was deactivated is
    dropped without side effects.
    """

    def __init__(
        self,
        store: ReminderStore,
        transport: TwilioTransport,
        scheduler: ReminderScheduler
    ):
        self.store = store
        self.transport = transport
        self.scheduler = scheduler

    async def fire_reminder(
        self,
        patient_id: int,
        medication_id: int,
        time_slot: str
    ) -> Optional[models.CallAttempt]:
        """
        Scheduler target for one reminder occurrence

        Returns:
            The first CallAttempt, or None when nothing was dialled
        """
        patient, medication = await self._load_current(patient_id, medication_id)
        if patient is None:
            logger.info(f"Dropping reminder for patient {patient_id}, medication {medication_id}: no longer active")
            return None

        if time_slot not in (medication.times or []):
            logger.info(f"Dropping reminder for medication {medication_id}: slot {time_slot} was removed")
            return None

        scheduled_time = occurrence_time(time_slot, patient.timezone)

        if not patient.voice_call_enabled:
            if patient.sms_backup_enabled:
                try:
                    await self.send_reminder_sms(patient, medication)
                except TransportError as e:
                    logger.error(f"SMS reminder for patient {patient.id} failed: {e}")
            else:
                logger.info(f"Voice and SMS reminders disabled for patient {patient.id}")
            return None

        logger.info(f"Executing medication reminder for patient {patient.id}, medication {medication.name}")
        return await self.start_attempt(patient, medication, 1, scheduled_time)

    async def start_attempt(
        self,
        patient: models.Patient,
        medication: models.Medication,
        attempt_number: int,
        scheduled_time: Optional[datetime] = None
    ) -> models.CallAttempt:
        """
        Place one reminder call and record it

        A call that cannot be placed at all falls back to an SMS reminder and
        is recorded as a terminal failed attempt; it is never retried.
        """
        language = patient.preferred_language or reminder_config.DEFAULT_LANGUAGE
        script = render_script(medication, language, patient.first_name, now=self._local_now(patient))

        attempt = models.CallAttempt(
            patient_id=patient.id,
            medication_id=medication.id,
            scheduled_time=scheduled_time or datetime.utcnow(),
            initiated_time=datetime.utcnow(),
            status=models.CallStatus.INITIATED.value,
            script_language=language,
            medication_name=medication.name,
            script_text=script,
            attempt_number=attempt_number,
            max_attempts=patient.max_call_attempts or settings.DEFAULT_MAX_CALL_ATTEMPTS,
        )

        try:
            attempt.call_sid = await self.transport.place_call(
                patient.phone_number, script, medication.name, language
            )
        except TransportError as e:
            logger.error(f"Failed to place reminder call for patient {patient.id}: {e}")
            return await self._record_placement_failure(patient, medication, attempt)

        logger.info(
            f"Medication reminder call initiated: {attempt.call_sid} "
            f"(attempt {attempt_number}/{attempt.max_attempts})"
        )
        return await self.store.create_attempt(attempt)

    async def _record_placement_failure(
        self,
        patient: models.Patient,
        medication: models.Medication,
        attempt: models.CallAttempt
    ) -> models.CallAttempt:
        attempt.call_sid = f"failed-{uuid.uuid4().hex}"
        attempt.status = models.CallStatus.FAILED.value
        attempt.ended_time = datetime.utcnow()

        try:
            message_sid = await self.send_reminder_sms(patient, medication)
            attempt.add_followup(
                models.FollowupActionType.SEND_SMS,
                models.FollowupStatus.COMPLETED,
                details=f"Call could not be placed; SMS reminder sent ({message_sid})"
            )
        except TransportError as e:
            logger.error(f"SMS fallback also failed for patient {patient.id}: {e}")
            attempt.add_followup(
                models.FollowupActionType.SEND_SMS,
                models.FollowupStatus.FAILED,
                details=f"Call could not be placed; SMS fallback failed: {e}"
            )

        return await self.store.create_attempt(attempt)

    def schedule_retry(self, attempt: models.CallAttempt, delay_minutes: float) -> Optional[RetryTimer]:
        """
        Arm a retry of the attempt's reminder occurrence

        Returns:
            The armed timer, or None when the attempt was already the last one
        """
        if attempt.attempt_number >= attempt.max_attempts:
            logger.warning(
                f"Not retrying {attempt.call_sid}: attempt {attempt.attempt_number} "
                f"of {attempt.max_attempts} already made"
            )
            return None

        timer = self.scheduler.arm_retry(
            attempt.patient_id,
            attempt.medication_id,
            delay_minutes,
            partial(
                self._run_retry,
                attempt.patient_id,
                attempt.medication_id,
                attempt.attempt_number + 1,
                attempt.scheduled_time
            ),
            call_sid=attempt.call_sid
        )
        logger.info(f"Retry call scheduled in {delay_minutes} minutes for {attempt.call_sid}")
        return timer

    def cancel_retries(self, attempt: models.CallAttempt) -> int:
        """Drop any retry still armed for the attempt"""
        cancelled = self.scheduler.cancel_call_retries(attempt.patient_id, attempt.call_sid)
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending retries for {attempt.call_sid}")
        return cancelled

    async def _run_retry(
        self,
        patient_id: int,
        medication_id: int,
        attempt_number: int,
        scheduled_time: Optional[datetime]
    ) -> Optional[models.CallAttempt]:
        patient, medication = await self._load_current(patient_id, medication_id)
        if patient is None or not patient.voice_call_enabled:
            logger.info(f"Dropping retry {attempt_number} for patient {patient_id}: reminder no longer applies")
            return None
        return await self.start_attempt(patient, medication, attempt_number, scheduled_time)

    async def send_reminder_sms(
        self,
        patient: models.Patient,
        medication: models.Medication,
        urgent: bool = False
    ) -> str:
        """Text the patient directly; raises TransportError"""
        template = SMS_URGENT_TEMPLATE if urgent else SMS_REMINDER_TEMPLATE
        body = template.format(first_name=patient.first_name, medication=medication.name)
        return await self.transport.send_sms(patient.phone_number, body)

    async def _load_current(self, patient_id: int, medication_id: int):
        """Patient and medication if both still qualify for reminders, else (None, None)"""
        patient = await self.store.find_patient(patient_id)
        if patient is None or not patient.is_active:
            return None, None
        medication = patient.get_medication(medication_id)
        if medication is None or not medication.is_current():
            return None, None
        return patient, medication

    def _local_now(self, patient: models.Patient) -> datetime:
        return datetime.now(timezone.utc).astimezone(resolve_timezone(patient.timezone))
