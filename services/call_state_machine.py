"""
Call State Machine
Applies transport callbacks to call attempts and runs the retry/escalation policy
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Union
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import models
from config import settings, reminder_config
from errors import EscalationExhausted, TransportError
from services.call_orchestrator import CallOrchestrator
from services.reminder_scheduler import RetryTimer
from services.reminder_store import ReminderStore
from tools.notification_service import NotificationService
from tools.voice_scripts import render_confirmation, render_unrecognized


logger = logging.getLogger(__name__)

# Twilio reports some lifecycle points under different names
STATUS_ALIASES: Dict[str, str] = {
    "queued": models.CallStatus.INITIATED.value,
    "in-progress": models.CallStatus.ANSWERED.value,
    "canceled": models.CallStatus.FAILED.value,
}


# ==================== EVENTS ====================

@dataclass(frozen=True)
class CallStatusEvent:
    """Transport reported a new status for a call"""
    call_sid: str
    status: str
    duration_seconds: Optional[int] = None


@dataclass(frozen=True)
class CallResponseEvent:
    """Patient pressed a key during a call"""
    call_sid: str
    digit: str


CallEvent = Union[CallStatusEvent, CallResponseEvent]


# ==================== OUTCOMES ====================

class StatusOutcome(str, Enum):
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    RETRY_SCHEDULED = "retry_scheduled"
    ESCALATED = "escalated"
    CONFIRMED = "confirmed"
    AWAITING_RETRY = "awaiting_retry"
    MISSED = "missed"


@dataclass
class StatusResult:
    call_sid: str
    status: str
    outcome: StatusOutcome
    retry: Optional[RetryTimer] = None
    escalation: Optional[EscalationExhausted] = None


@dataclass
class ResponseOutcome:
    """What to play back to the patient after a keypress"""
    call_sid: str
    digit: str
    script: str
    language: str
    confirmed: Optional[bool] = None
    retry_scheduled: bool = False
    notified: bool = False


class CallStateMachine:
    """
    Call lifecycle: initiated -> ringing -> answered -> completed, or one of
    the unreached terminal states failed / no-answer / busy

    Policy on entering a terminal state:
    - unreached: retry after the patient's interval, or escalate when the
      attempt was the last one (urgent SMS + family call_failed)
    - completed without confirmation: family medication_missed, unless a
      needs-time retry is already armed

    Policy runs only on the first transition into a state; repeated or late
    callbacks for a finished call are recorded as no-ops.
    """

    def __init__(
        self,
        store: ReminderStore,
        orchestrator: CallOrchestrator,
        notifications: NotificationService,
        needs_time_retry_minutes: Optional[int] = None
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.notifications = notifications
        self.needs_time_retry_minutes = needs_time_retry_minutes or settings.NEEDS_TIME_RETRY_MINUTES

    # ==================== STATUS EVENTS ====================

    async def handle_status(self, event: CallStatusEvent) -> StatusResult:
        """
        Apply a status callback

        Raises:
            AttemptNotFoundError: no attempt exists for the call
        """
        attempt = await self.store.get_attempt(event.call_sid)
        status = STATUS_ALIASES.get(event.status, event.status)

        try:
            models.CallStatus(status)
        except ValueError:
            logger.warning(f"Ignoring unknown status {event.status!r} for call {event.call_sid}")
            return StatusResult(event.call_sid, event.status, StatusOutcome.IGNORED)

        if attempt.status == status:
            logger.info(f"Duplicate {status} callback for call {event.call_sid}")
            return StatusResult(event.call_sid, status, StatusOutcome.DUPLICATE)

        if attempt.is_terminal:
            logger.warning(
                f"Ignoring {status} for call {event.call_sid}: already finished as {attempt.status}"
            )
            return StatusResult(event.call_sid, status, StatusOutcome.IGNORED)

        now = datetime.utcnow()
        attempt.status = status
        if status == models.CallStatus.ANSWERED.value:
            attempt.answered_time = now
        elif status == models.CallStatus.COMPLETED.value:
            attempt.ended_time = now
            if event.duration_seconds is not None:
                attempt.duration = event.duration_seconds
        elif status in reminder_config.UNREACHED_CALL_STATUSES:
            attempt.ended_time = now

        attempt = await self.store.save_attempt(attempt)
        logger.info(f"Call status updated: {event.call_sid} - {status}")

        if status == models.CallStatus.COMPLETED.value:
            return await self._on_completed(attempt)
        if status in reminder_config.UNREACHED_CALL_STATUSES:
            return await self._on_unreached(attempt)
        return StatusResult(event.call_sid, status, StatusOutcome.RECORDED)

    async def _on_unreached(self, attempt: models.CallAttempt) -> StatusResult:
        patient = await self.store.find_patient(attempt.patient_id)
        if patient is None or not patient.is_active:
            logger.info(f"Patient {attempt.patient_id} no longer active; no follow-up for {attempt.call_sid}")
            return StatusResult(attempt.call_sid, attempt.status, StatusOutcome.RECORDED)

        if attempt.attempt_number < attempt.max_attempts:
            delay = patient.call_retry_interval or settings.DEFAULT_CALL_RETRY_MINUTES
            timer = self.orchestrator.schedule_retry(attempt, delay)
            attempt.add_followup(
                models.FollowupActionType.RETRY_CALL,
                models.FollowupStatus.PENDING,
                details=f"Attempt {attempt.attempt_number + 1} in {delay} minutes after {attempt.status}"
            )
            await self.store.save_attempt(attempt)
            return StatusResult(attempt.call_sid, attempt.status, StatusOutcome.RETRY_SCHEDULED, retry=timer)

        escalation = await self._escalate(attempt, patient)
        return StatusResult(attempt.call_sid, attempt.status, StatusOutcome.ESCALATED, escalation=escalation)

    async def _escalate(self, attempt: models.CallAttempt, patient: models.Patient) -> EscalationExhausted:
        """Last attempt went unanswered: urgent SMS backup and family call_failed"""
        medication = patient.get_medication(attempt.medication_id)
        medication_name = medication.name if medication is not None else attempt.medication_name

        sms_sent = False
        if patient.sms_backup_enabled and medication is not None:
            try:
                message_sid = await self.orchestrator.send_reminder_sms(patient, medication, urgent=True)
                sms_sent = True
                attempt.add_followup(
                    models.FollowupActionType.SEND_SMS,
                    models.FollowupStatus.COMPLETED,
                    details=f"Urgent SMS backup sent ({message_sid})"
                )
            except TransportError as e:
                logger.error(f"SMS backup for patient {patient.id} failed: {e}")
                attempt.add_followup(
                    models.FollowupActionType.SEND_SMS,
                    models.FollowupStatus.FAILED,
                    details=f"Urgent SMS backup failed: {e}"
                )

        results = await self.notifications.notify(
            patient.id,
            models.NotificationEvent.CALL_FAILED.value,
            {
                "medication_name": medication_name,
                "medication_id": attempt.medication_id,
                "attempts": attempt.attempt_number,
            }
        )
        self.notifications.publish_realtime(patient.id, models.NotificationEvent.CALL_FAILED.value, {
            "medicationName": medication_name,
            "attempts": attempt.attempt_number,
            "urgency": "high",
            "callSid": attempt.call_sid,
        })
        attempt.add_followup(
            models.FollowupActionType.ALERT_FAMILY,
            self._delivery_status(results),
            details=f"call_failed after {attempt.attempt_number} attempts: "
                    f"{sum(1 for r in results if r.success)}/{len(results)} deliveries"
        )
        await self.store.save_attempt(attempt)

        logger.warning(f"Max call attempts reached for patient {patient.id}, medication {medication_name}")
        return EscalationExhausted(
            patient_id=patient.id,
            medication_id=attempt.medication_id,
            attempts=attempt.attempt_number,
            sms_sent=sms_sent
        )

    async def _on_completed(self, attempt: models.CallAttempt) -> StatusResult:
        if attempt.confirmed:
            return StatusResult(attempt.call_sid, attempt.status, StatusOutcome.CONFIRMED)

        if self._retry_armed(attempt):
            logger.info(f"Call {attempt.call_sid} completed; patient asked for more time, retry pending")
            return StatusResult(attempt.call_sid, attempt.status, StatusOutcome.AWAITING_RETRY)

        details = {
            "medication_name": attempt.medication_name,
            "medication_id": attempt.medication_id,
            "attempts": attempt.attempt_number,
        }
        patient = await self.store.find_patient(attempt.patient_id)
        medication = patient.get_medication(attempt.medication_id) if patient is not None else None
        if medication is not None:
            details["medication_name"] = medication.name
            details["dosage"] = medication.dosage

        results = await self.notifications.notify(
            attempt.patient_id, models.NotificationEvent.MEDICATION_MISSED.value, details
        )
        self.notifications.publish_realtime(attempt.patient_id, models.NotificationEvent.MEDICATION_MISSED.value, {
            "medicationName": details["medication_name"],
            "callSid": attempt.call_sid,
        })
        attempt.add_followup(
            models.FollowupActionType.ALERT_FAMILY,
            self._delivery_status(results),
            details=f"medication_missed: {sum(1 for r in results if r.success)}/{len(results)} deliveries"
        )
        await self.store.save_attempt(attempt)
        return StatusResult(attempt.call_sid, attempt.status, StatusOutcome.MISSED)

    @staticmethod
    def _retry_armed(attempt: models.CallAttempt) -> bool:
        return attempt.response_digit == reminder_config.DIGIT_NEEDS_TIME and any(
            f.action == models.FollowupActionType.RETRY_CALL.value
            and f.status != models.FollowupStatus.FAILED.value
            for f in attempt.followup_actions
        )

    @staticmethod
    def _delivery_status(results) -> models.FollowupStatus:
        if not results or any(r.success for r in results):
            return models.FollowupStatus.COMPLETED
        return models.FollowupStatus.FAILED

    # ==================== RESPONSE EVENTS ====================

    async def handle_response(self, event: CallResponseEvent) -> ResponseOutcome:
        """
        Apply a keypress: 1 confirms, 2 asks for more time, anything else is recorded only

        Raises:
            AttemptNotFoundError: no attempt exists for the call
        """
        attempt = await self.store.get_attempt(event.call_sid)
        digit = (event.digit or "").strip()
        language = attempt.script_language or reminder_config.DEFAULT_LANGUAGE
        medication_name = attempt.medication_name or "medication"

        logger.info(f"Patient response received: {event.call_sid} - {digit!r}")

        if digit == reminder_config.DIGIT_CONFIRMED:
            return await self._on_confirmed(attempt, digit, language, medication_name)

        if digit == reminder_config.DIGIT_NEEDS_TIME:
            return await self._on_needs_time(attempt, digit, language, medication_name)

        attempt.response_digit = digit
        attempt.response_time = datetime.utcnow()
        await self.store.save_attempt(attempt)
        return ResponseOutcome(
            call_sid=attempt.call_sid,
            digit=digit,
            script=render_unrecognized(language),
            language=language
        )

    async def _on_confirmed(
        self,
        attempt: models.CallAttempt,
        digit: str,
        language: str,
        medication_name: str
    ) -> ResponseOutcome:
        already_confirmed = bool(attempt.confirmed)
        script = render_confirmation(language, medication_name, True)

        if already_confirmed:
            logger.info(f"Call {attempt.call_sid} already confirmed")
            return ResponseOutcome(attempt.call_sid, digit, script, language, confirmed=True)

        now = datetime.utcnow()
        attempt.response_digit = digit
        attempt.confirmed = True
        attempt.response_time = now
        # A needs-time retry armed earlier in this call no longer applies
        self.orchestrator.cancel_retries(attempt)
        await self.store.save_attempt(attempt)

        await self.notifications.notify(
            attempt.patient_id,
            models.NotificationEvent.MEDICATION_TAKEN.value,
            {
                "medication_name": medication_name,
                "medication_id": attempt.medication_id,
                "time": now.strftime("%H:%M UTC"),
            }
        )
        self.notifications.publish_realtime(attempt.patient_id, models.NotificationEvent.MEDICATION_TAKEN.value, {
            "medicationName": medication_name,
            "confirmedAt": now.isoformat(),
            "callSid": attempt.call_sid,
        })

        return ResponseOutcome(attempt.call_sid, digit, script, language, confirmed=True, notified=True)

    async def _on_needs_time(
        self,
        attempt: models.CallAttempt,
        digit: str,
        language: str,
        medication_name: str
    ) -> ResponseOutcome:
        script = render_confirmation(language, medication_name, False)

        if attempt.confirmed or self._retry_armed(attempt):
            logger.info(f"Ignoring repeated response {digit!r} for call {attempt.call_sid}")
            return ResponseOutcome(attempt.call_sid, digit, script, language, confirmed=attempt.confirmed)

        attempt.response_digit = digit
        attempt.confirmed = False
        attempt.response_time = datetime.utcnow()

        timer = self.orchestrator.schedule_retry(attempt, self.needs_time_retry_minutes)
        if timer is not None:
            attempt.add_followup(
                models.FollowupActionType.RETRY_CALL,
                models.FollowupStatus.PENDING,
                details=f"Patient needs more time; calling again in {self.needs_time_retry_minutes} minutes"
            )
        else:
            attempt.add_followup(
                models.FollowupActionType.RETRY_CALL,
                models.FollowupStatus.FAILED,
                details="Patient needs more time but no attempts remain"
            )
        await self.store.save_attempt(attempt)

        return ResponseOutcome(
            attempt.call_sid, digit, script, language, confirmed=False, retry_scheduled=timer is not None
        )


class CallEventDispatcher:
    """
    Serializes events per call id

    Each call id gets its own FIFO queue drained by one worker task, so two
    callbacks for the same call apply in delivery order while different
    calls proceed concurrently. Each submitter receives the result (or the
    exception) of its own event.
    """

    def __init__(self, state_machine: CallStateMachine):
        self.state_machine = state_machine
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    @property
    def active_calls(self) -> int:
        return len(self._workers)

    async def submit(self, event: CallEvent) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        queue = self._queues.get(event.call_sid)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[event.call_sid] = queue
            self._workers[event.call_sid] = asyncio.create_task(self._drain(event.call_sid, queue))
        queue.put_nowait((event, future))

        return await future

    async def _drain(self, call_sid: str, queue: asyncio.Queue) -> None:
        while True:
            try:
                event, future = queue.get_nowait()
            except asyncio.QueueEmpty:
                break

            try:
                result = await self._apply(event)
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

        self._queues.pop(call_sid, None)
        self._workers.pop(call_sid, None)

    async def _apply(self, event: CallEvent) -> Union[StatusResult, ResponseOutcome]:
        if isinstance(event, CallStatusEvent):
            return await self.state_machine.handle_status(event)
        if isinstance(event, CallResponseEvent):
            return await self.state_machine.handle_response(event)
        raise TypeError(f"Unsupported call event: {type(event).__name__}")

    async def close(self) -> None:
        """Cancel in-flight workers; pending submitters see CancelledError"""
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        for queue in self._queues.values():
            while not queue.empty():
                _, future = queue.get_nowait()
                future.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._queues.clear()
        self._workers.clear()
