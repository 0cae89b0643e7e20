"""
Tests for Notification Fan-out
Tests per-member channel preferences, failure isolation and templating
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from models import FamilyMember
from services.reminder_store import ReminderStore
from tools.notification_service import EmailSender, NotificationChannel, NotificationService
from tools.realtime import patient_topic


@pytest.fixture
def email_sender():
    sender = EmailSender()
    sender.send = AsyncMock(side_effect=lambda to, subject, body: f"email-{to}")
    return sender


@pytest.fixture
def notification_service(session_factory, transport, realtime, email_sender):
    store = ReminderStore(session_factory)
    yield NotificationService(store, transport, realtime, email_sender)
    store.close()


@pytest.mark.database
class TestNotify:
    """Fan-out to family members"""

    @pytest.mark.asyncio
    async def test_dispatches_by_preference(self, notification_service, test_patient, family_members,
                                            transport, email_sender):
        results = await notification_service.notify(
            test_patient.id, "medication_taken", {"medication_name": "Metformin"}
        )

        # Mary: sms, Sam: sms + email, Ann: email
        assert len(results) == 4
        assert all(r.success for r in results)
        assert {m["to"] for m in transport.messages} == {"+15550000011", "+15550000012"}
        emailed = {call.args[0] for call in email_sender.send.await_args_list}
        assert emailed == {"sam@example.com", "ann@example.com"}

    @pytest.mark.asyncio
    async def test_one_sms_failure_does_not_block_others(self, notification_service, test_patient,
                                                         family_members, transport, realtime, email_sender):
        transport.failing_numbers.add("+15550000011")
        queue = realtime.subscribe(patient_topic(test_patient.id))

        results = await notification_service.notify(
            test_patient.id, "medication_missed", {"medication_name": "Metformin"}
        )
        published = notification_service.publish_realtime(
            test_patient.id, "medication_missed", {"medicationName": "Metformin"}
        )

        failed = [r for r in results if not r.success]
        assert len(failed) == 1
        assert failed[0].channel == NotificationChannel.SMS
        assert failed[0].recipient_id == family_members[0].id

        delivered_to = {r.recipient_id for r in results if r.success}
        assert delivered_to == {family_members[1].id, family_members[2].id}
        assert transport.messages_to("+15550000012")
        assert published is True
        assert queue.get_nowait()["eventType"] == "medication_missed"

    @pytest.mark.asyncio
    async def test_email_failure_is_reported_not_raised(self, notification_service, test_patient,
                                                        family_members, email_sender):
        email_sender.send.side_effect = RuntimeError("mail relay down")

        results = await notification_service.notify(test_patient.id, "call_failed", {"attempts": 3})

        email_results = [r for r in results if r.channel == NotificationChannel.EMAIL]
        assert email_results and not any(r.success for r in email_results)
        assert all(r.success for r in results if r.channel == NotificationChannel.SMS)

    @pytest.mark.asyncio
    async def test_inactive_members_are_skipped(self, notification_service, db_session, test_patient,
                                                family_members, transport):
        for member in family_members[1:]:
            member.is_active = False
        db_session.commit()

        results = await notification_service.notify(test_patient.id, "medication_taken", {})

        assert [r.recipient_id for r in results] == [family_members[0].id]

    @pytest.mark.asyncio
    async def test_members_of_other_patients_are_not_notified(self, notification_service, db_session,
                                                              test_patient, second_patient, transport):
        member = FamilyMember(
            first_name="Ravi", last_name="Sharma", email="ravi@example.com",
            phone_number="+919800000099", preferred_method="sms"
        )
        member.patients.append(second_patient)
        db_session.add(member)
        db_session.commit()

        results = await notification_service.notify(test_patient.id, "medication_taken", {})

        assert results == []
        assert transport.messages == []

    @pytest.mark.asyncio
    async def test_unknown_patient_returns_empty(self, notification_service):
        assert await notification_service.notify(999, "medication_taken", {}) == []


@pytest.mark.unit
class TestTemplates:

    @pytest.fixture
    def patient(self):
        from models import Patient
        return Patient(first_name="John", last_name="Doe")

    def test_missed_message_names_medication(self, notification_service, patient):
        message = notification_service.format_message(
            "medication_missed", patient, {"medication_name": "Metformin"}
        )

        assert message == (
            "Alert: John Doe has not confirmed taking their Metformin medication. Please check on them."
        )

    def test_call_failed_message_includes_attempts(self, notification_service, patient):
        message = notification_service.format_message(
            "call_failed", patient, {"medication_name": "Metformin", "attempts": 3}
        )

        assert "after 3 attempts" in message

    def test_unknown_event_uses_generic_template(self, notification_service, patient):
        message = notification_service.format_message("refill_due", patient, {"message": "Refill soon"})

        assert message == "Update regarding John Doe's medication: Refill soon"

    def test_subject(self, notification_service, patient):
        subject = notification_service.format_subject("medication_taken", patient, {"medication_name": "Metformin"})

        assert subject == "John Doe took their Metformin"


@pytest.mark.unit
class TestPublishRealtime:

    def test_never_raises(self, notification_service, realtime):
        realtime.publish_patient_event = MagicMock(side_effect=RuntimeError("boom"))

        assert notification_service.publish_realtime(1, "medication_taken", {}) is False
