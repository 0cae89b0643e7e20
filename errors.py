"""
Reminder Errors
Exception taxonomy shared by the scheduler, orchestrator and call state machine
"""

from dataclasses import dataclass
from typing import Optional


class ReminderError(Exception):
    """Base class for reminder orchestration errors"""


class ConfigurationError(ReminderError):
    """Malformed time slot or missing patient settings"""

    def __init__(self, message: str, patient_id: Optional[int] = None,
                 medication_id: Optional[int] = None, time_slot: Optional[str] = None):
        super().__init__(message)
        self.patient_id = patient_id
        self.medication_id = medication_id
        self.time_slot = time_slot


class TransportError(ReminderError):
    """A call or SMS could not be placed"""


class NotFoundError(ReminderError):
    """A record referenced by an event or request does not exist"""


class PatientNotFoundError(NotFoundError):
    def __init__(self, patient_id: int):
        super().__init__(f"Patient {patient_id} not found")
        self.patient_id = patient_id


class AttemptNotFoundError(NotFoundError):
    def __init__(self, call_sid: str):
        super().__init__(f"No call attempt for call {call_sid}")
        self.call_sid = call_sid


@dataclass
class EscalationExhausted:
    """Policy outcome: every call attempt for a reminder went unanswered"""
    patient_id: int
    medication_id: int
    attempts: int
    sms_sent: bool
