"""
Database Models
SQLAlchemy ORM models for DoseCall
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Date, Index, Table, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, date
from enum import Enum as PyEnum
from typing import Optional

from database import Base


# ==================== ENUMS ====================

class MedicationFrequency(str, PyEnum):
    """How often a medication's time slots recur"""
    DAILY = "daily"
    TWICE_DAILY = "twice_daily"
    THREE_TIMES_DAILY = "three_times_daily"
    WEEKLY = "weekly"


class CallStatus(str, PyEnum):
    """Lifecycle states of an outbound reminder call (Twilio status values)"""
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    BUSY = "busy"


class FollowupActionType(str, PyEnum):
    """Actions recorded when a call needs follow-up"""
    RETRY_CALL = "retry_call"
    SEND_SMS = "send_sms"
    ALERT_FAMILY = "alert_family"
    ALERT_PHYSICIAN = "alert_physician"


class FollowupStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationMethod(str, PyEnum):
    """Family member channel preference"""
    EMAIL = "email"
    SMS = "sms"
    BOTH = "both"


class NotificationEvent(str, PyEnum):
    """Domain events fanned out to family members"""
    MEDICATION_REMINDER = "medication_reminder"
    MEDICATION_TAKEN = "medication_taken"
    MEDICATION_MISSED = "medication_missed"
    CALL_FAILED = "call_failed"


# ==================== ASSOCIATIONS ====================

family_member_patients = Table(
    "family_member_patients",
    Base.metadata,
    Column("family_member_id", Integer, ForeignKey("family_members.id"), primary_key=True),
    Column("patient_id", Integer, ForeignKey("patients.id"), primary_key=True),
)


# ==================== MODELS ====================

class Patient(Base):
    """Patient profile with reminder call settings"""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)

    # Personal info
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone_number = Column(String(20), unique=True, nullable=False)
    date_of_birth = Column(Date)
    preferred_language = Column(String(5), default="en")
    timezone = Column(String(50), default="Asia/Kolkata")

    # Settings
    voice_call_enabled = Column(Boolean, default=True)
    sms_backup_enabled = Column(Boolean, default=True)
    max_call_attempts = Column(Integer, default=3)
    call_retry_interval = Column(Integer, default=15)  # minutes

    # Status
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    medications = relationship(
        "Medication", back_populates="patient", cascade="all, delete-orphan",
        lazy="selectin", order_by="Medication.id"
    )
    family_members = relationship(
        "FamilyMember", secondary=family_member_patients, back_populates="patients", lazy="selectin"
    )
    call_attempts = relationship("CallAttempt", back_populates="patient")

    __table_args__ = (
        Index("ix_patients_active", "is_active"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def get_medication(self, medication_id: int) -> Optional["Medication"]:
        for medication in self.medications:
            if medication.id == medication_id:
                return medication
        return None


class Medication(Base):
    """Medication with the time slots it should be taken at"""
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)

    name = Column(String(255), nullable=False)
    dosage = Column(String(100), nullable=False)  # e.g., "500mg"
    instructions = Column(Text)

    frequency = Column(String(30), nullable=False, default=MedicationFrequency.DAILY.value)
    times = Column(JSON, default=list)  # ["08:00", "20:00"]

    is_active = Column(Boolean, default=True)
    start_date = Column(Date, default=date.today)
    end_date = Column(Date)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="medications")

    __table_args__ = (
        Index("ix_medications_patient_active", "patient_id", "is_active"),
    )

    def is_current(self, on_date: Optional[date] = None) -> bool:
        """Active and not past its end date"""
        if not self.is_active:
            return False
        on_date = on_date or date.today()
        return self.end_date is None or on_date <= self.end_date


class FamilyMember(Base):
    """Relative or caregiver notified about a patient's medication events"""
    __tablename__ = "family_members"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(20), nullable=False)
    relationship_to_patient = Column(String(20), default="other")

    preferred_method = Column(String(10), default=NotificationMethod.BOTH.value)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    patients = relationship(
        "Patient", secondary=family_member_patients, back_populates="family_members", lazy="selectin"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class CallAttempt(Base):
    """One outbound reminder call; append-only history for adherence reporting"""
    __tablename__ = "call_attempts"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String(64), unique=True, nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=False)

    # Timing
    scheduled_time = Column(DateTime, nullable=False)
    initiated_time = Column(DateTime, default=datetime.utcnow)
    answered_time = Column(DateTime)
    ended_time = Column(DateTime)
    duration = Column(Integer)  # seconds

    status = Column(String(20), default=CallStatus.INITIATED.value, index=True)

    # Patient response
    response_digit = Column(String(5))
    confirmed = Column(Boolean)
    response_time = Column(DateTime)

    # Script used
    script_language = Column(String(5), default="en")
    medication_name = Column(String(255))
    script_text = Column(Text)

    # Retry information
    attempt_number = Column(Integer, default=1)
    max_attempts = Column(Integer, default=3)

    created_at = Column(DateTime, default=datetime.utcnow)

    patient = relationship("Patient", back_populates="call_attempts")
    followup_actions = relationship(
        "FollowupAction", back_populates="call_attempt", cascade="all, delete-orphan",
        lazy="selectin", order_by="FollowupAction.id"
    )

    __table_args__ = (
        Index("ix_call_attempts_patient_created", "patient_id", "created_at"),
    )

    @property
    def has_response(self) -> bool:
        return self.response_digit is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            CallStatus.COMPLETED.value, CallStatus.FAILED.value,
            CallStatus.NO_ANSWER.value, CallStatus.BUSY.value
        )

    def add_followup(
        self,
        action: FollowupActionType,
        status: FollowupStatus = FollowupStatus.PENDING,
        details: Optional[str] = None
    ) -> "FollowupAction":
        followup = FollowupAction(
            action=action.value,
            status=status.value,
            details=details,
            timestamp=datetime.utcnow()
        )
        self.followup_actions.append(followup)
        return followup


class FollowupAction(Base):
    """Audit record of a retry or escalation decision"""
    __tablename__ = "followup_actions"

    id = Column(Integer, primary_key=True, index=True)
    call_attempt_id = Column(Integer, ForeignKey("call_attempts.id"), nullable=False)

    action = Column(String(30), nullable=False)
    status = Column(String(20), default=FollowupStatus.PENDING.value)
    details = Column(Text)
    timestamp = Column(DateTime, default=datetime.utcnow)

    call_attempt = relationship("CallAttempt", back_populates="followup_actions")
