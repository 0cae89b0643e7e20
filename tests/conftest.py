"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all DoseCall tests.
Fixtures include database sessions, a recording transport, wired reminder
components, sample patients and a test client.
"""

import os
import sys
from datetime import date, datetime
from typing import Generator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, create_session_factory
from errors import TransportError
from models import (
    Patient, Medication, FamilyMember, CallAttempt, CallStatus, MedicationFrequency
)
from services import ReminderComponents, build_reminder_components
from tools.notification_service import EmailSender
from tools.realtime import RealtimeHub


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    """Session factory shared by fixtures and the reminder store"""
    return create_session_factory(test_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session"""
    session = session_factory()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ==================== TRANSPORT FIXTURES ====================

class RecordingTransport:
    """Stands in for TwilioTransport; records calls and messages instead of sending them"""

    def __init__(self):
        self.calls: List[dict] = []
        self.messages: List[dict] = []
        self.fail_calls = False
        self.fail_sms = False
        self.failing_numbers: set = set()
        self._sequence = 0

    def _next_sid(self, prefix: str) -> str:
        self._sequence += 1
        return f"{prefix}{self._sequence:032d}"

    async def place_call(self, destination, script, medication_name, language="en"):
        if self.fail_calls:
            raise TransportError("Voice call failed: destination unreachable")
        sid = self._next_sid("CA")
        self.calls.append({
            "sid": sid,
            "to": destination,
            "script": script,
            "medication_name": medication_name,
            "language": language,
        })
        return sid

    async def send_sms(self, destination, body):
        if self.fail_sms or destination in self.failing_numbers:
            raise TransportError(f"SMS failed: {destination} rejected")
        sid = self._next_sid("SM")
        self.messages.append({"sid": sid, "to": destination, "body": body})
        return sid

    def messages_to(self, destination: str) -> List[dict]:
        return [m for m in self.messages if m["to"] == destination]


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def realtime() -> RealtimeHub:
    return RealtimeHub(queue_size=10)


@pytest.fixture
def components(session_factory, transport, realtime) -> Generator[ReminderComponents, None, None]:
    """Reminder components wired to the test database; scheduler runtime not started"""
    reminder_components = build_reminder_components(
        session_factory=session_factory,
        transport=transport,
        realtime=realtime,
        email_sender=EmailSender()
    )
    yield reminder_components
    reminder_components.store.close()


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def test_patient(db_session: Session) -> Patient:
    """Create and return a test patient"""
    patient = Patient(
        first_name="John",
        last_name="Doe",
        phone_number="+15550000001",
        date_of_birth=date(1950, 5, 15),
        preferred_language="en",
        timezone="America/New_York",
        voice_call_enabled=True,
        sms_backup_enabled=True,
        max_call_attempts=3,
        call_retry_interval=10,
        is_active=True
    )
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest.fixture
def test_medication(db_session: Session, test_patient: Patient) -> Medication:
    """Create and return a twice-daily medication linked to test patient"""
    medication = Medication(
        patient_id=test_patient.id,
        name="Metformin",
        dosage="500mg",
        instructions="Take with meals",
        frequency=MedicationFrequency.TWICE_DAILY.value,
        times=["08:00", "20:00"],
        is_active=True,
        start_date=date.today()
    )
    db_session.add(medication)
    db_session.commit()
    db_session.refresh(medication)
    return medication


@pytest.fixture
def family_members(db_session: Session, test_patient: Patient) -> List[FamilyMember]:
    """Three relatives with different channel preferences"""
    members = [
        FamilyMember(
            first_name="Mary", last_name="Doe", email="mary@example.com",
            phone_number="+15550000011", relationship_to_patient="spouse", preferred_method="sms"
        ),
        FamilyMember(
            first_name="Sam", last_name="Doe", email="sam@example.com",
            phone_number="+15550000012", relationship_to_patient="child", preferred_method="both"
        ),
        FamilyMember(
            first_name="Ann", last_name="Roe", email="ann@example.com",
            phone_number="+15550000013", relationship_to_patient="caregiver", preferred_method="email"
        ),
    ]
    for member in members:
        member.patients.append(test_patient)
        db_session.add(member)
    db_session.commit()
    return members


@pytest.fixture
def second_patient(db_session: Session) -> Patient:
    """Another patient with one daily medication"""
    patient = Patient(
        first_name="Priya",
        last_name="Sharma",
        phone_number="+919800000002",
        preferred_language="hi",
        timezone="Asia/Kolkata",
    )
    patient.medications.append(Medication(
        name="Amlodipine",
        dosage="5mg",
        frequency=MedicationFrequency.DAILY.value,
        times=["09:30"],
    ))
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest.fixture
def make_attempt(db_session: Session):
    """Factory persisting a call attempt for the test patient's medication"""

    def _make(patient: Patient, medication: Medication, call_sid: str = "CA-test-1",
              attempt_number: int = 1, max_attempts: int = 3,
              status: str = CallStatus.INITIATED.value, **kwargs) -> CallAttempt:
        attempt = CallAttempt(
            call_sid=call_sid,
            patient_id=patient.id,
            medication_id=medication.id,
            scheduled_time=kwargs.pop("scheduled_time", None) or datetime.utcnow(),
            status=status,
            script_language=patient.preferred_language,
            medication_name=medication.name,
            attempt_number=attempt_number,
            max_attempts=max_attempts,
            **kwargs
        )
        db_session.add(attempt)
        db_session.commit()
        db_session.refresh(attempt)
        return attempt

    return _make


# ==================== API FIXTURES ====================

@pytest.fixture(scope="function")
def client(components: ReminderComponents) -> Generator[TestClient, None, None]:
    """FastAPI test client whose lifespan wires the test components"""
    from app import create_app

    app = create_app(component_factory=lambda: components, run_scheduler=False)

    with TestClient(app) as test_client:
        yield test_client


# ==================== MARKERS ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
