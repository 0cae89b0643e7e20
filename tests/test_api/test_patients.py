"""
Tests for Patients API
=======================

Tests patient, medication and family member endpoints and that each change
reaches the live reminder schedule.
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from models import FamilyMember


API = "/api/v1/patients"


# ==================== FIXTURES ====================

@pytest.fixture
def patient_create_data():
    """Sample data for creating a patient"""
    return {
        "first_name": "Jane",
        "last_name": "Smith",
        "phone_number": "+15557654321",
        "date_of_birth": "1948-03-20",
        "preferred_language": "es",
        "timezone": "America/Chicago",
        "max_call_attempts": 2,
        "call_retry_interval": 20
    }


@pytest.fixture
def medication_create_data():
    """Sample data for adding a medication"""
    return {
        "name": "Lisinopril",
        "dosage": "10mg",
        "frequency": "daily",
        "times": ["09:00"],
        "instructions": "Take in the morning"
    }


def slots(components, patient_id):
    return sorted(t.time_slot for t in components.scheduler.triggers_for_patient(patient_id))


async def _noop():
    return None


# ==================== PATIENT TESTS ====================

class TestPatients:
    """Tests for patient endpoints"""

    @pytest.mark.api
    def test_create_patient_success(self, client: TestClient, patient_create_data):
        """Test successful patient creation"""
        response = client.post(f"{API}/", json=patient_create_data)

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["phone_number"] == patient_create_data["phone_number"]
        assert data["timezone"] == "America/Chicago"
        assert data["preferred_language"] == "es"
        assert data["max_call_attempts"] == 2
        assert data["medications"] == []

    @pytest.mark.api
    def test_create_patient_duplicate_phone(self, client: TestClient, test_patient, patient_create_data):
        """Test that a duplicate phone number is rejected"""
        patient_create_data["phone_number"] = test_patient.phone_number

        response = client.post(f"{API}/", json=patient_create_data)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "already exists" in response.json()["message"]

    @pytest.mark.api
    def test_create_patient_unknown_timezone(self, client: TestClient, patient_create_data):
        """Test that an unknown timezone fails validation"""
        patient_create_data["timezone"] = "Mars/Olympus"

        response = client.post(f"{API}/", json=patient_create_data)

        assert response.status_code == 422

    @pytest.mark.api
    def test_create_patient_unsupported_language(self, client: TestClient, patient_create_data):
        patient_create_data["preferred_language"] = "de"

        response = client.post(f"{API}/", json=patient_create_data)

        assert response.status_code == 422

    @pytest.mark.api
    def test_get_patient_with_medications(self, client: TestClient, test_patient, test_medication):
        response = client.get(f"{API}/{test_patient.id}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["first_name"] == "John"
        assert [m["name"] for m in data["medications"]] == ["Metformin"]
        assert data["medications"][0]["times"] == ["08:00", "20:00"]

    @pytest.mark.api
    def test_get_patient_not_found(self, client: TestClient):
        response = client.get(f"{API}/99999")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"] is True

    @pytest.mark.api
    def test_timezone_change_reschedules(self, client: TestClient, components, test_patient, test_medication):
        """Test that a timezone change moves the patient's triggers"""
        response = client.patch(f"{API}/{test_patient.id}/settings", json={"timezone": "Europe/London"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["timezone"] == "Europe/London"
        triggers = components.scheduler.triggers_for_patient(test_patient.id)
        assert len(triggers) == 2
        assert {t.timezone for t in triggers} == {"Europe/London"}

    @pytest.mark.api
    def test_settings_update_without_schedule_change(self, client: TestClient, test_patient):
        response = client.patch(
            f"{API}/{test_patient.id}/settings",
            json={"voice_call_enabled": False, "call_retry_interval": 30}
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["voice_call_enabled"] is False
        assert data["call_retry_interval"] == 30

    @pytest.mark.api
    def test_deactivate_patient_cancels_reminders(self, second_patient, test_patient, test_medication,
                                                  components, client: TestClient):
        """Test that deactivation removes triggers and pending retries"""
        components.scheduler.arm_retry(test_patient.id, test_medication.id, 15, _noop)
        assert slots(components, test_patient.id) == ["08:00", "20:00"]

        response = client.delete(f"{API}/{test_patient.id}")

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert slots(components, test_patient.id) == []
        assert components.scheduler.pending_retries(test_patient.id) == []
        assert slots(components, second_patient.id) == ["09:30"]
        assert client.get(f"{API}/{test_patient.id}").json()["is_active"] is False


# ==================== MEDICATION TESTS ====================

class TestMedications:
    """Tests for medication endpoints"""

    @pytest.mark.api
    def test_add_medication_schedules_reminders(self, client: TestClient, components, test_patient,
                                                medication_create_data):
        response = client.post(f"{API}/{test_patient.id}/medications", json=medication_create_data)

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["patient_id"] == test_patient.id
        assert data["frequency"] == "daily"
        assert slots(components, test_patient.id) == ["09:00"]

    @pytest.mark.api
    @pytest.mark.parametrize("times", [["25:00"], ["9am"], []])
    def test_add_medication_invalid_times(self, client: TestClient, components, test_patient,
                                          medication_create_data, times):
        medication_create_data["times"] = times

        response = client.post(f"{API}/{test_patient.id}/medications", json=medication_create_data)

        assert response.status_code == 422
        assert slots(components, test_patient.id) == []

    @pytest.mark.api
    def test_add_medication_unknown_patient(self, client: TestClient, medication_create_data):
        response = client.post(f"{API}/99999/medications", json=medication_create_data)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.api
    def test_update_times_replaces_triggers(self, client: TestClient, components, test_patient, test_medication):
        response = client.patch(
            f"{API}/{test_patient.id}/medications/{test_medication.id}",
            json={"times": ["07:30", "13:00", "19:30"], "frequency": "three_times_daily"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["frequency"] == "three_times_daily"
        assert slots(components, test_patient.id) == ["07:30", "13:00", "19:30"]

    @pytest.mark.api
    def test_update_unknown_medication(self, client: TestClient, test_patient):
        response = client.patch(f"{API}/{test_patient.id}/medications/99999", json={"dosage": "1g"})

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.api
    def test_deactivate_medication_removes_triggers(self, test_patient, test_medication,
                                                    components, client: TestClient):
        assert slots(components, test_patient.id) == ["08:00", "20:00"]

        response = client.delete(f"{API}/{test_patient.id}/medications/{test_medication.id}")

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert slots(components, test_patient.id) == []
        medications = client.get(f"{API}/{test_patient.id}").json()["medications"]
        assert medications[0]["is_active"] is False


# ==================== FAMILY MEMBER TESTS ====================

class TestFamilyMembers:

    @pytest.mark.api
    def test_add_family_member(self, client: TestClient, test_patient):
        response = client.post(f"{API}/{test_patient.id}/family-members", json={
            "first_name": "Mary",
            "last_name": "Doe",
            "email": "mary@example.com",
            "phone_number": "+15550000011",
            "relationship_to_patient": "spouse",
            "preferred_method": "sms"
        })

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["preferred_method"] == "sms"

    @pytest.mark.api
    def test_existing_member_is_linked_not_duplicated(self, client: TestClient, db_session,
                                                      family_members, second_patient):
        response = client.post(f"{API}/{second_patient.id}/family-members", json={
            "first_name": "Sam",
            "last_name": "Doe",
            "email": "sam@example.com",
            "phone_number": "+15550000012"
        })

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["id"] == family_members[1].id
        assert db_session.query(FamilyMember).filter(FamilyMember.email == "sam@example.com").count() == 1

    @pytest.mark.api
    def test_invalid_preferred_method(self, client: TestClient, test_patient):
        response = client.post(f"{API}/{test_patient.id}/family-members", json={
            "first_name": "Sam",
            "last_name": "Doe",
            "email": "sam@example.com",
            "phone_number": "+15550000012",
            "preferred_method": "pigeon"
        })

        assert response.status_code == 422
