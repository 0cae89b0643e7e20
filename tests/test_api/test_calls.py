"""
Tests for Calls API
====================

Tests manual reminder calls, call history and adherence endpoints.
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from models import CallStatus


API = "/api/v1/calls"


class TestInitiateCall:
    """Tests for POST /calls/initiate"""

    @pytest.mark.api
    def test_initiate_call(self, client: TestClient, transport, test_patient, test_medication):
        response = client.post(f"{API}/initiate", json={
            "patient_id": test_patient.id,
            "medication_id": test_medication.id
        })

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["message"] == "Voice call initiated successfully"
        assert data["call"]["call_sid"] == transport.calls[0]["sid"]
        assert data["call"]["attempt_number"] == 1
        assert data["call"]["status"] == CallStatus.INITIATED.value

    @pytest.mark.api
    def test_initiate_call_transport_failure(self, client: TestClient, transport, test_patient, test_medication):
        transport.fail_calls = True

        response = client.post(f"{API}/initiate", json={
            "patient_id": test_patient.id,
            "medication_id": test_medication.id
        })

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["message"] == "Voice call could not be placed; SMS fallback attempted"
        assert data["call"]["status"] == CallStatus.FAILED.value
        assert data["call"]["followup_actions"][0]["action"] == "send_sms"
        assert transport.messages_to(test_patient.phone_number)

    @pytest.mark.api
    def test_initiate_call_unknown_patient(self, client: TestClient):
        response = client.post(f"{API}/initiate", json={"patient_id": 99999, "medication_id": 1})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["message"] == "Patient not found"

    @pytest.mark.api
    def test_initiate_call_unknown_medication(self, client: TestClient, test_patient):
        response = client.post(f"{API}/initiate", json={"patient_id": test_patient.id, "medication_id": 99999})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["message"] == "Medication not found"


class TestCallHistory:
    """Tests for GET /calls/{patient_id}"""

    @pytest.mark.api
    def test_history_is_paginated(self, client: TestClient, make_attempt, test_patient, test_medication):
        for i in range(3):
            make_attempt(test_patient, test_medication, call_sid=f"CA-{i}")

        response = client.get(f"{API}/{test_patient.id}", params={"page": 1, "page_size": 2})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data["call_history"]) == 2
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert data["current_page"] == 1

    @pytest.mark.api
    def test_history_empty(self, client: TestClient, test_patient):
        response = client.get(f"{API}/{test_patient.id}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["call_history"] == []


class TestAdherence:
    """Tests for GET /calls/{patient_id}/adherence"""

    @pytest.mark.api
    def test_adherence_report(self, client: TestClient, make_attempt, test_patient, test_medication):
        make_attempt(test_patient, test_medication, call_sid="CA-ok",
                     status=CallStatus.COMPLETED.value, confirmed=True, response_digit="1")

        response = client.get(f"{API}/{test_patient.id}/adherence", params={"days": 1})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["days"] == 1
        assert data["medications"][0]["scheduled_doses"] == 2
        assert data["medications"][0]["confirmed_doses"] == 1
        assert data["overall_rate"] == 50

    @pytest.mark.api
    def test_adherence_unknown_patient(self, client: TestClient):
        response = client.get(f"{API}/99999/adherence")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.api
    @pytest.mark.parametrize("days", [0, 366])
    def test_adherence_days_out_of_range(self, client: TestClient, test_patient, days):
        response = client.get(f"{API}/{test_patient.id}/adherence", params={"days": days})

        assert response.status_code == 422


class TestDashboard:
    """Tests for GET /calls/{patient_id}/dashboard"""

    @pytest.mark.api
    def test_dashboard(self, client: TestClient, make_attempt, test_patient, test_medication):
        make_attempt(test_patient, test_medication, call_sid="CA-ok",
                     status=CallStatus.COMPLETED.value, confirmed=True, response_digit="1")
        make_attempt(test_patient, test_medication, call_sid="CA-no", status=CallStatus.NO_ANSWER.value)

        response = client.get(f"{API}/{test_patient.id}/dashboard")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["name"] == "John Doe"
        assert data["medications"][0]["name"] == "Metformin"
        assert data["medications"][0]["next_reminder"] is not None
        assert sorted(h["status"] for h in data["history"]) == ["missed", "taken"]

    @pytest.mark.api
    def test_dashboard_unknown_patient(self, client: TestClient):
        response = client.get(f"{API}/99999/dashboard")

        assert response.status_code == status.HTTP_404_NOT_FOUND
