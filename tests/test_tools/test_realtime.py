"""
Tests for the Real-time Channel
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from tools.realtime import RealtimeHub, patient_topic


@pytest.mark.unit
class TestRealtimeHub:

    @pytest.mark.asyncio
    async def test_subscriber_receives_patient_event(self):
        hub = RealtimeHub(queue_size=5)
        queue = hub.subscribe(patient_topic(7))

        delivered = hub.publish_patient_event(7, "medication_taken", {"medicationName": "Metformin"})

        event = queue.get_nowait()
        assert delivered == 1
        assert event["event"] == "medication_update"
        assert event["eventType"] == "medication_taken"
        assert event["patientId"] == 7
        assert event["data"] == {"medicationName": "Metformin"}

    @pytest.mark.asyncio
    async def test_other_rooms_do_not_receive(self):
        hub = RealtimeHub(queue_size=5)
        other = hub.subscribe(patient_topic(8))

        hub.publish_patient_event(7, "medication_missed", {})

        assert other.empty()

    def test_publish_without_subscribers(self):
        hub = RealtimeHub(queue_size=5)

        assert hub.publish(patient_topic(1), {"event": "x"}) == 0

    @pytest.mark.asyncio
    async def test_full_subscriber_drops_instead_of_blocking(self):
        hub = RealtimeHub(queue_size=1)
        slow = hub.subscribe("patient_1")
        fast = hub.subscribe("patient_1")

        hub.publish("patient_1", {"n": 1})
        fast.get_nowait()
        delivered = hub.publish("patient_1", {"n": 2})

        assert delivered == 1
        assert slow.qsize() == 1
        assert fast.get_nowait() == {"n": 2}

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = RealtimeHub(queue_size=5)
        queue = hub.subscribe("patient_1")

        hub.unsubscribe("patient_1", queue)

        assert hub.subscriber_count("patient_1") == 0
        assert hub.publish("patient_1", {}) == 0
