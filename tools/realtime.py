"""
Real-time Channel Tool
In-process publish/subscribe of medication events per patient room
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set
from datetime import datetime
from collections import defaultdict

from config import settings


logger = logging.getLogger(__name__)


def patient_topic(patient_id: int) -> str:
    return f"patient_{patient_id}"


class RealtimeHub:
    """
    Fan-out of events to live subscribers (websocket connections)

    publish() never blocks: a subscriber whose queue is full loses that
    event rather than stalling the publisher.
    """

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.REALTIME_QUEUE_SIZE
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, topic: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[topic].add(queue)
        logger.info(f"Subscriber joined {topic} ({len(self._subscribers[topic])} live)")
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(topic)
        if not subscribers:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[topic]
        logger.info(f"Subscriber left {topic}")

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Push an event to every subscriber of `topic`; returns how many received it"""
        delivered = 0
        for queue in list(self._subscribers.get(topic, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping real-time event for slow subscriber on {topic}")
        return delivered

    def publish_patient_event(self, patient_id: int, event_type: str, data: Dict[str, Any]) -> int:
        """Publish a `medication_update` envelope to the patient's room"""
        return self.publish(patient_topic(patient_id), {
            "event": "medication_update",
            "eventType": event_type,
            "patientId": patient_id,
            "timestamp": datetime.utcnow().isoformat(),
            "data": data,
        })
