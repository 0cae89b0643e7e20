"""
Live Events Router
WebSocket stream of a patient's medication events
"""

import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tools.realtime import patient_topic


logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.websocket("/ws/patients/{patient_id}")
async def patient_events(websocket: WebSocket, patient_id: int):
    """Join the patient's room and forward every published event as JSON"""
    components = getattr(websocket.app.state, "components", None)
    if components is None:
        await websocket.close(code=1013)
        return

    topic = patient_topic(patient_id)
    queue = components.realtime.subscribe(topic)

    try:
        await websocket.accept()
        logger.info(f"Client joined patient room: {topic}")

        while True:
            event = await queue.get()
            await websocket.send_json(event)
    except WebSocketDisconnect:
        logger.info(f"Client left patient room: {topic}")
    finally:
        components.realtime.unsubscribe(topic, queue)
