"""
Twilio Webhooks Router
Status and keypress callbacks for reminder calls
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Form, status
from fastapi.responses import PlainTextResponse, Response

from api.deps import get_components
from errors import NotFoundError
from services import CallResponseEvent, CallStatusEvent, ReminderComponents
from tools.twilio_transport import build_say_twiml


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/twilio", tags=["webhooks"])


def _twiml(body: str, status_code: int = status.HTTP_200_OK) -> Response:
    return Response(content=body, media_type="text/xml", status_code=status_code)


@router.post("/voice-status", response_class=PlainTextResponse)
async def voice_status(
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    CallDuration: Optional[int] = Form(None),
    components: ReminderComponents = Depends(get_components)
):
    """
    Call status callback

    Always acknowledged: Twilio does not act on errors here, and callbacks
    for unknown calls are expected when they race the attempt record.
    """
    logger.info(f"Voice status webhook: {CallSid} - {CallStatus}")

    try:
        await components.dispatcher.submit(CallStatusEvent(CallSid, CallStatus, CallDuration))
    except NotFoundError as e:
        logger.warning(f"Dropping status callback: {e}")
    except Exception as e:
        logger.error(f"Failed to handle voice status for {CallSid}: {e}", exc_info=True)

    return "OK"


@router.post("/voice-response")
async def voice_response(
    CallSid: str = Form(...),
    Digits: str = Form(""),
    components: ReminderComponents = Depends(get_components)
):
    """
    Keypress callback from the reminder call's gather

    Returns TwiML that reads the localized reply back to the patient.
    """
    logger.info(f"Voice response: {CallSid} - Digits: {Digits}")

    try:
        outcome = await components.dispatcher.submit(CallResponseEvent(CallSid, Digits))
    except NotFoundError as e:
        logger.warning(f"Voice response for unknown call: {e}")
        return _twiml(build_say_twiml("Call not found"), status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Failed to handle voice response for {CallSid}: {e}", exc_info=True)
        return _twiml(build_say_twiml("Error processing response"), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return _twiml(build_say_twiml(outcome.script, outcome.language))
