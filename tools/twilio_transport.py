"""
Twilio Transport Tool
Places reminder calls and sends SMS through Twilio
"""

import asyncio
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client
from twilio.twiml.voice_response import Gather, VoiceResponse

from config import settings, reminder_config
from errors import TransportError
from tools.voice_scripts import render_gather_prompt, render_no_input


logger = logging.getLogger(__name__)

# Say-verb locales for the supported script languages
SAY_LANGUAGES = {
    "en": "en-US",
    "hi": "hi-IN",
    "es": "es-ES",
    "fr": "fr-FR",
}


def _say_language(language: str) -> str:
    return SAY_LANGUAGES.get(language, SAY_LANGUAGES[reminder_config.DEFAULT_LANGUAGE])


def build_reminder_twiml(
    script: str,
    medication_name: str,
    gather_url: str,
    language: str = "en"
) -> str:
    """TwiML that reads the script and collects a single keypress"""
    say_language = _say_language(language)
    response = VoiceResponse()
    response.say(script, voice="alice", language=say_language)

    gather = Gather(action=gather_url, method="POST", timeout=10, num_digits=1)
    gather.say(render_gather_prompt(language, medication_name), voice="alice", language=say_language)
    response.append(gather)

    # Reached only when the gather times out without input
    response.say(render_no_input(language), voice="alice", language=say_language)
    return str(response)


def build_say_twiml(text: str, language: str = "en") -> str:
    response = VoiceResponse()
    response.say(text, voice="alice", language=_say_language(language))
    return str(response)


class TwilioTransport:
    """
    Call and SMS capability backed by the Twilio REST client

    The Twilio client is blocking, so every request runs in a worker thread
    and never stalls the event loop.
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[Client] = None
    ):
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")

        account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        auth_token = auth_token or settings.TWILIO_AUTH_TOKEN

        if client is not None:
            self.client = client
        elif account_sid and auth_token:
            self.client = Client(account_sid, auth_token)
        else:
            self.client = None
            logger.warning("Twilio credentials not configured; calls and SMS will fail")

    @property
    def status_callback_url(self) -> str:
        return f"{self.base_url}{settings.API_PREFIX}{reminder_config.VOICE_STATUS_PATH}"

    @property
    def gather_url(self) -> str:
        return f"{self.base_url}{settings.API_PREFIX}{reminder_config.VOICE_RESPONSE_PATH}"

    def _require_client(self) -> Client:
        if self.client is None or not self.from_number:
            raise TransportError("Twilio is not configured")
        return self.client

    async def place_call(
        self,
        destination: str,
        script: str,
        medication_name: str,
        language: str = "en"
    ) -> str:
        """
        Start an outbound reminder call

        Returns:
            Twilio call SID

        Raises:
            TransportError: if Twilio rejects the call or is unreachable
        """
        client = self._require_client()
        twiml = build_reminder_twiml(script, medication_name, self.gather_url, language)

        def _create():
            return client.calls.create(
                to=destination,
                from_=self.from_number,
                twiml=twiml,
                status_callback=self.status_callback_url,
                status_callback_event=reminder_config.STATUS_CALLBACK_EVENTS,
                status_callback_method="POST",
                timeout=settings.CALL_TIMEOUT_SECONDS,
                record=False,
            )

        try:
            call = await asyncio.to_thread(_create)
        except TwilioException as e:
            logger.error(f"Twilio call to {destination} failed: {e}")
            raise TransportError(f"Voice call failed: {e}") from e
        except OSError as e:
            logger.error(f"Network error placing call to {destination}: {e}")
            raise TransportError(f"Voice call failed: {e}") from e

        logger.info(f"Voice call placed to {destination}: {call.sid}")
        return call.sid

    async def send_sms(self, destination: str, body: str) -> str:
        """
        Send an SMS

        Returns:
            Twilio message SID

        Raises:
            TransportError: if the message could not be sent
        """
        client = self._require_client()

        def _create():
            return client.messages.create(to=destination, from_=self.from_number, body=body)

        try:
            message = await asyncio.to_thread(_create)
        except TwilioException as e:
            logger.error(f"SMS to {destination} failed: {e}")
            raise TransportError(f"SMS failed: {e}") from e
        except OSError as e:
            logger.error(f"Network error sending SMS to {destination}: {e}")
            raise TransportError(f"SMS failed: {e}") from e

        logger.info(f"SMS sent successfully: {message.sid}")
        return message.sid
