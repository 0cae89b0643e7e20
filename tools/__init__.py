"""
Tools Package
Clock, voice script, transport, real-time and notification tools for DoseCall
"""

from .clock import (
    parse_time_slot,
    resolve_timezone,
    next_trigger_instant,
    occurrence_time,
    build_cron_trigger
)

from .voice_scripts import (
    render_script,
    render_gather_prompt,
    render_no_input,
    render_confirmation,
    render_unrecognized
)

from .twilio_transport import (
    TwilioTransport,
    build_reminder_twiml,
    build_say_twiml
)

from .realtime import (
    RealtimeHub,
    patient_topic
)

from .notification_service import (
    NotificationService,
    NotificationChannel,
    NotificationResult,
    EmailSender,
    NOTIFICATION_TEMPLATES
)

__all__ = [
    # Clock
    "parse_time_slot",
    "resolve_timezone",
    "next_trigger_instant",
    "occurrence_time",
    "build_cron_trigger",

    # Voice Scripts
    "render_script",
    "render_gather_prompt",
    "render_no_input",
    "render_confirmation",
    "render_unrecognized",

    # Transport
    "TwilioTransport",
    "build_reminder_twiml",
    "build_say_twiml",

    # Real-time
    "RealtimeHub",
    "patient_topic",

    # Notifications
    "NotificationService",
    "NotificationChannel",
    "NotificationResult",
    "EmailSender",
    "NOTIFICATION_TEMPLATES"
]
