"""
Test Tools Package
Tests for the tools module (clock, voice scripts, transport, real-time, notifications)
"""

__all__ = [
    "test_clock",
    "test_voice_scripts",
    "test_twilio_transport",
    "test_realtime",
    "test_notification_service",
]
