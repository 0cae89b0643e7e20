"""
Configuration management for DoseCall
"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "DoseCall"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    BASE_URL: str = "http://localhost:8000"  # Public URL Twilio posts callbacks to

    # Database
    DATABASE_URL: str = "sqlite:///./dosecall.db"
    DATABASE_ECHO: bool = False
    DATABASE_WORKERS: int = 1  # Threads running store queries; keep 1 for SQLite

    # Twilio
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    CALL_TIMEOUT_SECONDS: int = 30

    # Reminder policy
    SCHEDULER_ENABLED: bool = True
    DEFAULT_TIMEZONE: str = "Asia/Kolkata"
    DEFAULT_MAX_CALL_ATTEMPTS: int = 3
    DEFAULT_CALL_RETRY_MINUTES: int = 15
    NEEDS_TIME_RETRY_MINUTES: int = 15

    # Real-time channel
    REALTIME_QUEUE_SIZE: int = 100

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


class ReminderConfig:
    """Fixed call-flow constants"""

    # DTMF keys read out in the call script
    DIGIT_CONFIRMED: str = "1"
    DIGIT_NEEDS_TIME: str = "2"

    SUPPORTED_LANGUAGES: list[str] = ["en", "hi", "es", "fr"]
    DEFAULT_LANGUAGE: str = "en"

    # Statuses after which Twilio sends no further callbacks for a call
    TERMINAL_CALL_STATUSES: list[str] = ["completed", "failed", "no-answer", "busy"]
    # Terminal statuses that mean the patient was never reached
    UNREACHED_CALL_STATUSES: list[str] = ["failed", "no-answer", "busy"]

    # Events Twilio should report on the status callback
    STATUS_CALLBACK_EVENTS: list[str] = ["initiated", "ringing", "answered", "completed"]

    # Webhook paths, relative to API_PREFIX
    VOICE_STATUS_PATH: str = "/webhooks/twilio/voice-status"
    VOICE_RESPONSE_PATH: str = "/webhooks/twilio/voice-response"


settings = get_settings()
reminder_config = ReminderConfig()
