"""Settings for phone verification.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from ``PHONEVERIFY_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PHONEVERIFY_",
        extra="ignore",
    )

    app_name: str = "Popera"

    code_ttl_minutes: int = 10
    max_attempts: int = 5
    delivery_timeout_seconds: float = 15.0
    default_country: str = "CA"
    # accept North American 555 numbers used by test accounts
    allow_fictional_numbers: bool = True

    # "sms" sends our own code through the SMS gateway, "provider" links the
    # phone through the identity provider
    phone_verification_strategy: Literal["sms", "provider"] = "sms"
    enrollment_label: str = "Primary SMS"
    widget_container_id: str = "recaptcha-container"
    sign_in_widget_container_id: str = "mfa-sign-in-recaptcha"

    # values must come from environment/.env to avoid hardcoding secrets
    identity_api_key: str = ""
    identity_base_url: str = "https://identitytoolkit.googleapis.com"

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_messaging_service_sid: str = ""
    twilio_base_url: str = "https://api.twilio.com"

    http_timeout: float = 30.0
    http_retries: int = 3

    redis_url: str = ""

    @property
    def twilio_configured(self) -> bool:
        has_sender = bool(self.twilio_messaging_service_sid or self.twilio_phone_number)
        return bool(self.twilio_account_sid and self.twilio_auth_token and has_sender)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
