"""Second-factor and session models.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class FactorHint(BaseModel):
    """Enrolled factor as reported during a second-factor sign-in."""

    factor_id: str
    masked_phone_number: str | None = None
    display_name: str | None = None
    enrolled_at: datetime | None = None


class MfaResolverSession(BaseModel):
    """Provider record that a primary sign-in still needs a second factor."""

    session_token: str = Field(repr=False)
    enrolled_factor_hints: list[FactorHint] = Field(default_factory=list)
    provider_data: dict[str, Any] = Field(default_factory=dict, repr=False)


class EnrolledFactor(BaseModel):
    """Phone number durably bound to an account as a second factor."""

    factor_id: str
    phone_number: str | None = None
    display_name: str | None = None
    enrolled_at: datetime | None = None

    model_config = {"frozen": True}


class PhoneCredential(BaseModel):
    """Handle and code pair handed back to the provider for validation."""

    handle: str
    code: str = Field(repr=False)


class AuthSession(BaseModel):
    """Authenticated provider session."""

    account_id: str
    id_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    phone_number: str | None = None


class SignInChallenge(BaseModel):
    """Handle and display hint returned when a sign-in challenge is issued."""

    handle: str
    masked_phone_number: str | None = None


class ConfirmationOutcome(BaseModel):
    """What a successful confirmation produced."""

    credential: PhoneCredential | None = None
    session: AuthSession | None = None
    phone_number: str | None = None
