"""Verification challenge models.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ChallengePurpose(str, Enum):
    """What a verified phone number will be used for."""

    ENROLLMENT = "enrollment"
    SIGN_IN = "sign_in"
    HOSTING = "hosting"


class VerificationChallenge(BaseModel):
    """One outstanding code-verification attempt."""

    handle: str
    phone_number: str
    purpose: ChallengePurpose = ChallengePurpose.ENROLLMENT
    issued_at: datetime
    expires_at: datetime | None = None
    attempts: int = 0
    max_attempts: int | None = None
    account_id: str | None = None
    # Only set on stored out-of-band records.
    code: str | None = Field(default=None, repr=False)

    def is_expired(self, now: datetime) -> bool:
        """Provider-managed challenges never expire locally."""
        return self.expires_at is not None and now > self.expires_at


class DeliveryReceipt(BaseModel):
    """Result of an SMS send; truthy when the gateway accepted the message.

    ``unknown`` is set when the gateway may still deliver the message.
    """

    delivered: bool
    message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    unknown: bool = False

    def __bool__(self) -> bool:
        return self.delivered
