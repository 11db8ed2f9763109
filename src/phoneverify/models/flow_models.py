"""Flow state and result models.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel

from ..exceptions import ErrorKind, VerificationError


class EnrollmentState(str, Enum):
    IDLE = "idle"
    AWAITING_CODE = "awaiting_code"
    ENROLLING = "enrolling"
    ENROLLED = "enrolled"
    FAILED = "failed"


class SignInState(str, Enum):
    CHALLENGE_REQUIRED = "challenge_required"
    AWAITING_CODE = "awaiting_code"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    ABORTED = "aborted"


class PhoneVerificationState(str, Enum):
    IDLE = "idle"
    AWAITING_CODE = "awaiting_code"
    VERIFYING = "verifying"
    VERIFIED = "verified"


class StepResult(BaseModel):
    """Outcome of one flow action, as seen by the presentation layer."""

    ok: bool
    state: str
    error_kind: ErrorKind | None = None
    message: str | None = None
    value: Any | None = None
    masked_phone_number: str | None = None
    discarded: bool = False

    @property
    def retryable(self) -> bool:
        """True when the user may resubmit against the same challenge."""
        return not self.ok and self.error_kind is not None and self.error_kind not in {
            ErrorKind.CODE_EXPIRED,
            ErrorKind.TOO_MANY_ATTEMPTS,
            ErrorKind.RESOLVER_SESSION_INVALID,
            ErrorKind.FACTOR_ENROLLMENT_FAILED,
            ErrorKind.CHALLENGE_NOT_FOUND,
        }

    @classmethod
    def failure(cls, state: Enum, error: VerificationError) -> StepResult:
        return cls(
            ok=False,
            state=state.value,
            error_kind=error.kind,
            message=error.message,
        )


class FlowSnapshot(BaseModel):
    """State broadcast to flow listeners after every transition."""

    state: str
    error_kind: ErrorKind | None = None
    message: str | None = None
    masked_phone_number: str | None = None
