"""Phone verification models package.

Copyright (c) 2025 Popera. All rights reserved.
"""

from .challenge_models import ChallengePurpose, DeliveryReceipt, VerificationChallenge
from .factor_models import (
    AuthSession,
    ConfirmationOutcome,
    EnrolledFactor,
    FactorHint,
    MfaResolverSession,
    PhoneCredential,
    SignInChallenge,
)
from .flow_models import (
    EnrollmentState,
    FlowSnapshot,
    PhoneVerificationState,
    SignInState,
    StepResult,
)

__all__ = [
    # Challenge models
    "ChallengePurpose",
    "DeliveryReceipt",
    "VerificationChallenge",
    # Factor models
    "AuthSession",
    "ConfirmationOutcome",
    "EnrolledFactor",
    "FactorHint",
    "MfaResolverSession",
    "PhoneCredential",
    "SignInChallenge",
    # Flow models
    "EnrollmentState",
    "FlowSnapshot",
    "PhoneVerificationState",
    "SignInState",
    "StepResult",
]
