"""
Phone verification

Phone-based identity verification for the marketplace: second-factor
enrollment, second-factor sign-in resolution and host phone verification,
over an identity provider or an SMS gateway.
"""

from .client import PhoneVerificationClient
from .config import Settings, get_settings
from .confirmation import (
    ConfirmationHandler,
    OutOfBandConfirmationHandler,
    ProviderConfirmationHandler,
)
from .enrollment import MfaEnrollmentManager
from .exceptions import *
from .hosting import PhoneVerificationManager, build_strategy
from .issuers import (
    ChallengeIssuer,
    OutOfBandChallengeIssuer,
    ProviderChallengeIssuer,
    generate_code,
)
from .models import *
from .sign_in import MfaSignInResolver
from .widget import (
    ChallengeWidget,
    ChallengeWidgetManager,
    HeadlessWidgetHost,
    WidgetHost,
    WidgetState,
)

__version__ = "1.0.0"

__all__ = [
    "PhoneVerificationClient",
    "Settings",
    "get_settings",
    # Flows
    "MfaEnrollmentManager",
    "MfaSignInResolver",
    "PhoneVerificationManager",
    "build_strategy",
    # Strategies
    "ChallengeIssuer",
    "ProviderChallengeIssuer",
    "OutOfBandChallengeIssuer",
    "ConfirmationHandler",
    "ProviderConfirmationHandler",
    "OutOfBandConfirmationHandler",
    "generate_code",
    # Widget
    "ChallengeWidget",
    "ChallengeWidgetManager",
    "HeadlessWidgetHost",
    "WidgetHost",
    "WidgetState",
    # Exceptions
    "ErrorKind",
    "VerificationError",
    "NoAuthenticatedSession",
    "ChallengeDeliveryFailed",
    "DeliveryStatusUnknown",
    "InvalidCode",
    "CodeExpired",
    "TooManyAttempts",
    "PhoneMismatch",
    "ChallengeNotFound",
    "ResolverSessionInvalid",
    "WidgetUnavailable",
    "ConfirmationFailed",
    "FactorEnrollmentFailed",
    "InvalidPhoneNumber",
    "InvalidFlowState",
    "SecondFactorRequired",
    "ProviderError",
    # Models
    "AuthSession",
    "ChallengePurpose",
    "ConfirmationOutcome",
    "DeliveryReceipt",
    "EnrolledFactor",
    "EnrollmentState",
    "FactorHint",
    "FlowSnapshot",
    "MfaResolverSession",
    "PhoneCredential",
    "PhoneVerificationState",
    "SignInChallenge",
    "SignInState",
    "StepResult",
    "VerificationChallenge",
]
