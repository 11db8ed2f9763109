"""
Exception classes for phone verification.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

__all__ = [
    "ErrorKind",
    "TERMINAL_KINDS",
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
    "NetworkError",
    "create_error_from_response",
    "is_retryable_error",
    "map_provider_error",
    "describe_sms_error",
]


class ErrorKind(str, Enum):
    """Machine-readable failure kinds surfaced to the presentation layer."""

    NO_AUTHENTICATED_SESSION = "no_authenticated_session"
    CHALLENGE_DELIVERY_FAILED = "challenge_delivery_failed"
    DELIVERY_STATUS_UNKNOWN = "delivery_status_unknown"
    INVALID_CODE = "invalid_code"
    CODE_EXPIRED = "code_expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    PHONE_MISMATCH = "phone_mismatch"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    RESOLVER_SESSION_INVALID = "resolver_session_invalid"
    WIDGET_UNAVAILABLE = "widget_unavailable"
    CONFIRMATION_FAILED = "confirmation_failed"
    FACTOR_ENROLLMENT_FAILED = "factor_enrollment_failed"
    INVALID_PHONE_NUMBER = "invalid_phone_number"
    INVALID_FLOW_STATE = "invalid_flow_state"
    PROVIDER_ERROR = "provider_error"


# Kinds that invalidate the current challenge and force a fresh one.
TERMINAL_KINDS = frozenset(
    {
        ErrorKind.CODE_EXPIRED,
        ErrorKind.TOO_MANY_ATTEMPTS,
        ErrorKind.RESOLVER_SESSION_INVALID,
    }
)


class VerificationError(Exception):
    """Base exception for phone verification errors."""

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR
    default_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: Any | None = None,
        status_code: int | None = None,
    ) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        self.code = code or self.kind.value.upper()
        self.details = details
        self.status_code = status_code

    @property
    def terminal(self) -> bool:
        """Whether the error invalidates the current challenge."""
        return self.kind in TERMINAL_KINDS


class NoAuthenticatedSession(VerificationError):
    """Raised when enrollment is attempted without a signed-in account."""

    kind = ErrorKind.NO_AUTHENTICATED_SESSION
    default_message = "Please sign in again before adding a phone number."


class ChallengeDeliveryFailed(VerificationError):
    """Raised when a verification code could not be sent."""

    kind = ErrorKind.CHALLENGE_DELIVERY_FAILED
    default_message = "Failed to send verification code. Please try again."


class DeliveryStatusUnknown(ChallengeDeliveryFailed):
    """Raised when the SMS gateway did not answer in time.

    The challenge stays valid: the code may still arrive.
    """

    kind = ErrorKind.DELIVERY_STATUS_UNKNOWN
    default_message = (
        "We could not confirm that your code was sent. "
        "If it does not arrive, please request a new code."
    )

    def __init__(
        self,
        message: str | None = None,
        *,
        challenge: Any | None = None,
        details: Any | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.challenge = challenge


class InvalidCode(VerificationError):
    """Raised when the submitted code does not match."""

    kind = ErrorKind.INVALID_CODE
    default_message = "Invalid verification code. Please try again."


class CodeExpired(VerificationError):
    """Raised when the challenge has expired."""

    kind = ErrorKind.CODE_EXPIRED
    default_message = "Verification code expired. Please request a new code."


class TooManyAttempts(VerificationError):
    """Raised when the attempt limit for a challenge is exhausted."""

    kind = ErrorKind.TOO_MANY_ATTEMPTS
    default_message = "Too many failed attempts. Please request a new code."


class PhoneMismatch(VerificationError):
    """Raised when the confirmed number differs from the challenged one."""

    kind = ErrorKind.PHONE_MISMATCH
    default_message = "Phone number mismatch. Please use the same number you verified."


class ChallengeNotFound(VerificationError):
    """Raised when there is no outstanding challenge to confirm."""

    kind = ErrorKind.CHALLENGE_NOT_FOUND
    default_message = "Verification code not found. Please request a new code."


class ResolverSessionInvalid(VerificationError):
    """Raised when the provider rejects the second-factor sign-in session."""

    kind = ErrorKind.RESOLVER_SESSION_INVALID
    default_message = "Your sign-in session has expired. Please sign in again."


class WidgetUnavailable(VerificationError):
    """Raised when the anti-automation widget cannot be rendered or reused."""

    kind = ErrorKind.WIDGET_UNAVAILABLE
    default_message = "Security check could not be loaded. Please refresh and try again."


class ConfirmationFailed(VerificationError):
    """Raised for confirmation failures without a more specific kind."""

    kind = ErrorKind.CONFIRMATION_FAILED
    default_message = "We couldn't verify your code. Please restart verification."


class FactorEnrollmentFailed(VerificationError):
    """Raised when a confirmed phone could not be bound as a second factor."""

    kind = ErrorKind.FACTOR_ENROLLMENT_FAILED
    default_message = "We couldn't add this phone number to your account. Please start again."


class InvalidPhoneNumber(VerificationError):
    """Raised when a phone number cannot be normalized to E.164."""

    kind = ErrorKind.INVALID_PHONE_NUMBER
    default_message = "Please enter a valid phone number for your selected country."


class InvalidFlowState(VerificationError):
    """Raised when an action is not allowed in the current flow state."""

    kind = ErrorKind.INVALID_FLOW_STATE
    default_message = "Please wait for the current step to finish."


class SecondFactorRequired(VerificationError):
    """Raised by a primary sign-in that needs a second factor.

    Carries the provider's resolver session.
    """

    default_message = "A second verification step is required."

    def __init__(self, resolver_session: Any, message: str | None = None) -> None:
        super().__init__(message, code="MFA_REQUIRED")
        self.resolver_session = resolver_session


class ProviderError(VerificationError):
    """Raw failure reported by an external provider.

    Never shown to end users; mapped with :func:`map_provider_error`.
    """

    kind = ErrorKind.PROVIDER_ERROR


class NetworkError(ProviderError):
    """Raised when a network error occurs."""

    def __init__(
        self, message: str = "Network error", details: Any | None = None
    ) -> None:
        super().__init__(message, "NETWORK_ERROR", details)


class TimeoutError(ProviderError):  # noqa: A001
    """Raised when a request times out."""

    def __init__(
        self, message: str = "Request timeout", details: Any | None = None
    ) -> None:
        super().__init__(message, "TIMEOUT_ERROR", details)


def _provider_code(error_response: dict[str, Any]) -> str:
    # Identity Toolkit puts the symbolic code in "message" ("INVALID_CODE : ..."),
    # Twilio puts a numeric code in "code".
    message = error_response.get("message")
    if isinstance(message, str):
        head = message.split(":", 1)[0].strip()
        if head and head.replace("_", "").isalnum() and head.upper() == head:
            return head
    code = error_response.get("code")
    return str(code) if code is not None else "UNKNOWN_ERROR"


def create_error_from_response(
    status_code: int,
    error_response: dict[str, Any] | None = None,
    default_message: str | None = None,
) -> ProviderError:
    """Create a provider error from an HTTP status code and error payload."""
    error_response = error_response or {}
    message = error_response.get("message", default_message or "An error occurred")
    message_str = str(message) if message is not None else "An error occurred"
    return ProviderError(
        message_str,
        _provider_code(error_response),
        error_response,
        status_code,
    )


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable (network errors and 5xx server errors)."""
    if isinstance(error, (NetworkError, TimeoutError)):
        return True

    if isinstance(error, ProviderError) and error.status_code:
        return error.status_code >= 500

    return False


_ISSUE_ERRORS: dict[str, type[VerificationError]] = {
    "INVALID_ID_TOKEN": NoAuthenticatedSession,
    "TOKEN_EXPIRED": NoAuthenticatedSession,
    "USER_NOT_FOUND": NoAuthenticatedSession,
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": NoAuthenticatedSession,
    "INVALID_MFA_PENDING_CREDENTIAL": ResolverSessionInvalid,
    "MISSING_MFA_PENDING_CREDENTIAL": ResolverSessionInvalid,
    "MFA_ENROLLMENT_NOT_FOUND": ResolverSessionInvalid,
}

_ISSUE_MESSAGES: dict[str, str] = {
    "INVALID_PHONE_NUMBER": "Invalid phone number. Please enter a valid phone number.",
    "MISSING_PHONE_NUMBER": "Invalid phone number. Please enter a valid phone number.",
    "OPERATION_NOT_ALLOWED": "Phone verification is disabled. Please contact support.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many requests. Please wait a moment and try again.",
    "QUOTA_EXCEEDED": "Too many requests. Please wait a moment and try again.",
    "CAPTCHA_CHECK_FAILED": "Security check failed. Please try again.",
    "INVALID_RECAPTCHA_TOKEN": "Security check failed. Please try again.",
    "SECOND_FACTOR_EXISTS": "This phone number is already a second factor on your account.",
}

_CONFIRM_ERRORS: dict[str, type[VerificationError]] = {
    "INVALID_CODE": InvalidCode,
    "MISSING_CODE": InvalidCode,
    "SESSION_EXPIRED": CodeExpired,
    "CODE_EXPIRED": CodeExpired,
    "TOO_MANY_ATTEMPTS_TRY_LATER": TooManyAttempts,
    "INVALID_MFA_PENDING_CREDENTIAL": ResolverSessionInvalid,
    "MISSING_MFA_PENDING_CREDENTIAL": ResolverSessionInvalid,
    "INVALID_ID_TOKEN": NoAuthenticatedSession,
    "TOKEN_EXPIRED": NoAuthenticatedSession,
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": NoAuthenticatedSession,
    "SECOND_FACTOR_EXISTS": FactorEnrollmentFailed,
    "SECOND_FACTOR_LIMIT_EXCEEDED": FactorEnrollmentFailed,
    "UNVERIFIED_EMAIL": FactorEnrollmentFailed,
}


def map_provider_error(error: Exception, phase: str = "confirm") -> VerificationError:
    """Map a raw provider failure onto the verification taxonomy.

    Args:
        error: The error raised by a provider call
        phase: ``"issue"`` for code issuance, ``"confirm"`` for confirmation

    Returns:
        A taxonomy error safe to show to end users.

    """
    if isinstance(error, VerificationError) and not isinstance(error, ProviderError):
        return error

    code = getattr(error, "code", None) or "UNKNOWN_ERROR"
    if phase == "issue":
        error_cls = _ISSUE_ERRORS.get(code)
        if error_cls is not None:
            return error_cls(code=code, details=getattr(error, "details", None))
        return ChallengeDeliveryFailed(
            _ISSUE_MESSAGES.get(code),
            code=code,
            details=getattr(error, "details", None),
        )

    error_cls = _CONFIRM_ERRORS.get(code, ConfirmationFailed)
    return error_cls(code=code, details=getattr(error, "details", None))


_SMS_ERROR_MESSAGES: dict[int, str] = {
    21211: "Invalid phone number format. Please check and try again.",
    21214: "This phone number cannot receive SMS messages.",
    21408: "SMS delivery to this region is not currently available. Please contact support.",
    21610: "SMS delivery to this region is not currently available. Please contact support.",
    21612: "This phone number appears to be invalid or not a mobile number.",
    21614: "This phone number appears to be invalid or not a mobile number.",
    30003: "Unable to deliver SMS to this number. Please verify it's a mobile number.",
    30005: "Unable to deliver SMS to this number. Please verify it's a mobile number.",
    30006: "Unable to deliver SMS to this number. Please verify it's a mobile number.",
}


def describe_sms_error(error_code: int | str | None) -> str:
    """Return a user-facing sentence for an SMS gateway error code."""
    try:
        code = int(error_code) if error_code is not None else None
    except (TypeError, ValueError):
        code = None
    return _SMS_ERROR_MESSAGES.get(code, "Failed to send SMS. Please try again later.")
