"""Host phone verification.

Either strategy can back it: our own code over the SMS gateway, or a code
sent by the identity provider and linked to the account. Which one is used
is a configuration choice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from .confirmation import (
    ConfirmationHandler,
    OutOfBandConfirmationHandler,
    ProviderConfirmationHandler,
)
from .exceptions import (
    ChallengeDeliveryFailed,
    ChallengeNotFound,
    ConfirmationFailed,
    DeliveryStatusUnknown,
    ErrorKind,
    InvalidFlowState,
    VerificationError,
)
from .flow import VerificationFlow, check_code
from .issuers import (
    ChallengeIssuer,
    OutOfBandChallengeIssuer,
    ProviderChallengeIssuer,
    utcnow,
)
from .models import (
    ChallengePurpose,
    PhoneVerificationState,
    StepResult,
    VerificationChallenge,
)
from .phone import mask_for_display

if TYPE_CHECKING:
    from .config import Settings
    from .providers.base import AccountStore, ChallengeStore, IdentityProvider, SmsSender
    from .widget import ChallengeWidgetManager

logger = logging.getLogger(__name__)


def build_strategy(
    settings: Settings,
    *,
    provider: IdentityProvider | None = None,
    challenge_store: ChallengeStore | None = None,
    account_store: AccountStore | None = None,
    sms_sender: SmsSender | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> tuple[ChallengeIssuer, ConfirmationHandler]:
    """Return the issuer/confirmer pair selected by ``phone_verification_strategy``."""
    if settings.phone_verification_strategy == "provider":
        if provider is None:
            raise ValueError("The provider strategy needs an identity provider")
        return (
            ProviderChallengeIssuer(
                provider,
                ChallengePurpose.HOSTING,
                default_country=settings.default_country,
                allow_fictional=settings.allow_fictional_numbers,
                clock=clock,
            ),
            ProviderConfirmationHandler(provider, account_store),
        )

    if challenge_store is None or account_store is None or sms_sender is None:
        raise ValueError("The sms strategy needs a challenge store, an account store and an SMS sender")
    return (
        OutOfBandChallengeIssuer(
            challenge_store,
            sms_sender,
            app_name=settings.app_name,
            ttl=timedelta(minutes=settings.code_ttl_minutes),
            max_attempts=settings.max_attempts,
            delivery_timeout=settings.delivery_timeout_seconds,
            default_country=settings.default_country,
            allow_fictional=settings.allow_fictional_numbers,
            clock=clock,
        ),
        OutOfBandConfirmationHandler(
            challenge_store,
            account_store,
            default_country=settings.default_country,
            allow_fictional=settings.allow_fictional_numbers,
            clock=clock,
        ),
    )


class PhoneVerificationManager(VerificationFlow):
    """Verifies that a host controls a phone number.

    ``IDLE -> AWAITING_CODE -> VERIFYING -> VERIFIED``
    """

    initial_state = PhoneVerificationState.IDLE

    def __init__(
        self,
        account_id: str,
        issuer: ChallengeIssuer,
        confirmer: ConfirmationHandler,
        *,
        widgets: ChallengeWidgetManager | None = None,
        container_id: str = "recaptcha-container",
    ) -> None:
        super().__init__(widgets, container_id)
        self.account_id = account_id
        self._issuer = issuer
        self._confirmer = confirmer
        if issuer.requires_widget and widgets is None:
            raise ValueError("This issuer needs a widget manager")

    async def start(self, phone_number: str) -> StepResult:
        """Send a verification code to ``phone_number``."""
        if self._in_flight or self._state is not PhoneVerificationState.IDLE:
            return self._reject(InvalidFlowState())

        generation = self._begin()
        try:
            widget = self._create_widget() if self._issuer.requires_widget else None
            challenge = await self._issuer.issue(
                phone_number, account_id=self.account_id, widget=widget
            )
        except DeliveryStatusUnknown as e:
            if not self._settle(generation):
                return self._discarded()
            # The code was stored and may still arrive; let the user enter it.
            self._challenge = e.challenge
            self._masked_phone = mask_for_display(e.challenge.phone_number) if e.challenge else None
            return self._fail(PhoneVerificationState.AWAITING_CODE, e)
        except Exception as e:  # noqa: BLE001
            if not self._settle(generation):
                return self._discarded()
            self._discard_challenge()
            return self._fail(
                PhoneVerificationState.IDLE,
                self._boundary_error(e, "issue", ChallengeDeliveryFailed),
            )
        finally:
            self._end(generation)

        if not self._settle(generation):
            return self._discarded()

        self._challenge = challenge
        self._masked_phone = mask_for_display(challenge.phone_number)
        self._transition(PhoneVerificationState.AWAITING_CODE)
        return self._ok()

    async def submit_code(self, code: str, phone_number: str | None = None) -> StepResult:
        """Confirm ``code``; ``phone_number`` defaults to the number it was sent to."""
        if self._in_flight:
            return self._reject(InvalidFlowState())
        if self._state is not PhoneVerificationState.AWAITING_CODE or self._challenge is None:
            return self._reject(ChallengeNotFound())
        try:
            code = check_code(code)
        except VerificationError as e:
            return self._fail(PhoneVerificationState.AWAITING_CODE, e)

        generation = self._begin()
        self._transition(PhoneVerificationState.VERIFYING)
        try:
            return await self._confirm_and_link(generation, self._challenge, code, phone_number)
        finally:
            self._end(generation)

    async def _confirm_and_link(
        self,
        generation: int,
        challenge: VerificationChallenge,
        code: str,
        phone_number: str | None,
    ) -> StepResult:
        try:
            outcome = await self._confirmer.confirm(challenge, code, phone_number=phone_number)
            # Nothing is linked once the flow was cancelled.
            if self._stale(generation):
                return self._discarded()
            outcome = await self._confirmer.finalize(challenge, outcome)
        except Exception as e:  # noqa: BLE001
            if not self._settle(generation):
                return self._discarded()
            error = self._boundary_error(e, "confirm", ConfirmationFailed)
            if error.terminal or error.kind is ErrorKind.CHALLENGE_NOT_FOUND:
                self._discard_challenge()
                return self._fail(PhoneVerificationState.IDLE, error)
            return self._fail(PhoneVerificationState.AWAITING_CODE, error)

        if not self._settle(generation):
            return self._discarded()

        self._discard_challenge()
        self._transition(PhoneVerificationState.VERIFIED)
        return self._ok(outcome.phone_number)

    def cancel(self) -> None:
        """Close the flow; the stored record, if any, simply expires."""
        self._bump_generation()
        self._discard_challenge()
        self._masked_phone = None
        self._transition(PhoneVerificationState.IDLE)
