"""Second-factor phone enrollment.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .confirmation import ConfirmationHandler, ProviderConfirmationHandler
from .exceptions import (
    ChallengeDeliveryFailed,
    ChallengeNotFound,
    ConfirmationFailed,
    ErrorKind,
    FactorEnrollmentFailed,
    InvalidFlowState,
    VerificationError,
)
from .flow import VerificationFlow, check_code
from .issuers import ChallengeIssuer, ProviderChallengeIssuer
from .models import (
    ChallengePurpose,
    EnrollmentState,
    StepResult,
    VerificationChallenge,
)
from .phone import mask_for_display, mask_phone

if TYPE_CHECKING:
    from .providers.base import IdentityProvider
    from .widget import ChallengeWidgetManager

logger = logging.getLogger(__name__)

# Provider rejections at bind time that really concern the submitted code.
_CODE_KINDS = frozenset(
    {ErrorKind.INVALID_CODE, ErrorKind.CODE_EXPIRED, ErrorKind.TOO_MANY_ATTEMPTS}
)


class MfaEnrollmentManager(VerificationFlow):
    """Binds a verified phone number as a second factor on the signed-in account.

    ``IDLE -> AWAITING_CODE -> ENROLLING -> ENROLLED | FAILED``
    """

    initial_state = EnrollmentState.IDLE

    def __init__(
        self,
        provider: IdentityProvider,
        widgets: ChallengeWidgetManager,
        *,
        issuer: ChallengeIssuer | None = None,
        confirmer: ConfirmationHandler | None = None,
        label: str = "Primary SMS",
        container_id: str = "recaptcha-container",
        default_country: str = "CA",
        allow_fictional: bool = True,
    ) -> None:
        super().__init__(widgets, container_id)
        self._provider = provider
        self._issuer = issuer or ProviderChallengeIssuer(
            provider,
            ChallengePurpose.ENROLLMENT,
            default_country=default_country,
            allow_fictional=allow_fictional,
        )
        self._confirmer = confirmer or ProviderConfirmationHandler(provider)
        self.label = label

    async def start(self, phone_number: str) -> StepResult:
        """Send an enrollment code to ``phone_number``."""
        if self._in_flight or self._state not in (
            EnrollmentState.IDLE,
            EnrollmentState.FAILED,
        ):
            return self._reject(InvalidFlowState())

        generation = self._begin()
        try:
            widget = self._create_widget()
            challenge = await self._issuer.issue(phone_number, widget=widget)
        except Exception as e:  # noqa: BLE001
            if not self._settle(generation):
                return self._discarded()
            self._discard_challenge()
            return self._fail(
                EnrollmentState.IDLE,
                self._boundary_error(e, "issue", ChallengeDeliveryFailed),
            )
        finally:
            self._end(generation)

        if not self._settle(generation):
            return self._discarded()

        self._challenge = challenge
        self._masked_phone = mask_for_display(challenge.phone_number)
        logger.info("Enrollment code sent to %s", mask_phone(challenge.phone_number))
        self._transition(EnrollmentState.AWAITING_CODE)
        return self._ok()

    async def submit_code(self, code: str) -> StepResult:
        """Confirm ``code`` and bind the phone as a second factor."""
        if self._in_flight:
            return self._reject(InvalidFlowState())
        if self._state is not EnrollmentState.AWAITING_CODE or self._challenge is None:
            return self._reject(ChallengeNotFound())
        try:
            code = check_code(code)
        except VerificationError as e:
            return self._fail(EnrollmentState.AWAITING_CODE, e)

        generation = self._begin()
        self._transition(EnrollmentState.ENROLLING)
        try:
            return await self._confirm_and_bind(generation, self._challenge, code)
        finally:
            self._end(generation)

    async def _confirm_and_bind(
        self, generation: int, challenge: VerificationChallenge, code: str
    ) -> StepResult:
        try:
            outcome = await self._confirmer.confirm(challenge, code)
            # Nothing is bound once the flow was cancelled.
            if self._stale(generation):
                return self._discarded()
            outcome = await self._confirmer.finalize(challenge, outcome)
        except Exception as e:  # noqa: BLE001
            if not self._settle(generation):
                return self._discarded()
            return self._confirmation_failed(
                self._boundary_error(e, "confirm", ConfirmationFailed)
            )

        try:
            factor = await self._provider.bind_second_factor(outcome.credential, self.label)
        except Exception as e:  # noqa: BLE001
            if not self._settle(generation):
                return self._discarded()
            mapped = self._boundary_error(e, "confirm", FactorEnrollmentFailed)
            if mapped.kind in _CODE_KINDS:
                return self._confirmation_failed(mapped)
            if mapped.kind is ErrorKind.CONFIRMATION_FAILED:
                mapped = FactorEnrollmentFailed(code=mapped.code, details=mapped.details)
            # No automatic retry: the user restarts from IDLE.
            self._discard_challenge()
            return self._fail(EnrollmentState.FAILED, mapped)

        if not self._settle(generation):
            return self._discarded()

        self._discard_challenge()
        logger.info("Enrollment completed")
        self._transition(EnrollmentState.ENROLLED)
        return self._ok(factor)

    def cancel(self) -> None:
        """Abandon the flow; late provider results are ignored."""
        self._bump_generation()
        self._discard_challenge()
        self._masked_phone = None
        self._transition(EnrollmentState.IDLE)

    def _confirmation_failed(self, error: VerificationError) -> StepResult:
        if error.terminal or error.kind is ErrorKind.CHALLENGE_NOT_FOUND:
            self._discard_challenge()
            return self._fail(EnrollmentState.IDLE, error)
        return self._fail(EnrollmentState.AWAITING_CODE, error)
