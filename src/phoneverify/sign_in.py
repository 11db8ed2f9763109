"""Second-factor resolution during sign-in.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .confirmation import ConfirmationHandler, ProviderConfirmationHandler
from .exceptions import (
    ChallengeDeliveryFailed,
    ChallengeNotFound,
    ConfirmationFailed,
    ErrorKind,
    InvalidFlowState,
    ResolverSessionInvalid,
    VerificationError,
)
from .flow import VerificationFlow, check_code
from .issuers import ChallengeIssuer, ProviderChallengeIssuer
from .models import (
    ChallengePurpose,
    MfaResolverSession,
    SignInState,
    StepResult,
    VerificationChallenge,
)

if TYPE_CHECKING:
    from .providers.base import IdentityProvider
    from .widget import ChallengeWidgetManager

logger = logging.getLogger(__name__)


class MfaSignInResolver(VerificationFlow):
    """Satisfies a second-factor requirement raised by a primary sign-in.

    ``CHALLENGE_REQUIRED -> AWAITING_CODE -> RESOLVING -> RESOLVED | ABORTED``

    The first enrolled factor hint is always used.
    """

    initial_state = SignInState.CHALLENGE_REQUIRED

    def __init__(
        self,
        provider: IdentityProvider,
        widgets: ChallengeWidgetManager,
        resolver_session: MfaResolverSession,
        *,
        issuer: ChallengeIssuer | None = None,
        confirmer: ConfirmationHandler | None = None,
        container_id: str = "mfa-sign-in-recaptcha",
    ) -> None:
        super().__init__(widgets, container_id)
        self._provider = provider
        self._resolver_session: MfaResolverSession | None = resolver_session
        self._issuer = issuer or ProviderChallengeIssuer(provider, ChallengePurpose.SIGN_IN)
        self._confirmer = confirmer or ProviderConfirmationHandler(provider)

    @classmethod
    def from_error(
        cls,
        error: BaseException,
        provider: IdentityProvider,
        widgets: ChallengeWidgetManager,
        **kwargs: Any,
    ) -> MfaSignInResolver | None:
        """Build a resolver for a rejected primary sign-in.

        Returns:
            A resolver, or None when the error is not a second-factor
            requirement (the caller handles the error as usual).

        """
        resolver_session = provider.resolver_from_error(error)
        if resolver_session is None:
            return None
        logger.info("Sign-in second factor required")
        return cls(provider, widgets, resolver_session, **kwargs)

    @property
    def resolver_session(self) -> MfaResolverSession | None:
        return self._resolver_session

    @property
    def masked_phone_number(self) -> str | None:
        return self._masked_phone

    async def start(self) -> StepResult:
        """Send a code to the first enrolled factor."""
        if self._in_flight or self._state is not SignInState.CHALLENGE_REQUIRED:
            return self._reject(InvalidFlowState())
        if self._resolver_session is None:
            return self._abort(ResolverSessionInvalid())

        generation = self._begin()
        try:
            widget = self._create_widget()
            challenge = await self._issuer.issue(
                resolver_session=self._resolver_session, widget=widget
            )
        except Exception as e:  # noqa: BLE001
            if not self._settle(generation):
                return self._discarded()
            error = self._boundary_error(e, "issue", ChallengeDeliveryFailed)
            if error.kind is ErrorKind.RESOLVER_SESSION_INVALID:
                return self._abort(error)
            self._discard_challenge()
            return self._fail(SignInState.CHALLENGE_REQUIRED, error)
        finally:
            self._end(generation)

        if not self._settle(generation):
            return self._discarded()

        self._challenge = challenge
        self._masked_phone = challenge.phone_number or None
        logger.info("SMS code sent for sign-in")
        self._transition(SignInState.AWAITING_CODE)
        return self._ok()

    async def resend(self) -> StepResult:
        """Issue a fresh code on a fresh widget."""
        if self._in_flight or self._state is not SignInState.AWAITING_CODE:
            return self._reject(InvalidFlowState())
        self._discard_challenge()
        self._transition(SignInState.CHALLENGE_REQUIRED)
        return await self.start()

    async def submit_code(self, code: str) -> StepResult:
        """Confirm ``code`` against the resolver session."""
        if self._in_flight:
            return self._reject(InvalidFlowState())
        if (
            self._state is not SignInState.AWAITING_CODE
            or self._challenge is None
            or self._resolver_session is None
        ):
            return self._reject(ChallengeNotFound())
        try:
            code = check_code(code)
        except VerificationError as e:
            return self._fail(SignInState.AWAITING_CODE, e)

        generation = self._begin()
        self._transition(SignInState.RESOLVING)
        try:
            return await self._confirm_and_resolve(generation, self._challenge, code)
        finally:
            self._end(generation)

    async def _confirm_and_resolve(
        self, generation: int, challenge: VerificationChallenge, code: str
    ) -> StepResult:
        try:
            outcome = await self._confirmer.confirm(challenge, code)
            # The resolver session is not spent once the flow was cancelled.
            if self._stale(generation):
                return self._discarded()
            outcome = await self._confirmer.finalize(
                challenge, outcome, resolver_session=self._resolver_session
            )
        except Exception as e:  # noqa: BLE001
            if not self._settle(generation):
                return self._discarded()
            error = self._boundary_error(e, "confirm", ConfirmationFailed)
            if error.kind is ErrorKind.RESOLVER_SESSION_INVALID:
                return self._abort(error)
            if error.terminal:
                self._discard_challenge()
                return self._fail(SignInState.CHALLENGE_REQUIRED, error)
            return self._fail(SignInState.AWAITING_CODE, error)

        if not self._settle(generation):
            return self._discarded()

        # The resolver session is single-use.
        self._resolver_session = None
        self._discard_challenge()
        logger.info("MFA sign-in successful")
        self._transition(SignInState.RESOLVED)
        return self._ok(outcome.session)

    def cancel(self) -> None:
        """Abort without contacting the provider again."""
        self._bump_generation()
        self._discard_challenge()
        self._resolver_session = None
        self._transition(SignInState.ABORTED)

    def _abort(self, error: VerificationError) -> StepResult:
        self._discard_challenge()
        self._resolver_session = None
        return self._fail(SignInState.ABORTED, error)
