"""Boundaries to the identity provider, the SMS gateway and durable storage."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import (
        AuthSession,
        DeliveryReceipt,
        EnrolledFactor,
        FactorHint,
        MfaResolverSession,
        PhoneCredential,
        SignInChallenge,
        VerificationChallenge,
    )
    from ..widget import ChallengeWidget


class IdentityProvider(ABC):
    """Second-factor and phone-linking surface of the identity provider."""

    @abstractmethod
    async def current_session(self) -> AuthSession | None:
        """Return the signed-in session, or None."""

    @abstractmethod
    async def begin_enrollment_challenge(
        self, phone_number: str, widget: ChallengeWidget
    ) -> str:
        """Send a code to enroll ``phone_number``; return the verification handle."""

    @abstractmethod
    async def begin_sign_in_challenge(
        self,
        resolver_session: MfaResolverSession,
        hint: FactorHint,
        widget: ChallengeWidget,
    ) -> SignInChallenge:
        """Send a code to the enrolled factor ``hint`` during sign-in."""

    @abstractmethod
    async def begin_link_challenge(
        self, phone_number: str, widget: ChallengeWidget
    ) -> str:
        """Send a code to link ``phone_number`` to the signed-in account."""

    @abstractmethod
    async def confirm(self, handle: str, code: str) -> PhoneCredential:
        """Turn a handle and a submitted code into a phone credential."""

    @abstractmethod
    async def bind_second_factor(
        self, credential: PhoneCredential, label: str
    ) -> EnrolledFactor:
        """Enroll the credential's phone as a named second factor."""

    @abstractmethod
    async def resolve_sign_in(
        self, resolver_session: MfaResolverSession, credential: PhoneCredential
    ) -> AuthSession:
        """Complete a second-factor sign-in."""

    @abstractmethod
    async def link_phone_number(self, credential: PhoneCredential) -> AuthSession:
        """Link the credential's phone to the signed-in account."""

    @abstractmethod
    async def list_enrolled_factors(self) -> list[EnrolledFactor]:
        """Return the second factors enrolled on the signed-in account."""

    @abstractmethod
    def resolver_from_error(self, error: BaseException) -> MfaResolverSession | None:
        """Extract a resolver session from a primary sign-in error, if any."""


class SmsSender(ABC):
    """Outbound SMS gateway."""

    @abstractmethod
    async def send(self, to: str, message: str) -> DeliveryReceipt:
        """Send ``message`` to the E.164 number ``to``."""


class ChallengeStore(ABC):
    """Durable out-of-band challenge records keyed by account id."""

    @abstractmethod
    async def create(self, challenge: VerificationChallenge) -> None:
        """Store a new record, replacing any previous one for the account."""

    @abstractmethod
    async def get(self, account_id: str) -> VerificationChallenge | None:
        """Return the record for the account, or None."""

    @abstractmethod
    async def update(self, account_id: str, *, attempts: int) -> None:
        """Persist the attempt counter."""

    @abstractmethod
    async def delete(self, account_id: str) -> None:
        """Remove the record; no-op when missing."""


class AccountStore(ABC):
    """Account profile writes made on successful verification."""

    @abstractmethod
    async def mark_phone_verified(
        self, account_id: str, phone_number: str, purpose: str
    ) -> None:
        """Record that the account owns ``phone_number`` for ``purpose``."""
