"""Verification code confirmation strategies.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from .exceptions import (
    ChallengeNotFound,
    CodeExpired,
    ConfirmationFailed,
    InvalidCode,
    InvalidPhoneNumber,
    PhoneMismatch,
    ProviderError,
    ResolverSessionInvalid,
    TooManyAttempts,
    VerificationError,
    map_provider_error,
)
from .issuers import utcnow
from .models import (
    ChallengePurpose,
    ConfirmationOutcome,
    MfaResolverSession,
    VerificationChallenge,
)
from .phone import mask_phone, normalize_e164

if TYPE_CHECKING:
    from .providers.base import AccountStore, ChallengeStore, IdentityProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


class ConfirmationHandler(ABC):
    """Validates a submitted code against its challenge.

    ``confirm`` only checks the code. ``finalize`` applies whatever the
    confirmation unlocks; flows call it after checking they were not
    cancelled in the meantime.
    """

    @abstractmethod
    async def confirm(
        self,
        challenge: VerificationChallenge,
        code: str,
        *,
        phone_number: str | None = None,
    ) -> ConfirmationOutcome:
        """Confirm ``code``; raise a taxonomy error on failure."""

    async def finalize(
        self,
        challenge: VerificationChallenge,
        outcome: ConfirmationOutcome,
        *,
        resolver_session: MfaResolverSession | None = None,
    ) -> ConfirmationOutcome:
        return outcome


class ProviderConfirmationHandler(ConfirmationHandler):
    """Delegates validation to the identity provider.

    Enrollment challenges yield a credential for the caller to bind; sign-in
    challenges are resolved against the resolver session; hosting challenges
    link the phone to the signed-in account.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        account_store: AccountStore | None = None,
    ) -> None:
        self._provider = provider
        self._accounts = account_store

    async def confirm(
        self,
        challenge: VerificationChallenge,
        code: str,
        *,
        phone_number: str | None = None,
    ) -> ConfirmationOutcome:
        try:
            credential = await self._provider.confirm(challenge.handle, code)
        except ProviderError as e:
            logger.warning("Code confirmation rejected by provider: %s", e.code)
            raise map_provider_error(e, "confirm") from e
        return ConfirmationOutcome(
            credential=credential, phone_number=challenge.phone_number
        )

    async def finalize(
        self,
        challenge: VerificationChallenge,
        outcome: ConfirmationOutcome,
        *,
        resolver_session: MfaResolverSession | None = None,
    ) -> ConfirmationOutcome:
        try:
            if challenge.purpose is ChallengePurpose.SIGN_IN:
                if resolver_session is None:
                    raise ResolverSessionInvalid()
                session = await self._provider.resolve_sign_in(
                    resolver_session, outcome.credential
                )
                logger.info("Resolved second-factor sign-in")
                return ConfirmationOutcome(credential=outcome.credential, session=session)

            if challenge.purpose is ChallengePurpose.HOSTING:
                session = await self._provider.link_phone_number(outcome.credential)
                phone = session.phone_number or challenge.phone_number
                if self._accounts is not None:
                    await self._accounts.mark_phone_verified(
                        session.account_id, phone, ChallengePurpose.HOSTING.value
                    )
                logger.info("Phone %s linked", mask_phone(phone))
                return ConfirmationOutcome(
                    credential=outcome.credential, session=session, phone_number=phone
                )
        except ProviderError as e:
            logger.warning("Provider rejected the confirmed credential: %s", e.code)
            raise map_provider_error(e, "confirm") from e

        return outcome


class OutOfBandConfirmationHandler(ConfirmationHandler):
    """Checks codes against the stored challenge record for an account."""

    def __init__(
        self,
        store: ChallengeStore,
        account_store: AccountStore,
        *,
        default_country: str = "CA",
        allow_fictional: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._accounts = account_store
        self._default_country = default_country
        self._allow_fictional = allow_fictional
        self._clock = clock

    async def confirm(
        self,
        challenge: VerificationChallenge,
        code: str,
        *,
        phone_number: str | None = None,
    ) -> ConfirmationOutcome:
        account_id = challenge.account_id or challenge.handle
        return await self.verify(account_id, phone_number or challenge.phone_number, code)

    async def verify(
        self, account_id: str, phone_number: str, code: str
    ) -> ConfirmationOutcome:
        """Verify ``code`` for ``account_id`` and mark the phone verified.

        Raises:
            InvalidPhoneNumber: The submitted number is not a valid phone number.
            ChallengeNotFound: No outstanding record for the account.
            CodeExpired: The record expired; it is deleted.
            PhoneMismatch: The number differs from the one the code was sent to.
            TooManyAttempts: The attempt limit was reached; the record is deleted.
            InvalidCode: Wrong code; the attempt is counted.
            ConfirmationFailed: The challenge or account store failed.

        """
        try:
            formatted = normalize_e164(
                phone_number, self._default_country, allow_fictional=self._allow_fictional
            )
        except InvalidPhoneNumber as e:
            raise InvalidPhoneNumber("Invalid phone number format.") from e

        try:
            return await self._check(account_id, formatted, code)
        except VerificationError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.exception("Store failure while verifying %s", mask_phone(formatted))
            raise ConfirmationFailed(details={"error": type(e).__name__}) from e

    async def _check(
        self, account_id: str, formatted: str, code: str
    ) -> ConfirmationOutcome:
        record = await self._store.get(account_id)
        if record is None:
            raise ChallengeNotFound()

        if record.is_expired(self._clock()):
            await self._store.delete(account_id)
            raise CodeExpired()

        if record.phone_number != formatted:
            raise PhoneMismatch()

        if not secrets.compare_digest(
            (record.code or "").encode(), code.strip().encode()
        ):
            attempts = record.attempts + 1
            if attempts >= (record.max_attempts or DEFAULT_MAX_ATTEMPTS):
                await self._store.delete(account_id)
                logger.info("Challenge for %s exhausted after %d attempts", mask_phone(formatted), attempts)
                raise TooManyAttempts()
            await self._store.update(account_id, attempts=attempts)
            raise InvalidCode()

        await self._accounts.mark_phone_verified(account_id, formatted, record.purpose.value)
        await self._store.delete(account_id)
        logger.info("Phone verified successfully: %s", mask_phone(formatted))
        return ConfirmationOutcome(phone_number=formatted)
