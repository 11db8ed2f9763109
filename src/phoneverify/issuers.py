"""Verification code issuance strategies.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from .exceptions import (
    ChallengeDeliveryFailed,
    DeliveryStatusUnknown,
    NoAuthenticatedSession,
    ProviderError,
    ResolverSessionInvalid,
    TimeoutError as ProviderTimeoutError,
    WidgetUnavailable,
    map_provider_error,
)
from .models import ChallengePurpose, MfaResolverSession, VerificationChallenge
from .phone import mask_phone, normalize_e164

if TYPE_CHECKING:
    from .providers.base import ChallengeStore, IdentityProvider, SmsSender
    from .widget import ChallengeWidget

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    """Return a 6-digit code drawn uniformly from [100000, 999999]."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


class ChallengeIssuer(ABC):
    """Requests that a one-time code be sent to a phone number."""

    requires_widget: bool = False

    @abstractmethod
    async def issue(
        self,
        phone_number: str | None = None,
        *,
        account_id: str | None = None,
        resolver_session: MfaResolverSession | None = None,
        widget: ChallengeWidget | None = None,
    ) -> VerificationChallenge:
        """Issue a challenge and return its handle-bearing record."""


class ProviderChallengeIssuer(ChallengeIssuer):
    """Codes sent by the identity provider itself.

    With a resolver session the challenge targets the session's first enrolled
    factor; otherwise it enrolls (or, for ``HOSTING``, links) ``phone_number``
    on the signed-in account.
    """

    requires_widget = True

    def __init__(
        self,
        provider: IdentityProvider,
        purpose: ChallengePurpose = ChallengePurpose.ENROLLMENT,
        *,
        default_country: str = "CA",
        allow_fictional: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._provider = provider
        self.purpose = purpose
        self._default_country = default_country
        self._allow_fictional = allow_fictional
        self._clock = clock

    async def issue(
        self,
        phone_number: str | None = None,
        *,
        account_id: str | None = None,
        resolver_session: MfaResolverSession | None = None,
        widget: ChallengeWidget | None = None,
    ) -> VerificationChallenge:
        if widget is None or not widget.live:
            raise WidgetUnavailable()

        try:
            if resolver_session is not None:
                return await self._issue_sign_in(resolver_session, widget)

            phone = normalize_e164(
                phone_number or "", self._default_country, allow_fictional=self._allow_fictional
            )
            if await self._provider.current_session() is None:
                raise NoAuthenticatedSession()

            logger.info("Sending %s code to %s", self.purpose.value, mask_phone(phone))
            if self.purpose is ChallengePurpose.HOSTING:
                handle = await self._provider.begin_link_challenge(phone, widget)
            else:
                handle = await self._provider.begin_enrollment_challenge(phone, widget)
        except ProviderError as e:
            logger.warning("Code issuance rejected by provider: %s", e.code)
            raise map_provider_error(e, "issue") from e

        return VerificationChallenge(
            handle=handle,
            phone_number=phone,
            purpose=self.purpose,
            issued_at=self._clock(),
            account_id=account_id,
        )

    async def _issue_sign_in(
        self, resolver_session: MfaResolverSession, widget: ChallengeWidget
    ) -> VerificationChallenge:
        # TODO: let the user pick a factor once accounts can hold more than one.
        hints = resolver_session.enrolled_factor_hints
        if not hints:
            raise ResolverSessionInvalid()
        started = await self._provider.begin_sign_in_challenge(
            resolver_session, hints[0], widget
        )
        logger.info("SMS sent for sign-in")
        return VerificationChallenge(
            handle=started.handle,
            phone_number=started.masked_phone_number or "",
            purpose=ChallengePurpose.SIGN_IN,
            issued_at=self._clock(),
        )


class OutOfBandChallengeIssuer(ChallengeIssuer):
    """Codes generated and stored here, delivered through an SMS gateway."""

    def __init__(
        self,
        store: ChallengeStore,
        sms_sender: SmsSender,
        *,
        app_name: str = "Popera",
        ttl: timedelta = timedelta(minutes=10),
        max_attempts: int = 5,
        delivery_timeout: float = 15.0,
        default_country: str = "CA",
        allow_fictional: bool = True,
        purpose: ChallengePurpose = ChallengePurpose.HOSTING,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._sms = sms_sender
        self._app_name = app_name
        self._ttl = ttl
        self._max_attempts = max_attempts
        self._delivery_timeout = delivery_timeout
        self._default_country = default_country
        self._allow_fictional = allow_fictional
        self.purpose = purpose
        self._clock = clock

    def _message(self, code: str) -> str:
        minutes = int(self._ttl.total_seconds() // 60)
        return f"Your {self._app_name} verification code is: {code}. Valid for {minutes} minutes."

    async def issue(
        self,
        phone_number: str | None = None,
        *,
        account_id: str | None = None,
        resolver_session: MfaResolverSession | None = None,
        widget: ChallengeWidget | None = None,
    ) -> VerificationChallenge:
        if not account_id:
            raise ValueError("account_id is required for out-of-band verification")
        phone = normalize_e164(
            phone_number or "", self._default_country, allow_fictional=self._allow_fictional
        )

        now = self._clock()
        record = VerificationChallenge(
            handle=account_id,
            account_id=account_id,
            phone_number=phone,
            purpose=self.purpose,
            issued_at=now,
            expires_at=now + self._ttl,
            attempts=0,
            max_attempts=self._max_attempts,
            code=generate_code(),
        )
        try:
            await self._store.create(record)
        except Exception as e:  # noqa: BLE001
            logger.exception("Could not store verification code for %s", mask_phone(phone))
            raise ChallengeDeliveryFailed(details={"error": type(e).__name__}) from e
        logger.debug("Verification code stored for %s", mask_phone(phone))
        challenge = record.model_copy(update={"code": None})

        try:
            receipt = await asyncio.wait_for(
                self._sms.send(phone, self._message(record.code or "")),
                timeout=self._delivery_timeout,
            )
        except (asyncio.TimeoutError, ProviderTimeoutError) as e:
            # The record stays: the gateway may still deliver the code.
            logger.warning("SMS delivery to %s timed out", mask_phone(phone))
            raise DeliveryStatusUnknown(challenge=challenge) from e
        except Exception as e:  # noqa: BLE001
            logger.exception("SMS sender failed for %s", mask_phone(phone))
            await self._discard(account_id)
            raise ChallengeDeliveryFailed(details={"error": type(e).__name__}) from e

        if receipt.unknown:
            logger.warning(
                "SMS delivery to %s unconfirmed: %s", mask_phone(phone), receipt.error_code
            )
            raise DeliveryStatusUnknown(challenge=challenge)

        if not receipt:
            await self._discard(account_id)
            logger.warning(
                "SMS send to %s failed: %s", mask_phone(phone), receipt.error_code
            )
            raise ChallengeDeliveryFailed(
                receipt.error_message, code=receipt.error_code
            )

        logger.info("Verification code sent to %s", mask_phone(phone))
        return challenge

    async def _discard(self, account_id: str) -> None:
        try:
            await self._store.delete(account_id)
        except Exception:  # noqa: BLE001
            # Left to expire with its TTL.
            logger.exception("Could not delete undelivered code for %s", account_id)
