"""Phone verification client using service composition.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Self

from redis.asyncio import Redis

from .config import Settings, get_settings
from .enrollment import MfaEnrollmentManager
from .hosting import PhoneVerificationManager, build_strategy
from .issuers import utcnow
from .providers.base import AccountStore, ChallengeStore, IdentityProvider, SmsSender
from .providers.identity_toolkit import IdentityToolkitProvider
from .providers.memory import InMemoryAccountStore, InMemoryChallengeStore
from .providers.redis_store import RedisChallengeStore
from .providers.sms import ConsoleSmsSender, TwilioSmsSender
from .sign_in import MfaSignInResolver
from .widget import ChallengeWidgetManager, HeadlessWidgetHost, WidgetHost

logger = logging.getLogger(__name__)


class PhoneVerificationClient:
    """Owns the shared resources and hands out verification flows.

    The widget manager and the provider session are process-wide; build one
    client per process and get flows from it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider: IdentityProvider | None = None,
        widget_host: WidgetHost | None = None,
        challenge_store: ChallengeStore | None = None,
        account_store: AccountStore | None = None,
        sms_sender: SmsSender | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Configuration; read from the environment when omitted
            provider: Identity provider; Identity Toolkit when omitted
            widget_host: Host rendering anti-automation widgets
            challenge_store: Out-of-band record store; Redis when
                ``redis_url`` is set, in-memory otherwise
            account_store: Profile store updated on successful verification
            sms_sender: SMS gateway; Twilio when configured, console otherwise
            clock: Time source for challenge expiry

        """
        self.settings = settings or get_settings()
        self._clock = clock
        self._owned: list[Any] = []

        if provider is None:
            provider = IdentityToolkitProvider(
                self.settings.identity_api_key,
                self.settings.identity_base_url,
                timeout=self.settings.http_timeout,
                retries=self.settings.http_retries,
            )
            self._owned.append(provider)
        self.provider = provider

        self.widgets = ChallengeWidgetManager(
            widget_host or HeadlessWidgetHost(),
            self.settings.widget_container_id,
        )

        self._redis: Redis | None = None
        if challenge_store is None:
            if self.settings.redis_url:
                self._redis = Redis.from_url(self.settings.redis_url)
                challenge_store = RedisChallengeStore(self._redis)
            else:
                challenge_store = InMemoryChallengeStore()
        self.challenge_store = challenge_store
        self.account_store = account_store or InMemoryAccountStore()

        if sms_sender is None:
            if self.settings.twilio_configured:
                sms_sender = TwilioSmsSender(
                    self.settings.twilio_account_sid,
                    self.settings.twilio_auth_token,
                    from_number=self.settings.twilio_phone_number or None,
                    messaging_service_sid=self.settings.twilio_messaging_service_sid or None,
                    base_url=self.settings.twilio_base_url,
                    timeout=self.settings.delivery_timeout_seconds,
                )
                self._owned.append(sms_sender)
            else:
                logger.warning("Twilio not configured. SMS verification codes will not be delivered.")
                sms_sender = ConsoleSmsSender()
        self.sms_sender = sms_sender

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Tear down the widget and close the clients this instance created."""
        self.widgets.reset()
        for resource in self._owned:
            await resource.close()
        self._owned.clear()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def enrollment(self) -> MfaEnrollmentManager:
        """Return a flow adding a phone second factor to the signed-in account."""
        return MfaEnrollmentManager(
            self.provider,
            self.widgets,
            label=self.settings.enrollment_label,
            container_id=self.settings.widget_container_id,
            default_country=self.settings.default_country,
            allow_fictional=self.settings.allow_fictional_numbers,
        )

    def sign_in_resolver(self, error: BaseException) -> MfaSignInResolver | None:
        """Return a resolver for a rejected sign-in, or None when not applicable."""
        return MfaSignInResolver.from_error(
            error,
            self.provider,
            self.widgets,
            container_id=self.settings.sign_in_widget_container_id,
        )

    def phone_verification(self, account_id: str) -> PhoneVerificationManager:
        """Return a host phone verification flow for ``account_id``."""
        issuer, confirmer = build_strategy(
            self.settings,
            provider=self.provider,
            challenge_store=self.challenge_store,
            account_store=self.account_store,
            sms_sender=self.sms_sender,
            clock=self._clock,
        )
        return PhoneVerificationManager(
            account_id,
            issuer,
            confirmer,
            widgets=self.widgets,
            container_id=self.settings.widget_container_id,
        )
