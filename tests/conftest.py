"""Test configuration and common utilities.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest
import respx

from phoneverify import (
    AuthSession,
    ChallengeWidgetManager,
    EnrolledFactor,
    FactorHint,
    HeadlessWidgetHost,
    MfaResolverSession,
    PhoneCredential,
    ProviderError,
    SecondFactorRequired,
    Settings,
    SignInChallenge,
)
from phoneverify.models import DeliveryReceipt, VerificationChallenge
from phoneverify.providers import (
    IdentityProvider,
    InMemoryAccountStore,
    InMemoryChallengeStore,
    SmsSender,
)

if TYPE_CHECKING:
    from collections.abc import Generator

    from phoneverify import ChallengeWidget


class FakeClock:
    """Settable time source."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSmsSender(SmsSender):
    """SMS sender that records messages and can be told to fail or hang."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with: DeliveryReceipt | None = None
        self.raise_with: Exception | None = None
        self.hang = False

    async def send(self, to: str, message: str) -> DeliveryReceipt:
        if self.hang:
            import asyncio

            await asyncio.sleep(3600)
        if self.raise_with is not None:
            raise self.raise_with
        self.sent.append((to, message))
        if self.fail_with is not None:
            return self.fail_with
        return DeliveryReceipt(delivered=True, message_id=f"SM{len(self.sent)}")


class FlakyChallengeStore(InMemoryChallengeStore):
    """In-memory challenge store whose next call to a method can be made to raise."""

    def __init__(self) -> None:
        super().__init__()
        self.fail: dict[str, Exception] = {}

    def _maybe_fail(self, method: str) -> None:
        error = self.fail.pop(method, None)
        if error is not None:
            raise error

    async def create(self, challenge: VerificationChallenge) -> None:
        self._maybe_fail("create")
        await super().create(challenge)

    async def get(self, account_id: str) -> VerificationChallenge | None:
        self._maybe_fail("get")
        return await super().get(account_id)


class FakeIdentityProvider(IdentityProvider):
    """In-process identity provider that validates codes on ``confirm``."""

    def __init__(self) -> None:
        self.session: AuthSession | None = AuthSession(
            account_id="u1", id_token="id-token-u1"
        )
        self.code = "123456"
        self.pending_credentials: set[str] = {"pending-1"}
        self.factors: list[EnrolledFactor] = []
        self.linked_phone: str | None = None
        self.calls: list[str] = []
        self.fail: dict[str, ProviderError] = {}
        self._challenges: dict[str, str] = {}
        self._ids = itertools.count(1)

    def _maybe_fail(self, method: str) -> None:
        self.calls.append(method)
        error = self.fail.pop(method, None)
        if error is not None:
            raise error

    async def current_session(self) -> AuthSession | None:
        return self.session

    async def begin_enrollment_challenge(
        self, phone_number: str, widget: ChallengeWidget
    ) -> str:
        await widget.verify()
        self._maybe_fail("begin_enrollment_challenge")
        handle = f"enroll-{next(self._ids)}"
        self._challenges[handle] = phone_number
        return handle

    async def begin_sign_in_challenge(
        self,
        resolver_session: MfaResolverSession,
        hint: FactorHint,
        widget: ChallengeWidget,
    ) -> SignInChallenge:
        await widget.verify()
        self._maybe_fail("begin_sign_in_challenge")
        if resolver_session.session_token not in self.pending_credentials:
            raise ProviderError("INVALID_MFA_PENDING_CREDENTIAL", "INVALID_MFA_PENDING_CREDENTIAL")
        handle = f"sign-in-{next(self._ids)}"
        self._challenges[handle] = hint.masked_phone_number or ""
        return SignInChallenge(handle=handle, masked_phone_number=hint.masked_phone_number)

    async def begin_link_challenge(
        self, phone_number: str, widget: ChallengeWidget
    ) -> str:
        await widget.verify()
        self._maybe_fail("begin_link_challenge")
        handle = f"link-{next(self._ids)}"
        self._challenges[handle] = phone_number
        return handle

    async def confirm(self, handle: str, code: str) -> PhoneCredential:
        self._maybe_fail("confirm")
        if handle not in self._challenges:
            raise ProviderError("INVALID_SESSION_INFO", "INVALID_SESSION_INFO", status_code=400)
        if code != self.code:
            raise ProviderError("INVALID_CODE", "INVALID_CODE", status_code=400)
        return PhoneCredential(handle=handle, code=code)

    async def bind_second_factor(
        self, credential: PhoneCredential, label: str
    ) -> EnrolledFactor:
        self._maybe_fail("bind_second_factor")
        factor = EnrolledFactor(
            factor_id=f"factor-{next(self._ids)}",
            phone_number=self._challenges.pop(credential.handle),
            display_name=label,
        )
        self.factors.append(factor)
        return factor

    async def resolve_sign_in(
        self, resolver_session: MfaResolverSession, credential: PhoneCredential
    ) -> AuthSession:
        self._maybe_fail("resolve_sign_in")
        if resolver_session.session_token not in self.pending_credentials:
            raise ProviderError("INVALID_MFA_PENDING_CREDENTIAL", "INVALID_MFA_PENDING_CREDENTIAL")
        self.pending_credentials.discard(resolver_session.session_token)
        self._challenges.pop(credential.handle, None)
        self.session = AuthSession(account_id="u1", id_token="id-token-after-mfa")
        return self.session

    async def link_phone_number(self, credential: PhoneCredential) -> AuthSession:
        self._maybe_fail("link_phone_number")
        assert self.session is not None
        self.linked_phone = self._challenges.pop(credential.handle)
        return self.session.model_copy(update={"phone_number": self.linked_phone})

    async def list_enrolled_factors(self) -> list[EnrolledFactor]:
        return list(self.factors)

    def resolver_from_error(self, error: BaseException) -> MfaResolverSession | None:
        if isinstance(error, SecondFactorRequired):
            return error.resolver_session
        return None


@pytest.fixture
def clock() -> FakeClock:
    """Return a settable clock.

    Returns:
        FakeClock: Clock starting at 2025-01-01 12:00 UTC.

    """
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Return settings that ignore the environment.

    Returns:
        Settings: Test configuration.

    """
    return Settings(
        _env_file=None,
        identity_api_key="test-api-key",
        delivery_timeout_seconds=0.05,
        http_retries=0,
    )


@pytest.fixture
def widget_host() -> HeadlessWidgetHost:
    """Return a headless widget host with deterministic tokens."""
    tokens = itertools.count(1)
    return HeadlessWidgetHost(lambda: f"captcha-token-{next(tokens)}")


@pytest.fixture
def widgets(widget_host: HeadlessWidgetHost) -> ChallengeWidgetManager:
    """Return a widget manager bound to the headless host."""
    return ChallengeWidgetManager(widget_host)


@pytest.fixture
def provider() -> FakeIdentityProvider:
    """Return a fake identity provider with a signed-in account ``u1``."""
    return FakeIdentityProvider()


@pytest.fixture
def challenge_store() -> FlakyChallengeStore:
    return FlakyChallengeStore()


@pytest.fixture
def account_store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def sms_sender() -> RecordingSmsSender:
    return RecordingSmsSender()


@pytest.fixture
def resolver_session() -> MfaResolverSession:
    """Sample resolver session with one enrolled phone factor.

    Returns:
        MfaResolverSession: Pending second-factor sign-in.

    """
    return MfaResolverSession(
        session_token="pending-1",
        enrolled_factor_hints=[
            FactorHint(
                factor_id="factor-a",
                masked_phone_number="+*******4567",
                display_name="Primary SMS",
            )
        ],
    )


@pytest.fixture
def mock_responses() -> Generator[Any, None, None]:
    """Mock HTTP responses.

    Yields:
        The mock router for HTTP requests.

    """
    with respx.mock(assert_all_called=False) as router:
        yield router
