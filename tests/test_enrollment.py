"""Tests for second-factor phone enrollment."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from phoneverify import (
    ChallengeWidgetManager,
    EnrolledFactor,
    EnrollmentState,
    ErrorKind,
    HeadlessWidgetHost,
    MfaEnrollmentManager,
    ProviderError,
)

if TYPE_CHECKING:
    from conftest import FakeIdentityProvider


@pytest.fixture
def manager(
    provider: FakeIdentityProvider, widgets: ChallengeWidgetManager
) -> MfaEnrollmentManager:
    return MfaEnrollmentManager(provider, widgets)


class TestEnrollmentStart:
    """Test cases for MfaEnrollmentManager.start."""

    async def test_start_sends_code(
        self,
        manager: MfaEnrollmentManager,
        widget_host: HeadlessWidgetHost,
    ) -> None:
        """Test that a valid number moves the flow to AWAITING_CODE."""
        result = await manager.start("555-123-4567")

        assert result.ok
        assert result.state == "awaiting_code"
        assert result.masked_phone_number == "***-***-4567"
        assert manager.state is EnrollmentState.AWAITING_CODE
        assert manager.challenge is not None
        assert manager.challenge.phone_number == "+15551234567"
        assert widget_host.live_count == 1

    async def test_start_without_session(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
        widget_host: HeadlessWidgetHost,
    ) -> None:
        """Test that enrollment needs a signed-in account."""
        provider.session = None

        result = await manager.start("+15551234567")

        assert not result.ok
        assert result.error_kind is ErrorKind.NO_AUTHENTICATED_SESSION
        assert manager.state is EnrollmentState.IDLE
        assert widget_host.live_count == 0
        assert "begin_enrollment_challenge" not in provider.calls

    async def test_start_invalid_number(
        self, manager: MfaEnrollmentManager, widget_host: HeadlessWidgetHost
    ) -> None:
        """Test that an invalid number returns to IDLE and tears down the widget."""
        result = await manager.start("12")

        assert result.error_kind is ErrorKind.INVALID_PHONE_NUMBER
        assert manager.state is EnrollmentState.IDLE
        assert widget_host.live_count == 0

    async def test_start_delivery_failure(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
        widget_host: HeadlessWidgetHost,
    ) -> None:
        """Test provider issuance errors."""
        provider.fail["begin_enrollment_challenge"] = ProviderError(
            "QUOTA_EXCEEDED", "QUOTA_EXCEEDED", status_code=400
        )

        result = await manager.start("+15551234567")

        assert result.error_kind is ErrorKind.CHALLENGE_DELIVERY_FAILED
        assert result.message == "Too many requests. Please wait a moment and try again."
        assert manager.state is EnrollmentState.IDLE
        assert widget_host.live_count == 0

    async def test_start_widget_unavailable(self, provider: FakeIdentityProvider) -> None:
        """Test that a widget that cannot render fails the step."""
        widgets = ChallengeWidgetManager(HeadlessWidgetHost(allow_synthesize=False))
        manager = MfaEnrollmentManager(provider, widgets)

        result = await manager.start("+15551234567")

        assert result.error_kind is ErrorKind.WIDGET_UNAVAILABLE
        assert manager.state is EnrollmentState.IDLE

    async def test_concurrent_start_is_rejected(
        self, manager: MfaEnrollmentManager, provider: FakeIdentityProvider
    ) -> None:
        """Test that only one issuance call is in flight per flow."""
        gate = asyncio.Event()
        begin = provider.begin_enrollment_challenge

        async def slow_begin(phone_number, widget):
            await gate.wait()
            return await begin(phone_number, widget)

        provider.begin_enrollment_challenge = slow_begin  # type: ignore[method-assign]

        first = asyncio.create_task(manager.start("+15551234567"))
        await asyncio.sleep(0.01)
        second = await manager.start("+15551234567")
        gate.set()

        assert second.error_kind is ErrorKind.INVALID_FLOW_STATE
        assert (await first).ok
        assert manager.state is EnrollmentState.AWAITING_CODE

    async def test_start_twice_is_rejected(self, manager: MfaEnrollmentManager) -> None:
        """Test that start is only valid from IDLE or FAILED."""
        await manager.start("+15551234567")

        result = await manager.start("+15551234567")

        assert result.error_kind is ErrorKind.INVALID_FLOW_STATE
        assert manager.state is EnrollmentState.AWAITING_CODE


class TestEnrollmentSubmit:
    """Test cases for MfaEnrollmentManager.submit_code."""

    async def test_full_enrollment(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
        widgets: ChallengeWidgetManager,
        widget_host: HeadlessWidgetHost,
    ) -> None:
        """Test that a confirmed code binds exactly one factor."""
        await manager.start("+15551234567")

        result = await manager.submit_code("123456")

        assert result.ok
        assert result.state == "enrolled"
        assert isinstance(result.value, EnrolledFactor)
        assert result.value.phone_number == "+15551234567"
        assert result.value.display_name == "Primary SMS"

        factors = await provider.list_enrolled_factors()
        assert len(factors) == 1
        assert factors[0].phone_number == "+15551234567"

        assert manager.state is EnrollmentState.ENROLLED
        assert widgets.current is None
        assert widget_host.live_count == 0

    async def test_wrong_code_keeps_challenge(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
    ) -> None:
        """Test that a wrong code can be retried against the same challenge."""
        await manager.start("+15551234567")
        challenge = manager.challenge

        result = await manager.submit_code("654321")

        assert result.error_kind is ErrorKind.INVALID_CODE
        assert result.retryable
        assert manager.state is EnrollmentState.AWAITING_CODE
        assert manager.challenge is challenge

        result = await manager.submit_code("123456")
        assert result.ok
        assert len(provider.factors) == 1

    @pytest.mark.parametrize("code", ["", "12345", "12a456", "1234567"])
    async def test_malformed_code_is_rejected_locally(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
        code: str,
    ) -> None:
        """Test that malformed codes never reach the provider."""
        await manager.start("+15551234567")

        result = await manager.submit_code(code)

        assert result.error_kind is ErrorKind.INVALID_CODE
        assert manager.state is EnrollmentState.AWAITING_CODE
        assert "confirm" not in provider.calls

    async def test_expired_code_returns_to_idle(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
        widget_host: HeadlessWidgetHost,
    ) -> None:
        """Test that a terminal failure discards the challenge."""
        await manager.start("+15551234567")
        provider.fail["confirm"] = ProviderError("SESSION_EXPIRED", "SESSION_EXPIRED")

        result = await manager.submit_code("123456")

        assert result.error_kind is ErrorKind.CODE_EXPIRED
        assert not result.retryable
        assert manager.state is EnrollmentState.IDLE
        assert manager.challenge is None
        assert widget_host.live_count == 0

    async def test_bind_failure(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
        widget_host: HeadlessWidgetHost,
    ) -> None:
        """Test that a failed bind ends in FAILED without retrying."""
        await manager.start("+15551234567")
        provider.fail["bind_second_factor"] = ProviderError(
            "SECOND_FACTOR_LIMIT_EXCEEDED", "SECOND_FACTOR_LIMIT_EXCEEDED"
        )

        result = await manager.submit_code("123456")

        assert result.error_kind is ErrorKind.FACTOR_ENROLLMENT_FAILED
        assert manager.state is EnrollmentState.FAILED
        assert provider.calls.count("bind_second_factor") == 1
        assert provider.factors == []
        assert widget_host.live_count == 0

    async def test_unexpected_bind_failure(
        self, manager: MfaEnrollmentManager, provider: FakeIdentityProvider
    ) -> None:
        """Test that unknown bind errors are reported as enrollment failures."""
        await manager.start("+15551234567")
        provider.fail["bind_second_factor"] = ProviderError("INTERNAL", "INTERNAL")

        result = await manager.submit_code("123456")

        assert result.error_kind is ErrorKind.FACTOR_ENROLLMENT_FAILED

    async def test_restart_after_failure(
        self, manager: MfaEnrollmentManager, provider: FakeIdentityProvider
    ) -> None:
        """Test that FAILED allows a fresh start."""
        await manager.start("+15551234567")
        provider.fail["bind_second_factor"] = ProviderError("INTERNAL", "INTERNAL")
        await manager.submit_code("123456")

        result = await manager.start("+15551234567")

        assert result.ok
        assert manager.state is EnrollmentState.AWAITING_CODE

    async def test_widget_taken_by_another_flow(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
        widgets: ChallengeWidgetManager,
        widget_host: HeadlessWidgetHost,
    ) -> None:
        """Test that a flow whose widget was replaced asks the user to restart."""
        await manager.start("+15551234567")
        other = MfaEnrollmentManager(provider, widgets)
        await other.start("+15557654321")
        assert widget_host.live_count == 1
        assert widgets.current is other.widget

        provider.fail["confirm"] = ProviderError(
            "INVALID_APP_CREDENTIAL", "INVALID_APP_CREDENTIAL"
        )
        result = await manager.submit_code("123456")

        assert result.error_kind is ErrorKind.CONFIRMATION_FAILED
        assert result.message == "We couldn't verify your code. Please restart verification."
        assert widgets.current is other.widget

    async def test_submit_without_challenge(self, manager: MfaEnrollmentManager) -> None:
        """Test submit before start."""
        result = await manager.submit_code("123456")

        assert result.error_kind is ErrorKind.CHALLENGE_NOT_FOUND
        assert manager.state is EnrollmentState.IDLE


class TestEnrollmentCancel:
    """Test cases for cancelling enrollment."""

    async def test_cancel_tears_down(
        self, manager: MfaEnrollmentManager, widget_host: HeadlessWidgetHost
    ) -> None:
        """Test cancel from AWAITING_CODE."""
        await manager.start("+15551234567")

        manager.cancel()

        assert manager.state is EnrollmentState.IDLE
        assert manager.challenge is None
        assert widget_host.live_count == 0

    async def test_cancel_discards_late_result(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
    ) -> None:
        """Test that a result settling after cancel does not move the flow."""
        gate = asyncio.Event()
        bind = provider.bind_second_factor

        async def slow_bind(credential, label):
            await gate.wait()
            return await bind(credential, label)

        provider.bind_second_factor = slow_bind  # type: ignore[method-assign]
        await manager.start("+15551234567")

        task = asyncio.create_task(manager.submit_code("123456"))
        await asyncio.sleep(0.01)
        assert manager.state is EnrollmentState.ENROLLING

        manager.cancel()
        gate.set()
        result = await task

        assert result.discarded
        assert not result.ok
        assert manager.state is EnrollmentState.IDLE

    async def test_listeners_see_transitions(self, manager: MfaEnrollmentManager) -> None:
        """Test state broadcasts."""
        seen: list[str] = []
        unsubscribe = manager.subscribe(lambda snapshot: seen.append(snapshot.state))

        await manager.start("+15551234567")
        await manager.submit_code("123456")
        unsubscribe()
        manager.cancel()

        assert seen == ["awaiting_code", "enrolling", "enrolled"]

    async def test_cancel_during_confirm_skips_bind(
        self,
        manager: MfaEnrollmentManager,
        provider: FakeIdentityProvider,
    ) -> None:
        """Test that a code confirmed after cancel never binds a factor."""
        gate = asyncio.Event()
        confirm = provider.confirm

        async def slow_confirm(handle, code):
            await gate.wait()
            return await confirm(handle, code)

        provider.confirm = slow_confirm  # type: ignore[method-assign]
        await manager.start("+15551234567")

        task = asyncio.create_task(manager.submit_code("123456"))
        await asyncio.sleep(0.01)
        manager.cancel()
        gate.set()
        result = await task

        assert result.discarded
        assert "bind_second_factor" not in provider.calls
        assert provider.factors == []
        assert manager.state is EnrollmentState.IDLE


class TestEnrollmentUnexpectedErrors:
    """Failures from below the flow that are not part of the error taxonomy."""

    async def test_without_widget_manager(self, provider: FakeIdentityProvider) -> None:
        """Test that a flow built without widgets reports the widget as unavailable."""
        manager = MfaEnrollmentManager(provider, None)  # type: ignore[arg-type]

        result = await manager.start("+15551234567")

        assert result.error_kind is ErrorKind.WIDGET_UNAVAILABLE
        assert manager.state is EnrollmentState.IDLE

    async def test_issue_crash_releases_flow(
        self, manager: MfaEnrollmentManager, provider: FakeIdentityProvider
    ) -> None:
        """Test that an unexpected issuance error fails the step and allows a retry."""
        begin = provider.begin_enrollment_challenge
        calls = 0

        async def flaky_begin(phone_number, widget):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("connection reset")
            return await begin(phone_number, widget)

        provider.begin_enrollment_challenge = flaky_begin  # type: ignore[method-assign]

        result = await manager.start("+15551234567")

        assert result.error_kind is ErrorKind.CHALLENGE_DELIVERY_FAILED
        assert manager.state is EnrollmentState.IDLE

        result = await manager.start("+15551234567")
        assert result.ok

    async def test_confirm_crash_keeps_challenge(
        self, manager: MfaEnrollmentManager, provider: FakeIdentityProvider
    ) -> None:
        """Test that an unexpected confirmation error can be retried."""
        await manager.start("+15551234567")
        confirm = provider.confirm

        async def broken_confirm(handle, code):
            provider.confirm = confirm  # type: ignore[method-assign]
            raise ConnectionError("connection reset")

        provider.confirm = broken_confirm  # type: ignore[method-assign]

        result = await manager.submit_code("123456")

        assert result.error_kind is ErrorKind.CONFIRMATION_FAILED
        assert manager.state is EnrollmentState.AWAITING_CODE

        result = await manager.submit_code("123456")
        assert result.ok
        assert manager.state is EnrollmentState.ENROLLED
