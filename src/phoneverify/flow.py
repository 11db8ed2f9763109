"""Shared plumbing for the verification state machines."""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .exceptions import (
    InvalidCode,
    ProviderError,
    VerificationError,
    WidgetUnavailable,
    map_provider_error,
)
from .models import FlowSnapshot, StepResult, VerificationChallenge

if TYPE_CHECKING:
    from .widget import ChallengeWidget, ChallengeWidgetManager

logger = logging.getLogger(__name__)

Listener = Callable[[FlowSnapshot], None]

_CODE_PATTERN = re.compile(r"^\d{6}$")


def check_code(code: str | None) -> str:
    """Reject malformed codes before they reach a provider or store."""
    code = (code or "").strip()
    if not code:
        raise InvalidCode("Please enter the verification code.")
    if not _CODE_PATTERN.match(code):
        raise InvalidCode("Please enter a 6-digit code.")
    return code


class VerificationFlow:
    """Base class for flows exposing ``start``/``submit_code``/``cancel``.

    Each ``cancel`` bumps a generation counter; results of calls started in an
    older generation are dropped when they settle.
    """

    initial_state: Enum

    def __init__(
        self,
        widgets: ChallengeWidgetManager | None,
        container_id: str | None = None,
    ) -> None:
        self._widgets = widgets
        self._container_id = container_id
        self._widget: ChallengeWidget | None = None
        self._challenge: VerificationChallenge | None = None
        self._state: Enum = self.initial_state
        self._error: VerificationError | None = None
        self._generation = 0
        self._in_flight = False
        self._listeners: list[Listener] = []
        self._masked_phone: str | None = None

    @property
    def state(self) -> Any:
        return self._state

    @property
    def error(self) -> VerificationError | None:
        return self._error

    @property
    def challenge(self) -> VerificationChallenge | None:
        return self._challenge

    @property
    def widget(self) -> ChallengeWidget | None:
        return self._widget

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> FlowSnapshot:
        return FlowSnapshot(
            state=self._state.value,
            error_kind=self._error.kind if self._error else None,
            message=self._error.message if self._error else None,
            masked_phone_number=self._masked_phone,
        )

    def _transition(self, state: Enum, error: VerificationError | None = None) -> None:
        self._state = state
        self._error = error
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    def _create_widget(self) -> ChallengeWidget:
        if self._widgets is None:
            raise WidgetUnavailable("Security check is not initialized.")
        self._widget = self._widgets.create(self._container_id)
        return self._widget

    def _discard_challenge(self) -> None:
        if self._widgets is not None:
            self._widgets.release(self._widget)
        self._widget = None
        self._challenge = None

    def _begin(self) -> int:
        self._in_flight = True
        return self._generation

    def _stale(self, generation: int) -> bool:
        """Return True if ``cancel`` ran since ``generation`` began."""
        return generation != self._generation

    def _settle(self, generation: int) -> bool:
        """Mark the call finished; return False if it was cancelled meanwhile."""
        if self._stale(generation):
            logger.debug("Discarding result of a cancelled %s call", type(self).__name__)
            return False
        self._in_flight = False
        return True

    def _end(self, generation: int) -> None:
        """Release the in-flight guard however the call ended."""
        if not self._stale(generation):
            self._in_flight = False

    def _bump_generation(self) -> None:
        self._generation += 1
        self._in_flight = False

    def _boundary_error(
        self,
        error: Exception,
        phase: str,
        fallback: type[VerificationError],
    ) -> VerificationError:
        """Map anything raised below the flow onto the taxonomy."""
        if isinstance(error, ProviderError):
            return map_provider_error(error, phase)
        if isinstance(error, VerificationError):
            return error
        logger.exception("Unexpected error in %s", type(self).__name__)
        return fallback(details={"error": type(error).__name__})

    def _fail(self, state: Enum, error: VerificationError) -> StepResult:
        logger.warning(
            "%s failed in state %s: %s (%s)",
            type(self).__name__,
            state.value,
            error.kind.value,
            error.code,
        )
        self._transition(state, error)
        return StepResult.failure(state, error)

    def _reject(self, error: VerificationError) -> StepResult:
        """Report an error without leaving the current state."""
        return self._fail(self._state, error)

    def _discarded(self) -> StepResult:
        return StepResult(ok=False, state=self._state.value, discarded=True)

    def _ok(self, value: Any | None = None) -> StepResult:
        return StepResult(
            ok=True,
            state=self._state.value,
            value=value,
            masked_phone_number=self._masked_phone,
        )
