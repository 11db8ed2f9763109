"""Anti-automation challenge widget lifecycle.

Only one widget may be live per process. The manager is an explicitly owned
resource: create one per process (or per test), ``init`` it with a host and
pass it into every flow that needs a widget.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

from .exceptions import WidgetUnavailable

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_ID = "recaptcha-container"


class WidgetState(str, Enum):
    ABSENT = "absent"
    ACTIVE = "active"
    SOLVED = "solved"
    EXPIRED = "expired"


class WidgetHost(ABC):
    """Environment that renders anti-automation widgets into containers."""

    @abstractmethod
    def has_container(self, container_id: str) -> bool:
        """Return True if a container with this id exists."""

    @abstractmethod
    def create_container(self, container_id: str, *, hidden: bool = True) -> None:
        """Synthesize a container with this id."""

    @abstractmethod
    def render(
        self,
        container_id: str,
        *,
        on_solved: Callable[[str], None],
        on_expired: Callable[[], None],
    ) -> str:
        """Render a widget into the container and return its render id."""

    @abstractmethod
    async def execute(self, render_id: str) -> str:
        """Run the challenge and return the solved token."""

    @abstractmethod
    def clear(self, render_id: str) -> None:
        """Tear the rendered widget down."""


class HeadlessWidgetHost(WidgetHost):
    """Widget host for server-side and test use.

    Tokens come from ``token_factory``, typically a token solved by the
    browser and posted along with the request.
    """

    def __init__(
        self,
        token_factory: Callable[[], str] | None = None,
        *,
        containers: tuple[str, ...] = (),
        allow_synthesize: bool = True,
    ) -> None:
        self._token_factory = token_factory or (lambda: secrets.token_urlsafe(32))
        self._containers: dict[str, bool] = {c: False for c in containers}
        self._allow_synthesize = allow_synthesize
        self._renders: dict[str, tuple[str, Callable[[str], None], Callable[[], None]]] = {}

    @property
    def live_count(self) -> int:
        return len(self._renders)

    def is_hidden(self, container_id: str) -> bool:
        return self._containers.get(container_id, False)

    def has_container(self, container_id: str) -> bool:
        return container_id in self._containers

    def create_container(self, container_id: str, *, hidden: bool = True) -> None:
        if not self._allow_synthesize:
            raise WidgetUnavailable(details={"container_id": container_id})
        self._containers[container_id] = hidden

    def render(
        self,
        container_id: str,
        *,
        on_solved: Callable[[str], None],
        on_expired: Callable[[], None],
    ) -> str:
        if container_id not in self._containers:
            raise WidgetUnavailable(details={"container_id": container_id})
        if any(c == container_id for c, _, _ in self._renders.values()):
            raise WidgetUnavailable(
                "Security check was already rendered in this element.",
                details={"container_id": container_id},
            )
        render_id = secrets.token_hex(8)
        self._renders[render_id] = (container_id, on_solved, on_expired)
        return render_id

    async def execute(self, render_id: str) -> str:
        if render_id not in self._renders:
            raise WidgetUnavailable()
        _, on_solved, _ = self._renders[render_id]
        token = self._token_factory()
        on_solved(token)
        return token

    def clear(self, render_id: str) -> None:
        if render_id not in self._renders:
            raise LookupError(f"No widget rendered with id {render_id}")
        del self._renders[render_id]

    def expire(self, render_id: str) -> None:
        """Simulate the provider expiring a widget token."""
        _, _, on_expired = self._renders[render_id]
        on_expired()


class ChallengeWidget:
    """One rendered anti-automation widget."""

    def __init__(self, host: WidgetHost, container_id: str) -> None:
        self._host = host
        self.container_id = container_id
        self.render_id: str | None = None
        self.state = WidgetState.ABSENT
        self.token: str | None = None
        self._on_expired: Callable[[ChallengeWidget], None] | None = None

    def _mount(self, on_expired: Callable[[ChallengeWidget], None]) -> None:
        self._on_expired = on_expired
        self.render_id = self._host.render(
            self.container_id,
            on_solved=self._solved,
            on_expired=self._expired,
        )
        self.state = WidgetState.ACTIVE

    def _solved(self, token: str) -> None:
        logger.debug("Widget %s solved", self.render_id)
        self.token = token
        self.state = WidgetState.SOLVED

    def _expired(self) -> None:
        logger.debug("Widget %s expired", self.render_id)
        self.token = None
        self.state = WidgetState.EXPIRED
        if self._on_expired is not None:
            self._on_expired(self)

    @property
    def live(self) -> bool:
        return self.state is WidgetState.ACTIVE

    async def verify(self) -> str:
        """Solve the challenge and return the token for one issuance call.

        Raises:
            WidgetUnavailable: If the widget is expired, torn down or was
                already used for a previous issuance.

        """
        if self.state is not WidgetState.ACTIVE or self.render_id is None:
            raise WidgetUnavailable(details={"state": self.state.value})
        return await self._host.execute(self.render_id)

    def _teardown(self) -> None:
        render_id, self.render_id = self.render_id, None
        self.state = WidgetState.ABSENT
        self.token = None
        if render_id is not None:
            self._host.clear(render_id)


class ChallengeWidgetManager:
    """Owns the single live widget."""

    def __init__(
        self,
        host: WidgetHost | None = None,
        default_container_id: str = DEFAULT_CONTAINER_ID,
    ) -> None:
        self._host = host
        self.default_container_id = default_container_id
        self._current: ChallengeWidget | None = None

    def init(self, host: WidgetHost) -> None:
        """Bind the manager to a host, tearing down any widget of a previous host."""
        self.reset()
        self._host = host

    @property
    def current(self) -> ChallengeWidget | None:
        return self._current

    def create(self, container_id: str | None = None) -> ChallengeWidget:
        """Tear down any existing widget and render a new one.

        Raises:
            WidgetUnavailable: If there is no host, or the container is missing
                and could not be synthesized.

        """
        self.reset()
        if self._host is None:
            raise WidgetUnavailable("Security check is not initialized.")

        target = container_id or self.default_container_id
        try:
            if not self._host.has_container(target):
                self._host.create_container(target, hidden=True)
            widget = ChallengeWidget(self._host, target)
            widget._mount(self._handle_expired)
        except WidgetUnavailable:
            raise
        except Exception as e:  # noqa: BLE001
            raise WidgetUnavailable(details={"container_id": target}) from e

        logger.info("Initialized challenge widget in container %s", target)
        self._current = widget
        return widget

    def reset(self) -> None:
        """Tear down the current widget, if any. Never raises."""
        widget, self._current = self._current, None
        if widget is None:
            return
        try:
            widget._teardown()
        except Exception:  # noqa: BLE001
            logger.debug("Ignoring widget teardown error", exc_info=True)

    def release(self, widget: ChallengeWidget | None) -> None:
        """Tear ``widget`` down only if it is still the current one."""
        if widget is not None and widget is self._current:
            self.reset()

    def _handle_expired(self, widget: ChallengeWidget) -> None:
        self.release(widget)
