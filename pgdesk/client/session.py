"""Client-side session state: the token pair and user snapshot, with change listeners."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[["AuthSession"], None]


@dataclass
class AuthSession:
    """
    Tokens and user snapshot held by one client.

    Passed explicitly to the ApiClient. Listeners (UI layer) are told after every
    change; a failing listener is logged and skipped.
    """

    access_token: str | None = None
    refresh_token: str | None = None
    user: dict[str, Any] | None = None
    _listeners: list[Listener] = field(default_factory=list, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def set(self, access_token: str, refresh_token: str, user: dict[str, Any] | None = None) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        if user is not None:
            self.user = user
        self._notify()

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self._notify()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Session listener failed")
