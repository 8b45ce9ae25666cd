"""
Authentication boundary.

The arcade never authenticates anyone itself. An external identity provider
reports sign-in and sign-out through ``AuthState.set_user``; components that
care (the persistence gateway) subscribe and receive every
``(previous, current)`` transition.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthUser:
    user_id: str
    email: str = ""


AuthListener = Callable[[AuthUser | None, AuthUser | None], Awaitable[None] | None]


class AuthState:
    def __init__(self, user: AuthUser | None = None) -> None:
        self._user = user
        self._listeners: list[AuthListener] = []

    @property
    def user(self) -> AuthUser | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set_user(self, user: AuthUser | None) -> None:
        """Record an auth transition and notify listeners in subscription order.

        Every call notifies, including a repeat of the current user, since
        providers re-emit on token refresh. A failing listener is logged and
        does not prevent the remaining listeners from running.
        """
        previous = self._user
        self._user = user
        logger.info(
            "auth state changed",
            previous_user=previous.user_id if previous else None,
            user=user.user_id if user else None,
        )
        for listener in list(self._listeners):
            try:
                result = listener(previous, user)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("auth listener failed")
