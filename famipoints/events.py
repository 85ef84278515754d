"""
Local auth-state listener registry shared by both auth service variants.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from famipoints.types import AuthEvent, AuthSession, Subscription

logger = logging.getLogger(__name__)

AuthStateCallback = Callable[[AuthEvent, Optional[AuthSession]], None]


class AuthStateEmitter:
    """Ordered list of listeners notified on sign-in/up/out."""

    def __init__(self):
        self._listeners: list[tuple[int, AuthStateCallback]] = []
        self._next_id = 0

    def subscribe(self, callback: AuthStateCallback) -> Subscription:
        token = self._next_id
        self._next_id += 1
        self._listeners.append((token, callback))
        return Subscription(lambda: self._remove(token))

    def _remove(self, token: int) -> None:
        self._listeners = [item for item in self._listeners if item[0] != token]

    def emit(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        # Snapshot so listeners may unsubscribe while being notified.
        for _, callback in list(self._listeners):
            try:
                callback(event, session)
            except Exception:
                logger.exception("Auth state listener failed for %s", event)

    def __len__(self) -> int:
        return len(self._listeners)
