"""Cooperative cancellation shared between a caller and a running operation."""
from __future__ import annotations

import threading
from typing import Optional

from .errors import Canceled


class CancellationToken:
    """Thread-safe cancel flag checked at every provider call and disk write."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Canceled()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True early if canceled meanwhile."""
        return self._event.wait(timeout=seconds)


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return ``token`` or a fresh token that is never canceled."""
    return token if token is not None else CancellationToken()
