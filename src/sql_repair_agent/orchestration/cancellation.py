"""
Cooperative cancellation for the repair loop
"""
from __future__ import annotations

import threading


class CancellationToken:
    """
    Cancellation signal shared between the caller and one repair loop

    The loop checks the token before every model call and before every
    query execution; a statement already running is not interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"
