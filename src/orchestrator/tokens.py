"""
Cooperative cancellation for the client driving loop.
"""

from __future__ import annotations

import threading
from typing import Optional


class CancellationToken:
    """Flag checked before a call is dispatched and again after it resolves.

    ``reason`` records what cancelled the token first (``"stop"``,
    ``"pause"``, ``"halt"``, ``"complete"`` or ``"restart"``).
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "stop") -> None:
        if self.reason is None:
            self.reason = reason
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)
