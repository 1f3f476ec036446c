"""Cooperative cancellation shared by every stage of a run."""

from __future__ import annotations

import threading
from typing import Optional

from .errors import OperationCancelledError


class CancellationToken:
    """Thread-safe flag passed explicitly to long running operations.

    The token never unwinds a stage on its own: workers poll
    :attr:`cancelled` or call :meth:`raise_if_cancelled` at the boundaries
    where stopping is safe.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = "operation cancelled"

    def cancel(self, reason: Optional[str] = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or *timeout* elapses. Returns the flag state."""

        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason)


__all__ = ["CancellationToken"]
