"""Cancellation and deadline carried through one invocation.

A single ``OperationContext`` is created at the top of a command and passed
down to every blob transfer.  ``check()`` is called between blobs, so a
cancellation takes effect once the current blob unwinds.
"""

from __future__ import annotations

import threading
import time

from kubemft.errors import CancelledError


class OperationContext:
    """Cancellation flag plus an optional absolute deadline.

    Parameters
    ----------
    timeout:
        Seconds from construction until the operation is abandoned.
        ``None`` means no deadline.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._cancelled = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self, what: str = "operation") -> None:
        """Raise ``CancelledError`` if cancelled or past the deadline."""
        if self._cancelled.is_set():
            raise CancelledError(f"{what} cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise CancelledError(f"{what} exceeded its deadline")


def background() -> OperationContext:
    """A context that is never cancelled and has no deadline."""
    return OperationContext()
