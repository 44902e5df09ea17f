"""
Caller-supplied deadline and cancellation for network-bound calls.
"""

import threading
import time
from typing import Optional

from .errors import DeadlineExceededError


class Deadline:
    """A monotonic expiry time plus a cancellation flag.

    A Deadline without a timeout never expires but can still be cancelled.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._expires_at = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self, cap: Optional[float] = None) -> Optional[float]:
        """Seconds left, bounded by cap. None means unbounded."""
        if self._expires_at is None:
            return cap
        left = max(0.0, self._expires_at - time.monotonic())
        return min(left, cap) if cap is not None else left

    def check(self, operation: str = 'operation') -> None:
        """
        Raise if the deadline has passed.

        Raises:
            DeadlineExceededError: If cancelled or expired
        """
        if self.cancelled:
            raise DeadlineExceededError(f'{operation} cancelled by caller')
        if self.expired:
            raise DeadlineExceededError(f'{operation} exceeded its deadline')


def ensure_deadline(deadline: Optional[Deadline]) -> Deadline:
    """Return the given deadline or an unbounded one."""
    return deadline if deadline is not None else Deadline()
