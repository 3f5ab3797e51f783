"""
Deadline module for bounding network waits within a sync run
"""

import time
from typing import Callable, Optional


class RunTimeoutError(Exception):
    """Raised when the run-wide deadline has elapsed and work must stop"""
    pass


class CallTimeoutError(TimeoutError):
    """Raised when a single call exhausts its own deadline before the run does"""
    pass


class Deadline:
    """
    Absolute point in time after which a unit of work must stop

    A run creates one root deadline; every network call derives a child with
    ``child(seconds)``. A child never outlives its parent, so exhausting the
    parent cancels every call derived from it.
    """

    def __init__(self, seconds: float, parent: Optional['Deadline'] = None,
                 clock: Optional[Callable[[], float]] = None):
        self._clock = clock or (parent._clock if parent else time.monotonic)
        self._parent = parent
        expires_at = self._clock() + seconds
        if parent is not None:
            expires_at = min(expires_at, parent.expires_at)
        self.expires_at = expires_at

    @property
    def parent(self) -> Optional['Deadline']:
        return self._parent

    def remaining(self) -> float:
        """Seconds left before this deadline elapses, never negative"""
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    @property
    def cancelled(self) -> bool:
        """True when an ancestor deadline has elapsed"""
        if self._parent is None:
            return False
        return self._parent.expired or self._parent.cancelled

    def child(self, seconds: float) -> 'Deadline':
        return Deadline(seconds, parent=self)

    def raise_if_cancelled(self) -> None:
        """
        Raise RunTimeoutError if the run this deadline belongs to is over

        For a root deadline that means its own expiry; for a child it means
        the expiry of any ancestor. A child running out on its own is not a
        cancellation.

        Raises:
            RunTimeoutError: If the run-wide deadline has elapsed
        """
        if self._parent is None:
            if self.expired:
                raise RunTimeoutError("Run deadline elapsed")
        elif self.cancelled:
            raise RunTimeoutError("Run deadline elapsed during an in-flight call")

    def timeout(self) -> float:
        """
        Timeout in seconds to hand to a blocking network call

        Returns:
            Remaining seconds on this deadline

        Raises:
            RunTimeoutError: If the run-wide deadline has elapsed
            CallTimeoutError: If only this call's own deadline has elapsed
        """
        self.raise_if_cancelled()
        remaining = self.remaining()
        if remaining <= 0:
            raise CallTimeoutError("Call deadline elapsed before the request was sent")
        return remaining
