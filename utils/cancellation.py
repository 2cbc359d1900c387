"""Deadline and cancellation token shared by read and write paths"""
import threading
import time
from typing import Optional

from models.errors import OperationCancelled


class Deadline:
    """Cancellation signal with an optional time limit.

    Operations call ``check()`` right before each commit point, so an expired
    or cancelled deadline aborts before anything is written.
    """

    def __init__(self, timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None):
        self._expires_at = time.monotonic() + timeout if timeout is not None else None
        self._cancel_event = cancel_event or threading.Event()

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(timeout=seconds)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when there is no time limit"""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self, operation: str = "operation") -> None:
        if self.cancelled:
            raise OperationCancelled(f"{operation} was cancelled")
        if self._expires_at is not None and time.monotonic() >= self._expires_at:
            raise OperationCancelled(f"{operation} exceeded its deadline")


def check_deadline(deadline: Optional[Deadline], operation: str = "operation") -> None:
    if deadline is not None:
        deadline.check(operation)
