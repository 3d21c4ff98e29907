"""Cancellation tokens for chat requests.

A token is created once per request and passed through every I/O call of the
chat pipeline (model calls and the database call). It is cancelled either
explicitly (client went away) or by its watchdog once the request deadline
passes. Callbacks registered on the token run once, on cancellation, which is
how an in-flight DuckDB query gets interrupted.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class QueryCancelledError(RuntimeError):
    """Raised at a suspension point once the request has been cancelled."""


class CancellationToken:
    """Thread-safe cancellation signal with an optional deadline.

    Attributes:
        timeout_seconds: Seconds until the deadline, or None for no deadline
        reason: Why the token was cancelled (None while active)
    """

    def __init__(self, timeout_seconds: Optional[float] = None) -> None:
        self.timeout_seconds = timeout_seconds
        self.reason: Optional[str] = None
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._timer: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        """True once cancelled, including when the deadline has passed."""
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the token and run registered callbacks exactly once."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        logger.info(f"Request cancelled: {reason}")
        for callback in callbacks:
            self._run_callback(callback)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback to run on cancellation.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        self._run_callback(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Unregister a callback that is no longer needed."""
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        """Raise QueryCancelledError if the token is cancelled."""
        if self.cancelled:
            raise QueryCancelledError(self.reason or "cancelled")

    def remaining(self, default: Optional[float] = None) -> Optional[float]:
        """Seconds left before the deadline.

        Args:
            default: Value returned when the token has no deadline

        Returns:
            Remaining seconds (never negative), or default
        """
        if self._deadline is None:
            return default
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`, waking early on cancellation.

        Returns:
            True if the token was cancelled while waiting
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(max(0.0, seconds))
        return self.cancelled

    def start_watchdog(self) -> None:
        """Arm a timer that cancels the token when the deadline passes."""
        remaining = self.remaining()
        if remaining is None or self._timer is not None:
            return
        self._timer = threading.Timer(remaining, self.cancel, args=("deadline exceeded",))
        self._timer.daemon = True
        self._timer.start()

    def stop(self) -> None:
        """Disarm the watchdog timer (the token keeps its current state)."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @staticmethod
    def _run_callback(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Cancellation callback failed")
