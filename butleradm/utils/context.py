"""Cancellable, deadline-bounded run context shared by every bootstrap phase."""
import threading
import time
from typing import Optional

from ..errors import Cancelled, DeadlineExceeded


class RunContext:
    """Carries cancellation and a deadline through a bootstrap run.

    Contexts derived with ``with_timeout`` share the cancellation event of
    their parent and may only narrow its deadline.
    """

    def __init__(self, timeout: Optional[float] = None, *, _event: Optional[threading.Event] = None,
                 _deadline: Optional[float] = None):
        self._event = _event or threading.Event()
        self._deadline = _deadline
        if timeout is not None:
            self._deadline = self._narrow(time.monotonic() + timeout)

    def _narrow(self, deadline: float) -> float:
        if self._deadline is None:
            return deadline
        return min(self._deadline, deadline)

    def with_timeout(self, timeout: float) -> "RunContext":
        """Derive a context whose deadline is at most ``timeout`` seconds away."""
        return RunContext(
            _event=self._event,
            _deadline=self._narrow(time.monotonic() + timeout),
        )

    def cancel(self) -> bool:
        """Cancel the run. Returns True only for the first call."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def err(self) -> Optional[Exception]:
        """The reason this context is done, or None while it is still live."""
        if self._event.is_set():
            return Cancelled("run cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return DeadlineExceeded("deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        error = self.err()
        if error is not None:
            raise error

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on cancellation or deadline.

        Returns True when the context is still live afterwards.
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._event.wait(seconds)
        return self.err() is None
