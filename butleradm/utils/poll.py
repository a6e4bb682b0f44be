"""Polling helper shared by every wait in the bootstrap workflow."""
import logging
from typing import Callable, Optional, TypeVar

from .context import RunContext

T = TypeVar('T')

logger = logging.getLogger("butleradm.poll")


def poll_until(
    ctx: RunContext,
    condition: Callable[[], Optional[T]],
    interval: float,
    description: str = "condition",
) -> T:
    """Call ``condition`` every ``interval`` seconds until it returns a value.

    A result of ``None`` (or ``False``) means "not yet". Exceptions raised by
    the condition propagate unchanged, so terminal failures can stop the
    loop. The context is checked before every attempt and the wait between
    attempts wakes on cancellation; when the context is done its own error
    is raised, never a loop-specific one.

    Args:
        ctx: Run context bounding the wait
        condition: Callable returning a truthy result once satisfied
        interval: Pause between attempts in seconds (must be positive)
        description: Used in debug logging only

    Returns:
        The first truthy result of ``condition``

    Raises:
        Cancelled: If the context was cancelled
        DeadlineExceeded: If the context deadline passed
    """
    if interval <= 0:
        raise ValueError("poll interval must be positive")

    attempt = 0
    while True:
        ctx.raise_if_done()
        attempt += 1
        result = condition()
        if result:
            logger.debug(f"{description} satisfied after {attempt} attempt(s)")
            return result
        if not ctx.wait(interval):
            ctx.raise_if_done()
