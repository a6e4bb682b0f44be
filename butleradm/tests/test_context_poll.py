import threading
import time

import pytest

from butleradm.errors import Cancelled, DeadlineExceeded
from butleradm.utils.context import RunContext
from butleradm.utils.poll import poll_until


def test_unbounded_context_is_live():
    ctx = RunContext()
    assert ctx.remaining() is None
    assert ctx.err() is None
    ctx.raise_if_done()


def test_cancel_reports_first_call_only():
    ctx = RunContext()
    assert ctx.cancel() is True
    assert ctx.cancel() is False
    assert ctx.cancelled
    assert isinstance(ctx.err(), Cancelled)


def test_child_shares_cancellation():
    parent = RunContext()
    child = parent.with_timeout(60)
    parent.cancel()
    assert child.cancelled
    with pytest.raises(Cancelled):
        child.raise_if_done()


def test_child_deadline_never_extends_parent():
    parent = RunContext(timeout=0.5)
    child = parent.with_timeout(60)
    assert child.remaining() <= 0.5


def test_child_deadline_narrows():
    parent = RunContext(timeout=60)
    child = parent.with_timeout(0.01)
    time.sleep(0.02)
    assert isinstance(child.err(), DeadlineExceeded)
    assert parent.err() is None


def test_deadline_exceeded_is_a_timeout():
    ctx = RunContext(timeout=0)
    with pytest.raises(TimeoutError):
        ctx.raise_if_done()


def test_wait_wakes_on_cancel():
    ctx = RunContext()
    threading.Timer(0.05, ctx.cancel).start()
    started = time.monotonic()
    assert ctx.wait(5) is False
    assert time.monotonic() - started < 1


def test_poll_returns_first_truthy_result():
    results = iter([None, False, "done"])
    assert poll_until(RunContext(timeout=5), lambda: next(results), 0.01) == "done"


def test_poll_checks_context_before_first_attempt():
    ctx = RunContext()
    ctx.cancel()
    calls = []
    with pytest.raises(Cancelled):
        poll_until(ctx, lambda: calls.append(1), 0.01)
    assert calls == []


def test_poll_raises_deadline():
    with pytest.raises(DeadlineExceeded):
        poll_until(RunContext(timeout=0.05), lambda: None, 0.01)


def test_poll_propagates_condition_errors():
    def explode():
        raise RuntimeError("terminal")

    with pytest.raises(RuntimeError, match="terminal"):
        poll_until(RunContext(timeout=5), explode, 0.01)


def test_poll_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        poll_until(RunContext(), lambda: True, 0)
