import asyncio

import pytest

from voicecmd.notify import ERROR, PENDING, SUCCESS, Status, StatusNotifier


@pytest.mark.asyncio
async def test_success_clears_after_delay(notifier):
    notifier.success("Command encrypted!")
    assert notifier.status == Status(SUCCESS, "Command encrypted!")
    await asyncio.sleep(0.02)
    assert notifier.status is not None
    await asyncio.sleep(0.06)
    assert notifier.status is None
    assert not notifier.scheduled


@pytest.mark.asyncio
async def test_error_stays_longer_than_success(notifier):
    notifier.error("Submission failed")
    await asyncio.sleep(0.06)
    assert notifier.status == Status(ERROR, "Submission failed")
    await asyncio.sleep(0.05)
    assert notifier.status is None


@pytest.mark.asyncio
async def test_pending_is_not_cleared_until_replaced(notifier):
    notifier.pending("Processing...")
    assert not notifier.scheduled
    await asyncio.sleep(0.1)
    assert notifier.status.kind == PENDING
    notifier.success("done")
    await asyncio.sleep(0.07)
    assert notifier.status is None


@pytest.mark.asyncio
async def test_transition_cancels_previous_timer(notifier):
    notifier.success("first")
    await asyncio.sleep(0.03)
    notifier.pending("second")
    await asyncio.sleep(0.05)
    assert notifier.status == Status(PENDING, "second")


@pytest.mark.asyncio
async def test_listeners_see_every_change(notifier):
    seen = []
    notifier.on_change(seen.append)
    notifier.pending("a")
    notifier.success("b")
    await asyncio.sleep(0.07)
    assert [s.kind if s else None for s in seen] == [PENDING, SUCCESS, None]


@pytest.mark.asyncio
async def test_close_cancels_scheduled_clear():
    n = StatusNotifier(success_delay=0.02)
    seen = []
    n.on_change(seen.append)
    n.success("bye")
    n.close()
    assert not n.scheduled
    await asyncio.sleep(0.04)
    assert len(seen) == 1
    n.error("after close")
    assert n.status is None
