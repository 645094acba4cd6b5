import asyncio

import pytest

from src.core.cancellation import CancellationToken, interruptible_sleep
from src.core.exceptions import OperationCancelledError


@pytest.mark.asyncio
async def test_run_returns_result():
    token = CancellationToken()

    async def work():
        return 42

    assert await token.run(work()) == 42


@pytest.mark.asyncio
async def test_run_propagates_operation_errors():
    token = CancellationToken()

    async def work():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await token.run(work())


@pytest.mark.asyncio
async def test_cancel_interrupts_running_operation():
    token = CancellationToken()
    interrupted = asyncio.Event()

    async def slow_call():
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            interrupted.set()
            raise

    asyncio.get_running_loop().call_later(0.01, token.cancel, "navigated away")

    with pytest.raises(OperationCancelledError) as exc_info:
        await asyncio.wait_for(token.run(slow_call()), timeout=5)

    assert interrupted.is_set()
    assert "navigated away" in str(exc_info.value)
    assert exc_info.value.code == 499


@pytest.mark.asyncio
async def test_sleep_completes_when_not_cancelled():
    token = CancellationToken()

    await token.sleep(0.01)

    assert not token.cancelled


@pytest.mark.asyncio
async def test_sleep_wakes_up_on_cancel():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(token.sleep(30), timeout=5)


@pytest.mark.asyncio
async def test_interruptible_sleep_without_token():
    await interruptible_sleep(0)


def test_first_reason_wins():
    token = CancellationToken()

    token.cancel("first")
    token.cancel("second")

    assert token.cancelled
    assert token.reason == "first"
    with pytest.raises(OperationCancelledError):
        token.raise_if_cancelled()
