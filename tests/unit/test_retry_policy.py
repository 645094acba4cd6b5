import asyncio

import pytest
from unittest.mock import AsyncMock

from src.core.cancellation import CancellationToken
from src.core.exceptions import (
    OperationCancelledError,
    ProviderPermanentError,
    ProviderTransientError,
    UnknownProviderResponseError,
)
from src.core.config import Settings
from src.engines.generation.retry import RetryPolicy, is_transient


@pytest.mark.asyncio
async def test_success_on_first_attempt(retry_policy, sleeper):
    operation = AsyncMock(return_value="ok")

    result = await retry_policy.execute(operation)

    assert result == "ok"
    assert operation.await_count == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_fixed_delay(retry_policy, sleeper):
    operation = AsyncMock(side_effect=[
        ProviderTransientError("503"),
        ProviderTransientError("timeout"),
        "ok",
    ])

    result = await retry_policy.execute(operation, operation_name="synthesize")

    assert result == "ok"
    assert operation.await_count == 3
    assert sleeper.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(retry_policy, sleeper):
    operation = AsyncMock(side_effect=ProviderTransientError("still down"))

    with pytest.raises(ProviderTransientError) as exc_info:
        await retry_policy.execute(operation)

    assert operation.await_count == 3
    assert sleeper.delays == [2.0, 2.0]
    assert exc_info.value.details["attempts"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    ProviderPermanentError("bad request", http_status=400),
    UnknownProviderResponseError("no imageURL"),
    ValueError("bug"),
])
async def test_non_transient_errors_are_not_retried(retry_policy, sleeper, error):
    operation = AsyncMock(side_effect=error)

    with pytest.raises(type(error)):
        await retry_policy.execute(operation)

    assert operation.await_count == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_single_attempt_policy(sleeper):
    policy = RetryPolicy(max_attempts=1, sleep=sleeper)
    operation = AsyncMock(side_effect=ProviderTransientError("503"))

    with pytest.raises(ProviderTransientError):
        await policy.execute(operation)

    assert operation.await_count == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_custom_classifier(sleeper):
    policy = RetryPolicy(classifier=lambda exc: isinstance(exc, ConnectionError), sleep=sleeper)
    operation = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])

    assert await policy.execute(operation) == "ok"
    assert operation.await_count == 2


@pytest.mark.asyncio
async def test_cancel_during_delay_stops_retrying():
    # Real interruptible sleep with a long delay; the token must cut it short
    policy = RetryPolicy(max_attempts=3, delay=30.0)
    token = CancellationToken()
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        asyncio.get_running_loop().call_soon(token.cancel, "user left")
        raise ProviderTransientError("503")

    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(policy.execute(operation, token=token), timeout=5)

    assert calls == 1


@pytest.mark.asyncio
async def test_cancelled_token_prevents_any_attempt(retry_policy):
    token = CancellationToken()
    token.cancel()
    operation = AsyncMock(return_value="ok")

    with pytest.raises(OperationCancelledError):
        await retry_policy.execute(operation, token=token)

    assert operation.await_count == 0


def test_is_transient():
    assert is_transient(ProviderTransientError("x"))
    assert not is_transient(ProviderPermanentError("x"))
    assert not is_transient(TimeoutError())


def test_from_settings():
    policy = RetryPolicy.from_settings(Settings(MAX_RETRIES=5, RETRY_DELAY_MS=250))

    assert policy.max_attempts == 5
    assert policy.delay == 0.25


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"delay": -1}])
def test_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)
