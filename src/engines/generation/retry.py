"""
Retry Policy

Bounded retry with a fixed delay for provider calls. Which failures are
worth another attempt is decided by a pluggable classifier; everything the
classifier rejects propagates on the spot without consuming an attempt.
"""

from typing import Awaitable, Callable, Optional, TypeVar

from src.core.cancellation import CancellationToken, interruptible_sleep
from src.core.exceptions import BackgroundGenError, ProviderTransientError
from src.core.logging import get_logger
from src.core.metrics import record_retry
from src.modules.background.models import RetryState

logger = get_logger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], bool]
Sleeper = Callable[[float, Optional[CancellationToken]], Awaitable[None]]


def is_transient(exc: BaseException) -> bool:
    """Default classifier: only network/timeout/server-side provider failures are retried."""
    return isinstance(exc, ProviderTransientError)


class RetryPolicy:

    def __init__(
        self,
        max_attempts: int = 3,
        delay: float = 2.0,
        classifier: Classifier = is_transient,
        sleep: Sleeper = interruptible_sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.max_attempts = max_attempts
        self.delay = delay
        self.classifier = classifier
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "RetryPolicy":
        return cls(
            max_attempts=settings.MAX_RETRIES,
            delay=settings.retry_delay_seconds,
            **kwargs
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        token: Optional[CancellationToken] = None,
        operation_name: str = "provider"
    ) -> T:
        """
        Run ``operation`` up to ``max_attempts`` times.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            token: Cancels the running attempt and any pending delay
            operation_name: Label for logs and metrics

        Raises:
            The last transient error once attempts are exhausted, or any
            non-transient error immediately.
        """
        state = RetryState(max_attempts=self.max_attempts, delay=self.delay)

        while True:
            state.attempt += 1
            try:
                if token is not None:
                    token.raise_if_cancelled()
                    return await token.run(operation())
                return await operation()
            except Exception as exc:
                if not self.classifier(exc):
                    raise

                if state.exhausted:
                    logger.error(
                        "provider_retries_exhausted",
                        operation=operation_name,
                        attempts=state.attempt,
                        error=str(exc)
                    )
                    if isinstance(exc, BackgroundGenError):
                        exc.details["attempts"] = state.attempt
                    raise

                logger.warning(
                    "provider_retry_scheduled",
                    operation=operation_name,
                    attempt=state.attempt,
                    max_attempts=state.max_attempts,
                    delay_seconds=state.delay,
                    error=str(exc)
                )
                record_retry(operation_name)
                await self._sleep(state.delay, token)
