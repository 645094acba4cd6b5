"""
Cancellation Tokens

A workflow owns one token. Firing it interrupts whatever the workflow is
awaiting: an outstanding provider call is cancelled and a pending retry
delay wakes up immediately.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from src.core.exceptions import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """asyncio.Event backed cancellation signal."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelledError(f"Operation cancelled: {self.reason}")

    async def sleep(self, seconds: float):
        """Wait ``seconds`` unless the token fires first."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable``, cancelling it if the token fires first.

        Raises:
            OperationCancelledError: the token fired before the awaitable finished
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # Also reached when the caller itself is cancelled
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        if task.cancelled():
            self.raise_if_cancelled()
            raise asyncio.CancelledError()
        return task.result()


async def interruptible_sleep(seconds: float, token: Optional[CancellationToken] = None):
    """Sleep that honours a cancellation token when one is given."""
    if token is None:
        await asyncio.sleep(seconds)
    else:
        await token.sleep(seconds)
