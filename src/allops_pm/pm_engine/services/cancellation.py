"""
Cooperative cancellation for long-running request flows.

A `CancelToken` is created per inbound request and set when the caller goes
away. Code that waits (interval sleeps, outbound HTTP calls) goes through the
token so it stops promptly instead of running to its own timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from allops_pm.exceptions import OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError()

    async def sleep(self, seconds: float) -> None:
        """Wait up to `seconds`; raise as soon as the token is cancelled."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it if the token is cancelled first."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _pending = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise OperationCancelledError()


async def watch_disconnect(
    is_disconnected: Callable[[], Awaitable[bool]],
    token: CancelToken,
    *,
    interval: float = 0.5,
) -> None:
    """Poll the transport and cancel `token` once the client has gone."""
    while not token.cancelled:
        if await is_disconnected():
            logger.info("Client disconnected; cancelling request flow")
            token.cancel("client disconnected")
            return
        await asyncio.sleep(interval)
