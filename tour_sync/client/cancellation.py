"""Cancellation tokens for client requests.

Every request runs under a token. A :class:`RequestSlot` holds the current
token for one kind of request and cancels it when a newer request starts.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

from tour_sync.client.errors import RequestCancelled, RequestTimedOut

T = TypeVar("T")


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def run(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """Await ``awaitable`` unless the token is cancelled or ``timeout`` passes.

        Raises RequestCancelled or RequestTimedOut; the inner task is cancelled
        in both cases.
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise RequestCancelled()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        if self.cancelled:
            raise RequestCancelled()
        raise RequestTimedOut(timeout)


class RequestSlot:
    """Holds the token of the latest request of one kind (last request wins)."""

    def __init__(self) -> None:
        self._token: CancellationToken | None = None

    def renew(self) -> CancellationToken:
        if self._token is not None:
            self._token.cancel()
        self._token = CancellationToken()
        return self._token

    def release(self, token: CancellationToken) -> None:
        if self._token is token:
            self._token = None

    def cancel(self) -> bool:
        if self._token is None:
            return False
        self._token.cancel()
        self._token = None
        return True
