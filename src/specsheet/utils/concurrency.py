"""Async cancellation and timing primitives shared by the scheduler and supervisor."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    One token is shared by everything taking part in a run: the scheduler
    stops handing out checks once it is set, readiness gates give up, and
    continual mode stops between rounds.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self._reason or "operation cancelled")


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` with a deadline, giving up early if ``cancel_token`` fires.

    Raises ``TimeoutError`` when the deadline passes and
    ``asyncio.CancelledError`` when the token is cancelled first. In both
    cases the inner task is cancelled and awaited before returning.
    """
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise asyncio.CancelledError(token.reason or "operation cancelled")

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if task in done:
            return await task

        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

        if cancel_wait_task in done:
            raise asyncio.CancelledError(token.reason or "operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


async def sleep_or_cancel(seconds: float, cancel_token: CancellationToken | None) -> bool:
    """Sleep for ``seconds``; return ``False`` if the token fired before the end."""
    if seconds <= 0:
        return not (cancel_token is not None and cancel_token.is_cancelled)
    if cancel_token is None:
        await asyncio.sleep(seconds)
        return True
    try:
        await asyncio.wait_for(cancel_token.wait(), timeout=seconds)
    except TimeoutError:
        return True
    return False


async def poll_until(
    probe: Callable[[], Awaitable[bool]],
    *,
    interval_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> None:
    """Await ``probe`` every ``interval_seconds`` until it returns ``True``.

    There is no deadline here; callers bound the wait with ``run_with_timeout``.
    """
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if await probe():
            return
        if not await sleep_or_cancel(interval_seconds, cancel_token):
            raise asyncio.CancelledError("operation cancelled")


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects rejected before scheduling so CPython does
    # not emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "poll_until",
    "run_with_timeout",
    "sleep_or_cancel",
]
