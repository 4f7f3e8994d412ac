"""Async concurrency primitives: cooperative cancellation, timeouts, periodic ticks."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


class PeriodicRunner:
    """Invoke an async callback every ``interval_seconds`` until stopped.

    ``stop()`` takes effect at the next tick boundary: a tick already running
    completes, no new tick starts.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        interval_seconds: float,
        *,
        name: str = "periodic-runner",
        logger: object | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._callback = callback
        self._interval = interval_seconds
        self._name = name
        self._token = CancellationToken()
        self._task: asyncio.Task[None] | None = None
        self._ticks = 0
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._token.is_cancelled

    @property
    def finished(self) -> bool:
        """True once the loop task has exited, or when it was never started."""
        return self._task is None or self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("periodic runner already started")
        self._task = asyncio.create_task(self._run(), name=self._name)

    def stop(self) -> None:
        self._token.cancel()

    async def wait_stopped(self) -> None:
        task = self._task
        if task is None:
            return
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while not self._token.is_cancelled:
            try:
                await asyncio.wait_for(self._token.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            if self._token.is_cancelled:
                return
            self._ticks += 1
            try:
                await self._callback()
            except Exception as exc:  # noqa: BLE001 - tick failures must not end the loop.
                self._logger.error(
                    "periodic_tick_failed",
                    runner=self._name,
                    tick=self._ticks,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` with timeout and cooperative cancellation support."""
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise asyncio.CancelledError("operation cancelled")

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
        if cancel_wait_task in done and token.is_cancelled:
            raise asyncio.CancelledError("operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


async def resolve_maybe_awaitable(value: T | Awaitable[T], timeout_seconds: float) -> T:
    """Return ``value`` directly, or await it under ``timeout_seconds`` when awaitable."""
    if inspect.isawaitable(value):
        return await run_with_timeout(value, timeout_seconds)
    return value


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects rejected before scheduling so CPython does not
    # emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "PeriodicRunner",
    "resolve_maybe_awaitable",
    "run_with_timeout",
]
