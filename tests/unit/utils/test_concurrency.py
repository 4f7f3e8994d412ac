"""Regression tests for concurrency utility edge cases."""

from __future__ import annotations

import asyncio

import pytest

from nexus_compliance.utils.concurrency import (
    CancellationToken,
    PeriodicRunner,
    resolve_maybe_awaitable,
    run_with_timeout,
)


async def _slow() -> int:
    await asyncio.sleep(0.01)
    return 1


async def _slower() -> int:
    await asyncio.sleep(0.5)
    return 1


async def test_run_with_timeout_returns_result() -> None:
    assert await run_with_timeout(_slow(), 1.0) == 1


async def test_run_with_timeout_raises_timeout_error() -> None:
    with pytest.raises(TimeoutError, match="timed out after 0.02 seconds"):
        await run_with_timeout(_slower(), 0.02)


async def test_run_with_timeout_rejects_non_positive_timeout_and_closes_coroutine() -> None:
    coroutine = _slow()

    with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
        await run_with_timeout(coroutine, 0)

    assert coroutine.cr_frame is None


async def test_run_with_timeout_honours_pre_cancelled_token() -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_slow(), 1.0, token)


async def test_run_with_timeout_cancels_when_token_fires() -> None:
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_slower(), 1.0, token)


async def test_cancellation_token_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()

    assert token.is_cancelled
    with pytest.raises(asyncio.CancelledError, match="operation cancelled"):
        token.raise_if_cancelled()


async def test_resolve_maybe_awaitable_passes_plain_values_through() -> None:
    payload = {"max_conversations": 10}

    assert await resolve_maybe_awaitable(payload, 0.1) is payload
    assert await resolve_maybe_awaitable(_slow(), 1.0) == 1

    with pytest.raises(TimeoutError):
        await resolve_maybe_awaitable(_slower(), 0.01)


async def test_periodic_runner_ticks_until_stopped() -> None:
    calls: list[int] = []

    async def tick() -> None:
        calls.append(len(calls))

    runner = PeriodicRunner(tick, 0.01, name="test-runner")
    runner.start()
    while len(calls) < 3:
        await asyncio.sleep(0.005)
    runner.stop()
    await runner.wait_stopped()

    assert not runner.running
    assert runner.ticks >= 3
    settled = len(calls)
    await asyncio.sleep(0.03)
    assert len(calls) == settled


async def test_periodic_runner_survives_failing_ticks() -> None:
    attempts = 0

    async def tick() -> None:
        nonlocal attempts
        attempts += 1
        raise RuntimeError("tick exploded")

    runner = PeriodicRunner(tick, 0.01)
    runner.start()
    while attempts < 2:
        await asyncio.sleep(0.005)
    assert runner.running
    runner.stop()
    await runner.wait_stopped()


async def test_periodic_runner_stop_before_first_tick_skips_callback() -> None:
    calls = 0

    async def tick() -> None:
        nonlocal calls
        calls += 1

    runner = PeriodicRunner(tick, 10.0)
    runner.start()
    runner.stop()
    await runner.wait_stopped()

    assert calls == 0
    assert runner.ticks == 0


async def test_periodic_runner_validates_arguments() -> None:
    async def tick() -> None:
        return None

    with pytest.raises(ValueError, match="interval_seconds must be > 0"):
        PeriodicRunner(tick, 0)

    runner = PeriodicRunner(tick, 1.0)
    runner.start()
    with pytest.raises(RuntimeError, match="already started"):
        runner.start()
    runner.stop()
    await runner.wait_stopped()


async def test_wait_stopped_without_start_is_a_no_op() -> None:
    async def tick() -> None:
        return None

    await PeriodicRunner(tick, 1.0).wait_stopped()
