"""Tests for signal composition and cancellable awaits."""

import asyncio

import pytest

from agentloop.llm.cancellation import is_set, linked_signal, run_cancellable
from agentloop.llm.errors import LLMError, LLMErrorCode, classify_error, is_cancellation


@pytest.mark.asyncio
async def test_linked_signal_follows_parent():
    """Test that setting the parent fires the linked signal."""
    parent = asyncio.Event()

    async with linked_signal(parent) as signal:
        assert not signal.is_set()
        parent.set()
        await asyncio.wait_for(signal.wait(), timeout=1)


@pytest.mark.asyncio
async def test_linked_signal_starts_set_if_parent_set():
    """Test that an already-set parent yields a set signal."""
    parent = asyncio.Event()
    parent.set()

    async with linked_signal(parent, timeout=10) as signal:
        assert signal.is_set()


@pytest.mark.asyncio
async def test_linked_signal_timeout():
    """Test that the deadline fires the signal without touching the parent."""
    parent = asyncio.Event()

    async with linked_signal(parent, timeout=0.01) as signal:
        await asyncio.wait_for(signal.wait(), timeout=1)

    assert not parent.is_set()


@pytest.mark.asyncio
async def test_linked_signal_timer_cleared_on_exit():
    """Test that leaving the block disarms the deadline."""
    async with linked_signal(None, timeout=0.01) as signal:
        pass

    await asyncio.sleep(0.03)
    assert not signal.is_set()


@pytest.mark.asyncio
async def test_run_cancellable_returns_result():
    """Test the happy path."""

    async def work() -> int:
        await asyncio.sleep(0)
        return 7

    assert await run_cancellable(work(), asyncio.Event()) == 7
    assert await run_cancellable(work(), None) == 7


@pytest.mark.asyncio
async def test_run_cancellable_cancels_inflight_work():
    """Test that the signal wins and the work is cancelled."""
    signal = asyncio.Event()
    cancelled = asyncio.Event()

    async def hang() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    asyncio.get_running_loop().call_later(0.01, signal.set)
    with pytest.raises(LLMError) as exc_info:
        await run_cancellable(hang(), signal, "openai")

    assert exc_info.value.code is LLMErrorCode.CANCELLED
    assert exc_info.value.provider == "openai"
    await asyncio.wait_for(cancelled.wait(), timeout=1)


@pytest.mark.asyncio
async def test_run_cancellable_pre_set_signal():
    """Test that a pre-set signal never runs the work."""
    signal = asyncio.Event()
    signal.set()
    started = False

    async def work() -> None:
        nonlocal started
        started = True

    with pytest.raises(LLMError):
        await run_cancellable(work(), signal)

    await asyncio.sleep(0)
    assert started is False


@pytest.mark.asyncio
async def test_run_cancellable_propagates_work_errors():
    """Test that errors from the work surface unchanged."""

    async def fail() -> None:
        raise ValueError("broken")

    with pytest.raises(ValueError):
        await run_cancellable(fail(), asyncio.Event())


def test_classify_error():
    """Test classification of stray exceptions."""
    assert classify_error(TimeoutError()).code is LLMErrorCode.TIMEOUT
    assert classify_error(ConnectionResetError("reset")).code is LLMErrorCode.NETWORK_ERROR
    assert classify_error(asyncio.CancelledError()).code is LLMErrorCode.CANCELLED
    assert classify_error(KeyError("x")).code is LLMErrorCode.UNKNOWN_ERROR

    original = LLMError("limited", LLMErrorCode.RATE_LIMIT_ERROR, "qwen")
    assert classify_error(original) is original
    assert original.retryable is True
    assert is_cancellation(LLMError("stop", LLMErrorCode.CANCELLED)) is True
    assert is_set(None) is False
