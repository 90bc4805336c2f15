"""Cooperative cancellation built on :class:`asyncio.Event`.

A cancellation signal is a plain ``asyncio.Event``: setting it requests
cancellation. Signals compose through :func:`linked_signal` (parent signal
or deadline, whichever fires first) and are enforced at suspension points
through :func:`run_cancellable`.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import TypeVar

from agentloop.llm.errors import cancelled_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_set(signal: asyncio.Event | None) -> bool:
    """Return True if ``signal`` exists and has fired."""
    return signal is not None and signal.is_set()


@asynccontextmanager
async def linked_signal(
    parent: asyncio.Event | None = None,
    timeout: float | None = None,
) -> AsyncIterator[asyncio.Event]:
    """Create a signal that fires when ``parent`` fires or ``timeout`` elapses.

    The deadline timer and the parent watcher are torn down on exit, so a
    linked signal never outlives the block that created it.

    Args:
        parent: Caller-supplied signal to follow (optional)
        timeout: Deadline in seconds; ``None`` or ``0`` disables it

    Yields:
        The combined signal
    """
    signal = asyncio.Event()
    loop = asyncio.get_running_loop()
    timer: asyncio.TimerHandle | None = None
    watcher: asyncio.Future | None = None

    if parent is not None and parent.is_set():
        signal.set()
    elif parent is not None:

        async def _follow_parent() -> None:
            await parent.wait()
            signal.set()

        watcher = asyncio.ensure_future(_follow_parent())

    if timeout:
        timer = loop.call_later(timeout, signal.set)

    try:
        yield signal
    finally:
        if timer is not None:
            timer.cancel()
        if watcher is not None:
            watcher.cancel()


def _discard_outcome(task: asyncio.Future) -> None:
    # Retrieve the abandoned task's exception so asyncio does not warn about it
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Discarded result of cancelled call: %r", task.exception())


async def run_cancellable(
    awaitable: Awaitable[T],
    signal: asyncio.Event | None,
    provider: str = "unknown",
) -> T:
    """Await ``awaitable`` unless ``signal`` fires first.

    When the signal wins, the in-flight work is cancelled and a ``CANCELLED``
    :class:`~agentloop.llm.errors.LLMError` is raised. A signal that is set
    by the time the work finishes still wins, including over an error the
    work raised.

    Args:
        awaitable: Coroutine or future to run
        signal: Cancellation signal (``None`` means not cancellable)
        provider: Provider name attached to the cancellation error

    Returns:
        The awaitable's result

    Raises:
        LLMError: With code ``CANCELLED`` if the signal fired
    """
    if signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if signal.is_set():
        task.cancel()
        task.add_done_callback(_discard_outcome)
        raise cancelled_error(provider)

    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if signal.is_set():
        if not task.done():
            task.cancel()
        task.add_done_callback(_discard_outcome)
        waiter.cancel()
        raise cancelled_error(provider)

    waiter.cancel()
    return task.result()
