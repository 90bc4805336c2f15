"""Event stream emitted by the loop controller.

Events are delivered to an optional sink callable. A sink may be a plain
function or a coroutine function; awaitables it returns are awaited so
that events reach the consumer in emission order.
"""

import inspect
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events emitted during a run."""

    PROCESSING_STARTED = "processing_started"
    ITERATION_STARTED = "iteration_started"
    ITERATION_COMPLETED = "iteration_completed"
    CONTENT_CHUNK = "content_chunk"
    TOOL_CALL_STARTED = "tool_call_started"
    TOOL_CALL_COMPLETED = "tool_call_completed"
    TOOL_ERROR = "tool_error"
    DECISION = "decision"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.COMPLETED, EventType.CANCELLED, EventType.ERROR})

_event_counter = itertools.count(1)


def _event_id() -> str:
    return f"evt_{int(time.time() * 1000)}_{next(_event_counter)}"


@dataclass
class StreamEvent:
    """A single event in a run's event stream."""

    type: EventType
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_event_id)
    timestamp: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS


EventSink = Callable[[StreamEvent], Union[None, Awaitable[None]]]


class EventEmitter:
    """Stamps events with a session id and forwards them to a sink.

    A failing sink is logged and otherwise ignored; it never aborts the run.
    """

    def __init__(self, sink: Optional[EventSink], session_id: str = "default"):
        self.sink = sink
        self.session_id = session_id

    @property
    def enabled(self) -> bool:
        return self.sink is not None

    async def emit(self, event_type: EventType, **data: Any) -> Optional[StreamEvent]:
        """Build and deliver one event.

        Returns:
            The delivered event, or None when no sink is attached
        """
        if self.sink is None:
            return None

        event = StreamEvent(type=event_type, session_id=self.session_id, data=data)
        try:
            result = self.sink(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Event sink failed on %s event", event_type.value)
        return event
