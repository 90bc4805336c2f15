"""Loop controller, tool dispatcher and event stream."""

from .dispatcher import ToolCallRecord, ToolDispatcher
from .events import TERMINAL_EVENTS, EventEmitter, EventSink, EventType, StreamEvent
from .loop import LoopController, LoopResult, LoopRunOptions, LoopState, LoopStatus, LoopStream

__all__ = [
    "TERMINAL_EVENTS",
    "EventEmitter",
    "EventSink",
    "EventType",
    "LoopController",
    "LoopResult",
    "LoopRunOptions",
    "LoopState",
    "LoopStatus",
    "LoopStream",
    "StreamEvent",
    "ToolCallRecord",
    "ToolDispatcher",
]
