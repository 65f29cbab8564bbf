"""Streaming events emitted while a chat request runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from drawloop.streaming import ToolCall


@dataclass
class StreamEvent:
    """Base for all streaming events."""

    type: ClassVar[str] = ""

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass
class ContentEvent(StreamEvent):
    """Text delta from the provider stream."""

    type: ClassVar[str] = "content"
    content: str = ""

    def to_dict(self) -> dict:
        return {"type": self.type, "content": self.content}


@dataclass
class ToolCallsEvent(StreamEvent):
    """Best-effort view of the tool calls streamed so far."""

    type: ClassVar[str] = "tool_calls"
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "tool_calls": [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ],
        }


@dataclass
class DoneEvent(StreamEvent):
    """One provider stream finished.  The loop may still continue."""

    type: ClassVar[str] = "done"


@dataclass
class ErrorEvent(StreamEvent):
    type: ClassVar[str] = "error"
    error: str = ""

    def to_dict(self) -> dict:
        return {"type": self.type, "error": self.error}


@dataclass
class CompleteEvent(StreamEvent):
    """Final event of a whole call, carrying its result."""

    type: ClassVar[str] = "complete"
    result: Any = None
