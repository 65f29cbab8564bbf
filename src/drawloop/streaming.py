"""Streaming primitives for tool-call reconstruction.

The endpoint streams tool calls as fragments keyed by their position
``index``.  The :class:`ToolCallAccumulator` reassembles them; argument
text is only decoded once the stream is over, except for progress
snapshots where decode failures are tolerated.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


def best_effort_json(text: str | None, fallback: Any = None) -> Any:
    """Decode *text* as JSON, returning *fallback* when that fails.

    Empty or missing text also yields *fallback*.  This is the single
    place where malformed stream lines and incomplete tool arguments are
    forgiven.
    """
    if not text:
        return fallback
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return fallback


def decode_arguments(text: str | None) -> dict:
    """Decode tool arguments, falling back to an empty object."""
    args = best_effort_json(text, {})
    return args if isinstance(args, dict) else {}


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None

    @classmethod
    def from_delta(cls, delta: dict) -> ToolCallFragment | None:
        """Normalise a raw ``tool_calls`` delta from the wire.

        Returns ``None`` when the index is not an integer.  Fields of the
        wrong type are treated as absent.
        """
        index = delta.get("index")
        if index is None:
            index = 0
        if not isinstance(index, int) or isinstance(index, bool):
            return None
        function = delta.get("function")
        if not isinstance(function, dict):
            function = {}
        return cls(
            index=index,
            call_id=_text(delta.get("id")),
            name=_text(function.get("name")),
            arguments_delta=_text(function.get("arguments")),
        )


@dataclass
class ToolCall:
    """A tool call with decoded arguments."""

    id: str = ""
    name: str = ""
    arguments: dict = field(default_factory=dict)

    def to_openai(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments),
            },
        }


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments."""

    def __init__(self) -> None:
        self._pending: dict[int, _PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def feed(self, fragment: ToolCallFragment) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = _PendingCall()
        tc = self._pending[fragment.index]
        if fragment.call_id:
            tc.id = fragment.call_id
        if fragment.name:
            tc.name = fragment.name
        if fragment.arguments_delta:
            tc.arguments += fragment.arguments_delta

    def apply(self, delta: dict) -> None:
        """Merge one raw wire delta; unusable deltas are skipped."""
        fragment = ToolCallFragment.from_delta(delta)
        if fragment is not None:
            self.feed(fragment)

    def snapshot(self) -> list[ToolCall]:
        """In-progress calls for progress display; never executed."""
        return [
            ToolCall(id=tc.id, name=tc.name, arguments=decode_arguments(tc.arguments))
            for _, tc in sorted(self._pending.items())
        ]

    def finalize(self) -> list[ToolCall]:
        """Return deliverable tool calls in index order.

        Entries still missing an id or a name are dropped.
        """
        return [
            ToolCall(id=tc.id, name=tc.name, arguments=decode_arguments(tc.arguments))
            for _, tc in sorted(self._pending.items())
            if tc.id and tc.name
        ]

    def clear(self) -> None:
        self._pending.clear()
