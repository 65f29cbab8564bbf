"""Server-Sent Events decoding for chat completion streams."""

from __future__ import annotations

import codecs
from collections.abc import AsyncIterator
from dataclasses import dataclass

from drawloop.streaming import best_effort_json

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class FrameDecoder:
    """Turns raw body chunks into decoded JSON payloads.

    Lines split across chunk boundaries are buffered until complete.
    Anything after the ``[DONE]`` sentinel is accepted and ignored.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> list[dict]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[dict]:
        """Parse a trailing line that never got its newline."""
        if self.done:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._parse_lines([tail])

    def _parse_lines(self, lines: list[str]) -> list[dict]:
        payloads = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX):]
            if data == DONE_SENTINEL:
                self.done = True
                break
            payload = best_effort_json(data)
            if isinstance(payload, dict):
                payloads.append(payload)
        return payloads


async def iter_payloads(chunks: AsyncIterator[bytes]) -> AsyncIterator[dict]:
    """Yield every JSON payload of one streamed response body."""
    decoder = FrameDecoder()
    async for chunk in chunks:
        for payload in decoder.feed(chunk):
            yield payload
    for payload in decoder.flush():
        yield payload


@dataclass
class Delta:
    """The parts of a stream payload the tool loop cares about."""

    content: str | None = None
    tool_calls: list[dict] | None = None
    finish_reason: str | None = None


def read_delta(payload: dict) -> Delta:
    """Extract ``choices[0]`` content, tool-call deltas and finish reason."""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return Delta()
    choice = choices[0]
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        delta = {}
    content = delta.get("content")
    tool_calls = delta.get("tool_calls")
    return Delta(
        content=content if isinstance(content, str) and content else None,
        tool_calls=[tc for tc in tool_calls if isinstance(tc, dict)]
        if isinstance(tool_calls, list) else None,
        finish_reason=choice.get("finish_reason") or None,
    )
