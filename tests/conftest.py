import json

import pytest

from drawloop.config import ServiceConfig
from drawloop.provider import ModelProvider
from drawloop.tools import ToolDefinition, ToolParameters, ToolResult


# ---------------------------------------------------------------------------
# SSE frame builders (mirror the OpenAI streaming shape)
# ---------------------------------------------------------------------------

def frame(payload: dict) -> bytes:
    return f"data: {json.dumps(payload)}\n".encode()


DONE_FRAME = b"data: [DONE]\n"


def content_frame(text: str) -> bytes:
    return frame({"choices": [{"delta": {"content": text}, "finish_reason": None}]})


def finish_frame(reason: str) -> bytes:
    return frame({"choices": [{"delta": {}, "finish_reason": reason}]})


def tool_delta_frame(deltas: list[dict]) -> bytes:
    return frame({"choices": [{"delta": {"tool_calls": deltas}}]})


def make_text_stream(content: str, finish_reason: str | None = "stop") -> list[bytes]:
    """Streamed text response, one frame per word."""
    words = content.split(" ")
    pieces = [w if i == 0 else f" {w}" for i, w in enumerate(words)] if content else []
    chunks = [content_frame(p) for p in pieces]
    if finish_reason:
        chunks.append(finish_frame(finish_reason))
    chunks.append(DONE_FRAME)
    return chunks


def make_tool_call_stream(
    calls: list[tuple[str, dict, str]],
    content: str = "",
) -> list[bytes]:
    """Streamed tool-call response with arguments split in two fragments.

    Each item in *calls* is ``(func_name, args_dict, call_id)``.
    """
    chunks = [content_frame(content)] if content else []
    for index, (name, args, call_id) in enumerate(calls):
        arguments = json.dumps(args)
        half = len(arguments) // 2
        chunks.append(tool_delta_frame([{
            "index": index, "id": call_id, "type": "function",
            "function": {"name": name, "arguments": ""},
        }]))
        chunks.append(tool_delta_frame([
            {"index": index, "function": {"arguments": arguments[:half]}},
        ]))
        chunks.append(tool_delta_frame([
            {"index": index, "function": {"arguments": arguments[half:]}},
        ]))
    chunks.append(finish_frame("tool_calls"))
    chunks.append(DONE_FRAME)
    return chunks


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that replays pre-queued responses. No network calls."""

    def __init__(self):
        self.streams: list[list[bytes]] = []
        self.completions: list[dict] = []
        self.call_log: list[dict] = []

    async def complete(self, body):
        self.call_log.append(json.loads(json.dumps(body)))
        return self.completions.pop(0)

    async def stream(self, body):
        self.call_log.append(json.loads(json.dumps(body)))
        for chunk in self.streams.pop(0):
            yield chunk


class RepeatingProvider(MockProvider):
    """Returns the same streamed response on every request."""

    def __init__(self, chunks: list[bytes]):
        super().__init__()
        self.chunks = chunks

    async def stream(self, body):
        self.call_log.append(json.loads(json.dumps(body)))
        for chunk in self.chunks:
            yield chunk


# ---------------------------------------------------------------------------
# Mock executor
# ---------------------------------------------------------------------------

class RecordingExecutor:
    """Executor returning canned results and recording every call.

    *results* maps tool names to a ``ToolResult`` or an exception to raise.
    """

    def __init__(self, results: dict | None = None):
        self.results = results or {}
        self.calls: list[tuple[str, dict]] = []

    async def execute_tool(self, name, args):
        self.calls.append((name, args))
        outcome = self.results.get(name, ToolResult(success=True, result="ok"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def list_files_definition() -> ToolDefinition:
    return ToolDefinition(
        name="list_excalidraw_files",
        description="List diagram files in a directory.",
        parameters=ToolParameters(
            properties={"directory": {"type": "string", "description": "Directory"}},
            required=["directory"],
        ),
    )


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def config():
    return ServiceConfig(
        base_url="https://api.example.com/v1/",
        api_key="sk-test",
        model="test-model",
    )


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def history():
    return [
        {"id": "1", "role": "user", "content": "Draw a flowchart", "timestamp": 1, "status": "success"},
    ]
