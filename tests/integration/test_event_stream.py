"""Tests for Runner.iter() event streams, cancellation and deadlines."""

import asyncio

import pytest

from drawloop.config import ServiceConfig
from drawloop.errors import ChatCancelledError, ChatTimeoutError, StreamReadError
from drawloop.events import (
    CompleteEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ToolCallsEvent,
)
from drawloop.message import Message, MessageRole
from drawloop.runner import CancelToken, Runner, StreamState, drain_stream

from tests.conftest import (
    MockProvider,
    RecordingExecutor,
    content_frame,
    make_text_stream,
    make_tool_call_stream,
)


def _config(**overrides):
    return ServiceConfig(
        base_url="https://api.example.com/v1", api_key="sk-test",
        model="test-model", **overrides,
    )


def _user():
    return [Message(role=MessageRole.USER, content="Draw a flowchart")]


class StallingProvider(MockProvider):
    """Streams one content frame, then never produces another byte."""

    async def stream(self, body):
        self.call_log.append(body)
        yield content_frame("partial")
        await asyncio.Event().wait()


async def _chunks(chunks):
    for chunk in chunks:
        yield chunk


# ---------------------------------------------------------------------------
# drain_stream
# ---------------------------------------------------------------------------

class TestDrainStream:
    @pytest.mark.asyncio
    async def test_content_events_concatenate_to_text(self):
        state = StreamState()
        events = [e async for e in drain_stream(
            _chunks(make_text_stream("a small flowchart")), state,
        )]

        content = [e.content for e in events if isinstance(e, ContentEvent)]
        assert "".join(content) == "a small flowchart"
        assert state.content == "a small flowchart"
        assert state.finish_reason == "stop"
        assert isinstance(events[-1], DoneEvent)

    @pytest.mark.asyncio
    async def test_tool_deltas_ignored_without_accumulator(self):
        state = StreamState()
        events = [e async for e in drain_stream(
            _chunks(make_tool_call_stream([("t", {"a": 1}, "c1")])), state,
        )]

        assert [type(e) for e in events] == [DoneEvent]
        assert state.finish_reason == "tool_calls"

    @pytest.mark.asyncio
    async def test_no_done_event_without_finish_reason(self):
        state = StreamState()
        events = [e async for e in drain_stream(
            _chunks(make_text_stream("cut", finish_reason=None)), state,
        )]

        assert [type(e) for e in events] == [ContentEvent]
        assert state.finish_reason is None


# ---------------------------------------------------------------------------
# Runner.iter()
# ---------------------------------------------------------------------------

class TestRunnerIter:
    @pytest.mark.asyncio
    async def test_text_response_events(self, mock_provider, executor):
        mock_provider.streams = [make_text_stream("Hello there")]

        events = [e async for e in Runner(mock_provider, _config(), executor).iter(
            _user(), [],
        )]

        assert [type(e) for e in events] == [
            ContentEvent, ContentEvent, DoneEvent, CompleteEvent,
        ]
        assert events[-1].result.content == "Hello there"

    @pytest.mark.asyncio
    async def test_tool_call_events(self, mock_provider, executor):
        mock_provider.streams = [
            make_tool_call_stream([("read_file", {"file_path": "/a.md"}, "c1")]),
            make_text_stream("Done"),
        ]

        events = [e async for e in Runner(mock_provider, _config(), executor).iter(
            _user(), [],
        )]
        types = [type(e) for e in events]

        assert types == [
            ToolCallsEvent, ToolCallsEvent, ToolCallsEvent, DoneEvent,
            ContentEvent, DoneEvent, CompleteEvent,
        ]
        # Arguments are parsed best-effort while they stream in.
        assert events[0].tool_calls[0].arguments == {}
        assert events[2].tool_calls[0].arguments == {"file_path": "/a.md"}
        assert events[2].tool_calls[0].name == "read_file"

    @pytest.mark.asyncio
    async def test_one_done_event_per_iteration(self, mock_provider, executor):
        mock_provider.streams = [
            make_tool_call_stream([("a", {}, "c1")]),
            make_tool_call_stream([("b", {}, "c2")]),
            make_text_stream("Finished"),
        ]

        events = [e async for e in Runner(mock_provider, _config(), executor).iter(
            _user(), [],
        )]

        assert sum(isinstance(e, DoneEvent) for e in events) == 3
        assert sum(isinstance(e, CompleteEvent) for e in events) == 1
        assert events[-1].result.iterations == 3

    @pytest.mark.asyncio
    async def test_event_dicts(self, mock_provider, executor):
        mock_provider.streams = [make_text_stream("Hi")]

        events = [e async for e in Runner(mock_provider, _config(), executor).iter(
            _user(), [],
        )]

        assert [e.to_dict() for e in events[:-1]] == [
            {"type": "content", "content": "Hi"},
            {"type": "done"},
        ]

    @pytest.mark.asyncio
    async def test_tool_calls_event_dict(self, mock_provider, executor):
        mock_provider.streams = [
            make_tool_call_stream([("read_file", {"file_path": "/a.md"}, "c1")]),
            make_text_stream("Done"),
        ]

        events = [e async for e in Runner(mock_provider, _config(), executor).iter(
            _user(), [],
        )]
        last_snapshot = [e for e in events if isinstance(e, ToolCallsEvent)][-1]

        assert last_snapshot.to_dict() == {
            "type": "tool_calls",
            "tool_calls": [{
                "id": "c1",
                "type": "function",
                "function": {"name": "read_file", "arguments": {"file_path": "/a.md"}},
            }],
        }


# ---------------------------------------------------------------------------
# Cancellation and deadlines
# ---------------------------------------------------------------------------

class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_stream_ends_without_complete(self, executor):
        provider = StallingProvider()
        token = CancelToken()
        events = []

        async for event in Runner(provider, _config(), executor).iter(
            _user(), [], token,
        ):
            events.append(event)
            if isinstance(event, ContentEvent):
                token.cancel()

        assert [type(e) for e in events] == [ContentEvent]
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_run_raises_when_cancelled(self, executor):
        provider = StallingProvider()
        token = CancelToken()

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        with pytest.raises(ChatCancelledError) as info:
            await Runner(provider, _config(), executor).run(_user(), [], token)
        await canceller

        assert not info.value.retryable

    @pytest.mark.asyncio
    async def test_cancel_skips_remaining_tools(self, mock_provider):
        token = CancelToken()

        class CancellingExecutor(RecordingExecutor):
            async def execute_tool(self, name, args):
                token.cancel()
                return await super().execute_tool(name, args)

        executor = CancellingExecutor()
        mock_provider.streams = [
            make_tool_call_stream([("a", {}, "c1"), ("b", {}, "c2")]),
            make_text_stream("never sent"),
        ]

        events = [e async for e in Runner(mock_provider, _config(), executor).iter(
            _user(), [], token,
        )]

        assert [name for name, _ in executor.calls] == ["a"]
        assert len(mock_provider.call_log) == 1
        assert not any(isinstance(e, CompleteEvent) for e in events)

    @pytest.mark.asyncio
    async def test_loop_timeout(self, executor):
        provider = StallingProvider()
        events = []

        with pytest.raises(ChatTimeoutError) as info:
            async for event in Runner(
                provider, _config(loop_timeout=0.05), executor,
            ).iter(_user(), []):
                events.append(event)

        assert info.value.retryable
        assert isinstance(events[-1], ErrorEvent)
        assert "timed out" in events[-1].error

    @pytest.mark.asyncio
    async def test_stream_read_error_reported(self, executor):
        class BrokenProvider(MockProvider):
            async def stream(self, body):
                self.call_log.append(body)
                yield content_frame("half")
                raise StreamReadError("Failed to read response stream: reset")

        events = []
        with pytest.raises(StreamReadError):
            async for event in Runner(BrokenProvider(), _config(), executor).iter(
                _user(), [],
            ):
                events.append(event)

        assert [type(e) for e in events] == [ContentEvent, ErrorEvent]
        assert "reset" in events[-1].error
