import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, suppress
from dataclasses import dataclass

from drawloop.config import ServiceConfig
from drawloop.conversation import Conversation
from drawloop.errors import ChatCancelledError, ChatServiceError, ChatTimeoutError
from drawloop.events import (
    CompleteEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    StreamEvent,
    ToolCallsEvent,
)
from drawloop.instrumentation import (
    completion_span,
    loop_span,
    record_error,
    record_finish,
    tool_span,
)
from drawloop.message import AssistantMessage, Message, MessageRole, ToolResultMessage
from drawloop.provider import ModelProvider
from drawloop.sse import iter_payloads, read_delta
from drawloop.streaming import ToolCall, ToolCallAccumulator
from drawloop.tools import ToolDefinition, ToolExecutor, ToolResult

logger = logging.getLogger(__name__)

FINISH_STOP = "stop"
FINISH_TOOL_CALLS = "tool_calls"


class CancelToken:
    """Lets a caller abort a running request from another task."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class _Cancelled(Exception):
    pass


@dataclass
class LoopResult:
    """The result of a single Runner.run() invocation."""

    content: str
    conversation: Conversation
    iterations: int
    finish_reason: str | None = None
    exhausted: bool = False


@dataclass
class StreamState:
    """What one provider stream produced so far."""

    content: str = ""
    finish_reason: str | None = None


async def _next_chunk(
    chunks: AsyncIterator[bytes],
    cancel: CancelToken | None,
    deadline: float | None,
) -> bytes | None:
    """Await the next body chunk; ``None`` once the body is exhausted."""

    async def read():
        try:
            return await chunks.__anext__()
        except StopAsyncIteration:
            return None

    if cancel is None and deadline is None:
        return await read()
    if cancel is not None and cancel.cancelled:
        raise _Cancelled()

    reader = asyncio.ensure_future(read())
    waiters = {reader}
    watcher = None
    if cancel is not None:
        watcher = asyncio.ensure_future(cancel.wait())
        waiters.add(watcher)
    timeout = None
    if deadline is not None:
        timeout = max(0.0, deadline - asyncio.get_running_loop().time())
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        if watcher is not None:
            watcher.cancel()
    if reader in done:
        return reader.result()

    reader.cancel()
    with suppress(asyncio.CancelledError):
        await reader
    if cancel is not None and cancel.cancelled:
        raise _Cancelled()
    raise ChatTimeoutError("Request timed out")


async def guard_chunks(
    chunks: AsyncIterator[bytes],
    cancel: CancelToken | None = None,
    deadline: float | None = None,
) -> AsyncIterator[bytes]:
    """Re-yield *chunks*, aborting reads on cancellation or deadline."""
    async with aclosing(chunks):
        while True:
            chunk = await _next_chunk(chunks, cancel, deadline)
            if chunk is None:
                return
            yield chunk


async def drain_stream(
    chunks: AsyncIterator[bytes],
    state: StreamState,
    accumulator: ToolCallAccumulator | None = None,
    cancel: CancelToken | None = None,
    deadline: float | None = None,
) -> AsyncIterator[StreamEvent]:
    """Consume one streamed response, updating *state* as events go by.

    Tool-call deltas are merged into *accumulator* when one is given and
    ignored otherwise.
    """
    async for payload in iter_payloads(guard_chunks(chunks, cancel, deadline)):
        delta = read_delta(payload)
        if delta.content:
            state.content += delta.content
            yield ContentEvent(content=delta.content)
        if delta.tool_calls is not None and accumulator is not None:
            for tool_delta in delta.tool_calls:
                accumulator.apply(tool_delta)
            snapshot = accumulator.snapshot()
            if snapshot:
                yield ToolCallsEvent(tool_calls=snapshot)
        if delta.finish_reason:
            state.finish_reason = delta.finish_reason
            yield DoneEvent()


class Runner:
    """Executes the tool-calling loop against a streaming provider.

    Each iteration sends the running conversation, drains the stream and
    decides on the finish reason: ``stop`` ends the loop, ``tool_calls``
    executes the requested tools and loops again, anything else ends the
    loop with whatever text arrived.  The loop stops after
    ``config.max_iterations`` round-trips regardless.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        provider: Transport used for every request.
        config: Model name, sampling settings and loop limits.
        executor: Runs the tools the model asks for.
    """

    def __init__(
        self,
        provider: ModelProvider,
        config: ServiceConfig,
        executor: ToolExecutor,
    ):
        self.provider = provider
        self.config = config
        self.executor = executor

    async def run(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        cancel: CancelToken | None = None,
    ) -> LoopResult:
        """Run the loop until a final answer or the iteration ceiling."""
        result: LoopResult | None = None
        async for event in self.iter(messages, tools, cancel):
            if isinstance(event, CompleteEvent):
                result = event.result
        if result is None:
            raise ChatCancelledError()
        return result

    async def iter(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run the loop, yielding events as execution proceeds.

        A cancelled run ends without a ``DoneEvent`` or ``CompleteEvent``.
        """
        conversation = Conversation.start(messages)
        tool_schemas = [t.to_openai() for t in tools]
        accumulator = ToolCallAccumulator()
        deadline = None
        if self.config.loop_timeout is not None:
            deadline = asyncio.get_running_loop().time() + self.config.loop_timeout
        max_iterations = self.config.max_iterations
        iterations = 0
        state = StreamState()

        async with loop_span(self.config.model, len(tools)) as span:
            try:
                while iterations < max_iterations:
                    iterations += 1
                    accumulator.clear()
                    if deadline is not None and asyncio.get_running_loop().time() >= deadline:
                        raise ChatTimeoutError(
                            f"Tool loop exceeded {self.config.loop_timeout}s"
                        )
                    logger.info(f"Iteration {iterations}")

                    body = self._request_body(conversation, tool_schemas)
                    logger.debug("Request body", extra={"data": body})
                    state = StreamState()
                    async with completion_span(self.config.model, iterations) as cspan:
                        async for event in drain_stream(
                            self.provider.stream(body), state, accumulator,
                            cancel, deadline,
                        ):
                            yield event
                        record_finish(cspan, state.finish_reason)

                    if state.finish_reason == FINISH_STOP:
                        yield self._complete(conversation, state, iterations)
                        return

                    if state.finish_reason == FINISH_TOOL_CALLS and len(accumulator) > 0:
                        calls = accumulator.finalize()
                        logger.info(f"Received {len(calls)} tool call(s)")
                        results = []
                        for tc in calls:
                            if cancel is not None and cancel.cancelled:
                                raise _Cancelled()
                            results.append(await self._execute(tc))
                        if calls:
                            conversation.append(AssistantMessage(
                                content=state.content, tool_calls=calls,
                            ))
                        else:
                            conversation.append(Message(
                                role=MessageRole.ASSISTANT, content=state.content,
                            ))
                        conversation.extend(results)
                        accumulator.clear()
                        continue

                    logger.info(
                        f"Request finished with finish_reason={state.finish_reason}"
                    )
                    yield self._complete(conversation, state, iterations)
                    return

                logger.warning(
                    f"Reached maximum iterations ({max_iterations}), "
                    "returning last response"
                )
                yield self._complete(conversation, state, iterations, exhausted=True)
            except _Cancelled:
                logger.info(f"Request cancelled during iteration {iterations}")
            except ChatServiceError as e:
                record_error(span, e)
                logger.error(f"Request failed: {e}")
                yield ErrorEvent(error=str(e))
                raise

    def _request_body(self, conversation: Conversation, tool_schemas: list[dict]) -> dict:
        body = {
            "model": self.config.model,
            "messages": conversation.to_payload(),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": True,
        }
        if tool_schemas:
            body["tools"] = tool_schemas
        return body

    def _complete(
        self,
        conversation: Conversation,
        state: StreamState,
        iterations: int,
        exhausted: bool = False,
    ) -> CompleteEvent:
        logger.info(f"Request complete, content length {len(state.content)}")
        return CompleteEvent(result=LoopResult(
            content=state.content,
            conversation=conversation,
            iterations=iterations,
            finish_reason=state.finish_reason,
            exhausted=exhausted,
        ))

    async def _execute(self, tc: ToolCall) -> ToolResultMessage:
        logger.info(
            f"Calling {tc.name}",
            extra={"data": {"tool_call_id": tc.id, "arguments": tc.arguments}},
        )
        async with tool_span(tc.name, tc.id) as span:
            try:
                result = await self.executor.execute_tool(tc.name, tc.arguments)
                if isinstance(result, dict):
                    result = ToolResult.model_validate(result)
            except Exception as e:
                record_error(span, e)
                logger.error(f"Tool {tc.name} raised: {e}")
                content = json.dumps({"error": str(e) or type(e).__name__})
            else:
                if result.success:
                    content = result.result or json.dumps({})
                else:
                    content = json.dumps({"error": result.error})
        logger.info(f"Tool {tc.name} result: {content}")
        return ToolResultMessage(content=content, tool_call_id=tc.id, name=tc.name)
