import inspect
import logging
import time
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from drawloop.config import ServiceConfig
from drawloop.errors import (
    ChatCancelledError,
    ChatServiceError,
    ConfigurationError,
    ResponseFormatError,
)
from drawloop.events import CompleteEvent, ErrorEvent, StreamEvent
from drawloop.message import ChatMessage, Message, MessageRole, MessageStatus
from drawloop.provider import CHAT_COMPLETIONS_PATH, ModelProvider, OpenAICompatibleProvider
from drawloop.runner import CancelToken, Runner, StreamState, drain_stream
from drawloop.tools import Tool, ToolDefinition, ToolExecutor

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[StreamEvent], Any]
ToolSpec = ToolDefinition | Tool


async def _emit(on_chunk: ChunkCallback | None, event: StreamEvent) -> None:
    if on_chunk is None:
        return
    outcome = on_chunk(event)
    if inspect.isawaitable(outcome):
        await outcome


class ChatService:
    """Entry point for the chat panel.

    Holds the connection config and the tool executor; both are owned by
    the caller and may be swapped between requests.  Every call works on
    its own copy of the message history.

    Args:
        config: Endpoint, credentials and generation settings.
        executor: Runs tools for :meth:`send_message_with_tools`.
        provider: Transport override; built from *config* when omitted.
    """

    def __init__(
        self,
        config: ServiceConfig,
        executor: ToolExecutor | None = None,
        provider: ModelProvider | None = None,
    ):
        self.config = config
        self.executor = executor
        self._provider = provider

    def set_tool_executor(self, executor: ToolExecutor) -> None:
        self.executor = executor

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}"

    @property
    def provider(self) -> ModelProvider:
        if self._provider is None:
            self._provider = OpenAICompatibleProvider.from_config(self.config)
        return self._provider

    def _check_config(self, require_executor: bool = False) -> None:
        if not self.config.api_key:
            raise ConfigurationError("API key is empty")
        if not self.config.base_url or not self.config.model:
            raise ConfigurationError("base_url or model is empty")
        if require_executor and self.executor is None:
            raise ConfigurationError("Tool executor is not set")

    def format_messages(self, messages: Sequence[ChatMessage | dict]) -> list[Message]:
        """Project chat history onto the messages sent to the model.

        The configured system prompt goes first; messages that did not
        complete successfully are dropped.
        """
        formatted = []
        if self.config.system_prompt:
            formatted.append(Message(
                role=MessageRole.SYSTEM, content=self.config.system_prompt,
            ))
        for m in messages:
            if not isinstance(m, ChatMessage):
                m = ChatMessage.model_validate(m)
            if m.status is not MessageStatus.SUCCESS:
                continue
            formatted.append(Message(role=m.role, content=m.content))
        return formatted

    def _body(self, messages: list[Message], stream: bool) -> dict:
        body = {
            "model": self.config.model,
            "messages": [m.model_dump() for m in messages],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if stream:
            body["stream"] = True
        return body

    async def send_message(
        self,
        messages: Sequence[ChatMessage | dict],
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Send the history without tools and return the reply text.

        With *on_chunk* the reply is streamed and reported as ``content``
        and ``done`` events; without it a single non-streaming request is
        made.
        """
        self._check_config()
        formatted = self.format_messages(messages)
        if on_chunk is not None:
            return await self._stream_request(formatted, on_chunk)
        return await self._non_stream_request(formatted)

    async def _non_stream_request(self, messages: list[Message]) -> str:
        data = await self.provider.complete(self._body(messages, stream=False))
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise ResponseFormatError("Unexpected response format from API")
        return content

    async def _stream_request(self, messages: list[Message], on_chunk: ChunkCallback) -> str:
        state = StreamState()
        try:
            async for event in drain_stream(
                self.provider.stream(self._body(messages, stream=True)), state,
            ):
                await _emit(on_chunk, event)
        except ChatServiceError as e:
            await _emit(on_chunk, ErrorEvent(error=str(e)))
            raise
        return state.content

    def _definitions(self, tools: Sequence[ToolSpec]) -> list[ToolDefinition]:
        self._check_config(require_executor=True)
        definitions = [t.definition if isinstance(t, Tool) else t for t in tools]
        names = [t.name for t in definitions]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate tool names: {', '.join(duplicates)}")
        return definitions

    async def stream_message_with_tools(
        self,
        messages: Sequence[ChatMessage | dict],
        tools: Sequence[ToolSpec],
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run the tool loop, yielding its events.

        The last event is a ``CompleteEvent`` whose ``result`` is the
        :class:`~drawloop.runner.LoopResult`, unless the run is cancelled.
        """
        definitions = self._definitions(tools)
        formatted = self.format_messages(messages)
        logger.info(
            f"Starting request to {self.endpoint} with model {self.config.model}",
            extra={"data": {"tools": len(definitions), "messages": len(formatted)}},
        )
        runner = Runner(self.provider, self.config, self.executor)
        async for event in runner.iter(formatted, definitions, cancel):
            yield event

    async def send_message_with_tools(
        self,
        messages: Sequence[ChatMessage | dict],
        tools: Sequence[ToolSpec],
        on_chunk: ChunkCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> str:
        """Run the tool loop and return the final answer text."""
        result = None
        async for event in self.stream_message_with_tools(messages, tools, cancel):
            if isinstance(event, CompleteEvent):
                result = event.result
            else:
                await _emit(on_chunk, event)
        if result is None:
            raise ChatCancelledError()
        return result.content

    async def test_connection(self) -> bool:
        """Send a one-line greeting; errors propagate to the caller."""
        greeting = ChatMessage(
            id="test",
            role=MessageRole.USER,
            content="Hello",
            timestamp=int(time.time() * 1000),
            status=MessageStatus.SUCCESS,
        )
        await self.send_message([greeting])
        return True


def create_chat_service(
    config: ServiceConfig, executor: ToolExecutor | None = None,
) -> ChatService:
    return ChatService(config, executor=executor)
