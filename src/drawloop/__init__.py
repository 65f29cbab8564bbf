from drawloop.config import ServiceConfig
from drawloop.errors import (
    ChatCancelledError,
    ChatServiceError,
    ChatTimeoutError,
    ConfigurationError,
    ResponseFormatError,
    StreamReadError,
    TransportError,
)
from drawloop.events import (
    CompleteEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    StreamEvent,
    ToolCallsEvent,
)
from drawloop.instrumentation import instrument, uninstrument
from drawloop.logs import LogBuffer, LogEntry, configure_logging
from drawloop.markup import extract_mermaid_code, strip_mermaid_code
from drawloop.message import ChatMessage, Message, MessageRole, MessageStatus
from drawloop.provider import ModelProvider, OpenAICompatibleProvider
from drawloop.runner import CancelToken, LoopResult, Runner
from drawloop.service import ChatService, create_chat_service
from drawloop.streaming import ToolCall, ToolCallAccumulator
from drawloop.tools import (
    Tool,
    ToolDefinition,
    ToolExecutor,
    ToolRegistry,
    ToolResult,
    is_dangerous_tool,
    tool,
)

__all__ = [
    "CancelToken",
    "ChatCancelledError",
    "ChatMessage",
    "ChatService",
    "ChatServiceError",
    "ChatTimeoutError",
    "CompleteEvent",
    "ConfigurationError",
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "LogBuffer",
    "LogEntry",
    "LoopResult",
    "Message",
    "MessageRole",
    "MessageStatus",
    "ModelProvider",
    "OpenAICompatibleProvider",
    "ResponseFormatError",
    "Runner",
    "ServiceConfig",
    "StreamEvent",
    "StreamReadError",
    "Tool",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolCallsEvent",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "TransportError",
    "configure_logging",
    "create_chat_service",
    "extract_mermaid_code",
    "instrument",
    "is_dangerous_tool",
    "strip_mermaid_code",
    "tool",
    "uninstrument",
]
