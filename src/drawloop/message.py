from enum import Enum

from pydantic import BaseModel, Field, field_serializer

from drawloop.streaming import ToolCall


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class MessageStatus(Enum):
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


class ChatMessage(BaseModel):
    """A message as the chat panel keeps it in its history.

    Only messages in the ``success`` state are ever sent to the model.
    """

    id: str = ""
    role: MessageRole
    content: str = ""
    mermaid_code: str | None = None
    timestamp: int = 0
    status: MessageStatus = MessageStatus.SUCCESS


class Message(BaseModel):
    role: MessageRole
    content: str = ""

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class AssistantMessage(Message):
    role: MessageRole = MessageRole.ASSISTANT
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list[ToolCall]) -> list[dict]:
        return [t.to_openai() for t in tool_calls]


class ToolResultMessage(Message):
    role: MessageRole = MessageRole.TOOL
    tool_call_id: str
    name: str
