from collections.abc import Iterable

from pydantic import BaseModel, Field

from drawloop.message import Message


class Conversation(BaseModel):
    """Append-only message log for a single top-level request.

    The payload sent to the endpoint is exactly this sequence, in order.
    """

    messages: list[Message] = Field(default_factory=list)

    @classmethod
    def start(cls, messages: Iterable[Message]) -> "Conversation":
        """Seed a working copy; the caller's list is left untouched."""
        return cls(messages=list(messages))

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        self.messages.extend(messages)

    def to_payload(self) -> list[dict]:
        return [m.model_dump() for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)
