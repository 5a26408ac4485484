"""Conversation data model shared by the loop, the formatter and sessions."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError

MessageRole = Literal["user", "model", "tool-result"]


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    content: str


class ThoughtPart(BaseModel):
    """Model reasoning; a present signature must round-trip unmodified."""

    type: Literal["thought"] = "thought"
    content: str
    signature: str | None = None


class ToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    call_id: str | None = None
    name: str
    result: str
    is_error: bool = False


class ErrorPart(BaseModel):
    type: Literal["error"] = "error"
    content: str


Part = Annotated[
    Union[TextPart, ThoughtPart, ToolCallPart, ToolResultPart, ErrorPart],
    Field(discriminator="type"),
]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Message(BaseModel):
    """One entry of a conversation."""

    role: MessageRole
    parts: list[Part] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", parts=[TextPart(content=text)])

    @classmethod
    def tool_result(cls, record: ToolCallRecord) -> Message:
        return cls(
            role="tool-result",
            parts=[
                ToolResultPart(
                    call_id=record.id,
                    name=record.name,
                    result=record.result or "",
                    is_error=record.is_error,
                )
            ],
        )

    @classmethod
    def error(cls, text: str) -> Message:
        return cls(role="model", parts=[ErrorPart(content=text)])

    def text(self) -> str:
        return "".join(part.content for part in self.parts if isinstance(part, TextPart))

    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]


@dataclass(slots=True)
class ToolCallRecord:
    """A requested tool call and, once executed, its outcome."""

    id: str
    name: str
    args: dict[str, Any]
    result: str | None = None
    is_error: bool = False

    @property
    def resolved(self) -> bool:
        return self.result is not None

    def resolve(self, result: str, *, is_error: bool = False) -> None:
        if self.result is not None:
            raise RuntimeError(f"Tool call '{self.id}' already has a result")
        self.result = result
        self.is_error = is_error


class ConversationLoadError(RuntimeError):
    """Raised when a serialized conversation cannot be decoded."""


class Conversation:
    """Append-only ordered sequence of messages."""

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def to_payload(self) -> list[dict[str, Any]]:
        return [message.model_dump(mode="json") for message in self._messages]

    @classmethod
    def from_payload(cls, payload: Any) -> Conversation:
        if not isinstance(payload, list):
            raise ConversationLoadError("Conversation payload must be a list of messages")
        try:
            return cls(Message.model_validate(item) for item in payload)
        except ValidationError as exc:
            raise ConversationLoadError(str(exc)) from exc


__all__ = [
    "Conversation",
    "ConversationLoadError",
    "ErrorPart",
    "Message",
    "MessageRole",
    "Part",
    "TextPart",
    "ThoughtPart",
    "ToolCallPart",
    "ToolCallRecord",
    "ToolResultPart",
]
