"""Shared typing contracts for the conversation client."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, NamedTuple, Protocol, Sequence, Union


class TokenCounterProtocol(Protocol):
    """Anything that can count the tokens of a piece of text."""

    def count(self, text: str) -> int:
        ...


class Role(str, Enum):
    """Closed set of roles a conversation turn can carry."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class RemoteOperation(str, Enum):
    """Logical operations the client can dispatch against the service."""

    CHAT_COMPLETION = "chat_completion"
    VISION_CHAT_COMPLETION = "vision_chat_completion"
    TOOL_CALL_COMPLETION = "tool_call_completion"
    THREAD_RUN = "thread_run"
    SPEECH_SYNTHESIS = "speech_synthesis"
    TRANSCRIPTION = "transcription"


@dataclass(frozen=True, slots=True)
class Turn:
    """One message in a conversation, tagged by role."""

    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "Turn":
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Turn":
        return cls(Role.ASSISTANT, content)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Turn":
        raw_role = str(payload.get("role", "")).strip().lower()
        try:
            role = Role(raw_role)
        except ValueError as exc:
            raise ValueError(f"Unsupported conversation role: {raw_role!r}") from exc
        return cls(role=role, content=str(payload.get("content", "") or ""))


@dataclass(frozen=True, slots=True)
class TextPart:
    """Plain text segment of a multi-part user message."""

    text: str

    def to_param(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True, slots=True)
class ImagePart:
    """Image reference (URL or data URL) inside a multi-part user message."""

    url: str
    detail: str = "high"

    def to_param(self) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url, "detail": self.detail}}


ContentPart = Union[TextPart, ImagePart]
UserContent = Union[str, Sequence[ContentPart]]


@dataclass(frozen=True, slots=True)
class TextContent:
    """Text block attached to an assistant thread message."""

    value: str


@dataclass(frozen=True, slots=True)
class ImageFileContent:
    """Image file reference attached to an assistant thread message."""

    file_id: str


ThreadMessageContent = Union[TextContent, ImageFileContent]


@dataclass(frozen=True, slots=True)
class AssembledRequest:
    """Token-bounded message sequence computed for a single exchange."""

    system_turn: Turn
    history_turns: tuple[Turn, ...]
    new_turn: Turn
    token_cost: int = 0
    evicted: int = 0
    over_budget: bool = field(default=False)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return (self.system_turn, *self.history_turns, self.new_turn)

    def __len__(self) -> int:
        return len(self.history_turns) + 2


class ThreadReply(NamedTuple):
    """Result of a thread run: the assistant message and the thread it lives on."""

    message: str
    thread_id: str
