"""Chat message models shared by the bulk and streaming chat paths.

Bulk requests carry ``TextMessage`` items (``{id, role, content}``); streaming
requests carry ``PartsMessage`` items (``{id, role, parts, metadata}``). The
two variants expose the same ``content`` text and ``to_record()`` so the rest
of the pipeline never has to look at which shape it was given.
"""
import uuid
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]


def new_message_id() -> str:
    return uuid.uuid4().hex


class MessagePart(BaseModel):
    """One part of a streaming-mode message. Only ``text`` parts carry content."""
    type: str
    text: Optional[str] = None


class TextMessage(BaseModel):
    """Bulk-mode message."""
    id: str = Field(default_factory=new_message_id)
    role: Role
    content: str

    def to_record(self) -> Dict[str, str]:
        return {"id": self.id, "role": self.role, "content": self.content}

    def to_model_input(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class PartsMessage(BaseModel):
    """Streaming-mode message; ``content`` joins all text parts."""
    id: str = Field(default_factory=new_message_id)
    role: Role
    parts: List[MessagePart] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    @property
    def content(self) -> str:
        return "".join(p.text or "" for p in self.parts if p.type == "text")

    def to_record(self) -> Dict[str, str]:
        return {"id": self.id, "role": self.role, "content": self.content}

    def to_model_input(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


ChatMessage = Union[TextMessage, PartsMessage]


def assistant_message(text: str) -> TextMessage:
    """Build the assistant message persisted and returned for a finished turn."""
    return TextMessage(role="assistant", content=text)
