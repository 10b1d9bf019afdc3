"""
Conversation Models - A single message and the turn-slot that holds its variants.
"""

import copy
import mimetypes
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, TYPE_CHECKING

from ..core.tokens import estimate_tokens

if TYPE_CHECKING:
    from .session import Session


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


@dataclass
class TypedData:
    """
    A binary attachment (image, document, audio...) carried by a message.
    """
    data: bytes
    file_name: str
    mime_type: str = "application/octet-stream"

    @property
    def file_extension(self) -> str:
        if "." in self.file_name:
            return self.file_name.rsplit(".", 1)[-1].lower()
        guessed = mimetypes.guess_extension(self.mime_type) or ""
        return guessed.lstrip(".") or "bin"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/") or self.mime_type in (
            "application/json", "application/xml",
        )

    @property
    def file_size(self) -> str:
        return f"{len(self.data)} bytes"

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    @staticmethod
    def image(data: bytes, file_name: str = "image.png", mime_type: str = "image/png") -> "TypedData":
        return TypedData(data=data, file_name=file_name, mime_type=mime_type)


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    tool_call_id: str
    tool: str
    arguments: str = "{}"  # raw JSON object text


@dataclass
class ToolResponse:
    """The materialized outcome of one tool call."""
    tool_call_id: str
    tool: str
    processed_content: str = ""
    processed_data: List[TypedData] = field(default_factory=list)
    is_error: bool = False


@dataclass(eq=False)
class Conversation:
    """
    One concrete message. Owned by exactly one ConversationGroup.
    """
    role: ConversationRole
    content: str = ""
    data_files: List[TypedData] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_response: Optional[ToolResponse] = None
    is_replying: bool = False
    model: Optional[str] = None
    date: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    group: Optional["ConversationGroup"] = field(default=None, repr=False)

    @property
    def is_empty(self) -> bool:
        """Nothing was produced: no text, no tool calls, no data."""
        return not self.content and not self.tool_calls and not self.data_files

    @property
    def token_count(self) -> int:
        count = estimate_tokens(self.content)
        if self.tool_response:
            count += estimate_tokens(self.tool_response.processed_content)
        for call in self.tool_calls:
            count += estimate_tokens(call.arguments)
        return count

    def copy(self) -> "Conversation":
        """Deep copy detached from any group."""
        return Conversation(
            role=self.role,
            content=self.content,
            data_files=copy.deepcopy(self.data_files),
            tool_calls=copy.deepcopy(self.tool_calls),
            tool_response=copy.deepcopy(self.tool_response),
            is_replying=False,
            model=self.model,
            date=self.date,
        )


class ConversationGroup:
    """
    One turn-slot in a session. Holds the regenerated variants of that turn
    and which one is active. Never empty: removing the last variant removes
    the group from its session.
    """

    def __init__(
        self,
        conversation: Conversation,
        session: Optional["Session"] = None,
        date: Optional[datetime] = None,
    ):
        self.id = uuid.uuid4().hex
        self.date = date or conversation.date
        self.session = session
        self.conversations: List[Conversation] = []
        self.active_index = 0
        self.add_conversation(conversation)

    def __repr__(self) -> str:
        return (
            f"ConversationGroup(role={self.role.value}, variants={len(self.conversations)}, "
            f"active={self.active_index})"
        )

    @property
    def active_conversation(self) -> Conversation:
        return self.conversations[self.active_index]

    @property
    def role(self) -> ConversationRole:
        return self.active_conversation.role

    @property
    def token_count(self) -> int:
        return self.active_conversation.token_count

    def add_conversation(self, conversation: Conversation) -> None:
        """Append a variant and make it active."""
        conversation.group = self
        self.conversations.append(conversation)
        self.active_index = len(self.conversations) - 1

    def delete_conversation(self, conversation: Conversation) -> None:
        """
        Remove one variant. Deleting the last remaining variant deletes the
        whole group from its session.
        """
        index = self.conversations.index(conversation)
        del self.conversations[index]
        conversation.group = None

        if not self.conversations:
            self.active_index = 0
            if self.session is not None:
                self.session.remove_groups([self])
            return

        if index < self.active_index or self.active_index >= len(self.conversations):
            self.active_index -= 1
        self.active_index = max(0, min(self.active_index, len(self.conversations) - 1))

    def set_active(self, index: int) -> None:
        if not 0 <= index < len(self.conversations):
            raise IndexError(
                f"Variant index {index} out of range for group with {len(self.conversations)} variants"
            )
        self.active_index = index

    def next_variant(self) -> None:
        if self.active_index < len(self.conversations) - 1:
            self.active_index += 1

    def previous_variant(self) -> None:
        if self.active_index > 0:
            self.active_index -= 1

    def copy(self) -> "ConversationGroup":
        """Deep copy with an independent variant list and the same selection."""
        conversations = [c.copy() for c in self.conversations]
        group = ConversationGroup(conversations[0], date=self.date)
        for conversation in conversations[1:]:
            group.add_conversation(conversation)
        group.active_index = self.active_index
        return group
