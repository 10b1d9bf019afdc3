"""
Backup Models - The versioned JSON export format for sessions.

The format is intentionally flat: only the active variant of each group is
written, and attachments and tool data are not preserved.
"""

from datetime import datetime
from typing import Optional, List, Sequence, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .config import SessionConfig
from .conversation import Conversation, ConversationGroup, ConversationRole
from .provider import Provider, pick_default_provider
from .session import Session

BACKUP_VERSION = 1


class _BackupModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationBackup(_BackupModel):
    date: datetime
    content: str
    role: ConversationRole

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationBackup":
        return cls(date=conversation.date, content=conversation.content, role=conversation.role)

    def to_conversation(self) -> Conversation:
        return Conversation(role=self.role, content=self.content, date=self.date)


class ConversationGroupBackup(_BackupModel):
    date: datetime
    conversation: ConversationBackup


class ChatSessionBackup(_BackupModel):
    id: str
    date: datetime
    order: int = 0
    title: str = "Chat Session"
    is_starred: bool = False
    error_message: str = ""
    reset_marker: Optional[int] = None
    groups: List[ConversationGroupBackup] = Field(default_factory=list)

    @classmethod
    def from_session(cls, session: Session) -> "ChatSessionBackup":
        return cls(
            id=session.id,
            date=session.date,
            order=session.order,
            title=session.title,
            is_starred=session.is_starred,
            error_message=session.error_message,
            reset_marker=session.reset_marker,
            groups=[
                ConversationGroupBackup(
                    date=group.date,
                    conversation=ConversationBackup.from_conversation(group.active_conversation),
                )
                for group in session.groups
            ],
        )

    def to_session(self, providers: Sequence[Provider] = ()) -> Session:
        """Rebuild a session bound to the first enabled provider."""
        provider = pick_default_provider(providers)

        session = Session(config=SessionConfig.for_provider(provider), title=self.title)
        session.id = self.id
        session.date = self.date
        session.order = self.order
        session.is_starred = self.is_starred
        session.error_message = self.error_message
        session.reset_marker = self.reset_marker
        session.attach_groups(
            ConversationGroup(g.conversation.to_conversation(), date=g.date) for g in self.groups
        )
        return session


class BackupDocument(_BackupModel):
    """Versioned envelope accepted on import alongside the bare array."""
    version: int = BACKUP_VERSION
    sessions: List[ChatSessionBackup] = Field(default_factory=list)


_records = TypeAdapter(List[ChatSessionBackup])


def export_backup(sessions: Sequence[Session]) -> bytes:
    """Serialize non-quick sessions to a JSON array of session records."""
    records = [ChatSessionBackup.from_session(s) for s in sessions if not s.is_quick]
    return _records.dump_json(records, by_alias=True, indent=2)


def import_backup(data: Union[str, bytes], providers: Sequence[Provider] = ()) -> List[Session]:
    """Restore sessions from backup JSON (bare array or versioned envelope)."""
    raw = data.encode("utf-8") if isinstance(data, str) else data
    if raw.lstrip().startswith(b"["):
        records = _records.validate_json(raw)
    else:
        records = BackupDocument.model_validate_json(raw).sessions
    return [record.to_session(providers) for record in records]
