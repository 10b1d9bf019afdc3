"""
Session Models - A conversation thread and its branching history tree.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Iterable, TYPE_CHECKING

from ..core.tokens import estimate_tokens
from .config import SessionConfig, SessionConfigPurpose
from .conversation import Conversation, ConversationGroup, ConversationRole, utcnow

if TYPE_CHECKING:
    from ..engine.stream_handler import StreamHandler


@dataclass
class Exchange:
    """
    A user turn and every assistant/tool group that answers it.

    Groups before the first user turn form an exchange with ``user`` unset.
    """
    user: Optional[ConversationGroup]
    replies: List[ConversationGroup] = field(default_factory=list)

    @property
    def groups(self) -> List[ConversationGroup]:
        return ([self.user] if self.user else []) + self.replies


class Session:
    """
    One conversation thread: configuration plus an ordered collection of
    ConversationGroups. Groups are ordered by creation timestamp.
    """

    def __init__(self, config: SessionConfig, title: str = "Chat Session"):
        self.id = uuid.uuid4().hex
        self.date: datetime = utcnow()
        self.order = 0
        self.title = title
        self.is_starred = False
        self.is_quick = False
        self.error_message = ""
        self.reset_marker: Optional[int] = None
        self.token_count = 0
        self.config = config

        # Index of the user group being edited, if the input is in editing mode
        self.editing_index: Optional[int] = None
        self.streamer: Optional["StreamHandler"] = None

        self._groups: List[ConversationGroup] = []

    def __repr__(self) -> str:
        return f"Session(id={self.id}, title={self.title!r}, groups={len(self._groups)})"

    @property
    def groups(self) -> List[ConversationGroup]:
        return sorted(self._groups, key=lambda g: g.date)

    @property
    def adjusted_groups(self) -> List[ConversationGroup]:
        """Groups after the context-reset marker (all groups when unset)."""
        groups = self.groups
        if self.reset_marker is None:
            return groups
        return groups[self.reset_marker + 1:]

    def index_of(self, group: ConversationGroup) -> int:
        for index, candidate in enumerate(self.groups):
            if candidate is group:
                return index
        raise ValueError(f"Group {group.id} does not belong to session {self.id}")

    def find_group(self, group_id: str) -> Optional[ConversationGroup]:
        for group in self._groups:
            if group.id == group_id:
                return group
        return None

    def add_group(self, conversation: Conversation) -> ConversationGroup:
        """Append a new group holding ``conversation`` at the end of the tree."""
        date = utcnow()
        if self._groups:
            last = max(g.date for g in self._groups)
            if date <= last:
                date = last + timedelta(microseconds=1)
        conversation.date = date
        group = ConversationGroup(conversation, session=self, date=date)
        self._groups.append(group)
        return group

    def attach_groups(self, groups: Iterable[ConversationGroup]) -> None:
        """Adopt already-built groups (fork, restore) keeping their dates."""
        for group in groups:
            group.session = self
            self._groups.append(group)

    def remove_groups(self, groups: Iterable[ConversationGroup]) -> None:
        doomed = {id(g) for g in groups}
        kept = []
        for group in self._groups:
            if id(group) in doomed:
                group.session = None
            else:
                kept.append(group)
        self._groups = kept

    def truncate_after(self, index: int) -> None:
        """Drop every group after tree index ``index``."""
        self.remove_groups(self.groups[index + 1:])

    def clear(self) -> None:
        self.remove_groups(list(self._groups))

    def exchanges(self) -> List[Exchange]:
        """Partition the ordered tree into user turns and their replies."""
        exchanges: List[Exchange] = []
        for group in self.groups:
            if group.role == ConversationRole.USER:
                exchanges.append(Exchange(user=group))
            elif exchanges:
                exchanges[-1].replies.append(group)
            else:
                exchanges.append(Exchange(user=None, replies=[group]))
        return exchanges

    def exchange_of(self, group: ConversationGroup) -> Exchange:
        for exchange in self.exchanges():
            if any(g is group for g in exchange.groups):
                return exchange
        raise ValueError(f"Group {group.id} does not belong to session {self.id}")

    def unset_reset_marker(self, group: ConversationGroup) -> None:
        """Clear the marker when ``group`` sits at or before it."""
        if self.reset_marker is None:
            return
        try:
            index = self.index_of(group)
        except ValueError:
            return
        if index < self.reset_marker + 1:
            self.reset_marker = None

    def refresh_tokens(self, tool_tokens: int = 0, input_text: str = "") -> int:
        message_tokens = sum(g.token_count for g in self.adjusted_groups)
        self.token_count = (
            message_tokens
            + estimate_tokens(self.config.system_prompt)
            + tool_tokens
            + estimate_tokens(input_text)
        )
        return self.token_count

    def copy(
        self,
        from_group: Optional[ConversationGroup] = None,
        purpose: Optional[SessionConfigPurpose] = None,
    ) -> "Session":
        """
        Fork: a new session whose tree deep-copies every group up to and
        including ``from_group`` (all groups when not given).
        """
        purpose = purpose or SessionConfigPurpose.CHAT
        forked = Session(config=self.config.copy_for(purpose))
        prefix = {
            SessionConfigPurpose.CHAT: "(fork)",
            SessionConfigPurpose.QUICK: "(quick)",
            SessionConfigPurpose.TITLE: "(title)",
        }[purpose]
        forked.title = f"{prefix} {self.title}"
        forked.is_quick = purpose == SessionConfigPurpose.QUICK

        groups = self.groups
        if from_group is not None:
            groups = groups[:self.index_of(from_group) + 1]
        forked.attach_groups(g.copy() for g in groups)
        return forked
