"""
Context Selector - Projects a session's tree onto the message list sent to a provider.
"""

from typing import Optional, List

from ..models.conversation import Conversation, ConversationRole
from ..models.session import Session


def select_context(session: Session, regen_content: Optional[str] = None) -> List[Conversation]:
    """
    Build the ordered messages for a request.

    Only groups after the context-reset marker are used, and only the active
    variant of each. For regeneration, the last user message is replaced by a
    detached copy carrying ``regen_content`` (attachments kept) and the last
    assistant message is dropped. The tree itself is never modified.

    Args:
        session: Session to read
        regen_content: Replacement text for the last user message

    Returns:
        List of conversations in tree order
    """
    conversations = [g.active_conversation for g in session.adjusted_groups]

    if regen_content is not None:
        last_user = _last_index(conversations, ConversationRole.USER)
        if last_user is not None:
            original = conversations[last_user]
            conversations[last_user] = Conversation(
                role=ConversationRole.USER,
                content=regen_content,
                data_files=list(original.data_files),
                date=original.date,
            )
        last_assistant = _last_index(conversations, ConversationRole.ASSISTANT)
        if last_assistant is not None:
            del conversations[last_assistant]

    return conversations


def _last_index(conversations: List[Conversation], role: ConversationRole) -> Optional[int]:
    for index in range(len(conversations) - 1, -1, -1):
        if conversations[index].role == role:
            return index
    return None
