"""
Title Generator - One-shot request for a short session title.
"""

import logging
from typing import Optional

from ..core.context import select_context
from ..llm.base import LLMProvider, Content
from ..models.config import SessionConfigPurpose
from ..models.conversation import Conversation, ConversationRole
from ..models.session import Session

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Generate a title for this chat based on the conversation so far. "
    "Return only the title, at most five words, without quotation marks."
)
MAX_TITLE_LENGTH = 80


def should_generate_title(session: Session, forced: bool = False) -> bool:
    """Titles are generated for the first one or two turns of non-quick sessions."""
    if session.is_quick:
        return False
    return forced or len(session.adjusted_groups) in (1, 2)


def clean_title(text: str) -> str:
    title = text.strip().splitlines()[0] if text.strip() else ""
    title = title.strip().strip("\"'`").strip()
    return title[:MAX_TITLE_LENGTH]


async def generate_title(session: Session, provider: LLMProvider) -> Optional[str]:
    """
    Ask the title model for a title.

    Returns:
        The cleaned title, or None on any failure
    """
    config = session.config.copy_for(SessionConfigPurpose.TITLE).updated(stream=False)
    messages = [c for c in select_context(session) if c.content]
    messages.append(Conversation(role=ConversationRole.USER, content=TITLE_PROMPT))

    try:
        response = await provider.non_streaming_response(messages, config)
    except Exception as e:
        logger.info(
            f"Title generation failed: {e}",
            extra={"extra_fields": {"session_id": session.id, "model": config.model.code}},
        )
        return None

    if not isinstance(response, Content):
        return None
    return clean_title(response.text) or None
