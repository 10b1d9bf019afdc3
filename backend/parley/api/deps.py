"""
API dependencies - process-wide store and controller.
"""

from functools import partial
from typing import Optional

from fastapi import HTTPException, status

from ..config import settings
from ..engine.session_controller import SessionController
from ..llm.factory import create_llm_provider
from ..models.conversation import ConversationGroup
from ..models.provider import Provider
from ..models.session import Session
from ..storage.session_store import SessionStore, get_session_store
from ..tools.executor import ToolExecutor

_controller: Optional[SessionController] = None


def init_controller(store: SessionStore) -> SessionController:
    """Create the global controller bound to ``store``, configured from settings."""
    global _controller
    _controller = SessionController(
        store=store,
        tool_executor=ToolExecutor(),
        provider_factory=partial(create_llm_provider, timeout=settings.llm_timeout),
        flush_interval=settings.ui_flush_interval,
        autogen_title=settings.autogen_title,
        max_tool_rounds=settings.max_tool_rounds,
    )
    return _controller


def get_store() -> SessionStore:
    return get_session_store()


def get_controller() -> SessionController:
    if _controller is None:
        raise RuntimeError("Session controller not initialized. Call init_controller() first.")
    return _controller


def find_session(store: SessionStore, session_id: str) -> Session:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session {session_id} not found")
    return session


def find_group(session: Session, group_id: str) -> ConversationGroup:
    group = session.find_group(group_id)
    if group is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Group {group_id} not found")
    return group


def find_provider(store: SessionStore, provider_id: str) -> Provider:
    provider = store.get_provider(provider_id)
    if provider is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Provider {provider_id} not found")
    return provider
