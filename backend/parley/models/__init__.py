"""Models module - the conversation tree, configuration and backup records."""

from .conversation import (
    Conversation, ConversationGroup, ConversationRole, TypedData, ToolCall, ToolResponse,
)
from .provider import AIModel, ModelType, Provider, ProviderType, pick_default_provider
from .config import SessionConfig, SessionConfigPurpose
from .session import Session, Exchange
from .backup import ChatSessionBackup, export_backup, import_backup

__all__ = [
    'Conversation', 'ConversationGroup', 'ConversationRole', 'TypedData', 'ToolCall', 'ToolResponse',
    'AIModel', 'ModelType', 'Provider', 'ProviderType', 'pick_default_provider',
    'SessionConfig', 'SessionConfigPurpose',
    'Session', 'Exchange',
    'ChatSessionBackup', 'export_backup', 'import_backup',
]
