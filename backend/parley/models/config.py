"""
Session Config - Immutable generation settings snapshot for one session.
"""

from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

from .provider import AIModel, Provider


class SessionConfigPurpose(str, Enum):
    CHAT = "chat"
    QUICK = "quick"
    TITLE = "title"


DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


class SessionConfig(BaseModel):
    """
    Generation settings for a session.

    Frozen: every run receives this exact snapshot. Changing settings means
    replacing the session's config between runs via ``updated``.
    """
    model_config = ConfigDict(frozen=True)

    provider: Provider
    model: AIModel
    purpose: SessionConfigPurpose = SessionConfigPurpose.CHAT

    stream: bool = True
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    tools: Tuple[str, ...] = ()  # enabled tool names

    @classmethod
    def for_provider(
        cls,
        provider: Provider,
        purpose: SessionConfigPurpose = SessionConfigPurpose.CHAT,
        **kwargs,
    ) -> "SessionConfig":
        """Build a config using the provider's designated model for the purpose."""
        if purpose == SessionConfigPurpose.QUICK:
            model = provider.quick_chat_model
        elif purpose == SessionConfigPurpose.TITLE:
            model = provider.title_model
        else:
            model = provider.chat_model
        return cls(provider=provider, model=model, purpose=purpose, **kwargs)

    def updated(self, **changes) -> "SessionConfig":
        """Return a validated copy with the given fields replaced."""
        data = self.model_dump()
        data.update(changes)
        data["provider"] = changes.get("provider", self.provider)
        data["model"] = changes.get("model", self.model)
        return SessionConfig.model_validate(data)

    def copy_for(self, purpose: SessionConfigPurpose) -> "SessionConfig":
        """Copy for a forked session with the given purpose."""
        if purpose == SessionConfigPurpose.CHAT:
            return self.updated(purpose=purpose)
        if purpose == SessionConfigPurpose.QUICK:
            return self.updated(purpose=purpose, model=self.provider.quick_chat_model)
        return self.updated(purpose=purpose, model=self.provider.title_model, tools=())
