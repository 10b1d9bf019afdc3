"""
Provider Models - Backends, their credentials and their model catalogs.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, List, Sequence
from pydantic import BaseModel, ConfigDict, Field


class ModelType(str, Enum):
    CHAT = "chat"
    IMAGE = "image"


class AIModel(BaseModel):
    """One model offered by a provider."""
    model_config = ConfigDict(protected_namespaces=())

    code: str
    name: str = ""
    model_type: ModelType = ModelType.CHAT
    order: int = 0
    is_enabled: bool = True

    def display_name(self) -> str:
        return self.name or self.code


class ProviderType(str, Enum):
    OPENAI = "openai"        # token-by-token chat completions
    ANTHROPIC = "anthropic"  # messages API
    GOOGLE = "google"        # turn-based generateContent

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def default_host(self) -> str:
        return _DEFAULT_HOSTS[self]

    def default_models(self) -> List[AIModel]:
        return [m.model_copy() for m in _DEFAULT_MODELS[self]]


_DISPLAY_NAMES: Dict[ProviderType, str] = {
    ProviderType.OPENAI: "OpenAI",
    ProviderType.ANTHROPIC: "Anthropic",
    ProviderType.GOOGLE: "Google",
}

_DEFAULT_HOSTS: Dict[ProviderType, str] = {
    ProviderType.OPENAI: "https://api.openai.com/v1",
    ProviderType.ANTHROPIC: "https://api.anthropic.com/v1",
    ProviderType.GOOGLE: "https://generativelanguage.googleapis.com/v1beta",
}

_DEFAULT_MODELS: Dict[ProviderType, List[AIModel]] = {
    ProviderType.OPENAI: [
        AIModel(code="gpt-4o-mini", name="GPT-4o Mini", order=0),
        AIModel(code="gpt-4o", name="GPT-4o", order=1),
        AIModel(code="dall-e-3", name="DALL-E 3", model_type=ModelType.IMAGE, order=2),
    ],
    ProviderType.ANTHROPIC: [
        AIModel(code="claude-3-5-haiku-latest", name="Claude 3.5 Haiku", order=0),
        AIModel(code="claude-3-5-sonnet-latest", name="Claude 3.5 Sonnet", order=1),
    ],
    ProviderType.GOOGLE: [
        AIModel(code="gemini-1.5-flash", name="Gemini 1.5 Flash", order=0),
        AIModel(code="gemini-1.5-pro", name="Gemini 1.5 Pro", order=1),
    ],
}


class Provider(BaseModel):
    """
    A configured backend. Read-only while a generation is running.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    order: int = 0
    name: str = ""
    host: str = ""
    api_key: str = ""
    type: ProviderType = ProviderType.OPENAI
    is_enabled: bool = True

    chat_model: AIModel
    quick_chat_model: AIModel
    title_model: AIModel
    image_model: Optional[AIModel] = None

    models: List[AIModel] = Field(default_factory=list)

    @property
    def sorted_models(self) -> List[AIModel]:
        return sorted(self.models, key=lambda m: m.order)

    @property
    def chat_models(self) -> List[AIModel]:
        return [m for m in self.sorted_models if m.model_type == ModelType.CHAT]

    @property
    def image_models(self) -> List[AIModel]:
        return [m for m in self.sorted_models if m.model_type == ModelType.IMAGE]

    def find_model(self, code: str) -> Optional[AIModel]:
        for model in self.models:
            if model.code == code:
                return model
        return None

    def add_models(self, models: List[AIModel]) -> int:
        """Merge models by code without duplicating existing entries."""
        known = {m.code for m in self.models}
        added = 0
        for model in models:
            if model.code in known:
                continue
            model.order = len(self.models)
            self.models.append(model)
            known.add(model.code)
            added += 1
        return added

    @classmethod
    def factory(cls, type: ProviderType, api_key: str = "", host: Optional[str] = None) -> "Provider":
        """Build a provider with the defaults for its backend kind."""
        models = type.default_models()
        chat_models = [m for m in models if m.model_type == ModelType.CHAT]
        image_models = [m for m in models if m.model_type == ModelType.IMAGE]
        first = chat_models[0]
        return cls(
            name=type.display_name,
            host=host or type.default_host,
            api_key=api_key,
            type=type,
            chat_model=first,
            quick_chat_model=first,
            title_model=first,
            image_model=image_models[0] if image_models else None,
            models=models,
        )


def pick_default_provider(providers: Sequence[Provider]) -> Provider:
    """First enabled provider by order, else the first one, else a fresh OpenAI record."""
    enabled = [p for p in providers if p.is_enabled]
    if enabled:
        return sorted(enabled, key=lambda p: p.order)[0]
    if providers:
        return providers[0]
    return Provider.factory(ProviderType.OPENAI)
