"""LLM module - provides a unified interface over chat backends."""

from .base import LLMProvider, Content, ContentDelta, ToolCallsRequested, StreamEvent, Response
from .openai_provider import OpenAIProvider
from .anthropic_provider import AnthropicProvider
from .google_provider import GoogleProvider
from .factory import create_llm_provider, refresh_provider_models

__all__ = [
    'LLMProvider',
    'Content',
    'ContentDelta',
    'ToolCallsRequested',
    'StreamEvent',
    'Response',
    'OpenAIProvider',
    'AnthropicProvider',
    'GoogleProvider',
    'create_llm_provider',
    'refresh_provider_models',
]
