"""
LLM Provider Factory - Creates the adapter for a configured provider.
"""

import logging
from typing import Dict, Optional, Type

import httpx

from ..models.provider import Provider, ProviderType
from ..tools.registry import ToolRegistry
from .base import LLMProvider
from .anthropic_provider import AnthropicProvider
from .google_provider import GoogleProvider
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

_ADAPTERS: Dict[ProviderType, Type[LLMProvider]] = {
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.GOOGLE: GoogleProvider,
}


def create_llm_provider(
    provider: Provider,
    timeout: float = 120.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    tool_registry: Optional[ToolRegistry] = None,
) -> LLMProvider:
    """
    Create the adapter matching ``provider.type``.

    Args:
        provider: Provider record (host, credentials, models)
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests inject a MockTransport)
        tool_registry: Registry used to resolve enabled tool definitions

    Returns:
        LLMProvider instance
    """
    adapter = _ADAPTERS.get(provider.type)
    if adapter is None:
        raise ValueError(f"Unsupported LLM provider: {provider.type}")
    return adapter(provider, timeout=timeout, transport=transport, tool_registry=tool_registry)


async def refresh_provider_models(provider: Provider, **kwargs) -> int:
    """
    Query the backend catalog and merge new models into ``provider``.

    Returns:
        Number of models added
    """
    adapter = create_llm_provider(provider, **kwargs)
    discovered = await adapter.refresh_models()
    added = provider.add_models(discovered)
    logger.info(
        f"Refreshed models for {provider.name}: {len(discovered)} discovered, {added} added",
        extra={"extra_fields": {"provider_id": provider.id, "discovered": len(discovered), "added": added}},
    )
    return added
