"""
Tool Registry - Name lookup for the tools available to sessions.
"""

from typing import Any, Dict, Iterable, List, Optional

from .base import ChatTool


class ToolRegistry:
    """Maps tool names to tool instances."""

    def __init__(self, tools: Iterable[ChatTool] = ()):
        self._tools: Dict[str, ChatTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ChatTool) -> None:
        if not tool.name:
            raise ValueError(f"Tool {type(tool).__name__} has no name")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ChatTool]:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return sorted(self._tools)

    def definitions(self, enabled: Iterable[str]) -> List[Dict[str, Any]]:
        """Function definitions for the enabled tools that are registered."""
        return [self._tools[name].definition() for name in enabled if name in self._tools]


def build_default_registry(config: Any) -> ToolRegistry:
    """
    Create the registry of built-in tools from settings.

    Args:
        config: Settings object with tool credentials
    """
    from .image_generator import ImageGeneratorTool
    from .web_search import WebSearchTool

    return ToolRegistry([
        WebSearchTool(api_key=config.web_search_api_key or "", provider=config.web_search_provider),
        ImageGeneratorTool(
            api_key=config.image_api_key,
            model=config.image_model,
            base_url=config.image_base_url,
        ),
    ])


_registry: Optional[ToolRegistry] = None


def get_tool_registry() -> ToolRegistry:
    """Process-wide registry, built from settings on first use."""
    global _registry
    if _registry is None:
        from ..config import settings
        _registry = build_default_registry(settings)
    return _registry


def set_tool_registry(registry: ToolRegistry) -> None:
    global _registry
    _registry = registry
