"""Tools module - tools the model can call and their sequential executor."""

from .base import ChatTool, ToolOutput
from .registry import ToolRegistry, build_default_registry, get_tool_registry, set_tool_registry
from .executor import ToolExecutor

__all__ = [
    'ChatTool',
    'ToolOutput',
    'ToolRegistry',
    'build_default_registry',
    'get_tool_registry',
    'set_tool_registry',
    'ToolExecutor',
]
