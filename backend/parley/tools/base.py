"""
Chat Tool Base - Abstract base for tools the model may call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..models.conversation import TypedData


@dataclass
class ToolOutput:
    """What a tool produced: text for the model and optional binary data."""
    string: str = ""
    data: List[TypedData] = field(default_factory=list)


class ChatTool(ABC):
    """
    A tool exposed to the model as a function with a JSON-schema signature.
    """

    name: str = ""
    display_name: str = ""
    description: str = ""
    parameters: Dict[str, Any] = {"type": "object", "properties": {}}

    def definition(self) -> Dict[str, Any]:
        """Backend-neutral function definition (name, description, JSON schema)."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    @abstractmethod
    async def process(self, arguments: Dict[str, Any]) -> ToolOutput:
        """
        Run the tool.

        Args:
            arguments: Decoded JSON arguments from the model

        Returns:
            ToolOutput with the text result and any attachments
        """
        pass
