"""
Exception hierarchy for the conversation engine.

Provider and tool failures are caught at the orchestrator boundary and turned
into user-visible session state; they never escape a run half-applied.
"""

from typing import Optional


class ParleyError(Exception):
    """Base exception for all engine errors."""


class ProviderError(ParleyError):
    """A backend request failed or returned something we could not read."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        prefix = f"{provider} error"
        if status_code is not None:
            prefix += f" ({status_code})"
        super().__init__(f"{prefix}: {message}")


class ToolExecutionError(ParleyError):
    """A single tool call failed. Scoped to that call only."""

    def __init__(self, tool: str, tool_call_id: str, reason: str):
        self.tool = tool
        self.tool_call_id = tool_call_id
        self.reason = reason
        super().__init__(f"Tool '{tool}' failed: {reason}")


class InvalidStateError(ParleyError):
    """An operation was requested that the session cannot honour right now."""


class ConversionError(ParleyError):
    """An attachment could not be represented in a backend's wire format."""

    def __init__(self, file_extension: str):
        self.file_extension = file_extension
        super().__init__(f"{file_extension.upper()} files are not supported yet")

    @property
    def placeholder(self) -> str:
        """Text stand-in sent to the model instead of the attachment."""
        return f"{self.file_extension.upper()} files are not supported yet. Notify the user."
