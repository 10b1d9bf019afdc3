"""Core module - errors, context selection, throttling and logging."""

from .errors import ParleyError, ProviderError, ToolExecutionError, InvalidStateError, ConversionError

__all__ = ['ParleyError', 'ProviderError', 'ToolExecutionError', 'InvalidStateError', 'ConversionError']
