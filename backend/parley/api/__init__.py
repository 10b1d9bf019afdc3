"""API module."""

from .sessions import router as sessions_router
from .providers import router as providers_router

__all__ = ['sessions_router', 'providers_router']
