"""Parley - branching multi-provider LLM conversation engine."""

__version__ = "1.0.0"
