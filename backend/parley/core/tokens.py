"""Rough token estimates used for the session token-count cache."""

import json
from typing import Any, Dict, Iterable


def estimate_tokens(text: str) -> int:
    """Approximate token count at four characters per token."""
    if not text:
        return 0
    return max(1, len(text) // 4)


def estimate_schema_tokens(definitions: Iterable[Dict[str, Any]]) -> int:
    return sum(estimate_tokens(json.dumps(d, ensure_ascii=False)) for d in definitions)
