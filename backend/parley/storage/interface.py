"""
Storage contract used by the session store.
Paths are relative keys such as "sessions/<id>.json" or "providers/<id>.json".
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Union


class StorageInterface(ABC):
    """Async key/blob store. Implementations must never raise on a missing key."""

    @abstractmethod
    async def save(self, path: str, content: Union[bytes, str]) -> bool:
        """
        Persist a blob under a relative key, replacing any previous value.

        Returns:
            True once the blob is durably written
        """

    @abstractmethod
    async def load(self, path: str) -> Optional[bytes]:
        """Raw bytes stored under the key, or None when nothing is there."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Remove a key. False when there was nothing to remove."""

    @abstractmethod
    async def list(self, path: str, pattern: Optional[str] = None) -> List[str]:
        """
        Keys directly under a prefix directory.

        Args:
            path: Prefix directory, e.g. "sessions"
            pattern: Glob applied to file names, e.g. "*.json"

        Returns:
            Sorted keys relative to the storage root
        """
