"""
Session Store - Persistent storage for sessions and providers using StorageInterface.

Everything is kept in memory for the lifetime of the process; each record is
mirrored to a JSON file (``sessions/<id>.json``, ``providers/<id>.json``).
Saves are best-effort: a failed write is logged and reported, never raised.
"""

import json
import logging
from typing import Optional, List, Dict

from ..models.provider import Provider, pick_default_provider
from ..models.session import Session
from .interface import StorageInterface
from .local_storage import LocalStorage
from .serializers import (
    provider_from_dict, provider_to_dict, session_from_dict, session_to_dict,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Manages persistent storage of sessions and provider records.
    """

    def __init__(self, storage: StorageInterface):
        """
        Initialize the session store.

        Args:
            storage: StorageInterface implementation (typically LocalStorage)
        """
        self.storage = storage
        self.sessions_dir = "sessions"
        self.providers_dir = "providers"
        self._sessions: Dict[str, Session] = {}
        self._providers: Dict[str, Provider] = {}

    # -- loading -------------------------------------------------------------

    async def load_all(self) -> None:
        """Read every stored provider and session into memory."""
        for path in await self.storage.list(self.providers_dir, "*.json"):
            data = await self._read_json(path)
            if data is None:
                continue
            try:
                provider = provider_from_dict(data)
            except ValueError as e:
                logger.warning(f"Skipping unreadable provider {path}: {e}")
                continue
            self._providers[provider.id] = provider

        providers = self.providers
        for path in await self.storage.list(self.sessions_dir, "*.json"):
            data = await self._read_json(path)
            if data is None:
                continue
            try:
                session = session_from_dict(data, providers)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable session {path}: {e}")
                continue
            self._sessions[session.id] = session

        logger.info(
            f"Loaded {len(self._sessions)} sessions and {len(self._providers)} providers",
            extra={"extra_fields": {"sessions": len(self._sessions), "providers": len(self._providers)}},
        )

    async def _read_json(self, path: str) -> Optional[dict]:
        content = await self.storage.load(path)
        if content is None:
            return None
        try:
            return json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Corrupt JSON at {path}: {e}")
            return None

    # -- sessions ------------------------------------------------------------

    @property
    def sessions(self) -> List[Session]:
        """All sessions by display order, then newest first."""
        return sorted(self._sessions.values(), key=lambda s: (s.order, -s.date.timestamp()))

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def insert(self, session: Session) -> Session:
        """Add a session at the top of the list, pushing the others down."""
        for other in self._sessions.values():
            other.order += 1
        session.order = 0
        self._sessions[session.id] = session
        await self.save(session)
        return session

    def move_to_top(self, session: Session) -> None:
        for other in self._sessions.values():
            if other is not session and other.order < session.order:
                other.order += 1
        session.order = 0

    async def save(self, session: Session) -> bool:
        try:
            content = json.dumps(session_to_dict(session), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error(f"Could not serialize session {session.id}: {e}")
            return False

        saved = await self.storage.save(f"{self.sessions_dir}/{session.id}.json", content)
        if not saved:
            logger.warning(
                "Session save failed",
                extra={"extra_fields": {"session_id": session.id}},
            )
        return saved

    async def delete(self, session: Session) -> bool:
        self._sessions.pop(session.id, None)
        return await self.storage.delete(f"{self.sessions_dir}/{session.id}.json")

    # -- providers -----------------------------------------------------------

    @property
    def providers(self) -> List[Provider]:
        return sorted(self._providers.values(), key=lambda p: p.order)

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        return self._providers.get(provider_id)

    def default_provider(self) -> Provider:
        return pick_default_provider(self.providers)

    async def save_provider(self, provider: Provider) -> bool:
        if provider.id not in self._providers:
            provider.order = len(self._providers)
        self._providers[provider.id] = provider
        content = json.dumps(provider_to_dict(provider), ensure_ascii=False, indent=2)
        saved = await self.storage.save(f"{self.providers_dir}/{provider.id}.json", content)
        if not saved:
            logger.warning(
                "Provider save failed",
                extra={"extra_fields": {"provider_id": provider.id}},
            )
        return saved

    async def delete_provider(self, provider: Provider) -> bool:
        self._providers.pop(provider.id, None)
        return await self.storage.delete(f"{self.providers_dir}/{provider.id}.json")


# Global session store instance
_session_store: Optional[SessionStore] = None


def init_session_store(storage: Optional[StorageInterface] = None, base_dir: str = "./data") -> SessionStore:
    """
    Initialize the global session store instance.

    Args:
        storage: Optional StorageInterface implementation. If None, creates LocalStorage.
        base_dir: Base directory for the default LocalStorage
    """
    global _session_store
    if storage is None:
        storage = LocalStorage(base_dir)
    _session_store = SessionStore(storage)
    return _session_store


def get_session_store() -> SessionStore:
    """
    Get the global session store instance.

    Raises:
        RuntimeError: If the store has not been initialized
    """
    if _session_store is None:
        raise RuntimeError("Session store not initialized. Call init_session_store() first.")
    return _session_store
