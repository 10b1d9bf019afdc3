"""
Disk-backed storage. Every key maps to a file below one root directory.
"""

import logging
import aiofiles
from pathlib import Path
from typing import Optional, List, Union
from .interface import StorageInterface

logger = logging.getLogger(__name__)

TMP_SUFFIX = ".tmp"


class LocalStorage(StorageInterface):
    """
    Stores session and provider JSON on the local filesystem.

    Writes go to a sibling temp file that is renamed over the target, so a
    crash mid-save leaves the previous version readable.
    """

    def __init__(self, base_dir: str = "./data"):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        target = (self.base_dir / key).resolve()
        if target != self.base_dir and self.base_dir not in target.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return target

    def _log_failure(self, action: str, key: str, error: Exception) -> None:
        logger.error(
            f"Storage {action} failed for {key}: {error}",
            extra={"extra_fields": {"action": action, "key": key, "root": str(self.base_dir)}},
        )

    async def save(self, path: str, content: Union[bytes, str]) -> bool:
        try:
            target = self._resolve(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            staging = target.with_name(target.name + TMP_SUFFIX)

            data = content.encode("utf-8") if isinstance(content, str) else content
            async with aiofiles.open(staging, "wb") as f:
                await f.write(data)
            staging.replace(target)
            return True
        except (OSError, ValueError) as e:
            self._log_failure("save", path, e)
            return False

    async def load(self, path: str) -> Optional[bytes]:
        try:
            target = self._resolve(path)
            if not target.is_file():
                return None
            async with aiofiles.open(target, "rb") as f:
                return await f.read()
        except (OSError, ValueError) as e:
            self._log_failure("load", path, e)
            return None

    async def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except ValueError:
            return False

    async def delete(self, path: str) -> bool:
        try:
            target = self._resolve(path)
            if not target.is_file():
                return False
            target.unlink()
            return True
        except (OSError, ValueError) as e:
            self._log_failure("delete", path, e)
            return False

    async def list(self, path: str, pattern: Optional[str] = None) -> List[str]:
        try:
            directory = self._resolve(path)
            if not directory.is_dir():
                return []
            keys = [
                str(p.relative_to(self.base_dir))
                for p in directory.glob(pattern or "*")
                if p.is_file() and not p.name.endswith(TMP_SUFFIX)
            ]
            return sorted(keys)
        except (OSError, ValueError) as e:
            self._log_failure("list", path, e)
            return []
