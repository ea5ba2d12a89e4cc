"""
SP Resilience — Disk Cache Backend

Persists cache entries as one JSON file per key under a storage directory.
File names are the SHA-256 of the cache key. Blocking file I/O runs in a
worker thread so the event loop is never stalled.

Persistence is best-effort: I/O and serialization failures are logged and
reported as misses or failed writes, never raised to callers.
"""

import asyncio
import hashlib
import json
import logging
import tempfile
from pathlib import Path

from ...resilience.clock import Clock, SystemClock
from ..interface import CacheBackend, CacheEntry

logger = logging.getLogger(__name__)

CACHE_FILE_SUFFIX = ".cache"


class DiskCacheBackend(CacheBackend):
    """On-disk cache tier keyed by a hash of the cache key."""

    def __init__(self, directory: str | Path, clock: Clock | None = None):
        """
        Initialize disk cache backend.

        Args:
            directory: Storage directory (created on first write)
            clock: Time source for expiry checks
        """
        self.directory = Path(directory).expanduser()
        self._clock = clock or SystemClock()

    def path_for(self, key: str) -> Path:
        """File path holding the entry for a key."""
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}{CACHE_FILE_SUFFIX}"

    async def get_entry(self, key: str) -> CacheEntry | None:
        path = self.path_for(key)
        try:
            entry = await asyncio.to_thread(self._read_entry, path)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                f"Discarding unreadable cache file for key '{key}': {e}",
                extra={"key": key, "path": str(path), "error": str(e)},
            )
            await asyncio.to_thread(self._unlink, path)
            return None

        if entry is None:
            return None

        if entry.key != key:
            # Hash collision or foreign file; treat as absent
            return None

        if entry.is_expired(self._clock.now()):
            await asyncio.to_thread(self._unlink, path)
            return None

        return entry

    async def set_entry(self, entry: CacheEntry) -> bool:
        path = self.path_for(entry.key)
        try:
            payload = json.dumps(entry.to_dict())
        except (TypeError, ValueError) as e:
            logger.warning(
                f"Value for key '{entry.key}' is not JSON serializable, skipping persistence: {e}",
                extra={"key": entry.key, "error": str(e)},
            )
            return False

        try:
            await asyncio.to_thread(self._write, path, payload)
        except OSError as e:
            logger.warning(
                f"Failed to write cache file for key '{entry.key}': {e}",
                extra={"key": entry.key, "path": str(path), "error": str(e)},
            )
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._unlink, self.path_for(key))
        except OSError as e:
            logger.warning(
                f"Failed to delete cache file for key '{key}': {e}",
                extra={"key": key, "error": str(e)},
            )
            return False

    async def clear(self) -> int:
        removed = 0
        for path in await asyncio.to_thread(self._list_files):
            if await asyncio.to_thread(self._unlink, path):
                removed += 1
        logger.info(f"Cleared {removed} persisted cache entries from {self.directory}")
        return removed

    async def size(self) -> int:
        return len(await asyncio.to_thread(self._list_files))

    async def load_entries(self) -> list[CacheEntry]:
        """
        Read every persisted entry that is still valid.

        Files that fail to parse or have expired are deleted silently.

        Returns:
            Valid entries ordered oldest first
        """
        now = self._clock.now()
        entries: list[CacheEntry] = []
        discarded = 0

        for path in await asyncio.to_thread(self._list_files):
            try:
                entry = await asyncio.to_thread(self._read_entry, path)
            except (OSError, ValueError, KeyError, TypeError):
                entry = None

            if entry is None or entry.is_expired(now) or self.path_for(entry.key) != path:
                await asyncio.to_thread(self._unlink, path)
                discarded += 1
                continue

            entries.append(entry)

        entries.sort(key=lambda e: e.created_at)
        logger.debug(
            f"Loaded {len(entries)} persisted cache entries",
            extra={"directory": str(self.directory), "loaded": len(entries), "discarded": discarded},
        )
        return entries

    @staticmethod
    def _read_entry(path: Path) -> CacheEntry | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("cache file does not contain an object")
        return CacheEntry.from_dict(data)

    def _write(self, path: Path, payload: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.directory, prefix=f"{path.stem}.", suffix=".tmp", delete=False
        ) as tmp:
            tmp.write(payload)
        tmp_path = Path(tmp.name)
        try:
            tmp_path.replace(path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def _list_files(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(self.directory.glob(f"*{CACHE_FILE_SUFFIX}"))
