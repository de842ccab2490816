"""DurableStore: named JSON records on local disk with per-path write ordering."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import re
import tempfile
from typing import TYPE_CHECKING, Any

from conductor.config import settings
from conductor.errors import StoreCorruption

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._\-]")


class DurableStore:
    """Read/modify/write access to JSON records addressed by logical path.

    A logical path such as ``"conversations/index"`` maps to
    ``<root>/conversations/index.json``. Operations on the same path are
    serialized through a per-path lock; different paths never wait on each
    other.

    Singleton accessed via ``DurableStore.get()``.  Pass an explicit *root*
    for test isolation (e.g. ``tmp_path / "data"``).
    """

    _instance: DurableStore | None = None

    def __init__(self, root: Path | None = None) -> None:
        self._root = (root or settings.data_dir).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def get(cls) -> DurableStore:
        """Return the shared DurableStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Clear the singleton (for tests)."""
        cls._instance = None

    @property
    def root(self) -> Path:
        return self._root

    # -- Path helpers ----------------------------------------------------------

    @staticmethod
    def sanitize_name(name: str) -> str:
        """Replace unsafe characters and strip leading dots.

        Raises ``ValueError`` if the result is empty.
        """
        sanitized = _SAFE_NAME_RE.sub("_", name).lstrip(".")[:200]
        if not sanitized:
            msg = f"Record name is empty after sanitization: {name!r}"
            raise ValueError(msg)
        return sanitized

    def resolve(self, path: str) -> Path:
        """Resolve a logical record path to a ``.json`` file inside the root."""
        parts = [self.sanitize_name(p) for p in path.split("/") if p]
        if not parts:
            msg = f"Record path resolves to empty: {path!r}"
            raise ValueError(msg)
        parts[-1] = f"{parts[-1]}.json"
        target = self._root.joinpath(*parts).resolve()
        if not target.is_relative_to(self._root):
            msg = f"Path traversal detected: {path!r}"
            raise ValueError(msg)
        return target

    def _lock_for(self, path: str) -> asyncio.Lock:
        key = str(self.resolve(path))
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # -- Blocking I/O (run in a worker thread) ---------------------------------

    @staticmethod
    def _load(target: Path) -> Any:
        """Parse a record file. Returns None if it does not exist."""
        if not target.exists():
            return None
        try:
            return json.loads(target.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            msg = f"Unreadable record at {target}: {exc}"
            raise StoreCorruption(msg) from exc

    @staticmethod
    def _dump(target: Path, record: Any) -> None:
        """Write a record atomically (temp file in the same dir, then rename)."""
        target.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(record, indent=2, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    @staticmethod
    def _quarantine(target: Path) -> Path:
        """Move a corrupt record aside so a later write cannot destroy it."""
        backup = target.with_name(f"{target.name}.corrupt")
        os.replace(target, backup)
        return backup

    async def _read_unlocked(self, path: str, fallback: Any) -> tuple[Any, bool]:
        """Return (record, corrupt)."""
        target = self.resolve(path)
        try:
            record = await asyncio.to_thread(self._load, target)
        except StoreCorruption:
            logger.warning("Record '%s' is corrupt; using fallback", path, exc_info=True)
            return copy.deepcopy(fallback), True
        if record is None:
            return copy.deepcopy(fallback), False
        return record, False

    # -- Public API ------------------------------------------------------------

    async def read(self, path: str, fallback: Any = None) -> Any:
        """Return the record at *path*, or a copy of *fallback* if missing/corrupt."""
        async with self._lock_for(path):
            record, _ = await self._read_unlocked(path, fallback)
            return record

    async def write(self, path: str, record: Any) -> None:
        """Replace the record at *path* with *record*."""
        target = self.resolve(path)
        async with self._lock_for(path):
            await asyncio.to_thread(self._dump, target, record)

    async def update(self, path: str, fn: Callable[[Any], Any], fallback: Any = None) -> Any:
        """Read-modify-write *path* under its lock.

        *fn* receives the current record (or a copy of *fallback*) and returns
        the record to store. The stored record is returned.
        """
        target = self.resolve(path)
        async with self._lock_for(path):
            current, corrupt = await self._read_unlocked(path, fallback)
            updated = fn(current)
            if corrupt:
                backup = await asyncio.to_thread(self._quarantine, target)
                logger.warning("Moved corrupt record '%s' to %s", path, backup)
            await asyncio.to_thread(self._dump, target, updated)
            return updated

    async def delete(self, path: str) -> bool:
        """Remove the record at *path*. Returns True if a file was removed."""
        target = self.resolve(path)
        async with self._lock_for(path):
            if not target.exists():
                return False
            await asyncio.to_thread(target.unlink)
            logger.debug("Deleted record %s", path)
            return True

    async def exists(self, path: str) -> bool:
        return self.resolve(path).exists()
