"""
Key-value stores backing the repository blob.

Features:
- InMemoryStore for tests and throwaway sessions, with an optional byte quota
- JsonFileStore mirroring keys to a JSON file with rotating backups
- File IO runs off the event loop via asyncio.to_thread

Both raise PersistenceError for any read/write failure so the repository only
has one failure type to translate.
"""

import asyncio
import json
import logging
import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from core.errors import PersistenceError

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Minimal async string store keyed by name."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryStore(KeyValueStore):
    def __init__(self, quota_bytes: Optional[int] = None, initial: Optional[Dict[str, str]] = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v.encode("utf-8")) for k, v in self._data.items() if k != key)
            if used + len(value.encode("utf-8")) > self.quota_bytes:
                raise PersistenceError(f"Storage quota exceeded ({self.quota_bytes} bytes)")
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """Persist every key in one JSON document on disk"""

    def __init__(self, path: str = "data/records.json", backup_dir: Optional[str] = "backups",
                 max_backups: int = 10):
        self.path = Path(path)
        self.backup_dir = Path(backup_dir) if backup_dir else None
        self.max_backups = max_backups

        # Thread safety for the to_thread workers
        self._lock = threading.RLock()

    def _read_all(self) -> Dict[str, str]:
        with self._lock:
            if not self.path.exists():
                return {}
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise PersistenceError(f"Failed to read {self.path}: {e}") from e
            if not isinstance(data, dict):
                raise PersistenceError(f"Unexpected JSON structure in {self.path}")
            return data

    def _write_all(self, data: Dict[str, str]) -> None:
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._create_backup()
                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                tmp_path.replace(self.path)
            except OSError as e:
                raise PersistenceError(f"Failed to write {self.path}: {e}") from e

    def _create_backup(self) -> None:
        """Copy the current file aside, keeping only the newest ``max_backups``"""
        if self.backup_dir is None or self.max_backups <= 0 or not self.path.exists():
            return
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            backup_file = self.backup_dir / f"{self.path.stem}_backup_{timestamp}.json"
            shutil.copy2(self.path, backup_file)

            backups = sorted(self.backup_dir.glob(f"{self.path.stem}_backup_*.json"))
            if len(backups) > self.max_backups:
                for old_backup in backups[:-self.max_backups]:
                    old_backup.unlink()

            logger.debug(f"Created backup: {backup_file}")
        except OSError as e:
            # A failed backup must not block the primary write
            logger.error(f"Error creating backup: {e}")

    async def get(self, key: str) -> Optional[str]:
        data = await asyncio.to_thread(self._read_all)
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        def _update():
            with self._lock:
                try:
                    data = self._read_all()
                except PersistenceError:
                    logger.warning(f"Overwriting unreadable store file {self.path}")
                    data = {}
                data[key] = value
                self._write_all(data)

        await asyncio.to_thread(_update)

    async def delete(self, key: str) -> None:
        def _remove():
            with self._lock:
                data = self._read_all()
                if key in data:
                    del data[key]
                    self._write_all(data)

        await asyncio.to_thread(_remove)
