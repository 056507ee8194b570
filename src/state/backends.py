from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol
from uuid import uuid4


logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Synchronous raw storage of JSON text by key."""

    def get_item(self, key: str) -> Optional[str]: ...

    def get_items(self, keys: Iterable[str]) -> Dict[str, Optional[str]]: ...

    def set_items(self, items: Mapping[str, str]) -> None: ...

    def remove_items(self, keys: Iterable[str]) -> None: ...

    def clear(self) -> None: ...

    def keys(self) -> List[str]: ...


class MemoryBackend:
    """Dict-backed backend. Volatile; used in tests and as a scratch store."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def get_items(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        with self._lock:
            return {k: self._data.get(k) for k in keys}

    def set_items(self, items: Mapping[str, str]) -> None:
        with self._lock:
            self._data.update(items)

    def remove_items(self, keys: Iterable[str]) -> None:
        with self._lock:
            for k in keys:
                self._data.pop(k, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())


class JsonFileBackend:
    """
    Single JSON file holding `{key: serialized_value, ...}`.

    - Loaded lazily on first access; a corrupt or unreadable file is logged
      and treated as empty.
    - Every mutation rewrites the file through a temp file + `os.replace`,
      so a crash mid-write leaves the previous contents intact.
    - Write failures propagate; the store above turns them into results.
    """

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._data: Dict[str, str] = {}
        self._loaded = False
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable store file %s: %s", self._path, exc)
            self._data = {}
            return
        if not isinstance(raw, dict):
            logger.warning("Ignoring store file %s: top-level value is not an object", self._path)
            return
        # Only string payloads are valid serialized values
        self._data = {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _save(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f"{self._path.name}.tmp-{uuid4().hex}")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def _commit(self, data: Dict[str, str]) -> None:
        # Persist first so memory never runs ahead of disk
        self._save(data)
        self._data = data

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            self._ensure_loaded()
            return self._data.get(key)

    def get_items(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        with self._lock:
            self._ensure_loaded()
            return {k: self._data.get(k) for k in keys}

    def set_items(self, items: Mapping[str, str]) -> None:
        with self._lock:
            self._ensure_loaded()
            self._commit({**self._data, **items})

    def remove_items(self, keys: Iterable[str]) -> None:
        with self._lock:
            self._ensure_loaded()
            doomed = set(keys)
            if not doomed & self._data.keys():
                return
            self._commit({k: v for k, v in self._data.items() if k not in doomed})

    def clear(self) -> None:
        with self._lock:
            self._ensure_loaded()
            self._commit({})

    def keys(self) -> List[str]:
        with self._lock:
            self._ensure_loaded()
            return list(self._data.keys())


__all__ = ["JsonFileBackend", "MemoryBackend", "StorageBackend"]
