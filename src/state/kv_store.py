from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken

from common.constants import SECURE_KEY_PREFIX

from .backends import MemoryBackend, StorageBackend
from .models import KeySize, StorageError, StorageInfo, StorageResult, StoredEntry


logger = logging.getLogger(__name__)


def _to_fernet(key: str | bytes) -> Fernet:
    # Invalid keys raise ValueError from Fernet itself
    return Fernet(key.encode("ascii") if isinstance(key, str) else key)


def _dumps(value: Any) -> str:
    # Strict JSON: NaN/Infinity are not portable
    return json.dumps(value, allow_nan=False, separators=(",", ":"))


class KeyValueStore:
    """
    Async key-value store with JSON values, batch operations and TTL entries.

    Notes
    - Never raises. Every operation returns a `StorageResult` whose `value`
      is usable even on failure; the failure itself is logged and attached
      as `result.error`.
    - Backend calls run in a worker thread so file I/O does not block the
      event loop.
    - Expired envelopes are deleted on read; a caller never observes an
      expired value.
    - `*_secure` helpers encrypt with Fernet when a key is configured.
      Without one they fall back to plain storage and log a warning.
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        *,
        fernet_key: Optional[str | bytes] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend: StorageBackend = backend if backend is not None else MemoryBackend()
        self._fernet = _to_fernet(fernet_key) if fernet_key else None
        self._clock = clock

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    @staticmethod
    def _fail(fallback: Any, operation: str, exc: BaseException, key: Optional[str] = None) -> StorageResult[Any]:
        where = f' for key "{key}"' if key is not None else ""
        logger.error("Storage %s failed%s: %s", operation, where, exc)
        return StorageResult.failure(fallback, StorageError(operation, str(exc), key=key))

    # --------------- Single key ---------------
    async def set(self, key: str, value: Any) -> StorageResult[bool]:
        try:
            serialized = _dumps(value)
            await self._call(self._backend.set_items, {key: serialized})
        except Exception as exc:
            return self._fail(False, "set", exc, key)
        return StorageResult.success(True)

    async def get(self, key: str, default: Any = None) -> StorageResult[Any]:
        try:
            serialized = await self._call(self._backend.get_item, key)
            if serialized is None:
                return StorageResult.success(default)
            return StorageResult.success(json.loads(serialized))
        except Exception as exc:
            return self._fail(default, "get", exc, key)

    async def remove(self, key: str) -> StorageResult[bool]:
        try:
            await self._call(self._backend.remove_items, [key])
        except Exception as exc:
            return self._fail(False, "remove", exc, key)
        return StorageResult.success(True)

    async def clear(self) -> StorageResult[bool]:
        try:
            await self._call(self._backend.clear)
        except Exception as exc:
            return self._fail(False, "clear", exc)
        return StorageResult.success(True)

    async def exists(self, key: str) -> StorageResult[bool]:
        try:
            serialized = await self._call(self._backend.get_item, key)
        except Exception as exc:
            return self._fail(False, "exists", exc, key)
        return StorageResult.success(serialized is not None)

    async def all_keys(self) -> StorageResult[List[str]]:
        try:
            keys = await self._call(self._backend.keys)
        except Exception as exc:
            return self._fail([], "all_keys", exc)
        return StorageResult.success(list(keys))

    async def merge(self, key: str, partial: Mapping[str, Any]) -> StorageResult[bool]:
        """Shallow-merge `partial` into the object stored at `key` (default `{}`)."""
        existing = await self.get(key, {})
        if not existing.ok:
            return StorageResult.failure(False, existing.error)  # type: ignore[arg-type]
        base = existing.value if isinstance(existing.value, dict) else {}
        return await self.set(key, {**base, **dict(partial)})

    # --------------- Batch ---------------
    async def get_multiple(self, keys: Iterable[str]) -> StorageResult[Dict[str, Any]]:
        """
        Read several keys at once.

        A value that fails to parse maps to None; the remaining keys are
        still returned.
        """
        wanted = list(keys)
        try:
            raw = await self._call(self._backend.get_items, wanted)
        except Exception as exc:
            return self._fail({}, "get_multiple", exc)

        out: Dict[str, Any] = {}
        for k in wanted:
            serialized = raw.get(k)
            if serialized is None:
                out[k] = None
                continue
            try:
                out[k] = json.loads(serialized)
            except ValueError as exc:
                logger.error('Storage get_multiple could not parse key "%s": %s', k, exc)
                out[k] = None
        return StorageResult.success(out)

    async def set_multiple(self, items: Mapping[str, Any]) -> StorageResult[bool]:
        # Serialize everything up front; a bad value writes nothing
        try:
            serialized = {k: _dumps(v) for k, v in items.items()}
            await self._call(self._backend.set_items, serialized)
        except Exception as exc:
            return self._fail(False, "set_multiple", exc)
        return StorageResult.success(True)

    async def remove_multiple(self, keys: Iterable[str]) -> StorageResult[bool]:
        try:
            await self._call(self._backend.remove_items, list(keys))
        except Exception as exc:
            return self._fail(False, "remove_multiple", exc)
        return StorageResult.success(True)

    # --------------- Expiration ---------------
    async def set_with_expiration(self, key: str, value: Any, ttl_ms: int) -> StorageResult[bool]:
        entry = StoredEntry(value=value, expiration=self.now_ms() + int(ttl_ms))
        return await self.set(key, entry.model_dump())

    async def get_with_expiration(self, key: str, default: Any = None) -> StorageResult[Any]:
        raw = await self.get(key)
        if not raw.ok:
            return StorageResult.failure(default, raw.error)  # type: ignore[arg-type]
        entry = StoredEntry.from_raw(raw.value)
        if entry is None:
            return StorageResult.success(default)
        if entry.is_expired(self.now_ms()):
            removed = await self.remove(key)
            if not removed.ok:
                logger.warning('Expired key "%s" could not be removed', key)
            return StorageResult.success(default)
        return StorageResult.success(entry.value)

    async def cleanup_expired(self) -> StorageResult[int]:
        """Delete every expired envelope; returns how many were removed."""
        try:
            keys = await self._call(self._backend.keys)
            raw = await self._call(self._backend.get_items, keys)
            now = self.now_ms()
            expired: List[str] = []
            for k, serialized in raw.items():
                if serialized is None:
                    continue
                try:
                    decoded = json.loads(serialized)
                except ValueError:
                    continue
                entry = StoredEntry.from_raw(decoded)
                if entry is not None and entry.is_expired(now):
                    expired.append(k)
            if expired:
                await self._call(self._backend.remove_items, expired)
        except Exception as exc:
            return self._fail(0, "cleanup_expired", exc)
        if expired:
            logger.info("Removed %d expired storage entries", len(expired))
        return StorageResult.success(len(expired))

    # --------------- Introspection ---------------
    async def get_storage_info(self) -> StorageResult[StorageInfo]:
        try:
            keys = await self._call(self._backend.keys)
            raw = await self._call(self._backend.get_items, keys)
        except Exception as exc:
            return self._fail(StorageInfo(), "get_storage_info", exc)
        sizes = [KeySize(key=k, size=len(v) if v else 0) for k, v in raw.items()]
        sizes.sort(key=lambda s: s.size, reverse=True)
        return StorageResult.success(
            StorageInfo(total_keys=len(sizes), total_size=sum(s.size for s in sizes), key_info=sizes)
        )

    # --------------- Secure values ---------------
    @staticmethod
    def _secure_key(key: str) -> str:
        return f"{SECURE_KEY_PREFIX}{key}"

    async def set_secure(self, key: str, value: Any) -> StorageResult[bool]:
        if self._fernet is None:
            logger.warning("set_secure: no encryption key configured, storing %s unencrypted", key)
            return await self.set(self._secure_key(key), value)
        try:
            ciphertext = self._fernet.encrypt(_dumps(value).encode("utf-8")).decode("ascii")
        except Exception as exc:
            return self._fail(False, "set_secure", exc, key)
        return await self.set(self._secure_key(key), ciphertext)

    async def get_secure(self, key: str, default: Any = None) -> StorageResult[Any]:
        stored = await self.get(self._secure_key(key))
        if not stored.ok:
            return StorageResult.failure(default, stored.error)  # type: ignore[arg-type]
        if stored.value is None:
            return StorageResult.success(default)
        if self._fernet is None:
            logger.warning("get_secure: no encryption key configured, reading %s unencrypted", key)
            return StorageResult.success(stored.value)
        try:
            if not isinstance(stored.value, str):
                raise InvalidToken()
            plaintext = self._fernet.decrypt(stored.value.encode("ascii"))
            return StorageResult.success(json.loads(plaintext.decode("utf-8")))
        except InvalidToken:
            return self._fail(default, "get_secure", ValueError("invalid Fernet token"), key)
        except Exception as exc:
            return self._fail(default, "get_secure", exc, key)

    async def remove_secure(self, key: str) -> StorageResult[bool]:
        return await self.remove(self._secure_key(key))


__all__ = ["KeyValueStore"]
