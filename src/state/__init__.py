"""
Persistent key-value storage for the data-access core.

Values are JSON-serialized and kept by a pluggable backend (in-memory or a
single JSON file). TTL entries are stored as `{value, expiration}` envelopes.
"""

from .backends import JsonFileBackend, MemoryBackend, StorageBackend
from .kv_store import KeyValueStore
from .models import StorageError, StorageInfo, StorageResult, StoredEntry

__all__ = [
    "JsonFileBackend",
    "KeyValueStore",
    "MemoryBackend",
    "StorageBackend",
    "StorageError",
    "StorageInfo",
    "StorageResult",
    "StoredEntry",
]
