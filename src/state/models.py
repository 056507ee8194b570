from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field


T = TypeVar("T")


class StoredEntry(BaseModel):
    """
    Envelope written by `set_with_expiration`.

    Fields
    - value: the caller's JSON value.
    - expiration: epoch milliseconds after which the entry is logically absent.

    Notes
    - Callers never see the envelope, only `value`.
    """

    value: Any = None
    expiration: Optional[int] = None

    def is_expired(self, now_ms: int) -> bool:
        return self.expiration is not None and now_ms >= self.expiration

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["StoredEntry"]:
        """Recognise a decoded JSON value as an envelope, or return None."""
        if not isinstance(raw, dict) or "value" not in raw:
            return None
        exp = raw.get("expiration")
        # bool is an int subclass; a boolean expiration is not an envelope
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return None
        return cls(value=raw["value"], expiration=int(exp))


class StorageError(Exception):
    """Describes a failed storage operation. Carried by results, not raised by the store."""

    def __init__(self, operation: str, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.message = message
        self.key = key

    def __repr__(self) -> str:
        return f"StorageError(operation={self.operation!r}, key={self.key!r}, message={self.message!r})"


@dataclass(frozen=True)
class StorageResult(Generic[T]):
    """
    Outcome of a store operation.

    `value` always holds something usable: the real value on success and
    the benign fallback (False, the caller's default, {}, [], 0) on failure.
    """

    value: T
    error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T) -> "StorageResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, fallback: T, error: StorageError) -> "StorageResult[T]":
        return cls(value=fallback, error=error)


class KeySize(BaseModel):
    key: str
    size: int


class StorageInfo(BaseModel):
    total_keys: int = 0
    total_size: int = 0
    key_info: List[KeySize] = Field(default_factory=list)
