from __future__ import annotations

import logging
from typing import Optional, Protocol

from state.kv_store import KeyValueStore

from .constants import USER_TOKEN_KEY


logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Source of the bearer token attached to outgoing requests."""

    async def current_token(self) -> Optional[str]: ...


class StoredTokenProvider:
    """
    Reads the current token from the persistent store.

    Also owns the session generation: a counter bumped whenever a new
    session transition (login, register, restore, logout) begins. A
    transition that finds its generation no longer current must drop its
    result instead of writing it.
    """

    def __init__(self, store: KeyValueStore, *, key: str = USER_TOKEN_KEY) -> None:
        self._store = store
        self._key = key
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def advance(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def current_token(self) -> Optional[str]:
        result = await self._store.get(self._key)
        if not result.ok:
            logger.warning("Token lookup failed; sending request without credentials")
            return None
        token = result.value
        if isinstance(token, str) and token.strip():
            return token
        return None


class StaticTokenProvider:
    """Fixed token; handy for scripts and tests."""

    def __init__(self, token: Optional[str] = None) -> None:
        self.token = token

    async def current_token(self) -> Optional[str]:
        return self.token or None


__all__ = ["CredentialProvider", "StaticTokenProvider", "StoredTokenProvider"]
