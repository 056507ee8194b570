from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import httpx

from common.auth_api import AuthService
from common.config import ClientConfig
from common.credentials import StoredTokenProvider
from common.http_client import ApiClient, Sleep
from common.logging_setup import setup_logging
from session.manager import AuthSessionManager
from state.backends import JsonFileBackend, StorageBackend
from state.kv_store import KeyValueStore


logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path(".cache") / "timatix_store.json"


@dataclass
class AppCore:
    store: KeyValueStore
    credentials: StoredTokenProvider
    api: ApiClient
    auth: AuthService
    session: AuthSessionManager

    @property
    def config(self) -> ClientConfig:
        return self.api.config

    async def aclose(self) -> None:
        await self.api.aclose()

    async def __aenter__(self) -> "AppCore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def build_core(
    *,
    config: Optional[ClientConfig] = None,
    store_path: Optional[Union[os.PathLike[str], str]] = None,
    backend: Optional[StorageBackend] = None,
    fernet_key: Optional[Union[str, bytes]] = None,
    client: Optional[httpx.AsyncClient] = None,
    sleep: Sleep = asyncio.sleep,
    log_level: Optional[Union[int, str]] = None,
) -> AppCore:
    """
    Wire the data-access core.

    - `backend` wins over `store_path`; with neither, a JSON file under
      `.cache/` is used.
    - Pass `backend=MemoryBackend()` for a session that must not touch disk.
    """
    if log_level is not None:
        setup_logging(log_level)
    cfg = config or ClientConfig()
    if backend is None:
        backend = JsonFileBackend(store_path or DEFAULT_STORE_PATH)
    store = KeyValueStore(backend, fernet_key=fernet_key)
    credentials = StoredTokenProvider(store)
    api = ApiClient(cfg, credentials=credentials, client=client, sleep=sleep)
    auth = AuthService(api)
    session = AuthSessionManager(auth, store, credentials)
    logger.debug("Core built (base_url=%s, backend=%s)", cfg.base_url, type(backend).__name__)
    return AppCore(
        store=store,
        credentials=credentials,
        api=api,
        auth=auth,
        session=session,
    )


def build_core_from_env(**kwargs) -> AppCore:
    """`build_core` with `ClientConfig.from_env()`; other options pass through."""
    return build_core(config=ClientConfig.from_env(), **kwargs)


__all__ = ["AppCore", "DEFAULT_STORE_PATH", "build_core", "build_core_from_env"]
