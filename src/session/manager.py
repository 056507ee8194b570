from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Mapping, Optional

from pydantic import ValidationError

from common.auth_api import AuthResponse, AuthService, AuthServiceError
from common.constants import USER_DATA_KEY, USER_TOKEN_KEY, ErrorMessages
from common.credentials import StoredTokenProvider
from common.logging_setup import mask_token
from state.kv_store import KeyValueStore

from .machine import (
    ErrorCleared,
    LoggedOut,
    LoginFailed,
    LoginStarted,
    LoginSucceeded,
    RegisterFailed,
    RegisterStarted,
    RegisterSucceeded,
    RestoreFailed,
    RestoreStarted,
    SessionEvent,
    SessionRestored,
    UserUpdated,
    transition,
)
from .models import AuthSession, SessionStatus, UserProfile


logger = logging.getLogger(__name__)

Listener = Callable[[AuthSession], None]


class SessionSupersededError(RuntimeError):
    """A newer login/register/logout started before this one finished."""


class AuthSessionManager:
    """
    Single source of truth for who is signed in.

    Notes
    - State changes only through `session.machine.transition`; listeners
      registered with `subscribe` see every new snapshot.
    - Token and user are mirrored to the store under two keys, written and
      purged together.
    - Every login, register, restore and logout advances the credential
      provider's generation. When an operation's network step finishes
      after a newer one has started, its result is dropped. Store writes
      and purges run under one lock, so a stale login can never re-persist
      a session that a later logout already cleared.
    """

    def __init__(
        self,
        auth: AuthService,
        store: KeyValueStore,
        credentials: StoredTokenProvider,
        *,
        token_key: str = USER_TOKEN_KEY,
        user_key: str = USER_DATA_KEY,
    ) -> None:
        self._auth = auth
        self._store = store
        self._credentials = credentials
        self._token_key = token_key
        self._user_key = user_key
        self._state = AuthSession.initial()
        self._listeners: List[Listener] = []
        self._persist_lock = asyncio.Lock()

    # --------------- Reactive fields ---------------
    @property
    def state(self) -> AuthSession:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def user(self) -> Optional[UserProfile]:
        return self._state.user

    @property
    def token(self) -> Optional[str]:
        return self._state.token

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener`; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _dispatch(self, event: SessionEvent) -> AuthSession:
        new_state = transition(self._state, event)
        if new_state == self._state:
            return self._state
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Session listener raised")
        return new_state

    # --------------- Persistence ---------------
    async def _purge(self) -> None:
        result = await self._store.remove_multiple([self._token_key, self._user_key])
        if not result.ok:
            logger.error("Could not purge persisted session")

    @staticmethod
    def _load_user(raw: Any) -> Optional[UserProfile]:
        if not isinstance(raw, dict):
            return None
        try:
            return UserProfile.model_validate(raw)
        except ValidationError as ve:
            logger.warning("Discarding unreadable stored user: %s", ve)
            return None

    # --------------- Transitions ---------------
    async def restore_session(self) -> AuthSession:
        """
        Rebuild the session from the store at process start.

        A missing or partial session, or a token the server rejects, ends in
        a clean signed-out state with both keys removed. Nothing is raised.
        """
        generation = self._credentials.advance()
        self._dispatch(RestoreStarted())

        stored = await self._store.get_multiple([self._token_key, self._user_key])
        token = stored.value.get(self._token_key)
        raw_user = stored.value.get(self._user_key)
        user = self._load_user(raw_user)
        if not self._credentials.is_current(generation):
            return self._state

        if not isinstance(token, str) or not token or user is None:
            if token is not None or raw_user is not None:
                logger.info("Dropping partial stored session")
                async with self._persist_lock:
                    await self._purge()
            return self._dispatch(RestoreFailed())

        valid = await self._auth.validate_token(token)
        if not self._credentials.is_current(generation):
            logger.info("Session restore superseded; discarding result")
            return self._state
        if not valid:
            logger.info("Stored token %s rejected; signing out", mask_token(token))
            async with self._persist_lock:
                await self._purge()
            return self._dispatch(RestoreFailed())

        logger.info("Session restored for user %s", user.id)
        return self._dispatch(SessionRestored(user=user, token=token))

    async def login(self, credentials: Mapping[str, Any]) -> AuthResponse:
        return await self._authenticate(credentials, register=False)

    async def register(self, user_data: Mapping[str, Any]) -> AuthResponse:
        return await self._authenticate(user_data, register=True)

    async def _authenticate(self, payload: Mapping[str, Any], *, register: bool) -> AuthResponse:
        generation = self._credentials.advance()
        self._dispatch(RegisterStarted() if register else LoginStarted())
        failed = RegisterFailed if register else LoginFailed
        succeeded = RegisterSucceeded if register else LoginSucceeded

        try:
            if register:
                response = await self._auth.register(payload)
            else:
                response = await self._auth.login(payload)
            user = UserProfile.model_validate(response.user)
        except ValidationError as ve:
            await self._fail(generation, failed, ErrorMessages.INVALID_RESPONSE)
            raise AuthServiceError(ErrorMessages.INVALID_RESPONSE) from ve
        except AuthServiceError as exc:
            await self._fail(generation, failed, exc.message)
            raise
        except Exception:
            logger.exception("%s failed unexpectedly", "Registration" if register else "Login")
            await self._fail(generation, failed, ErrorMessages.UNEXPECTED_ERROR)
            raise

        async with self._persist_lock:
            if not self._credentials.is_current(generation):
                raise SessionSupersededError("A newer session change replaced this sign-in")
            saved = await self._store.set_multiple(
                {self._token_key: response.token, self._user_key: user.to_storage()}
            )
            if not saved.ok:
                await self._purge()
                self._dispatch(failed("Could not save session"))
                raise AuthServiceError("Could not save session")
            self._dispatch(succeeded(user=user, token=response.token))

        logger.info("%s succeeded for user %s", "Registration" if register else "Login", user.id)
        return response

    async def _fail(self, generation: int, event_type: Any, message: str) -> None:
        async with self._persist_lock:
            if not self._credentials.is_current(generation):
                return
            await self._purge()
            self._dispatch(event_type(error=message))

    async def logout(self) -> None:
        """
        Sign out. The server call is best effort; local teardown always
        happens unless a newer sign-in started meanwhile.
        """
        generation = self._credentials.advance()
        token = self._state.token or await self._credentials.current_token()
        if token:
            ok = await self._auth.logout(token)
            if not ok:
                logger.info("Server-side logout failed; clearing local session anyway")

        async with self._persist_lock:
            if not self._credentials.is_current(generation):
                logger.info("Logout superseded by a newer sign-in")
                return
            await self._purge()
            self._dispatch(LoggedOut())

    async def update_user(self, changes: Mapping[str, Any]) -> Optional[UserProfile]:
        """
        Shallow-merge `changes` into the current user and persist it.

        Returns None, leaving the session untouched, when nobody is signed in
        or the merged user fails validation.
        """
        if self._state.user is None:
            logger.warning("update_user called without a signed-in user; ignored")
            return None
        try:
            self._state.user.merged(changes)
        except ValidationError as ve:
            logger.warning("Rejected user update with invalid fields: %s", ve.errors())
            return None
        state = self._dispatch(UserUpdated(changes=dict(changes)))
        assert state.user is not None
        result = await self._store.set(self._user_key, state.user.to_storage())
        if not result.ok:
            logger.warning("Updated user kept in memory only; persisting failed")
        return state.user

    def clear_error(self) -> None:
        self._dispatch(ErrorCleared())

    async def update_profile(self, changes: Mapping[str, Any]) -> Optional[UserProfile]:
        """Send `changes` to the server, then merge what it returns."""
        server_user = await self._auth.update_profile(changes)
        return await self.update_user(server_user)

    async def refresh_profile(self) -> Optional[UserProfile]:
        server_user = await self._auth.get_profile()
        return await self.update_user(server_user)


__all__ = ["AuthSessionManager", "Listener", "SessionSupersededError"]
