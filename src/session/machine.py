from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Union

from .models import AuthSession, UserProfile


@dataclass(frozen=True)
class RestoreStarted:
    pass


@dataclass(frozen=True)
class SessionRestored:
    user: UserProfile
    token: str


@dataclass(frozen=True)
class RestoreFailed:
    pass


@dataclass(frozen=True)
class LoginStarted:
    pass


@dataclass(frozen=True)
class LoginSucceeded:
    user: UserProfile
    token: str


@dataclass(frozen=True)
class LoginFailed:
    error: str


@dataclass(frozen=True)
class RegisterStarted:
    pass


@dataclass(frozen=True)
class RegisterSucceeded:
    user: UserProfile
    token: str


@dataclass(frozen=True)
class RegisterFailed:
    error: str


@dataclass(frozen=True)
class LoggedOut:
    pass


@dataclass(frozen=True)
class UserUpdated:
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorCleared:
    pass


SessionEvent = Union[
    RestoreStarted,
    SessionRestored,
    RestoreFailed,
    LoginStarted,
    LoginSucceeded,
    LoginFailed,
    RegisterStarted,
    RegisterSucceeded,
    RegisterFailed,
    LoggedOut,
    UserUpdated,
    ErrorCleared,
]


def transition(state: AuthSession, event: SessionEvent) -> AuthSession:
    """
    Pure transition function: `(state, event) -> state`.

    INITIALIZING moves to AUTHENTICATED or UNAUTHENTICATED on restore; the
    two settled states then alternate through login/register/logout.
    Failures always land in a clean UNAUTHENTICATED state.
    """
    if isinstance(event, RestoreStarted):
        return AuthSession.initial()
    if isinstance(event, (SessionRestored, LoginSucceeded, RegisterSucceeded)):
        return AuthSession.authenticated(event.user, event.token)
    if isinstance(event, RestoreFailed):
        return AuthSession.signed_out()
    if isinstance(event, (LoginStarted, RegisterStarted)):
        return state.model_copy(update={"is_loading": True, "error": None})
    if isinstance(event, (LoginFailed, RegisterFailed)):
        return AuthSession.signed_out(error=event.error)
    if isinstance(event, LoggedOut):
        return AuthSession.signed_out()
    if isinstance(event, UserUpdated):
        if state.user is None:
            return state
        return state.model_copy(update={"user": state.user.merged(event.changes)})
    if isinstance(event, ErrorCleared):
        return state.model_copy(update={"error": None})
    raise TypeError(f"Unknown session event: {event!r}")


__all__ = [
    "ErrorCleared",
    "LoggedOut",
    "LoginFailed",
    "LoginStarted",
    "LoginSucceeded",
    "RegisterFailed",
    "RegisterStarted",
    "RegisterSucceeded",
    "RestoreFailed",
    "RestoreStarted",
    "SessionEvent",
    "SessionRestored",
    "UserUpdated",
    "transition",
]
