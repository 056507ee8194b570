from __future__ import annotations

import pytest
from pydantic import ValidationError

from session.machine import (
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
    SessionRestored,
    UserUpdated,
    transition,
)
from session.models import AuthSession, SessionStatus, UserProfile, UserRole


def _user(**extra) -> UserProfile:
    return UserProfile.model_validate({"id": "1", "email": "a@b.com", "role": "client", **extra})


def _signed_in() -> AuthSession:
    return AuthSession.authenticated(_user(), "abc")


def test_initial_state():
    s = AuthSession.initial()
    assert s.status is SessionStatus.INITIALIZING
    assert s.is_loading is True
    assert s.user is None and s.token is None and s.error is None
    assert s.is_authenticated is False


def test_restore_paths():
    restored = transition(AuthSession.initial(), SessionRestored(user=_user(), token="abc"))
    assert restored.status is SessionStatus.AUTHENTICATED
    assert restored.is_authenticated and not restored.is_loading

    failed = transition(AuthSession.initial(), RestoreFailed())
    assert failed.status is SessionStatus.UNAUTHENTICATED
    assert not failed.is_authenticated and not failed.is_loading

    again = transition(restored, RestoreStarted())
    assert again == AuthSession.initial()


@pytest.mark.parametrize(
    "started,succeeded,failed",
    [
        (LoginStarted, LoginSucceeded, LoginFailed),
        (RegisterStarted, RegisterSucceeded, RegisterFailed),
    ],
)
def test_login_and_register_cycle(started, succeeded, failed):
    s = transition(AuthSession.signed_out(error="old"), started())
    assert s.is_loading is True
    assert s.error is None

    ok = transition(s, succeeded(user=_user(), token="abc"))
    assert ok.status is SessionStatus.AUTHENTICATED
    assert ok.token == "abc"
    assert ok.is_loading is False

    bad = transition(transition(ok, started()), failed(error="Invalid email or password."))
    assert bad.status is SessionStatus.UNAUTHENTICATED
    assert bad.user is None and bad.token is None
    assert bad.error == "Invalid email or password."
    assert bad.is_loading is False


def test_logout_resets_everything():
    out = transition(_signed_in(), LoggedOut())
    assert out == AuthSession.signed_out()


def test_user_updated_merges_shallowly_and_keeps_auth():
    s = transition(_signed_in(), UserUpdated(changes={"first_name": "Jane", "phoneNumber": "+27"}))
    assert s.is_authenticated
    assert s.user is not None
    assert s.user.first_name == "Jane"
    assert s.user.phone_number == "+27"
    assert s.user.email == "a@b.com"
    assert s.token == "abc"


def test_user_updated_without_user_is_noop():
    s = AuthSession.signed_out()
    assert transition(s, UserUpdated(changes={"first_name": "x"})) is s


def test_user_updated_rejects_invalid_merge():
    with pytest.raises(ValidationError):
        transition(_signed_in(), UserUpdated(changes={"id": None}))


def test_error_cleared_only_touches_error():
    s = AuthSession.signed_out(error="boom")
    cleared = transition(s, ErrorCleared())
    assert cleared.error is None
    assert cleared.status is s.status and cleared.is_loading is s.is_loading


def test_unknown_event_raises():
    with pytest.raises(TypeError):
        transition(AuthSession.initial(), object())  # type: ignore[arg-type]


def test_user_profile_wire_format_round_trip():
    u = _user(firstName="John", vehicleCount=2)
    assert u.role is UserRole.CLIENT
    stored = u.to_storage()
    assert stored["firstName"] == "John"
    assert stored["role"] == "CLIENT"
    assert stored["vehicleCount"] == 2
    assert UserProfile.model_validate(stored) == u


def test_public_view():
    view = _signed_in().to_public()
    assert view["isAuthenticated"] is True
    assert view["isLoading"] is False
    assert view["token"] == "abc"
    assert view["user"]["id"] == "1"
