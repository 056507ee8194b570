"""
Authentication session management.

`AuthSessionManager` drives a typed state machine (`machine.transition`)
and mirrors the signed-in user and token to the persistent store.
"""

from .manager import AuthSessionManager, SessionSupersededError
from .models import AuthSession, SessionStatus, UserProfile, UserRole

__all__ = [
    "AuthSession",
    "AuthSessionManager",
    "SessionStatus",
    "SessionSupersededError",
    "UserProfile",
    "UserRole",
]
