from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserRole(str, Enum):
    CLIENT = "CLIENT"
    MECHANIC = "MECHANIC"
    ADMIN = "ADMIN"


class UserProfile(BaseModel):
    """
    Signed-in user as returned by the auth endpoints.

    Fields use the server's camelCase names on the wire (`firstName`, ...);
    unknown fields are preserved so nothing the server sends is lost on a
    store round-trip.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Union[str, int]
    email: Optional[str] = None
    role: Optional[UserRole] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    profile_image: Optional[str] = Field(default=None, alias="profileImage")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def merged(self, changes: Mapping[str, Any]) -> "UserProfile":
        """Shallow merge; `changes` may use either field names or wire names."""
        aliased: Dict[str, Any] = {}
        for k, v in changes.items():
            info = type(self).model_fields.get(k)
            aliased[info.alias if info is not None and info.alias else k] = v
        return type(self).model_validate({**self.to_storage(), **aliased})


class SessionStatus(str, Enum):
    INITIALIZING = "INITIALIZING"
    AUTHENTICATED = "AUTHENTICATED"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class AuthSession(BaseModel):
    """Immutable snapshot of the authentication state."""

    model_config = ConfigDict(frozen=True)

    status: SessionStatus = SessionStatus.INITIALIZING
    user: Optional[UserProfile] = None
    token: Optional[str] = None
    is_loading: bool = True
    error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.token is not None

    @classmethod
    def initial(cls) -> "AuthSession":
        return cls()

    @classmethod
    def signed_out(cls, *, error: Optional[str] = None) -> "AuthSession":
        return cls(status=SessionStatus.UNAUTHENTICATED, is_loading=False, error=error)

    @classmethod
    def authenticated(cls, user: UserProfile, token: str) -> "AuthSession":
        return cls(status=SessionStatus.AUTHENTICATED, user=user, token=token, is_loading=False)

    def to_public(self) -> Dict[str, Any]:
        """Fields UI collaborators read: user, token, isAuthenticated, isLoading, error."""
        return {
            "user": self.user.to_storage() if self.user is not None else None,
            "token": self.token,
            "isAuthenticated": self.is_authenticated,
            "isLoading": self.is_loading,
            "error": self.error,
        }


__all__ = ["AuthSession", "SessionStatus", "UserProfile", "UserRole"]
