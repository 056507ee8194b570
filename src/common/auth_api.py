from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import ErrorMessages
from .errors import ApiError, AuthError, ErrorKind
from .http_client import ApiClient
from .logging_setup import mask_token


logger = logging.getLogger(__name__)


class AuthServiceError(RuntimeError):
    """Auth operation failed; `message` is fit for display."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message}
        if self.status is not None:
            payload["status"] = self.status
        return payload


class AuthResponse(BaseModel):
    """`{user, token}` envelope returned by login and registration."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user: Dict[str, Any]
    token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")


def _translate(exc: ApiError, *, conflict_message: Optional[str] = None) -> AuthServiceError:
    if exc.status == 401:
        return AuthServiceError(ErrorMessages.INVALID_CREDENTIALS, status=401)
    if exc.status == 409 and conflict_message:
        return AuthServiceError(conflict_message, status=409)
    if exc.status is not None and exc.status >= 500:
        return AuthServiceError(ErrorMessages.SERVER_ERROR, status=exc.status)
    if exc.kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
        return AuthServiceError(ErrorMessages.NETWORK_ERROR)
    return AuthServiceError(exc.message or ErrorMessages.UNEXPECTED_ERROR, status=exc.status)


def _parse_auth_response(payload: Any) -> AuthResponse:
    if not isinstance(payload, dict) or not payload.get("token") or not payload.get("user"):
        raise AuthServiceError(ErrorMessages.INVALID_RESPONSE)
    try:
        return AuthResponse.model_validate(payload)
    except ValidationError as ve:
        raise AuthServiceError(ErrorMessages.INVALID_RESPONSE) from ve


class AuthService:
    """
    Thin façade over `ApiClient` for the `/auth/*` endpoints.

    Errors from the client are translated into `AuthServiceError` with a
    user-facing message. `logout` and `validate_token` never raise.
    """

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def login(self, credentials: Mapping[str, Any]) -> AuthResponse:
        try:
            payload = await self._api.post("/auth/login", dict(credentials))
        except ApiError as exc:
            logger.warning("Login failed: %s", exc.message)
            raise _translate(exc) from exc
        return _parse_auth_response(payload)

    async def register(self, user_data: Mapping[str, Any]) -> AuthResponse:
        try:
            payload = await self._api.post("/auth/register", dict(user_data))
        except ApiError as exc:
            logger.warning("Registration failed: %s", exc.message)
            raise _translate(exc, conflict_message=ErrorMessages.EMAIL_EXISTS) from exc
        return _parse_auth_response(payload)

    async def logout(self, token: Optional[str]) -> bool:
        try:
            await self._api.post("/auth/logout", {"token": token})
        except ApiError as exc:
            # Local logout must still proceed
            logger.warning("Server logout failed: %s", exc.message)
            return False
        return True

    async def validate_token(self, token: Optional[str]) -> bool:
        if not token:
            return False
        try:
            resp = await self._api.get("/auth/validate")
        except ApiError as exc:
            logger.info("Token validation failed (token %s): %s", mask_token(token), exc.message)
            return False
        return isinstance(resp, dict) and resp.get("valid") is True

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        try:
            resp = await self._api.post("/auth/refresh", {"refreshToken": refresh_token})
        except ApiError as exc:
            raise AuthServiceError("Failed to refresh token", status=exc.status) from exc
        if not isinstance(resp, dict):
            raise AuthServiceError(ErrorMessages.INVALID_RESPONSE)
        return resp

    async def request_password_reset(self, email: str) -> bool:
        try:
            await self._api.post("/auth/password-reset-request", {"email": email})
        except ApiError as exc:
            raise AuthServiceError(exc.message or "Failed to request password reset", status=exc.status) from exc
        return True

    async def reset_password(self, token: str, new_password: str) -> bool:
        try:
            await self._api.post("/auth/password-reset", {"token": token, "newPassword": new_password})
        except ApiError as exc:
            raise AuthServiceError(exc.message or "Failed to reset password", status=exc.status) from exc
        return True

    async def change_password(self, current_password: str, new_password: str) -> bool:
        try:
            await self._api.post(
                "/auth/change-password",
                {"currentPassword": current_password, "newPassword": new_password},
            )
        except AuthError as exc:
            raise AuthServiceError(ErrorMessages.WRONG_PASSWORD, status=401) from exc
        except ApiError as exc:
            raise AuthServiceError(exc.message or "Failed to change password", status=exc.status) from exc
        return True

    async def update_profile(self, user_data: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self._api.put("/auth/profile", dict(user_data))
        except ApiError as exc:
            raise AuthServiceError(exc.message or "Failed to update profile", status=exc.status) from exc
        return self._extract_user(resp)

    async def get_profile(self) -> Dict[str, Any]:
        try:
            resp = await self._api.get("/auth/profile")
        except ApiError as exc:
            raise AuthServiceError(exc.message or "Failed to get profile", status=exc.status) from exc
        return self._extract_user(resp)

    @staticmethod
    def _extract_user(resp: Any) -> Dict[str, Any]:
        user = resp.get("user") if isinstance(resp, dict) else None
        if not isinstance(user, dict):
            raise AuthServiceError(ErrorMessages.INVALID_RESPONSE)
        return user


__all__ = ["AuthResponse", "AuthService", "AuthServiceError"]
