from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from .config import ClientConfig
from .constants import RETRY_BACKOFF_STEP_SECONDS, STATUS_FALLBACK_MESSAGES
from .credentials import CredentialProvider, StaticTokenProvider
from .errors import (
    ApiError,
    NetworkError,
    ParseError,
    RequestTimeoutError,
    error_for_status,
    should_retry,
)


logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RequestDescriptor:
    """One dispatch of a request. Rebuilt for every attempt, never persisted."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout_ms: int = 0
    attempt: int = 1

    def next_attempt(self) -> "RequestDescriptor":
        return replace(self, headers={}, attempt=self.attempt + 1)


def _join_url(base_url: str, endpoint: str) -> str:
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    if not endpoint:
        return base_url
    return f"{base_url}/{endpoint.lstrip('/')}"


def _is_json(response: httpx.Response) -> bool:
    return JSON_CONTENT_TYPE in response.headers.get("content-type", "").lower()


def _error_message(response: httpx.Response) -> str:
    """Best-effort message from an error response body."""
    fallback = STATUS_FALLBACK_MESSAGES.get(
        response.status_code, f"Server error ({response.status_code})"
    )
    try:
        if _is_json(response):
            data = response.json()
            if isinstance(data, dict):
                for name in ("message", "error", "detail"):
                    val = data.get(name)
                    if isinstance(val, str) and val.strip():
                        return val
            return fallback
        text = response.text.strip()
    except ValueError:
        return fallback
    return text[:500] if text else fallback


def _parse_success(response: httpx.Response) -> Any:
    if not _is_json(response):
        return response.text
    if not response.content.strip():
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise ParseError(
            "Malformed JSON in response body", status=response.status_code
        ) from exc


class ApiClient:
    """
    Async JSON API client with auth header injection, timeout and retries.

    Notes
    - The bearer token comes from the injected `CredentialProvider` and is
      looked up again for every attempt; no token means no header.
    - Each attempt is bounded by `timeout_ms`; an expired attempt is
      cancelled and surfaces as `RequestTimeoutError`.
    - Network errors, timeouts and 5xx are retried with linear backoff
      (1s, 2s, ...) up to `max_attempts`; the last error is re-raised as is.
      401/403/404 and other 4xx are raised immediately.
    - Configuration is read once per call, so setters affect the next call.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        credentials: Optional[CredentialProvider] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or ClientConfig()
        self._credentials: CredentialProvider = credentials or StaticTokenProvider()
        self._owns_client = client is None
        # Per-attempt deadline is enforced by asyncio.wait_for, not httpx
        self._client = client or httpx.AsyncClient(timeout=None)
        self._sleep = sleep

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Configuration ---------------
    @property
    def config(self) -> ClientConfig:
        return self._config

    def configure(self, **changes: Any) -> ClientConfig:
        self._config = self._config.updated(**changes)
        return self._config

    def set_base_url(self, base_url: str) -> None:
        self.configure(base_url=base_url)

    def set_timeout_ms(self, timeout_ms: int) -> None:
        self.configure(timeout_ms=timeout_ms)

    def set_max_attempts(self, max_attempts: int) -> None:
        self.configure(max_attempts=max_attempts)

    # --------------- Public API ---------------
    async def get(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        return await self._request("GET", endpoint, params=query or None)

    async def post(self, endpoint: str, body: Any = None) -> Any:
        return await self._request("POST", endpoint, json_body=body)

    async def put(self, endpoint: str, body: Any = None) -> Any:
        return await self._request("PUT", endpoint, json_body=body)

    async def patch(self, endpoint: str, body: Any = None) -> Any:
        return await self._request("PATCH", endpoint, json_body=body)

    async def delete(self, endpoint: str) -> Any:
        return await self._request("DELETE", endpoint)

    async def upload_file(
        self,
        endpoint: str,
        file: Any,
        *,
        field_name: str = "file",
        extra_fields: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        POST `file` as multipart/form-data.

        `file` is anything httpx accepts for a file part: bytes, a binary
        file object, or a `(filename, content[, content_type])` tuple.
        """
        data = {k: str(v) for k, v in (extra_fields or {}).items() if v is not None}
        return await self._request(
            "POST", endpoint, files={field_name: file}, form_data=data or None
        )

    async def health_check(self) -> bool:
        try:
            resp = await self.get("/health")
        except ApiError as exc:
            logger.warning("Health check failed: %s", exc.message)
            return False
        if isinstance(resp, str):
            return resp.strip().upper() == "UP"
        if isinstance(resp, dict):
            return resp.get("status") in ("UP", "ok")
        return False

    # --------------- Internal ---------------
    async def _build_headers(self, *, multipart: bool) -> Dict[str, str]:
        headers = {"Accept": JSON_CONTENT_TYPE}
        # multipart boundary is assigned by httpx
        if not multipart:
            headers["Content-Type"] = JSON_CONTENT_TYPE
        token = await self._credentials.current_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        files: Optional[Mapping[str, Any]] = None,
        form_data: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        config = self._config
        multipart = files is not None
        # multipart payloads travel in `files`/`form_data`, not in the descriptor
        body: Any = None
        if not multipart and method in ("POST", "PUT", "PATCH"):
            body = json_body if json_body is not None else {}

        descriptor = RequestDescriptor(
            method=method,
            url=_join_url(config.base_url, endpoint),
            body=body,
            timeout_ms=config.timeout_ms,
        )
        while True:
            descriptor.headers = await self._build_headers(multipart=multipart)
            logger.debug(
                "%s %s (attempt %d/%d, auth=%s)",
                descriptor.method,
                descriptor.url,
                descriptor.attempt,
                config.max_attempts,
                "Authorization" in descriptor.headers,
            )
            try:
                return await self._dispatch(descriptor, params=params, files=files, form_data=form_data)
            except ApiError as err:
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s %s",
                    descriptor.method,
                    descriptor.url,
                    descriptor.attempt,
                    config.max_attempts,
                    err.kind.value,
                    err.message,
                )
                if descriptor.attempt < config.max_attempts and should_retry(err):
                    await self._sleep(RETRY_BACKOFF_STEP_SECONDS * descriptor.attempt)
                    descriptor = descriptor.next_attempt()
                    continue
                raise

    async def _dispatch(
        self,
        descriptor: RequestDescriptor,
        *,
        params: Optional[Mapping[str, Any]],
        files: Optional[Mapping[str, Any]],
        form_data: Optional[Mapping[str, Any]],
    ) -> Any:
        request = self._client.build_request(
            descriptor.method,
            descriptor.url,
            headers=descriptor.headers,
            params=params,
            json=descriptor.body if files is None and descriptor.body is not None else None,
            files=files,
            data=form_data,
        )
        try:
            response = await asyncio.wait_for(
                self._client.send(request), timeout=descriptor.timeout_ms / 1000.0
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RequestTimeoutError(
                "Request timeout - server took too long to respond"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network request failed: {exc}") from exc
        except httpx.DecodingError as exc:
            raise ParseError(f"Could not decode response body: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Request failed: {exc}") from exc

        if not response.is_success:
            raise error_for_status(response.status_code, _error_message(response))
        return _parse_success(response)


__all__ = ["ApiClient", "RequestDescriptor"]
