"""
Common building blocks of the data-access core.

Modules:
- http_client: async JSON API client with auth headers, timeout and retries
- errors: error taxonomy and retry classification
- config: client configuration (base URL, timeout, attempts)
- credentials: token providers consumed by the HTTP client
- auth_api: façade over the /auth/* endpoints
"""

__all__ = [
    "auth_api",
    "config",
    "credentials",
    "errors",
    "http_client",
]
