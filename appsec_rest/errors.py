"""Exceptions raised by the REST client core and the product layers."""
from __future__ import annotations

from typing import Any, Optional

import requests

MAX_BODY_SNIPPET = 500


class RestClientError(Exception):
    """Base class for every error raised by appsec_rest."""


class ConfigurationError(RestClientError, ValueError):
    """Invalid base URL/scheme, unparsable or missing URI."""


class TransportError(RestClientError):
    """Connection-level failure (DNS, refused connection, timeout, TLS)."""

    def __init__(self, message: str, method: Optional[str] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.method = method
        self.url = url


class HttpStatusError(RestClientError, requests.HTTPError):
    """Non-2xx response. Carries status code and raw body for diagnostics."""

    def __init__(self, status_code: int, method: str, url: str, body: str = "") -> None:
        self.status_code = status_code
        self.method = method
        self.url = url
        self.body = body or ""
        snippet = self.body[:MAX_BODY_SNIPPET]
        super().__init__(f"{method} {url} failed with HTTP {status_code}: {snippet}")


class AuthenticationError(HttpStatusError):
    """HTTP 401/403."""


class ClientRequestError(HttpStatusError):
    """HTTP 4xx other than authentication failures."""


class ServerError(HttpStatusError):
    """HTTP 5xx."""


class NotFoundError(RestClientError, LookupError):
    """A unique-result query matched no element."""


class MultipleResultsError(RestClientError, LookupError):
    """A unique-result query matched more than one element."""

    def __init__(self, message: str, count: int) -> None:
        super().__init__(message)
        self.count = count


class InvalidArgumentError(RestClientError, ValueError):
    """Unresolvable attribute or option, or too many values for an attribute."""


class TypeMismatchError(RestClientError, TypeError):
    """A JSON value cannot be coerced to the requested type."""

    def __init__(self, value: Any, target: Any, path: Optional[str] = None) -> None:
        self.value = value
        self.target = target
        self.path = path
        name = getattr(target, "__name__", str(target))
        where = f" at '{path}'" if path else ""
        super().__init__(f"Cannot convert {value!r}{where} to {name}")


def error_for_status(status_code: int, method: str, url: str, body: str = "") -> HttpStatusError:
    """Map an HTTP status code to the matching exception instance."""
    if status_code in (401, 403):
        return AuthenticationError(status_code, method, url, body)
    if 400 <= status_code < 500:
        return ClientRequestError(status_code, method, url, body)
    if status_code >= 500:
        return ServerError(status_code, method, url, body)
    return HttpStatusError(status_code, method, url, body)


__all__ = [
    "RestClientError",
    "ConfigurationError",
    "TransportError",
    "HttpStatusError",
    "AuthenticationError",
    "ClientRequestError",
    "ServerError",
    "NotFoundError",
    "MultipleResultsError",
    "InvalidArgumentError",
    "TypeMismatchError",
    "error_for_status",
]
