"""Connection configuration: base URL, credentials, proxy and transport properties."""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote, unquote, urlparse, urlunparse

from requests.auth import AuthBase, HTTPBasicAuth

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Transport-level property names understood by RestConnection
CONNECT_TIMEOUT = "connect_timeout"
READ_TIMEOUT = "read_timeout"

PROPERTY_ALIASES: Dict[str, str] = {
    "connectTimeout": CONNECT_TIMEOUT,
    "readTimeout": READ_TIMEOUT,
}


@dataclass
class Credentials:
    username: str
    password: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "Credentials":
        """Parse ``user[:password]``; percent-escapes are decoded."""
        user, sep, password = value.partition(":")
        return cls(unquote(user), unquote(password) if sep else None)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password=***)"


@dataclass
class ProxyConfig:
    url: str
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_url(cls, url: str, username: Optional[str] = None, password: Optional[str] = None) -> "ProxyConfig":
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigurationError(f"Invalid proxy URL: {url}")
        if parsed.username and not username:
            username, password = unquote(parsed.username), unquote(parsed.password or "")
        netloc = _host_and_port(parsed.netloc)
        return cls(url=urlunparse((parsed.scheme, netloc, "", "", "", "")), username=username, password=password)

    def to_requests_proxies(self) -> Dict[str, str]:
        url = self.url
        if self.username:
            parsed = urlparse(self.url)
            user_info = quote(self.username, safe="") + ":" + quote(self.password or "", safe="")
            netloc = f"{user_info}@{parsed.netloc}"
            url = urlunparse((parsed.scheme, netloc, parsed.path, "", "", ""))
        return {"http": url, "https": url}


def _host_and_port(netloc: str) -> str:
    """Strip user info from a netloc, keeping IPv6 brackets and the port."""
    return netloc.rpartition("@")[2]


def parse_connection_properties(value: Optional[str]) -> Dict[str, Any]:
    """Parse ``key1=val1,key2=val2`` and translate keys through PROPERTY_ALIASES."""
    result: Dict[str, Any] = {}
    if not value or not value.strip():
        return result
    for item in value.split(","):
        if not item.strip():
            continue
        key, sep, val = item.partition("=")
        if not sep:
            raise ConfigurationError(f"Invalid connection property '{item}', expected key=value")
        key = key.strip()
        result[PROPERTY_ALIASES.get(key, key)] = val.strip()
    return result


def validate_and_normalize_url(url: Optional[str]) -> str:
    """Require an http/https URL with a host and add a trailing slash."""
    if not url:
        raise ConfigurationError("Base URL must be configured")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ConfigurationError(f"URL protocol should be either http or https: {url}")
    if not parsed.netloc:
        raise ConfigurationError(f"URL has no host: {url}")
    return url if url.endswith("/") else url + "/"


class ConnectionConfig:
    """
    Settings for a RestConnection.

    Assigning ``base_url``, ``credentials``, ``proxy`` or
    ``connection_properties`` validates and normalizes the value; the
    ``with_*`` variants do the same and return the config for chaining.
    """

    def __init__(self,
                 base_url: Optional[str] = None,
                 credentials: Union[Credentials, str, None] = None,
                 proxy: Union[ProxyConfig, str, None] = None,
                 connection_properties: Union[str, Mapping[str, Any], None] = None,
                 verify_ssl: bool = True) -> None:
        self._base_url: Optional[str] = None
        self._credentials: Optional[Credentials] = None
        self._proxy: Optional[ProxyConfig] = None
        self._connection_properties: Dict[str, Any] = {}
        self.verify_ssl = verify_ssl
        if base_url is not None:
            self.base_url = base_url
        self.credentials = credentials
        self.proxy = proxy
        self.connection_properties = connection_properties

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(base_url={self._base_url!r}, credentials={self._credentials!r}, "
                f"proxy={self._proxy!r}, connection_properties={self._connection_properties!r}, "
                f"verify_ssl={self.verify_ssl!r})")

    # ---------- base URL ----------
    @property
    def base_url(self) -> Optional[str]:
        return self._base_url

    @base_url.setter
    def base_url(self, url: str) -> None:
        self._base_url = validate_and_normalize_url(url)

    def set_base_url(self, url: str) -> None:
        self.base_url = url

    # ---------- credentials ----------
    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    @credentials.setter
    def credentials(self, credentials: Union[Credentials, str, None]) -> None:
        if isinstance(credentials, str):
            credentials = Credentials.parse(credentials)
        self._credentials = credentials

    # ---------- proxy ----------
    @property
    def proxy(self) -> Optional[ProxyConfig]:
        return self._proxy

    @proxy.setter
    def proxy(self, proxy: Union[ProxyConfig, str, None]) -> None:
        if isinstance(proxy, str):
            proxy = ProxyConfig.from_url(proxy)
        self._proxy = proxy

    # ---------- connection properties ----------
    @property
    def connection_properties(self) -> Dict[str, Any]:
        return self._connection_properties

    @connection_properties.setter
    def connection_properties(self, properties: Union[str, Mapping[str, Any], None]) -> None:
        if properties is None or isinstance(properties, str):
            self._connection_properties = parse_connection_properties(properties)
        else:
            self._connection_properties = {PROPERTY_ALIASES.get(k, k): v for k, v in properties.items()}

    # ---------- combined URI ----------
    def set_uri(self, uri_with_properties: str) -> None:
        """
        Configure from ``scheme://[user:pass@]host[:port]/path[;k1=v1,k2=v2]``.

        The part before the first ``;`` provides the base URL and optional
        credentials, the part after it the connection properties.
        """
        if not uri_with_properties or not uri_with_properties.strip():
            raise ConfigurationError("URI must be configured")
        uri, _, properties = uri_with_properties.partition(";")
        try:
            parsed = urlparse(uri.strip())
            parsed.port  # raises ValueError for a malformed port
        except ValueError as exc:
            raise ConfigurationError(f"Input cannot be parsed as URI: {uri}") from exc
        if not parsed.hostname:
            raise ConfigurationError(f"Input cannot be parsed as URI: {uri}")
        self.base_url = urlunparse((parsed.scheme, _host_and_port(parsed.netloc), parsed.path, "", "", ""))
        if properties:
            self.connection_properties = properties
        if parsed.username:
            self.credentials = parsed.netloc.rpartition("@")[0]
        logger.debug(f"Configured base URL {self._base_url} with properties {sorted(self._connection_properties)}")

    # ---------- fluent variants ----------
    def with_base_url(self, url: str) -> "ConnectionConfig":
        self.base_url = url
        return self

    def with_uri(self, uri_with_properties: str) -> "ConnectionConfig":
        self.set_uri(uri_with_properties)
        return self

    def with_credentials(self, credentials: Union[Credentials, str, None]) -> "ConnectionConfig":
        self.credentials = credentials
        return self

    def with_connection_properties(self, properties: Union[str, Mapping[str, Any], None]) -> "ConnectionConfig":
        self.connection_properties = properties
        return self

    def with_proxy(self, proxy: Union[ProxyConfig, str, None]) -> "ConnectionConfig":
        self.proxy = proxy
        return self

    # ---------- hooks used by RestConnection ----------
    def get_credentials_provider(self) -> Optional[AuthBase]:
        """
        Auth applied to every request. Subclasses using token or header
        based authentication override this to return None and provide
        headers through default_headers() instead.
        """
        if self._credentials is None:
            return None
        return HTTPBasicAuth(self._credentials.username, self._credentials.password or "")

    def cache_identity(self) -> Optional[str]:
        """
        Who the cached responses belong to. Session-level basic auth is not
        part of the request headers, so the credentials are folded into
        the cache key here as a digest.
        """
        if self._credentials is None:
            return None
        secret = f"{self._credentials.username}:{self._credentials.password or ''}"
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def get_timeout(self) -> Optional[Tuple[Optional[float], Optional[float]]]:
        """``(connect, read)`` in seconds from millisecond properties, or None."""
        connect = self._connection_properties.get(CONNECT_TIMEOUT)
        read = self._connection_properties.get(READ_TIMEOUT)
        if connect is None and read is None:
            return None
        return (_millis_to_seconds(connect), _millis_to_seconds(read))


def _millis_to_seconds(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return int(value) / 1000.0
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Timeout must be an integer number of milliseconds: {value!r}") from exc
