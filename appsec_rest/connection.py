from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Sequence, Tuple, Union
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
import urllib3

from .cache import ResponseCache, request_signature
from .connection_config import ConnectionConfig
from .errors import ConfigurationError, TransportError, error_for_status
from .json_document import coerce, dumps, parse_json

logger = logging.getLogger(__name__)

Params = Union[Mapping[str, Any], Sequence[Tuple[str, Any]], None]


@dataclass
class TransportResponse:
    status_code: int
    body: bytes
    headers: Mapping[str, str]

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Transport(Protocol):
    """What RestConnection needs from an HTTP library: send a request, get status and body."""

    def send(self, method: str, url: str,
             headers: Optional[Mapping[str, str]] = None,
             body: Optional[bytes] = None,
             params: Optional[Sequence[Tuple[str, Any]]] = None) -> TransportResponse:
        ...

    def close(self) -> None:
        ...


class RequestsTransport:
    """Transport backed by a requests.Session; TLS, proxy and auth come from the config."""

    def __init__(self, config: ConnectionConfig) -> None:
        self.session = requests.Session()
        self.session.headers.update(config.default_headers())
        self.session.verify = config.verify_ssl
        if not config.verify_ssl:
            logger.warning("TLS certificate verification is disabled for %s", config.base_url)
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        auth = config.get_credentials_provider()
        if auth is not None:
            self.session.auth = auth
        if config.proxy is not None:
            self.session.proxies.update(config.proxy.to_requests_proxies())
        self.timeout = config.get_timeout()
        # Retry-free: failures surface immediately to the caller
        retry = urllib3.Retry(total=0, read=False)
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def send(self, method: str, url: str,
             headers: Optional[Mapping[str, str]] = None,
             body: Optional[bytes] = None,
             params: Optional[Sequence[Tuple[str, Any]]] = None) -> TransportResponse:
        r = self.session.request(method, url, headers=dict(headers or {}), data=body,
                                 params=list(params or ()), timeout=self.timeout)
        return TransportResponse(status_code=r.status_code, body=r.content or b"", headers=dict(r.headers))

    def close(self) -> None:
        self.session.close()


def _normalize_params(params: Params) -> Tuple[Tuple[str, Any], ...]:
    if not params:
        return ()
    items: Iterable[Tuple[str, Any]] = params.items() if isinstance(params, Mapping) else params
    return tuple((k, v) for k, v in items if v is not None)


class RestConnection:
    """
    Executes JSON requests against a base URL.

    One instance owns one transport and one ResponseCache; both may be shared
    by concurrent callers. Nothing is retried: every failure is raised to
    the caller as a RestClientError subclass.
    """

    # Parameter syntax used by QueryBuilder; product connections set their own
    query_dialect: Any = None

    def __init__(self, config: ConnectionConfig,
                 transport: Optional[Transport] = None,
                 cache: Optional[ResponseCache] = None) -> None:
        if not config.base_url:
            raise ConfigurationError("Base URL must be configured")
        self.config = config
        self.transport: Transport = transport if transport is not None else RequestsTransport(config)
        self.cache = cache if cache is not None else ResponseCache()

    def __enter__(self) -> "RestConnection":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    @property
    def base_url(self) -> str:
        return self.config.base_url  # type: ignore[return-value]

    def url_for(self, path: str = "", *segments: Any) -> str:
        """
        Absolute URL under the base URL. ``path`` is used verbatim, each extra
        segment is percent-quoted: ``url_for("/api/v1/artifacts", 12, "action")``.
        """
        url = self.base_url + path.lstrip("/")
        for segment in segments:
            url = url.rstrip("/") + "/" + quote(str(segment).strip("/"), safe="")
        return url

    def get_auth_headers(self) -> Dict[str, str]:
        """Extra per-request headers; token-based connections override this."""
        return {}

    def clear_cache(self) -> None:
        self.cache.clear()

    def _resolve(self, target: str) -> str:
        return target if target.startswith(("http://", "https://")) else self.url_for(target)

    def _request_headers(self, authenticate: bool, headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        request_headers: Dict[str, str] = dict(self.config.default_headers())
        if authenticate:
            request_headers.update(self.get_auth_headers())
        if headers:
            request_headers.update(headers)
        return request_headers

    def _send(self, method: str, url: str, headers: Dict[str, str],
              payload: Optional[bytes], query: Tuple[Tuple[str, Any], ...]) -> TransportResponse:
        logger.debug(f"{method} {url} params={list(query)}")
        try:
            response = self.transport.send(method, url, headers=headers, body=payload, params=query)
        except (requests.RequestException, OSError) as exc:
            raise TransportError(f"{method} {url} failed: {exc}", method=method, url=url) from exc
        if not 200 <= response.status_code < 300:
            raise error_for_status(response.status_code, method, url, response.text)
        return response

    def execute_request(self, method: str, target: str,
                        body: Any = None,
                        response_type: Any = None,
                        params: Params = None,
                        use_cache: bool = False,
                        authenticate: bool = True,
                        headers: Optional[Mapping[str, str]] = None) -> Any:
        """
        Send one request and return the parsed JSON body coerced to ``response_type``.

        ``target`` is either an absolute URL or a path relative to the base URL.
        ``body`` is JSON-encoded unless it is already bytes/str. GET results
        are looked up in and stored into the cache when ``use_cache`` is set.
        ``authenticate=False`` skips get_auth_headers(), for token requests.
        An empty response body gives None whatever ``response_type`` is.
        """
        method = method.upper()
        url = self._resolve(target)
        query = _normalize_params(params)
        request_headers = self._request_headers(authenticate, headers)
        payload: Optional[bytes] = None
        if body is not None:
            if isinstance(body, bytes):
                payload = body
            elif isinstance(body, str):
                payload = body.encode("utf-8")
            else:
                payload = dumps(body).encode("utf-8")
            request_headers.setdefault("Content-Type", "application/json")

        key = None
        if use_cache and method == "GET":
            key = request_signature(method, url, query, request_headers, self.config.cache_identity())
            cached = self.cache.get(key)
            if cached is not None:
                return coerce(cached, response_type)

        response = self._send(method, url, request_headers, payload, query)

        try:
            result = parse_json(response.body)
        except ValueError as exc:
            raise error_for_status(response.status_code, method, url, response.text) from exc
        result = coerce(result, response_type)
        if key is not None and result is not None:
            self.cache.put(key, result)
        return result

    def execute_raw_request(self, method: str, target: str,
                            body: Optional[bytes] = None,
                            params: Params = None,
                            authenticate: bool = True,
                            headers: Optional[Mapping[str, str]] = None) -> TransportResponse:
        """
        Like execute_request, but for non-JSON payloads such as file uploads
        and downloads: the body is sent as-is and the response is returned
        unparsed. Never cached.
        """
        method = method.upper()
        url = self._resolve(target)
        return self._send(method, url, self._request_headers(authenticate, headers), body,
                          _normalize_params(params))
