from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from requests.auth import AuthBase

from ..cache import ResponseCache
from ..connection import RestConnection, Transport
from ..connection_config import ConnectionConfig
from ..errors import AuthenticationError, ConfigurationError
from ..json_document import JSONMap
from ..query import QueryDialect

logger = logging.getLogger(__name__)

_FOD_SPECIAL_CHARS = ("\\", "+", ":", "|")


def escape_fod_value(value: str) -> str:
    """Backslash-escape ``\\``, ``+``, ``:`` and ``|``, the separators of the filters syntax."""
    for ch in _FOD_SPECIAL_CHARS:
        value = value.replace(ch, "\\" + ch)
    return value


FOD_DIALECT = QueryDialect(
    fields_param="fields",
    filter_param="filters",
    filter_separator="+",
    filter_format="{field}:{value}",
    escape_value=escape_fod_value,
    order_by_param="orderBy",
    order_direction_param="orderByDirection",
    start_param="offset",
    limit_param="limit",
    data_key="items",
)


class FoDConnectionConfig(ConnectionConfig):
    """
    Bearer-token authentication. The token is either given directly, or
    obtained with client credentials (``client_id``/``client_secret``) or
    with a password grant (``tenant`` plus user credentials).
    """

    def __init__(self, *args: Any,
                 client_id: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 tenant: Optional[str] = None,
                 token: Optional[str] = None,
                 scope: str = "api-tenant",
                 **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.tenant = tenant
        self.token = token
        self.scope = scope

    def get_credentials_provider(self) -> Optional[AuthBase]:
        return None

    def token_request_data(self) -> Dict[str, str]:
        if self.client_id and self.client_secret:
            return {"grant_type": "client_credentials", "scope": self.scope,
                    "client_id": self.client_id, "client_secret": self.client_secret}
        if self.tenant and self.credentials is not None:
            return {"grant_type": "password", "scope": self.scope,
                    "username": f"{self.tenant}\\{self.credentials.username}",
                    "password": self.credentials.password or ""}
        raise ConfigurationError("Either client_id/client_secret or tenant with user credentials must be configured")


class FoDConnection(RestConnection):
    query_dialect = FOD_DIALECT
    token_path = "/oauth/token"

    def __init__(self, config: FoDConnectionConfig,
                 transport: Optional[Transport] = None,
                 cache: Optional[ResponseCache] = None) -> None:
        super().__init__(config, transport, cache)
        self._token: Optional[str] = config.token
        self._token_lock = threading.Lock()
        self._releases = None

    def get_auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.get_token()}"}

    def get_token(self) -> str:
        """Bearer token, requested once and kept for the connection lifetime."""
        with self._token_lock:
            if self._token is None:
                self._token = self._request_token()
            return self._token

    def _request_token(self) -> str:
        data = self.config.token_request_data()  # type: ignore[attr-defined]
        logger.debug(f"Requesting {data['grant_type']} token from {self.url_for(self.token_path)}")
        result = self.execute_request(
            "POST", self.token_path, body=urlencode(data), response_type=JSONMap, authenticate=False,
            headers={"Content-Type": "application/x-www-form-urlencoded"})
        token = result.get_path("access_token", str) if result else None
        if not token:
            raise AuthenticationError(200, "POST", self.url_for(self.token_path), "No access_token in token response")
        return token

    @property
    def releases(self):
        from .api import FoDReleaseAPI
        if self._releases is None:
            self._releases = FoDReleaseAPI(self)
        return self._releases
