from __future__ import annotations

import re
from typing import Any, Dict, Optional

from requests.auth import AuthBase

from ..cache import ResponseCache
from ..connection import RestConnection, Transport
from ..connection_config import ConnectionConfig
from ..query import QueryDialect

_SSC_PLAIN_VALUE = re.compile(r"^[A-Za-z0-9_.\-*]+$")


def escape_ssc_value(value: str) -> str:
    """Quote values with anything beyond ``[A-Za-z0-9_.-*]``; escape ``\\`` and ``"`` inside quotes."""
    if _SSC_PLAIN_VALUE.match(value):
        return value
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


SSC_DIALECT = QueryDialect(
    fields_param="fields",
    filter_param="q",
    filter_separator=" and ",
    filter_format="{field}:{value}",
    escape_value=escape_ssc_value,
    order_by_param="orderby",
    start_param="start",
    limit_param="limit",
    data_key="data",
)


class SSCConnectionConfig(ConnectionConfig):
    """Basic authentication, or ``FortifyToken`` header authentication when a token is set."""

    def __init__(self, *args: Any, token: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.token = token

    def get_credentials_provider(self) -> Optional[AuthBase]:
        if self.token:
            return None
        return super().get_credentials_provider()

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        if self.token:
            headers["Authorization"] = f"FortifyToken {self.token}"
        return headers


class SSCConnection(RestConnection):
    query_dialect = SSC_DIALECT

    def __init__(self, config: SSCConnectionConfig,
                 transport: Optional[Transport] = None,
                 cache: Optional[ResponseCache] = None) -> None:
        super().__init__(config, transport, cache)
        self._apis: Dict[str, Any] = {}

    def _api(self, name: str, factory: Any) -> Any:
        if name not in self._apis:
            self._apis[name] = factory(self)
        return self._apis[name]

    @property
    def attributes(self):
        from .api import SSCAttributeAPI
        return self._api("attributes", SSCAttributeAPI)

    @property
    def issues(self):
        from .api import SSCIssueAPI
        return self._api("issues", SSCIssueAPI)

    @property
    def artifacts(self):
        from .api import SSCArtifactAPI
        return self._api("artifacts", SSCArtifactAPI)

    @property
    def jobs(self):
        from .api import SSCJobAPI
        return self._api("jobs", SSCJobAPI)

    @property
    def metrics(self):
        from .api import SSCMetricsAPI
        return self._api("metrics", SSCMetricsAPI)
