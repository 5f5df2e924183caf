"""
Typed, paginated, cached clients for JSON REST APIs of application-security platforms.
- json_document: JSONMap/JSONList with path access, coercion and index-by-key lookups
- connection_config / connection: base URL, credentials, proxy, retry-free requests, response cache
- query: QueryBuilder/Query assembling fields, filters, ordering and paging
- attributes: attribute definition index and update-record encoder
- ssc, fod: the two product specializations
"""
from .cache import ResponseCache
from .connection import RequestsTransport, RestConnection, Transport, TransportResponse
from .connection_config import ConnectionConfig, Credentials, ProxyConfig
from .errors import (
    AuthenticationError,
    ClientRequestError,
    ConfigurationError,
    HttpStatusError,
    InvalidArgumentError,
    MultipleResultsError,
    NotFoundError,
    RestClientError,
    ServerError,
    TransportError,
    TypeMismatchError,
)
from .json_document import JSONList, JSONMap
from .query import Query, QueryBuilder, QueryDialect
