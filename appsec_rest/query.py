"""
Query builder and paged query execution.

A QueryBuilder collects parameter contributors (fields, filter, order-by,
extra parameters) for one resource path. ``build()`` freezes them into a
Query, which performs the requests and follows paging.

    query = (QueryBuilder(conn, "/api/v1/projectVersions/{id}/issues", paging_supported=True, id=6)
             .param_fields("id", "issueName")
             .param_q_and("severity", "4")
             .build())
    issues = query.get_all()

Product syntax (parameter names, filter escaping, response envelope) lives
in a QueryDialect, normally provided by the product connection.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import quote

from .connection import RestConnection
from .errors import InvalidArgumentError, MultipleResultsError, NotFoundError
from .json_document import JSONList, JSONMap, coerce, to_json_value

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class QueryDialect:
    """Product-specific request parameter syntax."""

    fields_param: str = "fields"
    filter_param: str = "q"
    filter_separator: str = " and "
    filter_format: str = "{field}:{value}"
    escape_value: Callable[[str], str] = field(default=lambda value: value)
    order_by_param: str = "orderby"
    # None: descending is expressed by prefixing the field with "-"
    order_direction_param: Optional[str] = None
    start_param: str = "start"
    limit_param: str = "limit"
    data_key: Optional[str] = "data"

    def encode_filter(self, predicates: Tuple[Tuple[str, str], ...]) -> Optional[str]:
        """AND-combine ``(field, value)`` predicates in insertion order."""
        if not predicates:
            return None
        return self.filter_separator.join(
            self.filter_format.format(field=f, value=self.escape_value(v)) for f, v in predicates
        )

    def order_by_params(self, field_name: str, descending: bool) -> List[Tuple[str, str]]:
        if self.order_direction_param is None:
            return [(self.order_by_param, f"-{field_name}" if descending else field_name)]
        return [(self.order_by_param, field_name),
                (self.order_direction_param, "DESC" if descending else "ASC")]

    def extract_elements(self, response: Any) -> JSONList:
        """Element list from a response envelope; a single object counts as one element."""
        data = response
        if self.data_key and isinstance(response, dict):
            data = response.get(self.data_key)
        if data is None:
            return JSONList()
        if isinstance(data, list):
            return data if isinstance(data, JSONList) else to_json_value(data)
        return JSONList([to_json_value(data)])


DEFAULT_DIALECT = QueryDialect()


# ---------- parameter contributors ----------
class ParamFields:
    def __init__(self) -> None:
        self.fields: List[str] = []

    def add(self, *fields: str) -> None:
        for f in fields:
            if f and f not in self.fields:
                self.fields.append(f)

    def params(self, dialect: QueryDialect) -> List[Tuple[str, str]]:
        return [(dialect.fields_param, ",".join(self.fields))] if self.fields else []


class ParamQ:
    def __init__(self) -> None:
        self.predicates: List[Tuple[str, str]] = []

    def add(self, field_name: str, value: Any) -> None:
        if not field_name:
            raise InvalidArgumentError("Filter field name must not be empty")
        self.predicates.append((field_name, coerce(value, str) if value is not None else ""))

    def params(self, dialect: QueryDialect) -> List[Tuple[str, str]]:
        expression = dialect.encode_filter(tuple(self.predicates))
        return [(dialect.filter_param, expression)] if expression else []


class ParamOrderBy:
    def __init__(self) -> None:
        self.field: Optional[str] = None
        self.descending = False

    def set(self, field_name: Optional[str], descending: bool = False) -> None:
        self.field = field_name
        self.descending = descending

    def params(self, dialect: QueryDialect) -> List[Tuple[str, str]]:
        return dialect.order_by_params(self.field, self.descending) if self.field else []


class ParamExtra:
    def __init__(self) -> None:
        self.values: List[Tuple[str, str]] = []

    def add(self, name: str, value: Any) -> None:
        self.values.append((name, coerce(value, str)))

    def params(self, dialect: QueryDialect) -> List[Tuple[str, str]]:
        return list(self.values)


def expand_path_template(template: str, values: Dict[str, Any]) -> str:
    """Replace ``{name}`` placeholders with percent-quoted values."""
    def _replace(m: "re.Match[str]") -> str:
        name = m.group(1)
        if values.get(name) is None:
            raise InvalidArgumentError(f"No value for path placeholder '{name}' in {template}")
        return quote(str(values[name]), safe="")
    return _PLACEHOLDER_RE.sub(_replace, template)


class QueryBuilder:
    """Accumulates request parameters for one resource and builds a Query."""

    def __init__(self, conn: RestConnection, path_template: str,
                 paging_supported: bool = False,
                 dialect: Optional[QueryDialect] = None,
                 **template_values: Any) -> None:
        self.conn = conn
        self.path_template = path_template
        self.paging_supported = paging_supported
        self.dialect = dialect or conn.query_dialect or DEFAULT_DIALECT
        self.template_values: Dict[str, Any] = dict(template_values)
        self._fields = ParamFields()
        self._q = ParamQ()
        self._order_by = ParamOrderBy()
        self._extra = ParamExtra()
        self._contributors = [self._fields, self._q, self._order_by, self._extra]
        self._use_cache = False
        self._page_size = DEFAULT_PAGE_SIZE
        self._max_results: Optional[int] = None
        self._paging_enabled = True

    def param_fields(self, *fields: str) -> "QueryBuilder":
        """Request only these fields. No fields means the server's default set."""
        flat: List[str] = []
        for f in fields:
            if f is None:
                continue
            flat.extend(f if isinstance(f, (list, tuple)) else [f])
        self._fields.add(*flat)
        return self

    def param_q_and(self, field_name: str, value: Any) -> "QueryBuilder":
        self._q.add(field_name, value)
        return self

    def param_order_by(self, field_name: Optional[str], descending: bool = False) -> "QueryBuilder":
        self._order_by.set(field_name, descending)
        return self

    def param(self, name: str, value: Any) -> "QueryBuilder":
        self._extra.add(name, value)
        return self

    def use_cache(self, use_cache: bool = True) -> "QueryBuilder":
        self._use_cache = use_cache
        return self

    def page_size(self, page_size: int) -> "QueryBuilder":
        if page_size < 1:
            raise InvalidArgumentError(f"Page size must be positive, got {page_size}")
        self._page_size = page_size
        return self

    def max_results(self, max_results: Optional[int]) -> "QueryBuilder":
        self._max_results = max_results
        return self

    def paging(self, enabled: bool) -> "QueryBuilder":
        self._paging_enabled = enabled
        return self

    def build(self) -> "Query":
        """Freeze the current state; later builder calls do not affect the Query."""
        params: List[Tuple[str, str]] = []
        for contributor in self._contributors:
            params.extend(contributor.params(self.dialect))
        return Query(
            conn=self.conn,
            path=expand_path_template(self.path_template, self.template_values),
            params=tuple(params),
            dialect=self.dialect,
            paging=self.paging_supported and self._paging_enabled,
            page_size=self._page_size,
            max_results=self._max_results,
            use_cache=self._use_cache,
        )


@dataclass(frozen=True)
class Query:
    """Immutable, executable query produced by QueryBuilder.build()."""

    conn: RestConnection
    path: str
    params: Tuple[Tuple[str, str], ...]
    dialect: QueryDialect = DEFAULT_DIALECT
    paging: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    max_results: Optional[int] = None
    use_cache: bool = False

    def _fetch(self, start: Optional[int] = None, limit: Optional[int] = None) -> JSONList:
        params = list(self.params)
        if start is not None:
            params.append((self.dialect.start_param, str(start)))
        if limit is not None:
            params.append((self.dialect.limit_param, str(limit)))
        response = self.conn.execute_request("GET", self.path, params=params, use_cache=self.use_cache)
        return self.dialect.extract_elements(response)

    def iter_all(self) -> Iterator[Any]:
        """
        Yield elements page by page in server order. A page shorter than the
        requested size ends the iteration.
        """
        if not self.paging:
            elements = self._fetch()
            if self.max_results is not None:
                elements = elements[:self.max_results]
            yield from elements
            return
        start, returned = 0, 0
        while True:
            limit = self.page_size
            if self.max_results is not None:
                limit = min(limit, self.max_results - returned)
                if limit <= 0:
                    return
            page = self._fetch(start, limit)
            logger.debug(f"Fetched {len(page)} elements from {self.path} at offset {start}")
            for element in page:
                yield element
            returned += len(page)
            if len(page) < limit:
                return
            start += limit

    def get_all(self) -> JSONList:
        result = JSONList(self.iter_all())
        if self.paging:
            logger.info(f"Retrieved {len(result)} elements from {self.path}")
        return result

    def get_unique(self) -> JSONMap:
        """
        Return the single matching element. Raises NotFoundError for no
        match and MultipleResultsError for more than one.
        """
        elements = self._fetch(0, 2) if self.paging else self._fetch()
        if not elements:
            raise NotFoundError(f"No result found for {self.path} with {list(self.params)}")
        if len(elements) > 1:
            raise MultipleResultsError(
                f"Expected a single result for {self.path} with {list(self.params)}, got {len(elements)}",
                count=len(elements))
        return coerce(elements[0], JSONMap)
