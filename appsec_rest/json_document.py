"""
Dynamic JSON document model.

``JSONMap`` and ``JSONList`` are thin ``dict``/``list`` subclasses that add
path-addressed access, type coercion and the lookup idioms the product APIs
rely on (resolving names to ids, building name-and-id indexes).

Paths use dots for object members and brackets for list indexes, for
example ``"values.comment"`` or ``"options[0].guid"``.
"""
from __future__ import annotations

import json
import re
from datetime import date, datetime, timezone
from typing import Any, Iterator, List, Optional, Union

from .errors import TypeMismatchError

THIS = "#this"

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")
# "+0000" style offsets, rejected by datetime.fromisoformat before 3.11
_COMPACT_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")
_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off"}

PathSegment = Union[str, int]


def parse_path(path: str) -> List[PathSegment]:
    """Split ``a.b[2].c`` into ``["a", "b", 2, "c"]``."""
    if not path:
        raise ValueError("Path must not be empty")
    segments: List[PathSegment] = []
    pos = 0
    for m in _SEGMENT_RE.finditer(path):
        gap = path[pos:m.start()]
        if gap not in ("", "."):
            raise ValueError(f"Invalid path expression: {path}")
        name, index = m.groups()
        segments.append(int(index) if index is not None else name)
        pos = m.end()
    if pos != len(path):
        raise ValueError(f"Invalid path expression: {path}")
    return segments


def to_json_value(value: Any) -> Any:
    """Recursively convert plain dicts/lists/tuples into JSONMap/JSONList."""
    if isinstance(value, JSONMap):
        for k, v in value.items():
            dict.__setitem__(value, k, to_json_value(v))
        return value
    if isinstance(value, JSONList):
        for i, v in enumerate(value):
            list.__setitem__(value, i, to_json_value(v))
        return value
    if isinstance(value, dict):
        return JSONMap((str(k), to_json_value(v)) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return JSONList(to_json_value(v) for v in value)
    return value


def parse_json(text: Union[str, bytes, None]) -> Any:
    """Parse a response body into a JSONMap/JSONList tree. Empty body gives None."""
    if text is None:
        return None
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    if not text.strip():
        return None
    return to_json_value(json.loads(text, object_pairs_hook=JSONMap))


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def _parse_datetime(value: Any, path: Optional[str]) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        elif "T" in text:
            text = _COMPACT_OFFSET_RE.sub(r"\1:\2", text)
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    raise TypeMismatchError(value, datetime, path)


def _coerce_bool(value: Any, path: Optional[str]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise TypeMismatchError(value, bool, path)


def coerce(value: Any, value_type: Any = None, path: Optional[str] = None) -> Any:
    """
    Convert ``value`` to ``value_type``.

    ``None`` stays ``None`` for every target type. Supported targets are
    ``str``, ``int``, ``float``, ``bool``, ``date``, ``datetime``, ``dict``
    (returns a JSONMap), ``list`` (returns a JSONList), ``JSONMap``,
    ``JSONList`` and ``object``/``None`` (no conversion). Raises
    TypeMismatchError when the conversion is impossible.
    """
    if value is None or value_type is None or value_type is object:
        return value
    if value_type is str:
        if isinstance(value, (dict, list)):
            return dumps(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return str(value)
    if value_type is bool:
        return _coerce_bool(value, path)
    if value_type is int:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
        raise TypeMismatchError(value, int, path)
    if value_type is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
        raise TypeMismatchError(value, float, path)
    if value_type is datetime:
        return _parse_datetime(value, path)
    if value_type is date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return _parse_datetime(value, path).date()
    if value_type in (dict, JSONMap):
        if isinstance(value, dict):
            return value if isinstance(value, JSONMap) else to_json_value(value)
        raise TypeMismatchError(value, JSONMap, path)
    if value_type in (list, JSONList):
        if isinstance(value, list):
            return value if isinstance(value, JSONList) else to_json_value(value)
        raise TypeMismatchError(value, JSONList, path)
    if isinstance(value_type, type) and isinstance(value, value_type):
        return value
    raise TypeMismatchError(value, value_type, path)


class JSONMap(dict):
    """JSON object with path navigation and typed extraction."""

    def get_path(self, path: str, value_type: Any = None) -> Any:
        """
        Return the value at ``path`` coerced to ``value_type``.

        Missing keys, out-of-range indexes and scalar intermediates all
        yield None; only an impossible coercion raises.
        """
        current: Any = self
        for segment in parse_path(path):
            if isinstance(segment, int):
                if not isinstance(current, list) or segment >= len(current):
                    return None
                current = current[segment]
            else:
                if not isinstance(current, dict):
                    return None
                current = current.get(segment)
            if current is None:
                return None
        return coerce(current, value_type, path)

    def put_path(self, path: str, value: Any) -> "JSONMap":
        """Write ``value`` at ``path``, creating intermediate JSONMap nodes."""
        segments = parse_path(path)
        current: Any = self
        for i, segment in enumerate(segments[:-1]):
            nxt = segments[i + 1]
            if isinstance(segment, int):
                if not isinstance(current, list) or segment >= len(current):
                    raise TypeMismatchError(current, JSONList, path)
                child = current[segment]
                if child is None:
                    child = JSONList() if isinstance(nxt, int) else JSONMap()
                    current[segment] = child
            else:
                if not isinstance(current, dict):
                    raise TypeMismatchError(current, JSONMap, path)
                child = current.get(segment)
                if child is None:
                    child = JSONList() if isinstance(nxt, int) else JSONMap()
                    current[segment] = child
            current = child
        leaf = segments[-1]
        value = to_json_value(value)
        if isinstance(leaf, int):
            if not isinstance(current, list):
                raise TypeMismatchError(current, JSONList, path)
            if leaf < len(current):
                current[leaf] = value
            elif leaf == len(current):
                current.append(value)
            else:
                raise TypeMismatchError(current, JSONList, path)
        else:
            if not isinstance(current, dict):
                raise TypeMismatchError(current, JSONMap, path)
            current[leaf] = value
        return self

    def get_or_create_json_map(self, path: str) -> "JSONMap":
        result = self.get_path(path, JSONMap)
        if result is None:
            result = JSONMap()
            self.put_path(path, result)
        return result

    def get_or_create_json_list(self, path: str) -> "JSONList":
        result = self.get_path(path, JSONList)
        if result is None:
            result = JSONList()
            self.put_path(path, result)
        return result


def _field_of(element: Any, field: str, value_type: Any = None) -> Any:
    if field == THIS:
        return coerce(element, value_type)
    if isinstance(element, JSONMap):
        return element.get_path(field, value_type)
    if isinstance(element, dict):
        return to_json_value(element).get_path(field, value_type)
    return None


def _equals(left: Any, right: Any) -> bool:
    if left == right:
        return True
    # "10" and 10 address the same id on the wire
    if left is None or right is None or isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return False
    return coerce(left, str) == coerce(right, str)


class JSONList(list):
    """JSON array with lookup and projection helpers."""

    def as_value_type(self, value_type: Any) -> "TypedView":
        """Restartable view over the elements coerced to ``value_type``."""
        return TypedView(self, value_type)

    def get_values(self, field: str, value_type: Any = None) -> "JSONList":
        return JSONList(_field_of(e, field, value_type) for e in self)

    def find(self, key_field: str, key_value: Any) -> Any:
        for element in self:
            if _equals(_field_of(element, key_field), key_value):
                return element
        return None

    def filter(self, field: str, value: Any, matches: bool = True) -> "JSONList":
        return JSONList(e for e in self if _equals(_field_of(e, field), value) == matches)

    def map_value(self, key_field: str, key_value: Any, result_field: str, value_type: Any = None) -> Any:
        """
        Find the first element whose ``key_field`` equals ``key_value`` and
        return its ``result_field`` coerced to ``value_type``; None if absent.
        """
        element = self.find(key_field, key_value)
        if element is None:
            return None
        return _field_of(element, result_field, value_type)

    def to_map(self, key_field: str, key_type: Any = str, value_type: Any = None) -> JSONMap:
        """Index elements by ``key_field``. Later duplicates overwrite earlier ones."""
        return self.to_json_map(key_field, key_type, THIS, value_type)

    def to_json_map(self, key_field: str, key_type: Any, value_field: str, value_type: Any = None) -> JSONMap:
        """
        Project elements into a JSONMap keyed by ``key_field``, with values
        taken from ``value_field`` (``"#this"`` for the element itself).
        Later duplicates overwrite earlier ones. Elements without a key are
        skipped. Keys are stored as strings, JSON objects having string keys.
        """
        result = JSONMap()
        for element in self:
            key = _field_of(element, key_field, key_type)
            if key is None:
                continue
            result[coerce(key, str)] = _field_of(element, value_field, value_type)
        return result


class TypedView:
    """Lazy, restartable iterable over a JSONList with coerced elements."""

    def __init__(self, source: JSONList, value_type: Any) -> None:
        self._source = source
        self._value_type = value_type

    def __iter__(self) -> Iterator[Any]:
        for i, element in enumerate(self._source):
            yield coerce(element, self._value_type, f"[{i}]")

    def __len__(self) -> int:
        return len(self._source)


def build_dual_index(items: JSONList, first_key: str, second_key: str) -> JSONMap:
    """
    Index ``items`` by two fields at once (typically name and id) so either
    can be used for lookup. Entries keyed by ``second_key`` are merged last
    and win on collision.
    """
    result = items.to_json_map(first_key, str, THIS, JSONMap)
    result.update(items.to_map(second_key, str, JSONMap))
    return result


__all__ = [
    "JSONMap",
    "JSONList",
    "TypedView",
    "THIS",
    "coerce",
    "dumps",
    "parse_json",
    "parse_path",
    "to_json_value",
    "build_dual_index",
]
