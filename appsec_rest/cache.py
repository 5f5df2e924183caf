"""Response cache owned by a RestConnection."""
from __future__ import annotations

import copy
import logging
import threading
from collections import OrderedDict
from typing import Any, Hashable, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[Hashable, ...]

# Headers that change the representation returned by the server
CACHE_RELEVANT_HEADERS = ("accept", "authorization")


def request_signature(method: str, url: str,
                      params: Optional[Iterable[Tuple[str, Any]]] = None,
                      headers: Optional[Mapping[str, str]] = None,
                      identity: Optional[str] = None) -> CacheKey:
    """
    Normalized key: method + URL + query parameters + relevant headers +
    caller identity. The identity covers authentication that never shows up
    in the request headers, such as basic auth applied by the session.
    """
    param_items = tuple((str(k), str(v)) for k, v in (params or ()))
    header_items = tuple(sorted(
        (k.lower(), v) for k, v in (headers or {}).items() if k.lower() in CACHE_RELEVANT_HEADERS
    ))
    return (method.upper(), url, param_items, header_items, identity)


class ResponseCache:
    """
    Thread-safe store of parsed GET responses.

    Unbounded unless ``max_entries`` is given, in which case the least
    recently used entry is evicted. There is no expiry; callers clear the
    cache or bypass it with ``use_cache=False``. Values are deep-copied on
    the way in and out so callers never share a mutable tree.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: "OrderedDict[CacheKey, Any]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> Any:
        with self._lock:
            if key not in self._entries:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            value = self._entries[key]
        logger.debug(f"Cache hit for {key[0]} {key[1]}")
        return copy.deepcopy(value)

    def put(self, key: CacheKey, value: Any) -> None:
        value = copy.deepcopy(value)
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug(f"Evicted cache entry {evicted[0]} {evicted[1]}")

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
