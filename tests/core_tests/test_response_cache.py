from __future__ import annotations

import threading

import pytest

from appsec_rest.cache import ResponseCache, request_signature
from appsec_rest.json_document import JSONMap


def test_signature_ignores_irrelevant_headers():
    a = request_signature("get", "http://h/x", [("q", "1")], {"Accept": "application/json", "X-Trace": "1"})
    b = request_signature("GET", "http://h/x", [("q", "1")], {"accept": "application/json", "X-Trace": "2"})
    c = request_signature("GET", "http://h/x", [("q", "2")], {"Accept": "application/json"})
    assert a == b
    assert a != c


def test_values_are_copied_in_and_out():
    cache = ResponseCache()
    key = request_signature("GET", "http://h/x")
    value = JSONMap(data=[1])
    cache.put(key, value)
    value["data"].append(2)
    first = cache.get(key)
    assert first == {"data": [1]}
    first["data"].append(3)
    assert cache.get(key) == {"data": [1]}
    assert isinstance(first, JSONMap)
    assert cache.hits == 2


def test_bounded_cache_evicts_least_recently_used():
    cache = ResponseCache(max_entries=2)
    k1, k2, k3 = (request_signature("GET", f"http://h/{i}") for i in range(3))
    cache.put(k1, 1)
    cache.put(k2, 2)
    cache.get(k1)
    cache.put(k3, 3)
    assert k1 in cache and k3 in cache
    assert k2 not in cache
    assert len(cache) == 2
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)


def test_concurrent_writers_do_not_corrupt_entries():
    cache = ResponseCache()
    keys = [request_signature("GET", f"http://h/{i % 10}") for i in range(200)]

    def _work(i):
        cache.put(keys[i], {"n": i % 10})
        assert cache.get(keys[i])["n"] == i % 10

    threads = [threading.Thread(target=_work, args=(i,)) for i in range(200)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 10
    cache.clear()
    assert len(cache) == 0


def test_signature_separates_identities():
    alice = request_signature("GET", "http://h/x", headers={"Accept": "application/json"}, identity="alice")
    bob = request_signature("GET", "http://h/x", headers={"Accept": "application/json"}, identity="bob")
    assert alice != bob
    assert alice == request_signature("GET", "http://h/x", headers={"accept": "application/json"}, identity="alice")
