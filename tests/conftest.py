# Common pytest fixtures.
# The project root (directory that contains the `appsec_rest/` package) is put on sys.path
# so the tests also run from a plain checkout.

import json
import os
import sys

import pytest

PROJECT_ROOT = os.getenv("PROJECT_ROOT") or os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from appsec_rest.connection import TransportResponse  # noqa: E402


@pytest.fixture()
def base_url():
    return "https://appsec.test/ssc"


@pytest.fixture()
def fod_base_url():
    return "https://api.fod.test"


class FakeTransport:
    """Records every send() and answers from a queue of (status, json-able body)."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self.closed = False

    def add(self, body, status=200):
        self.responses.append((status, body))

    def send(self, method, url, headers=None, body=None, params=None):
        self.calls.append({"method": method, "url": url, "headers": dict(headers or {}),
                           "body": body, "params": dict(params or ())})
        status, payload = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        return TransportResponse(status_code=status, body=raw, headers={})

    def close(self):
        self.closed = True


@pytest.fixture()
def fake_transport():
    return FakeTransport()
