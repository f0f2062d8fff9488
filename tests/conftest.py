import json
import os
import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests

from oraclesim.router import LocalRouter
from oraclesim.sandbox import Sandbox
from oraclesim.tracker import LifecycleTracker

CONSUMER = "0x1111111111111111111111111111111111111111"
OTHER_CONSUMER = "0x2222222222222222222222222222222222222222"


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, (dict, list)):
            return self._body
        raise ValueError("not json")

    @property
    def text(self) -> str:
        return self._body if isinstance(self._body, str) else json.dumps(self._body)


class FakeTransport:
    """Stands in for requests.request. Routes by URL; records every call."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def __call__(self, method: str, url: str, **kwargs):
        with self._lock:
            self.calls.append((method, url, kwargs))
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route to {url}")
        if callable(route):
            return route(method, url, **kwargs)
        if isinstance(route, FakeResponse):
            return route
        return FakeResponse(200, route)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("ORACLESIM_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sandbox(transport):
    return Sandbox(transport=transport)


@pytest.fixture
def tracker():
    return LifecycleTracker()


@pytest.fixture
def router():
    return LocalRouter()
