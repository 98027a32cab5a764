"""Test doubles shared by the test modules."""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx

AUTH_URL = "https://auth.test/oauth/token"
BASE_URL = "https://api.test"
GOST_BASE_URL = "https://gost.test"


class FakeClock:
    """Manually advanced seconds-since-epoch source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ApiRecorder:
    """MockTransport handler: canned responses per (METHOD, path), records every request.

    Route values are ``(status, body)`` tuples (body: dict/list is sent as
    JSON, str as text, None as empty) or callables taking the request.
    Unrouted requests get ``200 {}``.
    """

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Any]] = None):
        self.routes = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(200, json={})
        if callable(route):
            return route(request)
        status, body = route
        if body is None:
            return httpx.Response(status)
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    @property
    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def body(self, index: int) -> Any:
        content = self.requests[index].content
        return json.loads(content) if content else None
