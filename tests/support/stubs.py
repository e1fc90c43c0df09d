"""Shared HTTP stubs: a requests.Session stand-in with canned routes."""

import json
from typing import Any, Callable, Dict, List, Optional

import requests

REDIRECT_CODES = (301, 302, 303, 307, 308)


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, headers: Optional[Dict[str, str]] = None,
                 url: str = "", content: Optional[bytes] = None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self.url = url
        if content is None:
            content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.content = content
        self.closed = False

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload

    @property
    def is_redirect(self) -> bool:
        return "Location" in self.headers and self.status_code in REDIRECT_CODES

    @property
    def is_permanent_redirect(self) -> bool:
        return "Location" in self.headers and self.status_code in (301, 308)

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True


def json_ok(data: Any) -> FakeResponse:
    """Meting envelope with success=true."""
    return FakeResponse({"success": True, "data": data})


class FakeSession:
    """Routes are matched by exact URL plus a subset of query params; first match wins.

    Unmatched requests raise requests.ConnectionError, the same as an unreachable host.
    """

    def __init__(self):
        self.routes: List[tuple] = []
        self.calls: List[Dict[str, Any]] = []

    def add(self, url: str, response, params: Optional[Dict[str, Any]] = None) -> "FakeSession":
        self.routes.append((url, params or {}, response))
        return self

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs):
        params = dict(params or {})
        self.calls.append({"url": url, "params": params, **kwargs})
        for route_url, expected, response in self.routes:
            if route_url != url:
                continue
            if any(params.get(k) != v for k, v in expected.items()):
                continue
            if isinstance(response, Exception):
                raise response
            if callable(response):
                return response(url, params)
            return response
        raise requests.ConnectionError(f"no route for {url} {params}")

    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]


def recording_matcher(result: Any = None, error: Optional[Exception] = None) -> Callable:
    """Unlock matcher stub that remembers its calls."""

    def matcher(track_id, sources, cookie):
        matcher.calls.append((track_id, list(sources), cookie))
        if error is not None:
            raise error
        return result

    matcher.calls = []
    return matcher
