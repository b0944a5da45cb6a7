from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

import pytest
from requests.structures import CaseInsensitiveDict

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 120


@dataclass
class FakeResponse:
    status_code: int = 200
    content: bytes = b""
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    url: str = ""
    reason: str = "OK"


def html_response(body: str, *, url: str = "", status_code: int = 200) -> FakeResponse:
    return FakeResponse(
        status_code=status_code,
        content=body.encode("utf-8"),
        headers=CaseInsensitiveDict({"Content-Type": "text/html; charset=utf-8"}),
        url=url,
    )


def image_response(data: bytes = PNG_BYTES, *, content_type: str = "image/png") -> FakeResponse:
    return FakeResponse(
        content=data,
        headers=CaseInsensitiveDict({"Content-Type": content_type}),
    )


def status_response(status_code: int, reason: str) -> FakeResponse:
    return FakeResponse(
        status_code=status_code,
        content=reason.encode("utf-8"),
        headers=CaseInsensitiveDict({"Content-Type": "text/plain"}),
        reason=reason,
    )


def page(title: str, body: str = "", *, links: tuple[str, ...] = ()) -> str:
    anchors = "".join(f'<li><a href="{href}">{href}</a></li>' for href in links)
    return (
        "<!doctype html><html><head>"
        f"<title>{title}</title>"
        f'<meta name="description" content="{title} description">'
        "</head><body><main>"
        f"<h1>{title}</h1><p>{body or 'Some text about ' + title + '.'}</p>"
        f"<ul>{anchors}</ul>"
        "</main></body></html>"
    )


class FakeSession:
    """Serves a static URL -> response map in place of ``requests.Session``.

    A route may be a response, an exception instance to raise, or a list
    consumed one call at a time (the last entry repeats). Unknown URLs
    answer 404.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[str] = []
        self.headers: dict[str, str] = {}
        self.max_redirects = 30
        self._lock = threading.Lock()
        self._cursor: dict[str, int] = {}

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
            route = self.routes.get(url)
            if isinstance(route, list):
                i = self._cursor.get(url, 0)
                self._cursor[url] = i + 1
                route = route[min(i, len(route) - 1)]
        if route is None:
            route = status_response(404, "Not Found")
        if isinstance(route, BaseException):
            raise route
        if not route.url:
            route = FakeResponse(
                status_code=route.status_code,
                content=route.content,
                headers=route.headers,
                url=url,
                reason=route.reason,
            )
        return route

    def count(self, url: str) -> int:
        with self._lock:
            return self.calls.count(url)


@pytest.fixture
def sleeps() -> list[float]:
    """Collects the delays handed to an injected sleep function."""
    return []
