from __future__ import annotations

import json

from requests.structures import CaseInsensitiveDict

from conftest import FakeResponse, FakeSession, html_response, page, status_response
from site_archiver.frontier import Frontier, FrontierConfig, UrlState, VisitedSet
from site_archiver.http_client import HttpClient
from site_archiver.urls import ScopePolicy

ROOT = "https://example.com/"


class RecordingSink:
    def __init__(self) -> None:
        self.accepted: list[str] = []
        self.failed: dict[str, str] = {}

    def accept(self, target, page) -> None:
        self.accepted.append(target.url)

    def fail(self, target, error: str) -> None:
        self.failed[target.url] = error


def _crawl(session: FakeSession, **config):
    sink = RecordingSink()
    frontier = Frontier(
        http=HttpClient(session, sleep=lambda s: None),
        scope=ScopePolicy.for_root(ROOT),
        config=FrontierConfig(**config),
        sink=sink,
    )
    report = frontier.run(ROOT)
    return report, sink, frontier


def test_visited_set_claims_each_url_once_within_budget() -> None:
    visited = VisitedSet(2)
    assert visited.claim("https://example.com/a", 0)
    assert not visited.claim("https://example.com/a", 1)
    assert visited.claim("https://example.com/b", 1)
    assert not visited.claim("https://example.com/c", 1)
    assert len(visited) == 2
    assert visited.full
    assert visited.add_alias("https://example.com/a-moved")
    assert "https://example.com/a-moved" in visited
    assert len(visited) == 2


def test_scope_rejections_are_never_fetched() -> None:
    session = FakeSession(
        {
            ROOT: html_response(
                page(
                    "Home",
                    links=(
                        "/one",
                        "/two",
                        "https://docs.example.com/three",
                        "https://other.org/x",
                        "/style.css",
                    ),
                )
            ),
            "https://example.com/one": html_response(page("One")),
            "https://example.com/two": html_response(page("Two", links=("/one", "/"))),
            "https://docs.example.com/three": html_response(page("Three")),
        }
    )
    report, sink, _ = _crawl(session)
    assert set(sink.accepted) == {
        ROOT,
        "https://docs.example.com/three",
        "https://example.com/one",
        "https://example.com/two",
    }
    assert "https://other.org/x" not in session.calls
    assert report.states["https://other.org/x"] is UrlState.REJECTED
    assert report.stats["rejected_scope"] == 1
    # each page is fetched once even though it is linked from several pages
    assert all(session.count(url) == 1 for url in sink.accepted)


def test_page_budget_caps_visits_and_drains() -> None:
    links = tuple(f"/p{i}" for i in range(10))
    routes = {ROOT: html_response(page("Home", links=links))}
    routes.update({f"https://example.com/p{i}": html_response(page(f"P{i}")) for i in range(10)})
    session = FakeSession(routes)
    report, sink, frontier = _crawl(session, max_pages=4)
    assert len(frontier.visited) == 4
    assert len(sink.accepted) == 4
    assert len(session.calls) == 4
    assert report.stats["budget_dropped"] == 7


def test_depth_limit_stops_discovery() -> None:
    session = FakeSession(
        {
            ROOT: html_response(page("Home", links=("/a",))),
            "https://example.com/a": html_response(page("A", links=("/a/b",))),
            "https://example.com/a/b": html_response(page("B")),
        }
    )
    report, sink, _ = _crawl(session, max_depth=1)
    assert sink.accepted == [ROOT, "https://example.com/a"]
    assert "https://example.com/a/b" not in session.calls
    assert all(depth <= 1 for depth in report.depths.values())


def test_failures_are_reported_to_the_sink() -> None:
    session = FakeSession(
        {
            ROOT: html_response(page("Home", links=("/gone", "/down"))),
            "https://example.com/down": status_response(503, "Service Unavailable"),
        }
    )
    report, sink, _ = _crawl(session)
    assert sink.accepted == [ROOT]
    assert sink.failed == {
        "https://example.com/gone": "HTTP 404 Not Found",
        "https://example.com/down": "HTTP 503 Service Unavailable (after 3 attempts)",
    }
    assert report.states["https://example.com/down"] is UrlState.FAILED


def test_redirect_to_known_page_is_rejected_as_duplicate() -> None:
    session = FakeSession(
        {
            ROOT: html_response(page("Home", links=("/old",))),
            "https://example.com/old": html_response(page("Home again"), url=ROOT),
        }
    )
    report, sink, _ = _crawl(session)
    assert sink.accepted == [ROOT]
    assert report.states["https://example.com/old"] is UrlState.REJECTED


def test_redirect_out_of_scope_is_rejected() -> None:
    session = FakeSession(
        {
            ROOT: html_response(page("Home", links=("/out",))),
            "https://example.com/out": html_response(page("Elsewhere"), url="https://other.org/"),
        }
    )
    report, sink, _ = _crawl(session)
    assert sink.accepted == [ROOT]
    assert report.stats["rejected_redirect_scope"] == 1


def test_ambiguous_content_type_is_probed_and_binary_is_rejected() -> None:
    session = FakeSession(
        {
            ROOT: html_response(page("Home", links=("/untyped", "/blob", "/data.json"))),
            "https://example.com/untyped": FakeResponse(
                content=page("Untyped").encode(),
                headers=CaseInsensitiveDict({"Content-Type": "application/octet-stream"}),
            ),
            "https://example.com/blob": FakeResponse(
                content=b"\x00\x01binary",
                headers=CaseInsensitiveDict({"Content-Type": "application/octet-stream"}),
            ),
            "https://example.com/data.json": FakeResponse(
                content=json.dumps({"a": 1}).encode(),
                headers=CaseInsensitiveDict({"Content-Type": "application/json"}),
            ),
        }
    )
    report, sink, _ = _crawl(session)
    assert set(sink.accepted) == {
        ROOT,
        "https://example.com/data.json",
        "https://example.com/untyped",
    }
    assert report.states["https://example.com/blob"] is UrlState.REJECTED


def test_stopped_frontier_schedules_nothing() -> None:
    session = FakeSession({ROOT: html_response(page("Home", links=("/a",)))})
    sink = RecordingSink()
    frontier = Frontier(
        http=HttpClient(session, sleep=lambda s: None),
        scope=ScopePolicy.for_root(ROOT),
        config=FrontierConfig(),
        sink=sink,
    )
    frontier.stop()
    report = frontier.run(ROOT)
    assert session.calls == []
    assert sink.accepted == []
    assert report.stats["stopped_dropped"] == 1
