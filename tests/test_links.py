from __future__ import annotations

from site_archiver.links import extract_links
from site_archiver.urls import ScopePolicy

BASE = "https://example.com/docs/intro"


def test_anchor_and_link_sources() -> None:
    html = """
    <html><head>
      <link rel="canonical" href="https://example.com/docs/intro-canonical">
      <link rel="next" href="/docs/part-2">
      <link rel="stylesheet" href="/theme.css">
      <meta property="og:url" content="https://example.com/og">
      <meta http-equiv="refresh" content="5; url=/refreshed">
    </head><body>
      <a href="guide">Guide</a>
      <a href="/about#team">About</a>
      <a href="/about?ref=nav">About again</a>
      <a href="mailto:hi@example.com">Mail</a>
      <a href="tel:+15555555">Call</a>
      <a href="javascript:void(0)">Nothing</a>
      <a href="#top">Top</a>
      <script>window.location.href = "/from-script";</script>
      <script>location.replace('/replaced');</script>
    </body></html>
    """
    assert extract_links(html, BASE) == {
        "https://example.com/docs/intro-canonical",
        "https://example.com/docs/part-2",
        "https://example.com/og",
        "https://example.com/refreshed",
        "https://example.com/docs/guide",
        "https://example.com/about",
        "https://example.com/from-script",
        "https://example.com/replaced",
    }


def test_base_href_changes_resolution() -> None:
    html = '<html><head><base href="https://example.com/v2/"></head><body><a href="page">x</a></body></html>'
    assert extract_links(html, BASE) == {"https://example.com/v2/page"}


def test_exclude_sees_query_before_normalization() -> None:
    scope = ScopePolicy.for_root("https://example.com/")
    html = """
    <a href="/kept">kept</a>
    <a href="/tracked?utm_campaign=spring">tracked</a>
    <a href="/cart">cart</a>
    """
    assert extract_links(html, BASE, exclude=scope.is_excluded) == {
        "https://example.com/kept"
    }


def test_empty_page_yields_nothing() -> None:
    assert extract_links("", BASE) == set()
