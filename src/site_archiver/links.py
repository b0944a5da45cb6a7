from __future__ import annotations

import re
from typing import Callable, Final
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .urls import is_http_url, normalize_url

_FOLLOWED_LINK_RELS: Final[frozenset[str]] = frozenset(
    {"canonical", "alternate", "next", "prev", "previous"}
)

_SKIPPED_PREFIXES: Final[tuple[str, ...]] = (
    "#",
    "mailto:",
    "tel:",
    "sms:",
    "javascript:",
    "data:",
    "ftp:",
    "file:",
)

_META_REFRESH_URL = re.compile(r"url\s*=\s*['\"]?([^'\"]+)", re.IGNORECASE)

_SCRIPT_REDIRECTS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(
        r"(?:window\.|document\.|top\.|self\.)?location(?:\.href)?\s*=\s*"
        r"[\"']([^\"']+)[\"']"
    ),
    re.compile(r"location\.(?:replace|assign)\(\s*[\"']([^\"']+)[\"']\s*\)"),
)


def _attr_text(val: object) -> str:
    if isinstance(val, list):
        if not val:
            return ""
        return str(val[0])
    return str(val or "")


def _rel_values(val: object) -> set[str]:
    if isinstance(val, list):
        return {str(v).lower() for v in val}
    return {v.lower() for v in str(val or "").split()}


def resolve_link(
    href: str,
    *,
    base_url: str,
    exclude: Callable[[str], bool] | None = None,
) -> str | None:
    """Absolute, normalized form of ``href`` or None when it is not crawlable.

    ``exclude`` sees the absolute URL before its query is stripped.
    """

    href = href.strip()
    if not href or href.lower().startswith(_SKIPPED_PREFIXES):
        return None
    try:
        abs_url = urljoin(base_url, href)
    except ValueError:
        return None
    if not is_http_url(abs_url):
        return None
    if exclude is not None and exclude(abs_url):
        return None
    return normalize_url(abs_url)


def extract_links(
    html: str,
    base_url: str,
    *,
    exclude: Callable[[str], bool] | None = None,
) -> set[str]:
    """Collect candidate URLs from a fetched page.

    Sources: anchors, canonical/alternate/next/prev ``<link>`` tags, the
    Open-Graph URL, meta-refresh targets and location assignments in
    inline scripts. Returned URLs are absolute, normalized, and stripped
    of fragments and queries.
    """

    soup = BeautifulSoup(html, "html.parser")

    effective_base = base_url
    base = soup.find("base")
    if base is not None:
        base_href = _attr_text(base.get("href")).strip()
        if base_href:
            effective_base = urljoin(base_url, base_href)

    candidates: list[str] = []

    for a in soup.select("a[href]"):
        candidates.append(_attr_text(a.get("href")))

    for link in soup.select("link[href]"):
        if _rel_values(link.get("rel")) & _FOLLOWED_LINK_RELS:
            candidates.append(_attr_text(link.get("href")))

    for meta in soup.find_all("meta"):
        prop = _attr_text(meta.get("property")).lower()
        http_equiv = _attr_text(meta.get("http-equiv")).lower()
        content = _attr_text(meta.get("content"))
        if prop == "og:url" and content:
            candidates.append(content)
        elif http_equiv == "refresh" and content:
            match = _META_REFRESH_URL.search(content)
            if match:
                candidates.append(match.group(1))

    for script in soup.find_all("script"):
        if script.get("src"):
            continue
        text = script.string or script.get_text() or ""
        for pattern in _SCRIPT_REDIRECTS:
            candidates.extend(m.group(1) for m in pattern.finditer(text))

    out: set[str] = set()
    for href in candidates:
        resolved = resolve_link(href, base_url=effective_base, exclude=exclude)
        if resolved is not None:
            out.add(resolved)
    return out
