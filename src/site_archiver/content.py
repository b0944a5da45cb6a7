from __future__ import annotations

import codecs
import re
from enum import Enum
from typing import Final
from urllib.parse import urlparse

from .urls import is_asset_intent_url


class ContentKind(str, Enum):
    HTML = "html"
    JSON = "json"
    XML = "xml"
    PDF = "pdf"
    TEXT = "text"
    ZIP = "zip"
    BYTES = "bytes"


_HTML_MARKERS: Final[tuple[bytes, ...]] = (b"<!doctype html", b"<html", b"<head", b"<body")

_SPA_ROOT_MARKERS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"<div[^>]+id=[\"'](root|app|__next|__nuxt)[\"']", re.IGNORECASE),
    re.compile(r"<app-root\b", re.IGNORECASE),
    re.compile(r"\bng-version=", re.IGNORECASE),
)


def media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def charset(content_type: str | None) -> str:
    match = re.search(r"charset=[\"']?([\w.:-]+)", content_type or "", re.IGNORECASE)
    if not match:
        return "utf-8"
    try:
        return codecs.lookup(match.group(1)).name
    except LookupError:
        return "utf-8"


def decode_body(body: bytes, content_type: str | None) -> str:
    return body.decode(charset(content_type), errors="replace")


def looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    return head.startswith(b"<") and any(m in head for m in _HTML_MARKERS)


def looks_like_dynamic_shell(html: str) -> bool:
    """Heuristic for client-rendered pages served as an empty shell.

    True when the markup carries a framework mount point but almost no
    text or navigation of its own.
    """

    if not any(p.search(html) for p in _SPA_ROOT_MARKERS):
        return False
    without_scripts = re.sub(
        r"<(script|style|noscript)\b.*?</\1>",
        " ",
        html,
        flags=re.IGNORECASE | re.DOTALL,
    )
    text = re.sub(r"<[^>]+>", " ", without_scripts)
    words = len(text.split())
    anchors = len(re.findall(r"<\s*a\b", without_scripts, flags=re.IGNORECASE))
    return words < 50 and anchors < 3


def sniff_kind(
    url: str,
    *,
    content_type: str | None,
    body: bytes,
) -> ContentKind:
    """Classify content conservatively.

    Rules:
    - Trust magic bytes for PDF/ZIP.
    - Treat asset-intent URLs as BYTES unless the header says JSON.
    - Trust a specific content type; probe empty or generic ones
      (e.g. application/octet-stream) for HTML markers before giving up.
    """

    if body.startswith(b"%PDF-"):
        return ContentKind.PDF
    if body.startswith(b"PK\x03\x04"):
        return ContentKind.ZIP

    ct = media_type(content_type)

    if is_asset_intent_url(url):
        if ct in {"application/json", "text/json"}:
            return ContentKind.JSON
        return ContentKind.BYTES

    if ct in {"text/html", "application/xhtml+xml"}:
        return ContentKind.HTML
    if ct in {"application/json", "text/json"} or ct.endswith("+json"):
        return ContentKind.JSON
    if ct in {"application/xml", "text/xml"} or ct.endswith("+xml"):
        return ContentKind.XML
    if ct == "text/plain":
        if looks_like_html(body):
            return ContentKind.HTML
        return ContentKind.TEXT

    if looks_like_html(body):
        return ContentKind.HTML

    if ct.startswith(("image/", "audio/", "video/", "font/")):
        return ContentKind.BYTES

    path = urlparse(url).path.lower()
    if path.endswith(".json"):
        return ContentKind.JSON
    if path.endswith(".xml"):
        return ContentKind.XML
    if path.endswith(".txt"):
        return ContentKind.TEXT

    return ContentKind.BYTES
