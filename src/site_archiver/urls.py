from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Final, Iterable
from urllib.parse import ParseResult, urlparse, urlunparse

import tldextract

HTTP_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https"})


def normalize_url(raw_url: str) -> str:
    """Normalize a URL for de-duplication.

    - Lowercases scheme + hostname.
    - Strips fragments, query strings and path parameters.
    - Drops default ports and turns an empty path into "/".
    """

    parsed: ParseResult = urlparse(raw_url.strip())
    scheme = (parsed.scheme or "").lower()
    netloc = (parsed.netloc or "").lower()

    if scheme == "http" and netloc.endswith(":80"):
        netloc = netloc[:-3]
    elif scheme == "https" and netloc.endswith(":443"):
        netloc = netloc[:-4]

    parsed = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=parsed.path or "/",
        params="",
        query="",
        fragment="",
    )
    return urlunparse(parsed)


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in HTTP_SCHEMES and bool(parsed.hostname)


def url_hash(url: str, *, length: int = 8) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:length]


_ASSET_EXTS = {
    ".css",
    ".js",
    ".mjs",
    ".map",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".avif",
    ".svg",
    ".ico",
    ".bmp",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".eot",
    ".pdf",
    ".doc",
    ".docx",
    ".xls",
    ".xlsx",
    ".ppt",
    ".pptx",
    ".zip",
    ".gz",
    ".tgz",
    ".rar",
    ".7z",
    ".mp3",
    ".mp4",
    ".wav",
    ".webm",
    ".mov",
    ".avi",
    ".exe",
    ".dmg",
}


def is_asset_intent_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(path.endswith(ext) for ext in _ASSET_EXTS)


DEFAULT_EXCLUDE_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    # Tracking parameters.
    re.compile(
        r"[?&](utm_[a-z]+|gclid|fbclid|mc_cid|mc_eid|source|campaign)=",
        re.IGNORECASE,
    ),
    # Session-bearing query strings and path parameters.
    re.compile(
        r"[;?&](jsessionid|phpsessid|sessionid|session_id|sid)=",
        re.IGNORECASE,
    ),
    # Administrative and account paths.
    re.compile(
        r"/(wp-admin|wp-login\.php|admin|administrator|login|logout|signin|"
        r"signup|register|cart|checkout)(/|$)",
        re.IGNORECASE,
    ),
    # Machine endpoints and feeds.
    re.compile(r"/api/", re.IGNORECASE),
    re.compile(r"/(feed|rss)(/|$)", re.IGNORECASE),
)

CDN_HOST_SUFFIXES: Final[tuple[str, ...]] = (
    "cloudfront.net",
    "akamaized.net",
    "akamaihd.net",
    "fastly.net",
    "azureedge.net",
    "b-cdn.net",
    "cdn.cloudflare.net",
    "netlify.app",
    "vercel.app",
    "github.io",
    "wpengine.com",
    "wpenginepowered.com",
)

# Bundled public suffix snapshot with private suffixes ("github.io",
# "netlify.app") so that sites hosted under them stay separate.
_SUFFIX_EXTRACTOR = tldextract.TLDExtract(
    cache_dir=None,
    suffix_list_urls=(),
    include_psl_private_domains=True,
)


def root_domain(host: str) -> str:
    """Registrable domain of a hostname ("docs.example.co.uk" -> "example.co.uk").

    Hosts without a public suffix (IP addresses, "localhost") are returned
    unchanged.
    """

    host = host.lower().strip(".")
    ext = _SUFFIX_EXTRACTOR(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return host


def slug_for_path(path: str, *, max_len: int = 100, fallback: str = "index") -> str:
    """Derive a filename stem from URL path segments.

    "/Docs/Getting Started/" -> "docs-getting-started"; "/" -> "index".
    """

    text = (path or "").lower().strip("/")
    text = re.sub(r"[^a-z0-9]+", "-", text).strip("-")
    text = text[:max_len].rstrip("-")
    return text or fallback


def safe_filename_piece(text: str, *, max_len: int = 80) -> str:
    text = text.strip()
    text = re.sub(r"\s+", "-", text)
    text = re.sub(r"[^A-Za-z0-9._-]+", "-", text)
    text = re.sub(r"-+", "-", text)
    text = re.sub(r"\.{2,}", ".", text).strip(".-")
    if not text:
        return "untitled"
    return text[:max_len]


@dataclass(frozen=True)
class ScopePolicy:
    """Decides whether a discovered URL belongs to the crawl.

    A URL is in scope when its host is the root host, shares the root's
    registrable domain, or is an allow-listed CDN host whose subdomain
    embeds the root domain ("example-com.netlify.app").
    """

    root_host: str
    root_domain: str
    cdn_host_suffixes: tuple[str, ...] = CDN_HOST_SUFFIXES
    exclude_patterns: tuple[re.Pattern[str], ...] = DEFAULT_EXCLUDE_PATTERNS

    @classmethod
    def for_root(
        cls,
        root_url: str,
        *,
        extra_exclude_patterns: Iterable[re.Pattern[str]] = (),
    ) -> ScopePolicy:
        host = (urlparse(root_url).hostname or "").lower()
        return cls(
            root_host=host,
            root_domain=root_domain(host),
            exclude_patterns=DEFAULT_EXCLUDE_PATTERNS + tuple(extra_exclude_patterns),
        )

    def in_scope(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        if host == self.root_host:
            return True
        if host == self.root_domain or host.endswith("." + self.root_domain):
            return True
        for suffix in self.cdn_host_suffixes:
            if host.endswith("." + suffix):
                subdomain = host[: -(len(suffix) + 1)]
                if self._embeds_root(subdomain):
                    return True
        return False

    def _embeds_root(self, subdomain: str) -> bool:
        if self.root_domain in subdomain:
            return True
        if self.root_domain.replace(".", "-") in subdomain:
            return True
        name = self.root_domain.split(".", 1)[0]
        return bool(name) and name in re.split(r"[.-]", subdomain)

    def is_excluded(self, url: str) -> bool:
        if is_asset_intent_url(url):
            return True
        return any(p.search(url) for p in self.exclude_patterns)

    def admits(self, url: str) -> bool:
        return is_http_url(url) and self.in_scope(url) and not self.is_excluded(url)
