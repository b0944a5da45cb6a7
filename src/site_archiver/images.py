"""Image discovery, normalization and crawl-wide download de-duplication."""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from concurrent.futures import Future
from dataclasses import replace
from pathlib import PurePosixPath
from typing import Final
from urllib.parse import unquote, urljoin, urlparse, urlunparse

from filetype import guess

from .content import media_type
from .http_client import FetchFailure, HttpClient
from .models import ImageReference
from .urls import safe_filename_piece, url_hash

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {"jpg", "jpeg", "png", "gif", "webp", "svg", "ico", "bmp", "avif", "tif", "tiff"}
)

LAZY_LOAD_ATTRS: Final[tuple[str, ...]] = (
    "data-src",
    "data-original",
    "data-lazy",
    "data-srcset",
    "loading-src",
    "lazy-src",
)

_IMAGE_HOST_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"/(images?|img|media|uploads|photos?|static/media)/", re.IGNORECASE),
    re.compile(r"\b(cloudinary|imgix|googleusercontent|twimg|unsplash)\b", re.IGNORECASE),
)

_TRACKING_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"/(analytics|tracking|pixel|beacon|ads?)/", re.IGNORECASE),
    re.compile(r"\.(analytics|tracking)\.", re.IGNORECASE),
    re.compile(r"\b(doubleclick|adsense|googlesyndication)\b", re.IGNORECASE),
)

_BACKGROUND_URL = re.compile(
    r"background(?:-image)?\s*:\s*url\(\s*['\"]?([^'\")]+)['\"]?\s*\)",
    re.IGNORECASE,
)

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MIN_IMAGE_BYTES = 64


def normalize_image_url(src: str, *, base_url: str) -> str | None:
    """Absolute, query-less form of an image source; None for data URIs."""

    src = (src or "").strip()
    if not src or src.lower().startswith("data:"):
        return None
    # srcset-style values: keep the first candidate.
    src = src.split(",", 1)[0].strip().split(" ", 1)[0]
    if src.startswith("//"):
        src = "https:" + src
    try:
        parsed = urlparse(urljoin(base_url, src))
    except ValueError:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return urlunparse(
        parsed._replace(netloc=parsed.netloc.lower(), query="", fragment="", params="")
    )


def is_image_url(url: str) -> bool:
    if any(p.search(url) for p in _TRACKING_PATTERNS):
        return False
    ext = PurePosixPath(urlparse(url).path).suffix.lower().lstrip(".")
    if ext in IMAGE_EXTENSIONS:
        return True
    return any(p.search(url) for p in _IMAGE_HOST_PATTERNS)


def background_image_url(style: str) -> str | None:
    match = _BACKGROUND_URL.search(style or "")
    return match.group(1) if match else None


def detect_image_format(data: bytes) -> str | None:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def infer_image_extension(url: str, content_type: str | None, data: bytes) -> str | None:
    """Guess an image file extension from the bytes, header or URL."""
    detected = detect_image_format(data)
    if detected:
        return detected
    ct = media_type(content_type)
    if ct == "image/svg+xml" or data.lstrip()[:256].lower().find(b"<svg") != -1:
        return "svg"
    if ct.startswith("image/"):
        ext = ct.split("/", 1)[1]
        return "jpg" if ext == "jpeg" else ext
    ext = PurePosixPath(urlparse(url).path).suffix.lower().lstrip(".")
    if ext in IMAGE_EXTENSIONS and ct in {"", "application/octet-stream"}:
        return "jpg" if ext == "jpeg" else ext
    return None


def asset_name_for(url: str, extension: str) -> str:
    """Stable archive filename for an image URL."""

    stem = PurePosixPath(unquote(urlparse(url).path)).stem or "image"
    stem = safe_filename_piece(stem, max_len=60)
    return f"{stem}-{url_hash(url)}.{extension}"


class ImageDownloader:
    """Fetches each image URL at most once per crawl.

    Concurrent requests for the same URL share one download. The first
    caller receives the bytes; later callers (and byte-identical images
    under another URL) get the asset name only.
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        max_bytes: int = MAX_IMAGE_BYTES,
        min_bytes: int = MIN_IMAGE_BYTES,
    ) -> None:
        self._http = http
        self._max_bytes = max_bytes
        self._min_bytes = min_bytes
        self._lock = threading.Lock()
        self._downloads: dict[str, Future] = {}
        self._names_by_hash: dict[str, str] = {}

    def resolve(self, ref: ImageReference) -> ImageReference:
        with self._lock:
            future = self._downloads.get(ref.url)
            owner = future is None
            if owner:
                future = Future()
                self._downloads[ref.url] = future

        if not owner:
            stored = future.result()
            if stored is None:
                return ref
            return ImageReference(
                url=ref.url,
                alt=ref.alt,
                page_url=ref.page_url,
                content_type=stored.content_type,
                asset_name=stored.asset_name,
            )

        stored = None
        try:
            stored = self._download(ref)
        finally:
            future.set_result(replace(stored, data=None) if stored else None)
        return stored or ref

    def _download(self, ref: ImageReference) -> ImageReference | None:
        result = self._http.fetch(ref.url)
        if isinstance(result, FetchFailure):
            logger.warning("Failed to fetch image %s: %s", ref.url, result.error)
            return None
        if not result.ok:
            logger.warning("Failed to fetch image %s: HTTP %d", ref.url, result.status_code)
            return None

        data = result.body
        if len(data) < self._min_bytes:
            logger.debug("Skipping %s: response too small", ref.url)
            return None
        if len(data) > self._max_bytes:
            logger.warning(
                "Skipping %s: image larger than %s bytes", ref.url, self._max_bytes
            )
            return None

        extension = infer_image_extension(ref.url, result.content_type, data)
        if not extension or extension not in IMAGE_EXTENSIONS:
            logger.warning(
                "Skipping %s: unsupported image type (Content-Type=%s)",
                ref.url,
                result.content_type,
            )
            return None

        digest = hashlib.sha256(data).hexdigest()
        with self._lock:
            existing = self._names_by_hash.get(digest)
            if existing is None:
                self._names_by_hash[digest] = asset_name_for(ref.url, extension)

        if existing is not None:
            return ImageReference(
                url=ref.url,
                alt=ref.alt,
                page_url=ref.page_url,
                content_type=result.content_type,
                asset_name=existing,
            )
        return ImageReference(
            url=ref.url,
            alt=ref.alt,
            page_url=ref.page_url,
            data=data,
            content_type=result.content_type,
            asset_name=asset_name_for(ref.url, extension),
        )
