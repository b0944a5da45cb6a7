"""Value types passed between the crawl, convert and archive stages."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class ContentCategory(str, Enum):
    """Closed set of output categories; each maps to one archive folder."""

    WEB = "web"
    TEXT = "text"
    DATA = "data"
    OTHER = "other"


@dataclass(frozen=True)
class CrawlTarget:
    url: str
    depth: int
    parent: str | None = None


@dataclass(frozen=True)
class ImageReference:
    """An image referenced by a converted page.

    ``asset_name`` is set once the bytes were stored (or are being stored
    by an earlier reference); only the first reference carries ``data``.
    """

    url: str
    alt: str
    page_url: str
    data: bytes | None = None
    content_type: str | None = None
    asset_name: str | None = None

    @property
    def content_hash(self) -> str | None:
        if self.data is None:
            return None
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True)
class OutputFile:
    """Extra file produced by a page that expands into several outputs."""

    name: str
    content: str | bytes

    def size(self) -> int:
        if isinstance(self.content, bytes):
            return len(self.content)
        return len(self.content.encode("utf-8"))


@dataclass(frozen=True)
class ConversionResult:
    url: str
    success: bool
    category: ContentCategory = ContentCategory.WEB
    content: str = ""
    title: str | None = None
    images: tuple[ImageReference, ...] = ()
    files: tuple[OutputFile, ...] = ()
    metadata: Mapping[str, str] | None = None
    error: str | None = None
    depth: int = 0
    flags: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def failure(
        cls,
        url: str,
        error: str,
        *,
        category: ContentCategory = ContentCategory.WEB,
        depth: int = 0,
    ) -> ConversionResult:
        return cls(url=url, success=False, category=category, error=error, depth=depth)

    def approx_size(self) -> int:
        """Serialized size estimate: document bytes plus embedded media bytes."""

        size = len(self.content.encode("utf-8"))
        size += sum(len(img.data) for img in self.images if img.data is not None)
        size += sum(f.size() for f in self.files)
        return size
