from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from ..manifest import utc_iso


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    content = tag.get("content")
    if isinstance(content, list):
        content = " ".join(content)
    return str(content or "").strip()


@dataclass(frozen=True)
class PageMetadata:
    source_url: str
    title: str
    description: str = ""
    author: str = ""
    keywords: str = ""
    canonical_url: str = ""
    captured_at: str = ""

    def as_dict(self) -> dict[str, str]:
        fields = {
            "title": self.title,
            "source": self.source_url,
            "description": self.description,
            "author": self.author,
            "keywords": self.keywords,
            "canonical": self.canonical_url,
            "captured": self.captured_at,
        }
        return {k: v for k, v in fields.items() if v}


def extract_metadata(html: str, url: str) -> PageMetadata:
    """Title, description and authorship details for the page front matter.

    Falls back to the hostname when the page has no usable title.
    """

    soup = BeautifulSoup(html, "html.parser")

    title = ""
    if soup.title and soup.title.get_text(strip=True):
        title = soup.title.get_text(" ", strip=True)
    if not title:
        title = _meta_content(soup, property="og:title")
    if not title:
        title = urlparse(url).hostname or url

    description = _meta_content(soup, name="description") or _meta_content(
        soup, property="og:description"
    )

    canonical = ""
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "canonical" in [r.lower() for r in rel]:
            canonical = str(link.get("href") or "").strip()
            break

    return PageMetadata(
        source_url=url,
        title=title,
        description=description,
        author=_meta_content(soup, name="author"),
        keywords=_meta_content(soup, name="keywords"),
        canonical_url=canonical,
        captured_at=utc_iso(),
    )


def render_front_matter(metadata: dict[str, str]) -> str:
    lines = ["---"]
    for key, value in metadata.items():
        escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
        escaped = " ".join(escaped.split())
        lines.append(f'{key}: "{escaped}"')
    lines.append("---")
    return "\n".join(lines) + "\n"
