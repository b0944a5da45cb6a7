from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from bs4 import BeautifulSoup, Tag
from markdownify import markdownify as md

from ..images import (
    LAZY_LOAD_ATTRS,
    background_image_url,
    is_image_url,
    normalize_image_url,
)
from ..models import ImageReference, OutputFile

_REMOVE_SELECTORS = [
    "script",
    "style",
    "noscript",
    "iframe",
    "template",
    "header nav",
    "footer nav",
    "aside",
    ".ads",
    ".social-share",
    ".comments",
    ".navigation",
    ".menu",
    ".widget",
]

_CONTENT_SELECTORS = [
    "article",
    "main",
    "div[role='main']",
    "[role='main']",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".content",
    "#content",
    "#main",
]


@dataclass(frozen=True)
class DocumentOptions:
    include_images: bool = True
    heading_style: str = "ATX"


@dataclass(frozen=True)
class Document:
    """Output of a document transform.

    Markdown plus the images it references and any extra files the page
    expands into.
    """

    content: str
    images: tuple[ImageReference, ...] = ()
    title: str | None = None
    metadata: Mapping[str, Any] | None = field(default=None)
    files: tuple[OutputFile, ...] = ()


def _attr_text(val: object) -> str:
    if isinstance(val, list):
        return str(val[0]) if val else ""
    return str(val or "")


def _clean_soup_inplace(soup: BeautifulSoup) -> None:
    for selector in _REMOVE_SELECTORS:
        for t in soup.select(selector):
            # Nested matches are gone once their ancestor is decomposed.
            if not t.decomposed:
                t.decompose()


def _pick_main_content(soup: BeautifulSoup) -> Tag | BeautifulSoup:
    for selector in _CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node and node.get_text(strip=True):
            return node

    best = None
    best_len = 0
    for div in soup.find_all("div"):
        text_len = len(div.get_text(" ", strip=True))
        if text_len > best_len:
            best = div
            best_len = text_len
    return best or soup.body or soup


def _title_from_soup(soup: BeautifulSoup) -> str | None:
    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)
    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(" ", strip=True)
    return None


def _prepare_images(
    soup: BeautifulSoup,
    main: Tag | BeautifulSoup,
    *,
    page_url: str,
) -> list[ImageReference]:
    """Point every kept <img> at its absolute URL; drop the rest.

    Lazy-load attributes are consulted after ``src``; inline background
    images become <img> tags so they survive conversion.
    """

    refs: list[ImageReference] = []
    seen: set[str] = set()

    def _remember(url: str, alt: str) -> None:
        if url not in seen:
            seen.add(url)
            refs.append(ImageReference(url=url, alt=alt, page_url=page_url))

    for img in main.find_all("img"):
        url = None
        for attr in ("src", *LAZY_LOAD_ATTRS):
            candidate = normalize_image_url(_attr_text(img.get(attr)), base_url=page_url)
            if candidate and is_image_url(candidate):
                url = candidate
                break
        if url is None:
            img.decompose()
            continue
        for attr in (*LAZY_LOAD_ATTRS, "srcset"):
            if attr in img.attrs:
                del img[attr]
        img["src"] = url
        _remember(url, _attr_text(img.get("alt")).strip())

    for el in main.select("[style]"):
        src = background_image_url(_attr_text(el.get("style")))
        if not src:
            continue
        url = normalize_image_url(src, base_url=page_url)
        if url is None or not is_image_url(url):
            continue
        el.insert_before(soup.new_tag("img", src=url, alt=""))
        del el["style"]
        _remember(url, "")

    return refs


def html_to_document(
    raw_html: str,
    base_url: str,
    options: DocumentOptions | None = None,
) -> Document:
    """Convert a page to Markdown.

    Deterministic for identical input and performs no network I/O; images
    are reported as references for the caller to fetch.
    """

    options = options or DocumentOptions()
    soup = BeautifulSoup(raw_html, "html.parser")
    title = _title_from_soup(soup)

    _clean_soup_inplace(soup)
    main = _pick_main_content(soup)

    if options.include_images:
        images = _prepare_images(soup, main, page_url=base_url)
    else:
        images = []
        for img in main.find_all("img"):
            img.decompose()

    markdown = md(str(main), heading_style=options.heading_style, bullets="-")
    markdown = re.sub(r"[ \t]+\n", "\n", markdown)
    markdown = re.sub(r"\n{3,}", "\n\n", markdown).strip()
    # A page without body text still yields a (possibly empty) document.
    content = markdown + "\n" if markdown else ""

    return Document(content=content, images=tuple(images), title=title)
