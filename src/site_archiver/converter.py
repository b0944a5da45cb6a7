from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterator, Mapping

from bs4.builder import ParserRejectedMarkup

from .content import ContentKind, decode_body, looks_like_dynamic_shell, sniff_kind
from .convert.html_to_md import Document, DocumentOptions, html_to_document
from .convert.metadata import extract_metadata, render_front_matter
from .convert.structured import structured_to_document
from .http_client import FetchFailure, FetchResult, HttpClient, failure_for_status
from .images import ImageDownloader
from .models import ContentCategory, ConversionResult, CrawlTarget, ImageReference

logger = logging.getLogger(__name__)

DocumentTransform = Callable[[FetchResult, DocumentOptions], Document]

DYNAMIC_SHELL_FLAG = "dynamic-shell"


def _web_transform(page: FetchResult, options: DocumentOptions) -> Document:
    html = decode_body(page.body, page.content_type)
    return html_to_document(html, page.final_url, options)


def _data_transform(page: FetchResult, options: DocumentOptions) -> Document:
    kind = sniff_kind(page.final_url, content_type=page.content_type, body=page.body)
    return structured_to_document(
        page.body,
        url=page.final_url,
        kind=kind,
        content_type=page.content_type,
    )


def _text_transform(page: FetchResult, options: DocumentOptions) -> Document:
    return structured_to_document(
        page.body,
        url=page.final_url,
        kind=ContentKind.TEXT,
        content_type=page.content_type,
    )


DEFAULT_TRANSFORMS: Mapping[ContentCategory, DocumentTransform] = {
    ContentCategory.WEB: _web_transform,
    ContentCategory.DATA: _data_transform,
    ContentCategory.TEXT: _text_transform,
}

_CATEGORY_BY_KIND: Mapping[ContentKind, ContentCategory] = {
    ContentKind.HTML: ContentCategory.WEB,
    ContentKind.JSON: ContentCategory.DATA,
    ContentKind.XML: ContentCategory.DATA,
    ContentKind.TEXT: ContentCategory.TEXT,
}


def category_for_kind(kind: ContentKind) -> ContentCategory:
    return _CATEGORY_BY_KIND.get(kind, ContentCategory.OTHER)


def is_document_kind(kind: ContentKind) -> bool:
    return kind in _CATEGORY_BY_KIND


@dataclass(frozen=True)
class ConverterOptions:
    include_images: bool = True
    include_metadata: bool = True


class PageConverter:
    """Turns one fetched URL into a ``ConversionResult``.

    The transform table is resolved once at construction; a category with
    no registered transform yields a failed result.
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        options: ConverterOptions | None = None,
        downloader: ImageDownloader | None = None,
        transforms: Mapping[ContentCategory, DocumentTransform] | None = None,
    ) -> None:
        self._http = http
        self._options = options or ConverterOptions()
        self._downloader = downloader
        self._transforms = dict(DEFAULT_TRANSFORMS if transforms is None else transforms)
        self._document_options = DocumentOptions(include_images=self._options.include_images)

    def convert(
        self,
        url: str,
        *,
        page: FetchResult | None = None,
        depth: int = 0,
    ) -> ConversionResult:
        if page is None:
            fetched = self._http.fetch(url)
            if isinstance(fetched, FetchFailure):
                return ConversionResult.failure(url, fetched.error, depth=depth)
            if not fetched.ok:
                return ConversionResult.failure(
                    url, failure_for_status(fetched).error, depth=depth
                )
            page = fetched

        kind = sniff_kind(page.final_url, content_type=page.content_type, body=page.body)
        category = category_for_kind(kind)
        transform = self._transforms.get(category)
        if transform is None:
            return ConversionResult.failure(
                url,
                f"Unsupported content kind: {kind.value}",
                category=category,
                depth=depth,
            )

        try:
            document = transform(page, self._document_options)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to convert %s: %s", url, exc)
            return ConversionResult.failure(
                url,
                f"{type(exc).__name__}: {exc}",
                category=category,
                depth=depth,
            )

        flags: set[str] = set()
        metadata: dict[str, str] | None = None
        if category is ContentCategory.WEB:
            html = decode_body(page.body, page.content_type)
            if looks_like_dynamic_shell(html):
                logger.warning(
                    "%s looks like a client-rendered shell; content may be incomplete",
                    url,
                )
                flags.add(DYNAMIC_SHELL_FLAG)
            if self._options.include_metadata:
                metadata = self._metadata_for(html, page.final_url)
            if metadata is not None and DYNAMIC_SHELL_FLAG in flags:
                metadata["rendering"] = "client-side shell; content may be incomplete"

        content = document.content
        if metadata:
            content = render_front_matter(metadata) + "\n" + content

        title = document.title or (metadata or {}).get("title")
        return ConversionResult(
            url=url,
            success=True,
            category=category,
            content=content,
            title=title,
            images=self._resolve_images(document.images),
            files=document.files,
            metadata=metadata,
            depth=depth,
            flags=frozenset(flags),
        )

    def _metadata_for(self, html: str, url: str) -> dict[str, str] | None:
        try:
            return extract_metadata(html, url).as_dict()
        except (ParserRejectedMarkup, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Metadata extraction failed for %s: %s", url, exc)
            return None

    def _resolve_images(
        self, images: tuple[ImageReference, ...]
    ) -> tuple[ImageReference, ...]:
        if self._downloader is None:
            return images
        resolved: list[ImageReference] = []
        for ref in images:
            try:
                resolved.append(self._downloader.resolve(ref))
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Failed to store image %s: %s", ref.url, exc)
                resolved.append(ref)
        return tuple(resolved)


_DONE = object()


class ConverterPool:
    """Bounded conversion pool feeding a single-consumer result stream.

    Pages handed over by the frontier are converted on their own worker
    threads; ``results()`` yields each ``ConversionResult`` exactly once
    until ``close()`` has been called and every conversion has finished.
    """

    def __init__(
        self,
        converter: PageConverter,
        *,
        max_workers: int = 5,
        max_buffered: int | None = None,
    ) -> None:
        self._converter = converter
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="convert"
        )
        self._results: queue.Queue = queue.Queue(maxsize=max_buffered or max_workers * 2)
        self._cancelled = threading.Event()

    # Frontier sink interface.

    def accept(self, target: CrawlTarget, page: FetchResult | None) -> None:
        if self._cancelled.is_set():
            return
        try:
            future = self._executor.submit(
                self._converter.convert, target.url, page=page, depth=target.depth
            )
        except RuntimeError:
            # Executor shut down by a concurrent cancel().
            if self._cancelled.is_set():
                return
            raise
        future.add_done_callback(lambda f: self._collect(target, f))

    def fail(self, target: CrawlTarget, error: str) -> None:
        self._put(ConversionResult.failure(target.url, error, depth=target.depth))

    def _collect(self, target: CrawlTarget, future: Future) -> None:
        try:
            result = future.result()
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Conversion of %s crashed", target.url)
            result = ConversionResult.failure(
                target.url, f"{type(exc).__name__}: {exc}", depth=target.depth
            )
        self._put(result)

    def _put(self, item: object) -> None:
        while not self._cancelled.is_set():
            try:
                self._results.put(item, timeout=0.5)
                return
            except queue.Full:
                continue

    def close(self) -> None:
        """Wait for outstanding conversions, then end the result stream."""
        self._executor.shutdown(wait=True)
        self._put(_DONE)

    def cancel(self) -> None:
        """Stop delivering results; used when the consumer has gone away."""
        self._cancelled.set()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def results(self) -> Iterator[ConversionResult]:
        while True:
            item = self._results.get()
            if item is _DONE:
                return
            yield item
