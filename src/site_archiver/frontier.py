"""Breadth-first discovery of same-site pages under page and depth budgets."""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from .content import ContentKind, decode_body, looks_like_dynamic_shell, sniff_kind
from .converter import is_document_kind
from .http_client import FetchFailure, FetchResult, HttpClient, failure_for_status
from .links import extract_links
from .models import CrawlTarget
from .urls import ScopePolicy, normalize_url

logger = logging.getLogger(__name__)


class UrlState(str, Enum):
    DISCOVERED = "discovered"
    SCHEDULED = "scheduled"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATES = frozenset({UrlState.ACCEPTED, UrlState.REJECTED, UrlState.FAILED})


class VisitedSet:
    """Every URL scheduled during one crawl, capped at the page budget.

    ``claim`` is the only way in and is an atomic test-and-insert, so two
    workers can never schedule the same URL. Redirect targets are tracked
    as aliases: they block re-scheduling but do not consume budget.
    """

    def __init__(self, limit: int) -> None:
        self._lock = threading.Lock()
        self._limit = limit
        self._urls: dict[str, int] = {}
        self._aliases: set[str] = set()

    def claim(self, url: str, depth: int) -> bool:
        with self._lock:
            if url in self._urls or url in self._aliases:
                return False
            if len(self._urls) >= self._limit:
                return False
            self._urls[url] = depth
            return True

    def add_alias(self, url: str) -> bool:
        with self._lock:
            if url in self._urls or url in self._aliases:
                return False
            self._aliases.add(url)
            return True

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls or url in self._aliases

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)

    @property
    def full(self) -> bool:
        with self._lock:
            return len(self._urls) >= self._limit


class CrawlSink(Protocol):
    def accept(self, target: CrawlTarget, page: FetchResult | None) -> None: ...

    def fail(self, target: CrawlTarget, error: str) -> None: ...


@dataclass
class FrontierConfig:
    max_pages: int = 100
    max_depth: int = 10
    concurrency: int = 5
    max_path_length: int = 500


@dataclass(frozen=True)
class _Outcome:
    state: UrlState
    page: FetchResult | None = None
    links: tuple[str, ...] = ()
    reason: str | None = None


@dataclass
class CrawlReport:
    root_url: str
    states: dict[str, UrlState] = field(default_factory=dict)
    depths: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    stats: Counter[str] = field(default_factory=Counter)


class Frontier:
    """Schedules fetch + link extraction over a bounded worker pool.

    One coordinator (the thread calling ``run``) owns the FIFO queue and
    hands work to the pool; workers only fetch and parse. Accepted pages
    go to ``sink.accept`` and failed ones to ``sink.fail`` as soon as they
    settle. Once the page budget is used up nothing new is scheduled and
    in-flight work drains.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        scope: ScopePolicy,
        config: FrontierConfig,
        sink: CrawlSink,
        link_extractor: Callable[..., set[str]] = extract_links,
    ) -> None:
        self._http = http
        self._scope = scope
        self._cfg = config
        self._sink = sink
        self._extract = link_extractor
        self.visited = VisitedSet(config.max_pages)
        self._report: CrawlReport | None = None
        self._stopping = threading.Event()

    @property
    def report(self) -> CrawlReport | None:
        return self._report

    def stop(self) -> None:
        """Stop scheduling new fetches; work already in flight is abandoned."""
        self._stopping.set()

    def run(self, root_url: str) -> CrawlReport:
        root = normalize_url(root_url)
        report = CrawlReport(root_url=root)
        self._report = report

        queue: deque[CrawlTarget] = deque([CrawlTarget(url=root, depth=0)])
        enqueued: set[str] = {root}
        report.states[root] = UrlState.DISCOVERED
        inflight: dict[Future, CrawlTarget] = {}

        logger.info(
            "Starting crawl of %s (max_pages=%d, max_depth=%d, concurrency=%d)",
            root,
            self._cfg.max_pages,
            self._cfg.max_depth,
            self._cfg.concurrency,
        )

        with ThreadPoolExecutor(
            max_workers=self._cfg.concurrency, thread_name_prefix="crawl"
        ) as pool:
            while (queue or inflight) and not self._stopping.is_set():
                while queue and len(inflight) < self._cfg.concurrency:
                    if self.visited.full:
                        logger.info(
                            "Page budget of %d reached; dropping %d queued URL(s)",
                            self._cfg.max_pages,
                            len(queue),
                        )
                        report.stats["budget_dropped"] += len(queue)
                        queue.clear()
                        break
                    target = queue.popleft()
                    if target.depth > self._cfg.max_depth:
                        self._reject(report, target.url, "depth")
                        continue
                    if not self.visited.claim(target.url, target.depth):
                        self._reject(report, target.url, "duplicate")
                        continue
                    report.states[target.url] = UrlState.SCHEDULED
                    report.depths[target.url] = target.depth
                    logger.debug("Scheduled %s (depth %d)", target.url, target.depth)
                    inflight[pool.submit(self._process, target)] = target

                if not inflight:
                    break

                done, _ = wait(inflight, return_when=FIRST_COMPLETED)
                for future in done:
                    target = inflight.pop(future)
                    self._settle(report, target, future.result(), queue, enqueued)

            if self._stopping.is_set():
                logger.info(
                    "Crawl of %s stopped; abandoning %d queued and %d in-flight URL(s)",
                    root,
                    len(queue),
                    len(inflight),
                )
                report.stats["stopped_dropped"] += len(queue) + len(inflight)
                for future in inflight:
                    future.cancel()

        report.stats["visited"] = len(self.visited)
        logger.info(
            "Crawl finished: %d visited, %d accepted, %d failed, %d rejected",
            report.stats["visited"],
            report.stats["accepted"],
            report.stats["failed"],
            report.stats["rejected"],
        )
        return report

    def _reject(self, report: CrawlReport, url: str, reason: str) -> None:
        report.stats["rejected"] += 1
        report.stats[f"rejected_{reason}"] += 1
        if report.states.get(url) not in TERMINAL_STATES:
            report.states[url] = UrlState.REJECTED
        logger.debug("Rejected %s (%s)", url, reason)

    def _settle(
        self,
        report: CrawlReport,
        target: CrawlTarget,
        outcome: _Outcome,
        queue: deque[CrawlTarget],
        enqueued: set[str],
    ) -> None:
        report.states[target.url] = outcome.state

        if outcome.state is UrlState.FAILED:
            error = outcome.reason or "unknown error"
            report.stats["failed"] += 1
            report.failures[target.url] = error
            logger.warning("Failed %s: %s", target.url, error)
            self._sink.fail(target, error)
            return

        if outcome.state is UrlState.REJECTED:
            report.stats["rejected"] += 1
            report.stats[f"rejected_{outcome.reason or 'other'}"] += 1
            logger.debug("Rejected %s (%s)", target.url, outcome.reason)
            return

        report.stats["accepted"] += 1
        logger.info("Accepted %s (%d links)", target.url, len(outcome.links))
        self._sink.accept(target, outcome.page)

        next_depth = target.depth + 1
        for link in outcome.links:
            if link in enqueued or link in self.visited:
                continue
            enqueued.add(link)
            if next_depth > self._cfg.max_depth:
                report.stats["depth_limited"] += 1
                continue
            if not self._scope.admits(link):
                self._reject(report, link, "scope")
                continue
            report.states[link] = UrlState.DISCOVERED
            queue.append(CrawlTarget(url=link, depth=next_depth, parent=target.url))

    def _process(self, target: CrawlTarget) -> _Outcome:
        try:
            return self._fetch_and_extract(target)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected error while crawling %s", target.url)
            return _Outcome(UrlState.FAILED, reason=f"{type(exc).__name__}: {exc}")

    def _fetch_and_extract(self, target: CrawlTarget) -> _Outcome:
        result = self._http.fetch(target.url)
        if isinstance(result, FetchFailure):
            return _Outcome(UrlState.FAILED, reason=result.error)
        if not result.ok:
            return _Outcome(UrlState.FAILED, reason=failure_for_status(result).error)

        final_url = normalize_url(result.final_url)
        if final_url != target.url:
            if target.depth > 0 and not self._scope.admits(final_url):
                return _Outcome(UrlState.REJECTED, reason="redirect_scope")
            if not self.visited.add_alias(final_url):
                return _Outcome(UrlState.REJECTED, reason="redirect_duplicate")

        kind = sniff_kind(final_url, content_type=result.content_type, body=result.body)
        if not is_document_kind(kind):
            return _Outcome(UrlState.REJECTED, reason=f"content_{kind.value}")

        links: tuple[str, ...] = ()
        if kind is ContentKind.HTML:
            html = decode_body(result.body, result.content_type)
            if looks_like_dynamic_shell(html):
                logger.debug("%s looks client-rendered; links may be missing", final_url)
            if target.depth < self._cfg.max_depth:
                links = tuple(
                    sorted(
                        link
                        for link in self._extract(
                            html, final_url, exclude=self._scope.is_excluded
                        )
                        if len(link) <= self._cfg.max_path_length
                    )
                )

        return _Outcome(UrlState.ACCEPTED, page=result, links=links)
