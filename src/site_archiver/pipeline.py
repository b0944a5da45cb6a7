from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from .archive import ArchiveArtifact, ArchiverConfig, BatchArchiver
from .config import CrawlOptions, normalize_root_url
from .converter import ConverterOptions, ConverterPool, PageConverter
from .frontier import CrawlReport, Frontier, FrontierConfig
from .http_client import HttpClient, RetryPolicy, build_session
from .images import ImageDownloader
from .pressure import PressureProbe, ProcessMemoryProbe
from .urls import ScopePolicy, safe_filename_piece

logger = logging.getLogger(__name__)


def _default_output_path(root_url: str, work_dir: Path | None) -> Path:
    host = safe_filename_piece(urlparse(root_url).hostname or "site")
    fd, name = tempfile.mkstemp(prefix=f"{host}-archive-", suffix=".zip", dir=work_dir)
    os.close(fd)
    return Path(name)


def run_crawl(
    root_url: str,
    options: CrawlOptions | None = None,
    *,
    session: requests.Session | None = None,
    probe: PressureProbe | None = None,
    sleep: Callable[[float], None] = time.sleep,
    progress: bool = False,
) -> ArchiveArtifact:
    """Crawl ``root_url``, convert every accepted page and build the archive.

    Blocks until the archive is written. Only configuration problems are
    raised (``ConfigurationError``); fetch and conversion failures are
    recorded in the archive's summary instead.
    """

    options = options or CrawlOptions()
    options.validate()
    root = normalize_root_url(root_url)
    if options.work_dir is not None:
        Path(options.work_dir).mkdir(parents=True, exist_ok=True)

    pool_size = max(options.crawl_concurrency, options.convert_concurrency)
    if session is None:
        session = build_session(
            user_agent=options.user_agent,
            headers=options.headers,
            pool_size=pool_size,
        )
    http = HttpClient(
        session,
        timeout_s=options.timeout_s,
        retry=RetryPolicy(max_attempts=options.max_attempts, backoff_s=options.backoff_s),
        max_redirects=options.max_redirects,
        sleep=sleep,
    )

    downloader = ImageDownloader(http) if options.include_images else None
    converter = PageConverter(
        http,
        options=ConverterOptions(
            include_images=options.include_images,
            include_metadata=options.include_metadata,
        ),
        downloader=downloader,
    )
    pool = ConverterPool(converter, max_workers=options.convert_concurrency)

    frontier = Frontier(
        http=http,
        scope=ScopePolicy.for_root(
            root, extra_exclude_patterns=options.compiled_excludes()
        ),
        config=FrontierConfig(
            max_pages=options.max_pages,
            max_depth=options.max_depth,
            concurrency=options.crawl_concurrency,
        ),
        sink=pool,
    )

    output_path = options.output_path or _default_output_path(root, options.work_dir)
    archiver = BatchArchiver(
        ArchiverConfig(
            root_url=root,
            output_path=Path(output_path),
            batch_max_bytes=options.batch_max_bytes,
            pressure_pause_s=options.pressure_pause_s,
            work_dir=options.work_dir,
            limits=options.limits(),
        ),
        probe=probe or ProcessMemoryProbe(options.memory_high_water_mb),
        sleep=sleep,
    )

    crawl_errors: list[BaseException] = []

    def _crawl() -> None:
        try:
            frontier.run(root)
        except BaseException as exc:  # pylint: disable=broad-except
            logger.exception("Crawl of %s aborted", root)
            crawl_errors.append(exc)
        finally:
            pool.close()

    def _stats() -> dict[str, int]:
        report: CrawlReport | None = frontier.report
        return dict(report.stats) if report is not None else {}

    crawler = threading.Thread(target=_crawl, name="frontier", daemon=True)
    crawler.start()
    try:
        results = tqdm(
            pool.results(), desc="Archiving", unit="page", disable=not progress
        )
        artifact = archiver.archive(results, crawl_stats=_stats)
    except BaseException:
        frontier.stop()
        pool.cancel()
        raise
    finally:
        crawler.join()

    if crawl_errors:
        raise crawl_errors[0]
    return artifact
