from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import CrawlOptions
from .errors import ConfigurationError
from .pipeline import run_crawl

logger = logging.getLogger(__name__)


def _parse_header(value: str) -> tuple[str, str]:
    name, sep, content = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected 'Name: value', got {value!r}")
    return name.strip(), content.strip()


def _add_crawl_args(p: argparse.ArgumentParser) -> None:
    defaults = CrawlOptions()
    p.add_argument("url", help="Root URL of the site to archive")
    p.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Where to write the ZIP archive (default: a temporary file)",
    )
    p.add_argument("--max-pages", type=int, default=defaults.max_pages)
    p.add_argument("--max-depth", type=int, default=defaults.max_depth)
    p.add_argument("--single-page", action="store_true", help="Only convert the root page")
    p.add_argument("--crawl-concurrency", type=int, default=defaults.crawl_concurrency)
    p.add_argument("--convert-concurrency", type=int, default=defaults.convert_concurrency)
    p.add_argument(
        "--batch-max-mb",
        type=float,
        default=defaults.batch_max_bytes / (1024 * 1024),
        help="Byte ceiling of one archive batch, in MiB",
    )
    p.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="REGEX",
        help="Repeatable; extra URL patterns to skip",
    )
    p.add_argument(
        "--header",
        action="append",
        type=_parse_header,
        default=[],
        metavar="'NAME: VALUE'",
        help="Repeatable; extra request header",
    )
    p.add_argument("--user-agent", default=defaults.user_agent)
    p.add_argument("--timeout", type=float, default=defaults.timeout_s)
    p.add_argument("--max-attempts", type=int, default=defaults.max_attempts)
    p.add_argument("--backoff", type=float, default=defaults.backoff_s)
    p.add_argument("--max-redirects", type=int, default=defaults.max_redirects)
    p.add_argument("--no-images", action="store_true")
    p.add_argument("--no-metadata", action="store_true")
    p.add_argument("--memory-high-water-mb", type=float, default=defaults.memory_high_water_mb)
    p.add_argument("--pressure-pause", type=float, default=defaults.pressure_pause_s)
    p.add_argument("--work-dir", type=Path, default=None)


def options_from_args(args: argparse.Namespace) -> CrawlOptions:
    return CrawlOptions(
        max_pages=1 if args.single_page else args.max_pages,
        max_depth=args.max_depth,
        crawl_concurrency=args.crawl_concurrency,
        convert_concurrency=args.convert_concurrency,
        batch_max_bytes=int(args.batch_max_mb * 1024 * 1024),
        exclude_patterns=tuple(args.exclude),
        headers=dict(args.header),
        user_agent=args.user_agent,
        timeout_s=args.timeout,
        max_attempts=args.max_attempts,
        backoff_s=args.backoff,
        max_redirects=args.max_redirects,
        include_images=not args.no_images,
        include_metadata=not args.no_metadata,
        memory_high_water_mb=args.memory_high_water_mb,
        pressure_pause_s=args.pressure_pause,
        output_path=args.out,
        work_dir=args.work_dir,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="site-archiver")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Warnings only")
    sub = parser.add_subparsers(dest="cmd", required=True)

    crawl_p = sub.add_parser(
        "crawl",
        help="Crawl a site and write its pages as Markdown into one ZIP archive",
    )
    _add_crawl_args(crawl_p)

    args = parser.parse_args(argv)

    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "crawl":
        try:
            artifact = run_crawl(
                args.url, options_from_args(args), progress=not args.quiet
            )
        except ConfigurationError as e:
            logger.error("%s", e)
            return 2
        except OSError as e:
            logger.error("Could not write archive: %s", e)
            return 2

        manifest = artifact.manifest
        print(
            f"crawl: wrote {artifact.path} "
            f"(pages={manifest.total_pages} ok={manifest.successes} "
            f"failed={manifest.failure_count} images={manifest.total_images})"
        )
        if manifest.successes == 0 and manifest.failure_count:
            return 1
        return 0

    parser.error(f"unknown command {args.cmd!r}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
