from __future__ import annotations

import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import Any, Mapping
from urllib.parse import urlparse

SUMMARY_NAME = "summary.md"

SUMMARY_PLACEHOLDER = "# Conversion Summary\n\n(Archive in progress.)\n"


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def relpath_posix(path: Path, base_dir: Path) -> str:
    rel = path.relative_to(base_dir)
    return rel.as_posix()


@dataclass(frozen=True)
class PageEntry:
    url: str
    path: str
    title: str
    category: str
    images: int = 0

    @property
    def section(self) -> str:
        segments = [s for s in urlparse(self.url).path.split("/") if s]
        return segments[0] if len(segments) > 1 else "/"


@dataclass
class ArchiveManifest:
    """Aggregate counts and the per-category index of one archive."""

    root_url: str
    hostname: str
    started_at: str = field(default_factory=utc_iso)
    finished_at: str | None = None
    limits: dict[str, Any] = field(default_factory=dict)
    pages: list[PageEntry] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)
    assets: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)
    crawl_stats: dict[str, int] = field(default_factory=dict)
    batches_flushed: int = 0
    pressure_pauses: int = 0

    @property
    def successes(self) -> int:
        return len(self.pages)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def total_pages(self) -> int:
        return self.successes + self.failure_count

    @property
    def total_images(self) -> int:
        return len(self.assets)

    def category_index(self) -> dict[str, list[PageEntry]]:
        index: dict[str, list[PageEntry]] = defaultdict(list)
        for page in self.pages:
            index[page.category].append(page)
        return {k: sorted(v, key=lambda p: p.path) for k, v in sorted(index.items())}

    def record_page(self, entry: PageEntry) -> None:
        self.pages.append(entry)

    def move_page(self, url: str, path: str) -> None:
        self.pages = [replace(p, path=path) if p.url == url else p for p in self.pages]

    def record_failure(self, url: str, error: str) -> None:
        self.failures.append((url, error))

    def record_asset(self, path: str, url: str) -> None:
        self.assets.append(path)
        self.image_urls.append(url)

    def finish(self, crawl_stats: Mapping[str, int] | None = None) -> None:
        if crawl_stats is not None:
            self.crawl_stats = dict(crawl_stats)
        self.finished_at = utc_iso()

    def render_summary(self) -> str:
        categories = Counter(page.category for page in self.pages)
        lines = [
            "# Conversion Summary",
            "",
            f"Generated: {self.finished_at or utc_iso()}",
            f"Started: {self.started_at}",
            f"Source: {self.root_url}",
            "",
            "## Statistics",
            f"- Total Pages: {self.total_pages}",
            f"- Successful: {self.successes}",
            f"- Failed: {self.failure_count}",
            f"- Total Images: {self.total_images}",
            f"- Batches Flushed: {self.batches_flushed}",
            f"- Memory Pressure Pauses: {self.pressure_pauses}",
            "",
            "## Categories",
        ]
        lines.extend(
            f"- **{name}**: {count} page(s)" for name, count in sorted(categories.items())
        )
        if not categories:
            lines.append("- (none)")

        if self.crawl_stats:
            lines.extend(["", "## Crawl"])
            lines.extend(
                f"- {key}: {value}" for key, value in sorted(self.crawl_stats.items())
            )

        if self.limits:
            lines.extend(["", "## Limits"])
            lines.extend(f"- {key}: {value}" for key, value in self.limits.items())

        lines.extend(["", "## Successful Conversions"])
        for category, entries in self.category_index().items():
            for page in entries:
                images = f" - {page.images} image(s)" if page.images else ""
                lines.append(f"- **{page.path}** ({category}) - {page.url}{images}")

        if self.failures:
            lines.extend(["", "## Failed Conversions"])
            lines.extend(f"- **{url}**: {error}" for url, error in self.failures)

        return "\n".join(lines).rstrip() + "\n"


def _wiki_label(text: str) -> str:
    return " ".join(text.replace("|", "-").replace("[", "(").replace("]", ")").split())


def render_index(
    manifest: ArchiveManifest,
    *,
    root_content: str | None,
    pages_prefix: str,
) -> str:
    """Site index: root page content plus a table of contents by path section.

    ``pages_prefix`` is the archive folder holding the page files; links
    are wiki-style and relative to the index.
    """

    host = manifest.hostname
    archived = manifest.finished_at or utc_iso()
    home = root_content
    if home is None:
        home = "_The root page could not be converted._"
    lines = [
        "---",
        f'title: "{host} Archive"',
        f'description: "Website archive of {host}"',
        f'date: "{archived}"',
        "tags:",
        "  - website-archive",
        f"  - {host.replace('.', '-')}",
        "---",
        "",
        f"# {host} Website Archive",
        "",
        "## Site Information",
        f"- **Source URL:** {manifest.root_url}",
        f"- **Archived:** {archived}",
        f"- **Total Pages:** {manifest.total_pages}",
        f"- **Successful:** {manifest.successes}",
        f"- **Failed:** {manifest.failure_count}",
        "",
        "## Home Page",
        "",
        home.rstrip(),
        "",
    ]

    sections: dict[str, list[PageEntry]] = defaultdict(list)
    for page in manifest.pages:
        if not page.path.startswith(pages_prefix + "/"):
            continue
        sections[page.section].append(page)

    if sections:
        lines.extend(["## Contents", ""])
        for section in sorted(sections):
            lines.append(f"### {section}")
            lines.append("")
            for page in sorted(sections[section], key=lambda p: p.path):
                rel = PurePosixPath(page.path).relative_to(PurePosixPath(pages_prefix).parent)
                target = rel.with_suffix("").as_posix()
                label = _wiki_label(page.title) or rel.stem
                lines.append(f"- [[{target}|{label}]] - [Original]({page.url})")
            lines.append("")

    return "\n".join(lines).rstrip() + "\n"
