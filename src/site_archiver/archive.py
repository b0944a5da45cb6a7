"""Byte-bounded batching of conversion results into one ZIP archive.

Results are staged on disk under a temporary directory in their final
layout; a batch is written out as soon as adding the next result would
push it past ``batch_max_bytes``. The staged tree is zipped at the end
with ``summary.md`` as the first entry.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urlparse

from .manifest import (
    SUMMARY_NAME,
    SUMMARY_PLACEHOLDER,
    ArchiveManifest,
    PageEntry,
    relpath_posix,
    render_index,
)
from .models import ContentCategory, ConversionResult, ImageReference, OutputFile
from .pressure import PressureLevel, PressureProbe, StaticPressureProbe
from .urls import safe_filename_piece, slug_for_path, url_hash

logger = logging.getLogger(__name__)


@dataclass
class Batch:
    max_bytes: int
    items: list[ConversionResult] = field(default_factory=list)
    size: int = 0

    def would_overflow(self, item_size: int) -> bool:
        return bool(self.items) and self.size + item_size > self.max_bytes

    def add(self, item: ConversionResult, item_size: int) -> None:
        self.items.append(item)
        self.size += item_size

    def clear(self) -> None:
        self.items.clear()
        self.size = 0


@dataclass(frozen=True)
class ArchiveArtifact:
    path: Path
    manifest: ArchiveManifest
    entries: tuple[str, ...]

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


@dataclass
class ArchiverConfig:
    root_url: str
    output_path: Path
    batch_max_bytes: int = 25 * 1024 * 1024
    pressure_pause_s: float = 1.0
    work_dir: Path | None = None
    limits: dict[str, Any] = field(default_factory=dict)

    @property
    def hostname(self) -> str:
        return urlparse(self.root_url).hostname or "site"


def _name_rank(url: str) -> tuple[int, str]:
    return len(url), url


def _rewrite_image_links(content: str, targets: Mapping[str, str]) -> str:
    for url, rel in targets.items():
        content = re.sub(r"\]\(" + re.escape(url) + r"(?=[\s)])", "](" + rel, content)
    return content


class BatchArchiver:
    """Sole consumer of the conversion stream; owns all batch state."""

    def __init__(
        self,
        config: ArchiverConfig,
        *,
        probe: PressureProbe | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cfg = config
        self._probe = probe or StaticPressureProbe()
        self._sleep = sleep
        self._host = config.hostname
        self.flushed_sizes: list[int] = []

    @property
    def root_url(self) -> str:
        return self._cfg.root_url

    @property
    def web_root(self) -> str:
        return f"web/{self._host}"

    def archive(
        self,
        results: Iterable[ConversionResult],
        *,
        crawl_stats: Callable[[], Mapping[str, int]] | None = None,
    ) -> ArchiveArtifact:
        manifest = ArchiveManifest(
            root_url=self._cfg.root_url,
            hostname=self._host,
            limits=dict(self._cfg.limits),
        )
        with tempfile.TemporaryDirectory(
            prefix="site-archiver-", dir=self._cfg.work_dir
        ) as tmp:
            run = _ArchiveRun(self, Path(tmp), manifest)
            run.start()

            batch = Batch(self._cfg.batch_max_bytes)
            for result in results:
                if not result.success:
                    manifest.record_failure(result.url, result.error or "unknown error")
                    continue
                item_size = result.approx_size()
                if item_size > self._cfg.batch_max_bytes:
                    logger.warning(
                        "%s is %d bytes, larger than the %d byte batch ceiling",
                        result.url,
                        item_size,
                        self._cfg.batch_max_bytes,
                    )
                if batch.would_overflow(item_size):
                    self._flush(run, batch)
                batch.add(result, item_size)
            if batch.items:
                self._flush(run, batch)

            manifest.finish(crawl_stats() if crawl_stats is not None else None)
            run.finish()
            entries = run.write_zip(self._cfg.output_path)

        logger.info(
            "Wrote %s: %d page(s), %d failure(s), %d image(s)",
            self._cfg.output_path,
            manifest.successes,
            manifest.failure_count,
            manifest.total_images,
        )
        return ArchiveArtifact(
            path=self._cfg.output_path, manifest=manifest, entries=entries
        )

    def _flush(self, run: _ArchiveRun, batch: Batch) -> None:
        logger.info("Flushing batch of %d item(s), %d bytes", len(batch.items), batch.size)
        for item in batch.items:
            run.write_result(item)
        self.flushed_sizes.append(batch.size)
        run.manifest.batches_flushed += 1
        batch.clear()
        self._relieve_pressure(run.manifest)

    def _relieve_pressure(self, manifest: ArchiveManifest) -> None:
        level = self._probe.level()
        if level is PressureLevel.NORMAL:
            return
        logger.warning("Memory pressure %s after flush; collecting", level.name)
        self._probe.collect()
        if self._probe.level() is not PressureLevel.NORMAL:
            logger.warning(
                "Memory still high; pausing %.1fs", self._cfg.pressure_pause_s
            )
            manifest.pressure_pauses += 1
            self._sleep(self._cfg.pressure_pause_s)


class _ArchiveRun:
    """Staging-directory state for one ``archive`` call."""

    def __init__(self, archiver: BatchArchiver, root: Path, manifest: ArchiveManifest) -> None:
        self.archiver = archiver
        self.root = root
        self.manifest = manifest
        self.web_dir = root / archiver.web_root
        self.pages_dir = self.web_dir / "pages"
        self.assets_dir = self.web_dir / "assets"
        self.root_content: str | None = None
        self._slugs: dict[str, str] = {}
        self._assets: set[str] = set()

    def start(self) -> None:
        (self.root / SUMMARY_NAME).write_text(SUMMARY_PLACEHOLDER, encoding="utf-8")
        self.pages_dir.mkdir(parents=True, exist_ok=True)
        self.assets_dir.mkdir(parents=True, exist_ok=True)

    def _claim_name(self, folder: Path, key: str, slug: str, url: str) -> str:
        """File stem for ``url`` among the pages sharing ``slug``.

        The shortest URL (then the smallest) keeps the bare slug and every
        other one gets ``<slug>-<url hash>``, whatever order pages arrive in.
        """

        owner = self._slugs.get(key)
        if owner is None or owner == url:
            self._slugs[key] = url
            return slug
        if _name_rank(url) < _name_rank(owner):
            self._slugs[key] = url
            self._move_page(folder, slug, owner, f"{slug}-{url_hash(owner)}")
            return slug
        logger.debug("Name collision for %s; using %s-%s", url, slug, url_hash(url))
        return f"{slug}-{url_hash(url)}"

    def _move_page(self, folder: Path, old: str, url: str, new: str) -> None:
        (folder / f"{old}.md").rename(folder / f"{new}.md")
        attachments = folder / f"{old}_attachments"
        if attachments.exists():
            attachments.rename(folder / f"{new}_attachments")
        self.manifest.move_page(url, relpath_posix(folder / f"{new}.md", self.root))
        logger.debug("Name collision for %s; moved to %s", url, new)

    def _store_images(self, images: Iterable[ImageReference], prefix: str) -> dict[str, str]:
        targets: dict[str, str] = {}
        for ref in images:
            if not ref.asset_name:
                continue
            if ref.data is not None and ref.asset_name not in self._assets:
                path = self.assets_dir / ref.asset_name
                path.write_bytes(ref.data)
                self._assets.add(ref.asset_name)
                self.manifest.record_asset(relpath_posix(path, self.root), ref.url)
            targets[ref.url] = f"{prefix}{ref.asset_name}"
        return targets

    def _write_files(self, files: Iterable[OutputFile], folder: Path) -> None:
        for f in files:
            folder.mkdir(parents=True, exist_ok=True)
            path = folder / safe_filename_piece(f.name)
            if isinstance(f.content, bytes):
                path.write_bytes(f.content)
            else:
                path.write_text(f.content, encoding="utf-8")

    def write_result(self, result: ConversionResult) -> None:
        title = result.title or result.url
        if result.url == self.archiver.root_url:
            targets = self._store_images(result.images, "assets/")
            self.root_content = _rewrite_image_links(result.content, targets)
            self._write_files(result.files, self.web_dir / "index_attachments")
            self.manifest.record_page(
                PageEntry(
                    url=result.url,
                    path=f"{self.archiver.web_root}/index.md",
                    title=title,
                    category=result.category.value,
                    images=len(result.images),
                )
            )
            return

        slug = slug_for_path(urlparse(result.url).path)
        key = f"{result.category.value}/{slug}"
        if result.category is ContentCategory.WEB:
            folder = self.pages_dir
            targets = self._store_images(result.images, "../assets/")
        else:
            folder = self.root / result.category.value
            targets = self._store_images(
                result.images, f"../{self.archiver.web_root}/assets/"
            )
        name = self._claim_name(folder, key, slug, result.url)
        path = folder / f"{name}.md"

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_rewrite_image_links(result.content, targets), encoding="utf-8")
        self._write_files(result.files, folder / f"{name}_attachments")
        self.manifest.record_page(
            PageEntry(
                url=result.url,
                path=relpath_posix(path, self.root),
                title=title,
                category=result.category.value,
                images=len(result.images),
            )
        )

    def finish(self) -> None:
        index = render_index(
            self.manifest,
            root_content=self.root_content,
            pages_prefix=f"{self.archiver.web_root}/pages",
        )
        (self.web_dir / "index.md").write_text(index, encoding="utf-8")
        self._remove_empty_dirs()
        (self.root / SUMMARY_NAME).write_text(
            self.manifest.render_summary(), encoding="utf-8"
        )

    def _remove_empty_dirs(self) -> None:
        for dirpath, _dirnames, _filenames in os.walk(self.root, topdown=False):
            path = Path(dirpath)
            if path != self.root and not any(path.iterdir()):
                path.rmdir()

    def write_zip(self, output_path: Path) -> tuple[str, ...]:
        files = sorted(
            relpath_posix(p, self.root)
            for p in self.root.rglob("*")
            if p.is_file() and p != self.root / SUMMARY_NAME
        )
        entries = (SUMMARY_NAME, *files)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(
            output_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as zf:
            for name in entries:
                zf.write(self.root / name, arcname=name)
        return entries
