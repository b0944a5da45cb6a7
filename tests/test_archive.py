from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from conftest import PNG_BYTES
from site_archiver.archive import ArchiverConfig, Batch, BatchArchiver
from site_archiver.models import ContentCategory, ConversionResult, ImageReference, OutputFile
from site_archiver.pressure import PressureLevel, StaticPressureProbe
from site_archiver.urls import url_hash

ROOT = "https://example.com/"
LOGO = "https://example.com/images/logo.png"


def _page(path: str, body: str = "text", **kwargs) -> ConversionResult:
    return ConversionResult(
        url=f"https://example.com{path}",
        success=True,
        content=f"# {path}\n\n{body}\n",
        title=path.strip("/") or "Home",
        **kwargs,
    )


def _archiver(tmp_path: Path, *, probe=None, sleeps=None, **config) -> BatchArchiver:
    cfg = ArchiverConfig(
        root_url=ROOT,
        output_path=tmp_path / "out" / "archive.zip",
        work_dir=tmp_path,
        **config,
    )
    sleep = sleeps.append if sleeps is not None else (lambda s: None)
    return BatchArchiver(cfg, probe=probe or StaticPressureProbe(), sleep=sleep)


def _read(artifact, name: str) -> str:
    with zipfile.ZipFile(artifact.path) as zf:
        return zf.read(name).decode("utf-8")


def test_batch_overflow_rule() -> None:
    batch = Batch(max_bytes=100)
    assert not batch.would_overflow(500)  # empty batch always takes one item
    batch.add(_page("/a"), 60)
    assert not batch.would_overflow(40)
    assert batch.would_overflow(41)
    batch.clear()
    assert batch.items == [] and batch.size == 0


def test_layout_summary_first_and_index(tmp_path: Path) -> None:
    results = [
        _page("/", "Welcome home."),
        _page("/about", "About us."),
        _page("/docs/start", "Start here."),
        ConversionResult.failure("https://example.com/broken", "HTTP 500 Internal Server Error"),
        ConversionResult(
            url="https://example.com/data.json",
            success=True,
            category=ContentCategory.DATA,
            content="# data.json\n",
            files=(OutputFile("raw.json", b"{}"),),
        ),
    ]
    artifact = _archiver(tmp_path).archive(results, crawl_stats=lambda: {"visited": 5})

    assert artifact.entries[0] == "summary.md"
    assert set(artifact.entries) == {
        "summary.md",
        "web/example.com/index.md",
        "web/example.com/pages/about.md",
        "web/example.com/pages/docs-start.md",
        "data/data-json.md",
        "data/data-json_attachments/raw.json",
    }
    with zipfile.ZipFile(artifact.path) as zf:
        assert zf.namelist()[0] == "summary.md"
        assert zf.getinfo("web/example.com/pages/about.md").compress_type == zipfile.ZIP_DEFLATED

    manifest = artifact.manifest
    assert (manifest.total_pages, manifest.successes, manifest.failure_count) == (5, 4, 1)

    summary = _read(artifact, "summary.md")
    assert "- Total Pages: 5" in summary
    assert "- **https://example.com/broken**: HTTP 500 Internal Server Error" in summary
    assert "- visited: 5" in summary
    assert "(Archive in progress.)" not in summary

    index = _read(artifact, "web/example.com/index.md")
    assert index.startswith("---\ntitle: \"example.com Archive\"")
    assert "Welcome home." in index
    assert "- [[pages/about|about]] - [Original](https://example.com/about)" in index
    assert "[[pages/docs-start|docs/start]]" in index
    assert "data-json" not in index


def test_empty_asset_folder_is_removed(tmp_path: Path) -> None:
    artifact = _archiver(tmp_path).archive([_page("/")])
    assert artifact.entries == ("summary.md", "web/example.com/index.md")
    assert artifact.read_bytes()[:2] == b"PK"


def test_images_are_stored_once_and_links_rewritten(tmp_path: Path) -> None:
    name = f"logo-{url_hash(LOGO)}.png"
    owner = ImageReference(url=LOGO, alt="Logo", page_url=ROOT + "a", data=PNG_BYTES, asset_name=name)
    reuse = ImageReference(url=LOGO, alt="Logo", page_url=ROOT + "b", asset_name=name)
    results = [
        _page("/b", f"![Logo]({LOGO})", images=(reuse,)),
        _page("/a", f"![Logo]({LOGO} \"logo\")", images=(owner,)),
        _page("/", f"![Logo]({LOGO})", images=(reuse,)),
    ]
    artifact = _archiver(tmp_path).archive(results)

    assets = [e for e in artifact.entries if "/assets/" in e]
    assert assets == [f"web/example.com/assets/{name}"]
    assert artifact.manifest.image_urls == [LOGO]
    assert f"![Logo](../assets/{name})" in _read(artifact, "web/example.com/pages/b.md")
    assert f'![Logo](../assets/{name} "logo")' in _read(artifact, "web/example.com/pages/a.md")
    assert f"![Logo](assets/{name})" in _read(artifact, "web/example.com/index.md")


@pytest.mark.parametrize("reverse", [False, True])
def test_slug_collisions_are_named_the_same_in_any_order(
    tmp_path: Path, reverse: bool
) -> None:
    short = _page("/a")
    slash = _page("/a/")
    nested = _page("/a-b")
    other = _page("/a/b")
    results = [slash, short, other, nested]
    if reverse:
        results.reverse()
    artifact = _archiver(tmp_path).archive(results)

    pages = {e for e in artifact.entries if "/pages/" in e}
    assert pages == {
        "web/example.com/pages/a.md",
        f"web/example.com/pages/a-{url_hash(slash.url)}.md",
        "web/example.com/pages/a-b.md",
        f"web/example.com/pages/a-b-{url_hash(other.url)}.md",
    }
    assert "# /a/\n" in _read(artifact, f"web/example.com/pages/a-{url_hash(slash.url)}.md")
    paths = {p.url: p.path for p in artifact.manifest.pages}
    assert paths[short.url] == "web/example.com/pages/a.md"


def test_displaced_page_takes_its_attachments_along(tmp_path: Path) -> None:
    def data(path: str) -> ConversionResult:
        return ConversionResult(
            url=f"https://example.com{path}",
            success=True,
            category=ContentCategory.DATA,
            content=f"# {path}\n",
            files=(OutputFile("raw.json", path.encode()),),
        )

    later, first = data("/feed.json/"), data("/feed.json")
    artifact = _archiver(tmp_path).archive([later, first])
    moved = f"data/feed-json-{url_hash(later.url)}"
    assert set(artifact.entries) == {
        "summary.md",
        "web/example.com/index.md",
        "data/feed-json.md",
        "data/feed-json_attachments/raw.json",
        f"{moved}.md",
        f"{moved}_attachments/raw.json",
    }
    with zipfile.ZipFile(artifact.path) as zf:
        assert zf.read(f"{moved}_attachments/raw.json") == b"/feed.json/"


def test_batches_respect_the_byte_ceiling(tmp_path: Path) -> None:
    results = [_page(f"/p{i}", "x" * 40) for i in range(6)]
    sizes = [r.approx_size() for r in results]
    archiver = _archiver(tmp_path, batch_max_bytes=120)
    artifact = archiver.archive(results)

    assert sum(archiver.flushed_sizes) == sum(sizes)
    assert len(archiver.flushed_sizes) > 1
    assert all(size <= 120 for size in archiver.flushed_sizes)
    assert artifact.manifest.batches_flushed == len(archiver.flushed_sizes)


def test_oversized_item_is_flushed_alone(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    big = _page("/big", "y" * 500)
    archiver = _archiver(tmp_path, batch_max_bytes=100)
    archiver.archive([_page("/small"), big, _page("/after")])
    assert big.approx_size() in archiver.flushed_sizes
    assert max(archiver.flushed_sizes) <= 100 + big.approx_size()
    assert "larger than the 100 byte batch ceiling" in caplog.text


def test_memory_pressure_collects_then_pauses(tmp_path: Path, sleeps: list[float]) -> None:
    probe = StaticPressureProbe([PressureLevel.HIGH])
    archiver = _archiver(tmp_path, probe=probe, sleeps=sleeps, pressure_pause_s=0.25)
    artifact = archiver.archive([_page("/")])
    assert probe.collections == 1
    assert sleeps == [0.25]
    assert artifact.manifest.pressure_pauses == 1
    assert "- Memory Pressure Pauses: 1" in _read(artifact, "summary.md")


def test_collection_that_relieves_pressure_skips_pause(tmp_path: Path, sleeps: list[float]) -> None:
    probe = StaticPressureProbe([PressureLevel.CRITICAL, PressureLevel.NORMAL])
    archiver = _archiver(tmp_path, probe=probe, sleeps=sleeps)
    archiver.archive([_page("/")])
    assert probe.collections == 1
    assert sleeps == []
