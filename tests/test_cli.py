from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeSession, html_response, page, status_response
from site_archiver import cli
from site_archiver.pipeline import run_crawl as real_run_crawl
from site_archiver.pressure import StaticPressureProbe

ROOT = "https://example.com/"


def _patch_run(monkeypatch: pytest.MonkeyPatch, session: FakeSession, seen: dict) -> None:
    def fake_run(url, options, **kwargs):
        seen["options"] = options
        return real_run_crawl(
            url,
            options,
            session=session,
            probe=StaticPressureProbe(),
            sleep=lambda s: None,
        )

    monkeypatch.setattr(cli, "run_crawl", fake_run)


def test_crawl_writes_archive_and_maps_flags(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture
) -> None:
    seen: dict = {}
    _patch_run(monkeypatch, FakeSession({ROOT: html_response(page("Home"))}), seen)
    out = tmp_path / "site.zip"

    code = cli.main(
        [
            "-q",
            "crawl",
            "example.com",
            "--out",
            str(out),
            "--single-page",
            "--exclude",
            "/private/",
            "--header",
            "X-Token: abc",
            "--no-images",
            "--batch-max-mb",
            "1",
        ]
    )

    assert code == 0
    assert out.exists()
    assert "ok=1" in capsys.readouterr().out
    options = seen["options"]
    assert options.max_pages == 1
    assert options.exclude_patterns == ("/private/",)
    assert options.headers == {"X-Token": "abc"}
    assert options.include_images is False
    assert options.batch_max_bytes == 1024 * 1024


def test_all_pages_failing_exits_one(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    session = FakeSession({ROOT: status_response(500, "Internal Server Error")})
    _patch_run(monkeypatch, session, {})
    code = cli.main(["-q", "crawl", ROOT, "--out", str(tmp_path / "site.zip")])
    assert code == 1
    assert (tmp_path / "site.zip").exists()


def test_configuration_error_exits_two(caplog: pytest.LogCaptureFixture) -> None:
    code = cli.main(["crawl", "ftp://example.com/", "--max-pages", "5"])
    assert code == 2
    assert "Unsupported URL scheme" in caplog.text


def test_invalid_header_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["crawl", ROOT, "--header", "no-colon"])
    assert exc.value.code == 2


def test_unwritable_output_is_logged_and_exits_two(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture, capsys: pytest.CaptureFixture
) -> None:
    def fail(url, options, **kwargs):
        raise PermissionError(13, "Permission denied", "/readonly/site.zip")

    monkeypatch.setattr(cli, "run_crawl", fail)
    code = cli.main(["-q", "crawl", ROOT, "--out", "/readonly/site.zip"])
    assert code == 2
    assert "Could not write archive" in caplog.text
    assert "Permission denied" in caplog.text
    assert capsys.readouterr().out == ""
