from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from .errors import ConfigurationError
from .http_client import DEFAULT_USER_AGENT
from .urls import HTTP_SCHEMES, normalize_url

# "mailto:x", "javascript:x"; "host:8080/path" is a host with a port.
_BARE_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:(?!\d)")


@dataclass
class CrawlOptions:
    max_pages: int = 100
    max_depth: int = 10
    crawl_concurrency: int = 5
    convert_concurrency: int = 5
    batch_max_bytes: int = 25 * 1024 * 1024
    exclude_patterns: tuple[str, ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    user_agent: str = DEFAULT_USER_AGENT
    timeout_s: float = 30.0
    max_attempts: int = 3
    backoff_s: float = 1.0
    max_redirects: int = 10
    include_images: bool = True
    include_metadata: bool = True
    memory_high_water_mb: float = 1024.0
    pressure_pause_s: float = 1.0
    output_path: Path | None = None
    work_dir: Path | None = None

    def validate(self) -> None:
        positive = {
            "max_pages": self.max_pages,
            "crawl_concurrency": self.crawl_concurrency,
            "convert_concurrency": self.convert_concurrency,
            "batch_max_bytes": self.batch_max_bytes,
            "timeout_s": self.timeout_s,
            "max_attempts": self.max_attempts,
            "memory_high_water_mb": self.memory_high_water_mb,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive (got {value})")
        non_negative = {
            "max_depth": self.max_depth,
            "backoff_s": self.backoff_s,
            "max_redirects": self.max_redirects,
            "pressure_pause_s": self.pressure_pause_s,
        }
        for name, value in non_negative.items():
            if value < 0:
                raise ConfigurationError(f"{name} must not be negative (got {value})")
        self.compiled_excludes()

    def compiled_excludes(self) -> tuple[re.Pattern[str], ...]:
        compiled = []
        for pattern in self.exclude_patterns:
            try:
                compiled.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid exclude pattern {pattern!r}: {e}"
                ) from e
        return tuple(compiled)

    def limits(self) -> dict[str, Any]:
        return {
            "max_pages": self.max_pages,
            "max_depth": self.max_depth,
            "crawl_concurrency": self.crawl_concurrency,
            "convert_concurrency": self.convert_concurrency,
            "batch_max_bytes": self.batch_max_bytes,
            "max_attempts": self.max_attempts,
        }


def normalize_root_url(raw: str) -> str:
    """Validate and canonicalize the crawl root ("example.com" -> "https://example.com/")."""

    text = (raw or "").strip()
    if not text:
        raise ConfigurationError("Root URL is empty")
    if "://" not in text:
        if _BARE_SCHEME.match(text):
            raise ConfigurationError(f"Unsupported URL scheme in {raw!r}; use http or https")
        text = "https://" + text
    try:
        parsed = urlparse(text)
    except ValueError as e:
        raise ConfigurationError(f"Invalid root URL {raw!r}: {e}") from e
    if parsed.scheme.lower() not in HTTP_SCHEMES:
        raise ConfigurationError(f"Unsupported URL scheme in {raw!r}; use http or https")
    if not parsed.hostname:
        raise ConfigurationError(f"Root URL {raw!r} has no host")
    return normalize_url(text)
