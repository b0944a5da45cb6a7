"""site-archiver core library.

This package crawls a single website, converts every in-scope page into
Markdown, and packages the results into one browsable ZIP archive with a
summary manifest.

Entry points:
- ``run_crawl(root_url, options)`` builds the archive and returns an
  ``ArchiveArtifact``.
- ``site-archiver crawl <url>`` is the command-line wrapper around it.
"""

from __future__ import annotations

from .archive import ArchiveArtifact
from .config import CrawlOptions
from .errors import ConfigurationError, SiteArchiverError
from .pipeline import run_crawl

__all__ = [
    "ArchiveArtifact",
    "ConfigurationError",
    "CrawlOptions",
    "SiteArchiverError",
    "__version__",
    "run_crawl",
]

__version__ = "0.1.0"
