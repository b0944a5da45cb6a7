from __future__ import annotations


class SiteArchiverError(Exception):
    """Base class for errors raised by site_archiver."""


class ConfigurationError(SiteArchiverError):
    """Invalid root URL or run options; raised before any work starts."""


class ConversionError(SiteArchiverError):
    """A document transform could not produce any content."""
