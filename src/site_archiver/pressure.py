"""Resource-pressure probes consulted by the archiver between batch flushes."""

from __future__ import annotations

import gc
import logging
from enum import IntEnum
from typing import Protocol, Sequence

import psutil

logger = logging.getLogger(__name__)


class PressureLevel(IntEnum):
    NORMAL = 0
    HIGH = 1
    CRITICAL = 2


class PressureProbe(Protocol):
    def level(self) -> PressureLevel: ...

    def collect(self) -> None: ...


class ProcessMemoryProbe:
    """Resident-set size of the current process against a high-water mark.

    HIGH at or above ``high_water_mb``; CRITICAL at ``critical_ratio`` times
    that. ``collect`` runs a full garbage collection.
    """

    def __init__(
        self,
        high_water_mb: float,
        *,
        critical_ratio: float = 1.5,
        process: psutil.Process | None = None,
    ) -> None:
        self._high = float(high_water_mb)
        self._critical = self._high * critical_ratio
        self._process = process or psutil.Process()

    def rss_mb(self) -> float:
        return self._process.memory_info().rss / 1024 / 1024

    def level(self) -> PressureLevel:
        rss = self.rss_mb()
        if rss >= self._critical:
            return PressureLevel.CRITICAL
        if rss >= self._high:
            return PressureLevel.HIGH
        return PressureLevel.NORMAL

    def collect(self) -> None:
        freed = gc.collect()
        logger.debug("gc.collect() freed %d objects (rss now %.1f MB)", freed, self.rss_mb())


class StaticPressureProbe:
    """Replays a fixed sequence of levels; the last one repeats."""

    def __init__(self, levels: Sequence[PressureLevel] = (PressureLevel.NORMAL,)) -> None:
        if not levels:
            raise ValueError("levels must not be empty")
        self._levels = list(levels)
        self._index = 0
        self.collections = 0
        self.readings = 0

    def level(self) -> PressureLevel:
        self.readings += 1
        level = self._levels[min(self._index, len(self._levels) - 1)]
        self._index += 1
        return level

    def collect(self) -> None:
        self.collections += 1
