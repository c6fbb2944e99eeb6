"""
Result Archive
==============

Keeps the statistics of an optimization session without letting memory grow
with the number of runs:

    stride k = 1 initially; run r is archived if k == 1 or r % k == 1
    archive reaches the cap -> drop every second entry (first and newest stay), k *= 2
    the final run is always archived
"""

import copy
import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .config import MAX_ARCHIVE_ENTRIES
from .statistics import Statistics
from .target import TargetSpec

logger = logging.getLogger(__name__)


@dataclass
class ArchiveEntry:
    """One archived simulation run.

    Attributes:
        run_number: 1-based number of the simulation run.
        statistics: Raw statistics of that run.
        schedule: Agents of the mutable groups per interval in that run.
        kpi_per_interval: Evaluated KPI per interval.
    """
    run_number: int
    statistics: Statistics
    schedule: np.ndarray
    kpi_per_interval: np.ndarray


class ResultArchive:
    """Bounded, self-thinning collection of per-run results."""

    def __init__(self, spec: TargetSpec, max_entries: int = MAX_ARCHIVE_ENTRIES) -> None:
        self.spec = copy.deepcopy(spec)
        self.max_entries = max_entries
        self.entries: list[ArchiveEntry] = []
        self.stride = 1
        self.run_count = 0
        self.elapsed_seconds = 0.0
        self._pending: ArchiveEntry | None = None

    def __len__(self) -> int:
        return len(self.entries)

    def record(self, entry: ArchiveEntry, is_final: bool = False) -> None:
        """Store the result of a completed run, honouring the thinning stride."""
        self.run_count = max(self.run_count, entry.run_number)
        self._pending = None
        if is_final:
            self.entries.append(entry)
            return
        if self.stride == 1 or entry.run_number % self.stride == 1:
            self.entries.append(entry)
        else:
            self._pending = entry

        if len(self.entries) < self.max_entries:
            return
        self._thin()

    def close(self) -> None:
        """Archive the most recent completed run if the stride skipped it."""
        if self._pending is not None:
            self.entries.append(self._pending)
            self._pending = None

    def _thin(self) -> None:
        last = len(self.entries) - 1
        self.entries = [
            entry for index, entry in enumerate(self.entries)
            if index == 0 or index == last or index % 2 == 0
        ]
        self.stride *= 2
        logger.debug(
            "Archive thinned to %d entries, keeping every %d. run",
            len(self.entries), self.stride,
        )

    @property
    def baseline(self) -> ArchiveEntry | None:
        return self.entries[0] if self.entries else None

    @property
    def latest(self) -> ArchiveEntry | None:
        return self.entries[-1] if self.entries else None

    def to_frame(self) -> pd.DataFrame:
        """One row per archived run with the headline numbers."""
        rows = []
        for entry in self.entries:
            kpi = entry.kpi_per_interval
            rows.append(
                {
                    "run": entry.run_number,
                    "agents": float(np.sum(entry.schedule)),
                    "peak_agents": float(np.max(entry.schedule)) if len(entry.schedule) else 0.0,
                    "kpi_mean": float(np.mean(kpi)) if len(kpi) else 0.0,
                    "kpi_min": float(np.min(kpi)) if len(kpi) else 0.0,
                    "kpi_max": float(np.max(kpi)) if len(kpi) else 0.0,
                    "calls": entry.statistics.clients_global.calls,
                    "calls_success": entry.statistics.clients_global.calls_success,
                }
            )
        return pd.DataFrame(rows, columns=["run", "agents", "peak_agents", "kpi_mean", "kpi_min", "kpi_max", "calls", "calls_success"])
