"""Runtime settings for the optimizer control loop."""

from dataclasses import dataclass

# Unchanged percentage passes before the mutator falls back to +/-1 agent steps.
# Integer rounding at low agent counts can hide any percentage change.
PLATEAU_RETRY_LIMIT = 20

# Upper bound on archived simulation snapshots per session.
MAX_ARCHIVE_ENTRIES = 50

DEFAULT_POLL_INTERVAL_SECONDS = 0.25

# Placeholder ceiling for groups without a restriction.
UNRESTRICTED_MAX_AGENTS = 1_000_000


@dataclass
class OptimizerConfig:
    """Settings that shape a session but are not part of the target itself.

    Attributes:
        poll_interval_seconds: Sleep between two polls of the running simulation.
        strict_check: Passed to the model validation of every run model.
        plateau_retry_limit: Unchanged passes before the absolute fallback.
        max_archive_entries: Cap on retained simulation snapshots.
        max_runs: Optional safety valve on the number of dispatched simulations.
        max_seconds: Optional safety valve on wall-clock time.
    """
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    strict_check: bool = False
    plateau_retry_limit: int = PLATEAU_RETRY_LIMIT
    max_archive_entries: int = MAX_ARCHIVE_ENTRIES
    max_runs: int | None = None
    max_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.plateau_retry_limit < 1:
            raise ValueError("plateau_retry_limit must be at least 1")
        if self.max_archive_entries < 3:
            raise ValueError("max_archive_entries must be at least 3")
        if self.max_runs is not None and self.max_runs < 1:
            raise ValueError("max_runs must be positive when given")
