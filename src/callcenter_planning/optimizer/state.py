"""Per-session optimizer state. Replaced, never edited, by the transition functions."""

from dataclasses import dataclass, field

import numpy as np

from .archive import ResultArchive
from .model import CallcenterModel, GroupKey
from .target import TargetSpec

LOCKED = 0
NEEDS_INCREASE = 1
NEEDS_DECREASE = -1


@dataclass(frozen=True)
class ResolvedTarget:
    """TargetSpec facts resolved against the base model once, at validation time.

    Attributes:
        spec: The validated target.
        interval_count: Working resolution (48 or 96).
        interval_mask: Active intervals at the working resolution.
        selected_groups: Canonical caller group / callcenter names for SELECTION.
        mutable_groups: Agent groups the mutator may change, in model order.
        restrictions: (min, max) vectors per restricted group.
    """
    spec: TargetSpec
    interval_count: int
    interval_mask: np.ndarray
    selected_groups: frozenset[str]
    mutable_groups: tuple[GroupKey, ...]
    restrictions: dict[GroupKey, tuple[np.ndarray, np.ndarray]]


@dataclass
class OptimizerState:
    """Everything that changes between two simulation runs."""
    target: ResolvedTarget
    base_model: CallcenterModel
    archive: ResultArchive
    iteration_count: int = 0
    schedule_baseline: np.ndarray = None
    schedule_current: np.ndarray = None
    schedule_last: np.ndarray = None
    percent_factor: np.ndarray = None
    absolute_add: np.ndarray = None
    interval_needs_change: np.ndarray = None
    change_permitted: dict[GroupKey, np.ndarray] = field(default_factory=dict)
    locked_index_ascending: int = -1
    locked_index_descending: int = -1
    last_kpi_per_interval: np.ndarray | None = None
    previous_kpi_per_interval: np.ndarray | None = None
    last_run: bool = False

    @classmethod
    def initial(cls, target: ResolvedTarget, base_model: CallcenterModel, archive: ResultArchive) -> "OptimizerState":
        n = target.interval_count
        return cls(
            target=target,
            base_model=base_model,
            archive=archive,
            schedule_baseline=np.zeros(n),
            schedule_current=np.zeros(n),
            schedule_last=np.zeros(n),
            percent_factor=np.ones(n),
            absolute_add=np.zeros(n),
            interval_needs_change=np.full(n, NEEDS_INCREASE, dtype=np.int8),
            change_permitted={key: np.ones(n, dtype=bool) for key in target.mutable_groups},
        )

    def change_allowed_mask(self) -> np.ndarray:
        n = self.target.interval_count
        if not self.change_permitted:
            return np.ones(n, dtype=bool)
        return np.logical_or.reduce(list(self.change_permitted.values()))
