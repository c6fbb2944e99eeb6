"""Target specification: what the optimizer should reach and what it may touch."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from .model import GroupKey
from .schedule import check_interval_count, round_half_up, stretch


class KpiProperty(Enum):
    """The quality metric being optimized."""
    ACCESSIBILITY_BY_CALL = "accessibility_by_call"
    ACCESSIBILITY_BY_CLIENT = "accessibility_by_client"
    WAITING_TIME_BY_CALL = "waiting_time_by_call"
    WAITING_TIME_BY_CLIENT = "waiting_time_by_client"
    RESIDENCE_TIME_BY_CALL = "residence_time_by_call"
    RESIDENCE_TIME_BY_CLIENT = "residence_time_by_client"
    SERVICE_LEVEL_BY_CALL = "service_level_by_call"
    SERVICE_LEVEL_BY_CALL_ALL = "service_level_by_call_all"
    SERVICE_LEVEL_BY_CLIENT = "service_level_by_client"
    SERVICE_LEVEL_BY_CLIENT_ALL = "service_level_by_client_all"
    WORK_LOAD = "work_load"

    @property
    def larger_is_better(self) -> bool:
        return self in _LARGER_IS_BETTER

    @property
    def is_agent_metric(self) -> bool:
        return self is KpiProperty.WORK_LOAD


_LARGER_IS_BETTER = frozenset({
    KpiProperty.ACCESSIBILITY_BY_CALL,
    KpiProperty.ACCESSIBILITY_BY_CLIENT,
    KpiProperty.SERVICE_LEVEL_BY_CALL,
    KpiProperty.SERVICE_LEVEL_BY_CALL_ALL,
    KpiProperty.SERVICE_LEVEL_BY_CLIENT,
    KpiProperty.SERVICE_LEVEL_BY_CLIENT_ALL,
})


class IntervalMode(Enum):
    AVERAGE = "average"
    PER_INTERVAL = "per_interval"
    PER_INTERVAL_ORDERED = "per_interval_ordered"


class GroupMode(Enum):
    AVERAGE = "average"
    WORST = "worst"
    SELECTION = "selection"


@dataclass(frozen=True)
class GroupRestriction:
    """Hard per-interval floor and ceiling for one variable agent group."""
    key: GroupKey
    min_per_interval: tuple[float, ...]
    max_per_interval: tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "min_per_interval", tuple(float(v) for v in self.min_per_interval))
        object.__setattr__(self, "max_per_interval", tuple(float(v) for v in self.max_per_interval))
        check_interval_count(len(self.min_per_interval))
        check_interval_count(len(self.max_per_interval))

    def bounds(self, interval_count: int) -> tuple[np.ndarray, np.ndarray]:
        """Rounded (min, max) vectors at the working resolution."""
        return (
            round_half_up(stretch(self.min_per_interval, interval_count)),
            round_half_up(stretch(self.max_per_interval, interval_count)),
        )

    def is_empty_range(self) -> bool:
        low = np.asarray(self.min_per_interval)
        high = np.asarray(self.max_per_interval)
        size = max(len(low), len(high))
        return bool(np.any(stretch(low, size) > stretch(high, size)))


def _all_intervals() -> tuple[bool, ...]:
    return (True,) * 48


@dataclass(frozen=True)
class TargetSpec:
    """Immutable description of one optimization goal.

    Attributes:
        kpi: KPI to optimize.
        target_value: Threshold to reach (probability 0-1 or seconds).
        target_max_value: Optional bound on the opposite side of ``target_value``;
            turns the search into a band search that also removes agents.
        interval_mode: Whole-day average, every interval, or every interval
            left to right with locking.
        group_mode: Global aggregate, worst group, or a named selection.
        selected_group_names: Caller groups (or callcenters for WORK_LOAD)
            judged in SELECTION mode.
        active_interval_mask: Intervals that take part in the convergence check.
        change_step_fraction: Relative change of flagged intervals per step.
        change_all_groups: Mutate every agent group, or only ``change_group_keys``.
        change_group_keys: Agent groups the optimizer may mutate.
        group_restrictions: Per-group floors and ceilings.
        carry_over: Opaque configuration for the carry-over builder.
    """
    kpi: KpiProperty
    target_value: float
    target_max_value: float | None = None
    interval_mode: IntervalMode = IntervalMode.PER_INTERVAL_ORDERED
    group_mode: GroupMode = GroupMode.AVERAGE
    selected_group_names: tuple[str, ...] = ()
    active_interval_mask: tuple[bool, ...] = field(default_factory=_all_intervals)
    change_step_fraction: float = 0.01
    change_all_groups: bool = True
    change_group_keys: tuple[GroupKey, ...] = ()
    group_restrictions: tuple[GroupRestriction, ...] = ()
    carry_over: Any = None

    def __post_init__(self) -> None:
        if self.change_step_fraction <= 0:
            raise ValueError("change_step_fraction must be positive")
        object.__setattr__(self, "selected_group_names", tuple(self.selected_group_names))
        object.__setattr__(self, "active_interval_mask", tuple(bool(v) for v in self.active_interval_mask))
        object.__setattr__(self, "change_group_keys", tuple(self.change_group_keys))
        object.__setattr__(self, "group_restrictions", tuple(self.group_restrictions))
        check_interval_count(len(self.active_interval_mask))

    @property
    def is_band(self) -> bool:
        return self.target_max_value is not None

    @property
    def all_intervals_active(self) -> bool:
        return all(self.active_interval_mask)

    def interval_mask(self, interval_count: int) -> np.ndarray:
        mask = np.asarray(self.active_interval_mask, dtype=bool)
        if len(mask) > interval_count:
            # an interval counts as active if any of its sub-slots is
            return mask.reshape(interval_count, -1).any(axis=1)
        return stretch(mask, interval_count)
