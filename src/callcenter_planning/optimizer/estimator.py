"""Initial Staffing Estimator - minimum per-interval headcount meeting service constraints."""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .erlang import ErlangEmulator, IntervalMetrics
from .model import AgentGroup, CallcenterModel, GroupKey
from .schedule import interval_label, interval_slot_seconds, rebin


@dataclass
class StaffingConstraints:
    """Service constraints for the initial estimate.

    Attributes:
        min_service_level: Minimum share of calls answered in time (0-1), default 0.80
        max_wait_time: Maximum mean waiting time in seconds, default 60
        max_occupancy: Maximum agent occupancy (0-1), default 0.85
    """
    min_service_level: float = 0.80
    max_wait_time: float = 60.0
    max_occupancy: float = 0.85


@dataclass
class StaffingEstimate:
    """Result of the estimate for a whole day.

    Attributes:
        headcount: Minimum agents per interval.
        metrics: Predicted metrics per interval at that headcount.
        feasible: Per interval, whether the constraints could be met.
    """
    headcount: np.ndarray
    metrics: list[IntervalMetrics]
    feasible: np.ndarray

    def to_frame(self) -> pd.DataFrame:
        n = len(self.headcount)
        return pd.DataFrame(
            {
                "agents": self.headcount,
                "wait_time": [m.avg_wait_time for m in self.metrics],
                "service_level": [m.service_level for m in self.metrics],
                "occupancy": [m.utilization_rate for m in self.metrics],
                "feasible": self.feasible,
            },
            index=[interval_label(i, n) for i in range(n)],
        )


class InitialStaffingEstimator:
    """Finds a starting schedule for the optimizer.

    Since queueing metrics improve monotonically with staffing, a linear
    search from 1 upward finds the minimum feasible headcount per interval.

    Example:
        >>> estimator = InitialStaffingEstimator(ErlangEmulator())
        >>> estimate = estimator.estimate(model, StaffingConstraints(min_service_level=0.8))
        >>> apply_estimate(model, GroupKey("Main", 0), estimate)
    """

    def __init__(self, emulator: ErlangEmulator, max_agents: int = 500) -> None:
        """Initialize the estimator.

        Args:
            emulator: ErlangEmulator used to predict metrics.
            max_agents: Upper bound on the search per interval.
        """
        self.emulator = emulator
        self.max_agents = max_agents

    def _meets_constraints(self, metrics: IntervalMetrics, constraints: StaffingConstraints) -> bool:
        return (
            metrics.service_level >= constraints.min_service_level
            and metrics.avg_wait_time <= constraints.max_wait_time
            and metrics.utilization_rate <= constraints.max_occupancy
        )

    def estimate_interval(
        self,
        calls: float,
        avg_handle_time: float,
        avg_patience_time: float,
        interval_seconds: float,
        constraints: StaffingConstraints,
    ) -> tuple[int, IntervalMetrics, bool]:
        """Minimum headcount for one interval, with its metrics and feasibility."""
        if calls <= 0:
            metrics = self.emulator.simulate_interval(0, 0, avg_handle_time, avg_patience_time, interval_seconds)
            return 0, metrics, True

        for agents in range(1, self.max_agents + 1):
            metrics = self.emulator.simulate_interval(agents, calls, avg_handle_time, avg_patience_time, interval_seconds)
            if self._meets_constraints(metrics, constraints):
                return agents, metrics, True

        metrics = self.emulator.simulate_interval(
            self.max_agents, calls, avg_handle_time, avg_patience_time, interval_seconds
        )
        return self.max_agents, metrics, False

    def estimate(
        self,
        model: CallcenterModel,
        constraints: StaffingConstraints,
        interval_count: int = 48,
    ) -> StaffingEstimate:
        """Estimate the headcount per interval for the pooled demand of the model.

        Args:
            model: Model whose active caller groups define the demand.
            constraints: Service targets.
            interval_count: Resolution of the estimate (48 or 96).

        Returns:
            StaffingEstimate covering every interval of the day.
        """
        slot = interval_slot_seconds(interval_count)
        callers = [c for c in model.callers if c.active]
        if not callers:
            raise ValueError("The model contains no active caller group.")
        calls = np.array([rebin(c.calls_per_interval, interval_count) for c in callers])
        volume = calls.sum(axis=0)
        aht = np.array([c.avg_handle_time for c in callers])
        patience = np.array([c.avg_patience_time for c in callers])

        headcount = np.zeros(interval_count)
        feasible = np.ones(interval_count, dtype=bool)
        metrics = []
        for i in range(interval_count):
            if volume[i] > 0:
                weights = calls[:, i] / volume[i]
                interval_aht = float(weights @ aht)
                interval_patience = float(weights @ patience)
            else:
                interval_aht = float(aht.mean())
                interval_patience = float(patience.mean())
            agents, interval_metrics, ok = self.estimate_interval(
                float(volume[i]), interval_aht, interval_patience, slot, constraints
            )
            headcount[i] = agents
            feasible[i] = ok
            metrics.append(interval_metrics)
        return StaffingEstimate(headcount=headcount, metrics=metrics, feasible=feasible)


def apply_estimate(model: CallcenterModel, key: GroupKey, estimate: StaffingEstimate) -> CallcenterModel:
    """Return a clone of ``model`` whose group ``key`` staffs the estimate.

    Raises:
        ValueError: If the group does not exist.
    """
    result = model.clone()
    agents = result.agent_group(key)
    if agents is None:
        raise ValueError(f"Unknown agent group: {key}")
    replacement = AgentGroup(
        count_per_interval=estimate.headcount.copy(),
        minimum_shift_length=agents.minimum_shift_length,
        active=agents.active,
    )
    for callcenter in result.callcenters:
        if callcenter.name.lower() == key.callcenter.lower():
            callcenter.agents[key.group] = replacement
    return result
