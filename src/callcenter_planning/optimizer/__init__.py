"""
Capacity Optimizer
==================

Finds the agent staffing per interval that reaches a service quality target:

1. TargetSpec - What to reach (KPI, threshold, optional band) and what may change
2. CapacityOptimizer - Mutate -> simulate -> evaluate control loop
3. ErlangSimulationOracle - Analytic simulation backend (Erlang-A / Erlang-C)
4. InitialStaffingEstimator - Starting schedule from the demand alone
5. run_optimization - Poll driver with cancellation and budgets

Data Flow:
    CallcenterModel + TargetSpec -> CapacityOptimizer.check_and_init()
                                            |
            +-------------------------------+
            v
    build_candidate(state, direction) -> candidate model
            |
            v
    oracle.run(candidate).start() ... is_running() == False
            |
            v
    evaluate(state, statistics) -> direction (0 = done, +1 more agents, -1 fewer)
            |
            v
    ResultArchive (bounded, thinned)
"""

from .archive import ArchiveEntry, ResultArchive
from .config import OptimizerConfig, PLATEAU_RETRY_LIMIT
from .control_loop import CapacityOptimizer, OptimizerProgress, OptimizerStatus
from .erlang import EmulatorConfig, ErlangEmulator, ErlangSimulationOracle, IntervalMetrics
from .errors import (
    ConfigErrorCode,
    OptimizerConfigError,
    OptimizerError,
    PreparationError,
    SimulationError,
)
from .estimator import InitialStaffingEstimator, StaffingConstraints, StaffingEstimate, apply_estimate
from .model import AgentGroup, Callcenter, CallcenterModel, CallerGroup, GroupKey
from .runner import OptimizationOutcome, run_optimization
from .statistics import AgentStatistics, ClientStatistics, Statistics
from .target import GroupMode, GroupRestriction, IntervalMode, KpiProperty, TargetSpec

__all__ = [
    "AgentGroup",
    "AgentStatistics",
    "ArchiveEntry",
    "Callcenter",
    "CallcenterModel",
    "CallerGroup",
    "CapacityOptimizer",
    "ClientStatistics",
    "ConfigErrorCode",
    "EmulatorConfig",
    "ErlangEmulator",
    "ErlangSimulationOracle",
    "GroupKey",
    "GroupMode",
    "GroupRestriction",
    "InitialStaffingEstimator",
    "IntervalMetrics",
    "IntervalMode",
    "KpiProperty",
    "OptimizationOutcome",
    "OptimizerConfig",
    "OptimizerConfigError",
    "OptimizerError",
    "OptimizerProgress",
    "OptimizerStatus",
    "PLATEAU_RETRY_LIMIT",
    "PreparationError",
    "ResultArchive",
    "SimulationError",
    "StaffingConstraints",
    "StaffingEstimate",
    "Statistics",
    "TargetSpec",
    "apply_estimate",
    "run_optimization",
]
