"""
Run a capacity optimization on a demo call center:
  1. Build a one-day model with two caller groups and one variable agent group
  2. Estimate a starting schedule with the InitialStaffingEstimator
  3. Optimize per interval (ordered) towards a service level target
  4. Print the schedule and the archived runs

Usage:
    cd scripts/
    python run_optimizer.py
"""

import logging
import sys
from pathlib import Path

import numpy as np
import pandas as pd

# Add src to the Python path so callcenter_planning is importable
_SRC = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(_SRC))

from callcenter_planning.optimizer import (
    AgentGroup,
    Callcenter,
    CallcenterModel,
    CallerGroup,
    CapacityOptimizer,
    EmulatorConfig,
    ErlangEmulator,
    ErlangSimulationOracle,
    GroupKey,
    InitialStaffingEstimator,
    IntervalMode,
    KpiProperty,
    OptimizerConfig,
    StaffingConstraints,
    TargetSpec,
    apply_estimate,
    run_optimization,
)

# Calls per half hour, 08:00-18:00
OPENING_PROFILE = [
    0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
    20, 35, 50, 65, 80, 90, 95, 90, 70, 60, 75, 85, 80, 70, 60, 50,
    40, 30, 25, 20, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
]


def build_model() -> CallcenterModel:
    profile = np.array(OPENING_PROFILE, dtype=float)
    return CallcenterModel(
        name="Demo",
        callers=[
            CallerGroup("Private", calls_per_interval=profile * 0.7, avg_handle_time=240, avg_patience_time=120),
            CallerGroup("Business", calls_per_interval=profile * 0.3, avg_handle_time=420, avg_patience_time=300),
        ],
        callcenters=[
            Callcenter("Main", agents=[AgentGroup(count_per_interval=np.zeros(48))]),
        ],
    )


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # ---------------------------------------------------------------
    # Step 1: Build the model
    # ---------------------------------------------------------------
    print("=" * 70)
    print("STEP 1: BUILDING DEMO MODEL")
    print("=" * 70)

    model = build_model()
    print(f"\n  Caller groups: {', '.join(c.name for c in model.callers)}")
    print(f"  Calls per day: {sum(c.calls_per_interval.sum() for c in model.callers):.0f}")

    # ---------------------------------------------------------------
    # Step 2: Initial staffing estimate
    # ---------------------------------------------------------------
    print("\n" + "=" * 70)
    print("STEP 2: ESTIMATING INITIAL STAFFING")
    print("=" * 70)

    emulator_config = EmulatorConfig(sla_threshold_seconds=20)
    estimator = InitialStaffingEstimator(ErlangEmulator(emulator_config))
    constraints = StaffingConstraints(min_service_level=0.60, max_wait_time=120.0, max_occupancy=0.95)
    estimate = estimator.estimate(model, constraints)
    model = apply_estimate(model, GroupKey("Main", 0), estimate)
    print(f"\n  Agent-intervals in estimate: {estimate.headcount.sum():.0f}")
    print(f"  Peak agents:                 {estimate.headcount.max():.0f}")

    # ---------------------------------------------------------------
    # Step 3: Optimize
    # ---------------------------------------------------------------
    print("\n" + "=" * 70)
    print("STEP 3: OPTIMIZING TOWARDS 80% SERVICE LEVEL PER INTERVAL")
    print("=" * 70)

    target = TargetSpec(
        kpi=KpiProperty.SERVICE_LEVEL_BY_CALL_ALL,
        target_value=0.80,
        interval_mode=IntervalMode.PER_INTERVAL_ORDERED,
        change_step_fraction=0.05,
    )
    with ErlangSimulationOracle(emulator_config) as oracle:
        optimizer = CapacityOptimizer(model, target, oracle, config=OptimizerConfig(poll_interval_seconds=0.01, max_runs=500))
        outcome = run_optimization(optimizer)

    # ---------------------------------------------------------------
    # Step 4: Print results
    # ---------------------------------------------------------------
    print(f"\n{'='*70}")
    print("  RESULT")
    print(f"{'='*70}")
    print(f"  Status   : {outcome.status.value}")
    print(f"  Runs     : {outcome.run_count}")
    print(f"  Elapsed  : {outcome.elapsed_seconds:.1f}s")
    if outcome.message:
        print(f"  Message  : {outcome.message}")

    schedule = optimizer.progress().to_frame()
    open_hours = schedule[schedule["baseline"] + schedule["current"] > 0]
    with pd.option_context("display.max_rows", None, "display.width", 120):
        print("\n" + open_hours[["baseline", "current", "percent", "kpi"]].round(3).to_string())
        print("\n" + outcome.archive.to_frame().round(3).to_string(index=False))


if __name__ == "__main__":
    main()
