"""
Optimizer Control Loop
======================

State machine that pairs the mutator with the simulation oracle and evaluator:

    IDLE --simulation_start--> DISPATCHED --(oracle done)--> EVALUATING
    EVALUATING --simulation_done == 0--> CONVERGED
    EVALUATING --simulation_done != 0--> simulation_start --> DISPATCHED
    any --cancel + poll--> CANCELLED
    oracle / preparation error --> FAILED

The loop never waits itself. A caller-owned poll loop (see ``runner.py``) calls
``poll()`` until the status is terminal.
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum

import numpy as np
import pandas as pd

from .archive import ArchiveEntry, ResultArchive
from .config import OptimizerConfig
from .errors import (
    ConfigErrorCode,
    OptimizerConfigError,
    PreparationError,
    SimulationError,
)
from .evaluator import evaluate
from .model import CallcenterModel, GroupKey
from .mutator import build_candidate
from .oracle import CarryOverBuilder, OracleHandle, SimulationOracle, no_carry_over
from .schedule import interval_label
from .state import NEEDS_INCREASE, OptimizerState, ResolvedTarget
from .target import GroupMode, IntervalMode, TargetSpec

logger = logging.getLogger(__name__)


class OptimizerStatus(Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    EVALUATING = "evaluating"
    CONVERGED = "converged"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OptimizerStatus.CONVERGED, OptimizerStatus.CANCELLED, OptimizerStatus.FAILED)


@dataclass
class OptimizerProgress:
    """Read-only snapshot for live charting, taken between two runs.

    Attributes:
        run_number: Number of the latest dispatched run.
        status: Status at snapshot time.
        schedule_baseline: Agents of the mutable groups in the base model.
        schedule_current: Agents in the latest candidate.
        schedule_last: Agents in the candidate before that.
        percent_factor: Current relative factor per interval.
        kpi_current: KPI per interval of the latest evaluated run.
        kpi_previous: KPI per interval of the run before that.
        locked_index_ascending: Ordered-mode cursor of the lower pass.
        locked_index_descending: Ordered-mode cursor of the upper pass.
    """
    run_number: int
    status: OptimizerStatus
    schedule_baseline: np.ndarray
    schedule_current: np.ndarray
    schedule_last: np.ndarray
    percent_factor: np.ndarray
    kpi_current: np.ndarray | None
    kpi_previous: np.ndarray | None
    locked_index_ascending: int
    locked_index_descending: int

    def to_frame(self) -> pd.DataFrame:
        n = len(self.schedule_baseline)
        empty = np.full(n, np.nan)
        return pd.DataFrame(
            {
                "baseline": self.schedule_baseline,
                "current": self.schedule_current,
                "last": self.schedule_last,
                "percent": self.percent_factor * 100,
                "kpi": self.kpi_current if self.kpi_current is not None else empty,
                "kpi_previous": self.kpi_previous if self.kpi_previous is not None else empty,
            },
            index=[interval_label(i, n) for i in range(n)],
        )


class CapacityOptimizer:
    """Iteratively adjusts staffing until the target KPI is reached.

    The base model is never modified; every run simulates an independent clone.

    Example:
        optimizer = CapacityOptimizer(model, target, oracle)
        optimizer.check_and_init()
        while not optimizer.poll().is_terminal:
            time.sleep(0.25)
        archive = optimizer.archive
    """

    def __init__(
        self,
        model: CallcenterModel,
        target: TargetSpec,
        oracle: SimulationOracle,
        carry_over_builder: CarryOverBuilder = no_carry_over,
        config: OptimizerConfig | None = None,
    ) -> None:
        self.model = model
        self.target = target
        self.oracle = oracle
        self.carry_over_builder = carry_over_builder
        self.config = config or OptimizerConfig()

        self.status = OptimizerStatus.IDLE
        self.state: OptimizerState | None = None
        self.message: str | None = None
        self.handle: OracleHandle | None = None
        self._next_direction = NEEDS_INCREASE
        self._cancel_requested = False
        self._started_at: float | None = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _canonical_agent_key(self, key: GroupKey) -> GroupKey | None:
        for callcenter in self.model.callcenters:
            if callcenter.name.lower() == key.callcenter.lower():
                if 0 <= key.group < len(callcenter.agents):
                    return GroupKey(callcenter.name, key.group)
                return None
        return None

    def _resolve_selection(self) -> frozenset[str]:
        spec = self.target
        if spec.group_mode is not GroupMode.SELECTION:
            return frozenset()
        wanted = {name.lower() for name in spec.selected_group_names}
        if spec.kpi.is_agent_metric:
            names = [c.name for c in self.model.callcenters if c.active and c.name.lower() in wanted]
        else:
            names = [c.name for c in self.model.callers if c.active and c.name.lower() in wanted]
        if not names:
            raise OptimizerConfigError(
                ConfigErrorCode.NO_GROUP_SELECTED,
                "None of the groups selected for the target exists as an active group in the model.",
            )
        return frozenset(names)

    def _resolve_mutable_groups(self) -> tuple[GroupKey, ...]:
        active = dict(self.model.iter_agent_groups())
        if self.target.change_all_groups:
            keys = tuple(active)
        else:
            resolved = []
            for key in self.target.change_group_keys:
                canonical = self._canonical_agent_key(key)
                if canonical is None or canonical not in active or not active[canonical].is_variable:
                    continue
                if canonical not in resolved:
                    resolved.append(canonical)
            keys = tuple(sorted(resolved, key=lambda k: list(active).index(k)))
        if not keys:
            raise OptimizerConfigError(
                ConfigErrorCode.NO_CHANGE_GROUP_SELECTED,
                "No active agent group with per-interval staffing is selected for changes.",
            )
        return keys

    def _check_band(self) -> None:
        spec = self.target
        if not spec.is_band:
            return
        if spec.kpi.larger_is_better and spec.target_max_value < spec.target_value:
            raise OptimizerConfigError(
                ConfigErrorCode.BOUND_ORDER_ERROR,
                f"The maximum value {spec.target_max_value} is smaller than the target value {spec.target_value}.",
            )
        if not spec.kpi.larger_is_better and spec.target_max_value > spec.target_value:
            raise OptimizerConfigError(
                ConfigErrorCode.BOUND_ORDER_ERROR,
                f"The minimum value {spec.target_max_value} is larger than the target value {spec.target_value}.",
            )
        for key, agents in self.model.iter_agent_groups():
            if not agents.is_variable:
                raise OptimizerConfigError(
                    ConfigErrorCode.FIXED_SHIFT_INCOMPATIBLE_WITH_BAND,
                    f"Agent group {key} has fixed working times and cannot be reduced by the optimizer.",
                )

    def _resolve_restrictions(self, interval_count: int) -> dict[GroupKey, tuple[np.ndarray, np.ndarray]]:
        spec = self.target
        if spec.group_restrictions and spec.interval_mode is IntervalMode.AVERAGE:
            raise OptimizerConfigError(
                ConfigErrorCode.RESTRICTIONS_REQUIRE_INTERVAL_MODE,
                "Agent group restrictions require an interval-wise optimization.",
            )
        restrictions = {}
        for restriction in spec.group_restrictions:
            canonical = self._canonical_agent_key(restriction.key)
            if canonical is None:
                raise OptimizerConfigError(
                    ConfigErrorCode.UNKNOWN_RESTRICTION_GROUP,
                    f"The restricted agent group {restriction.key} does not exist.",
                )
            agents = self.model.agent_group(canonical)
            if agents.active and not agents.is_variable:
                raise OptimizerConfigError(
                    ConfigErrorCode.RESTRICTION_ON_FIXED_SHIFT_GROUP,
                    f"The restricted agent group {canonical} has a fixed number of agents.",
                )
            if restriction.is_empty_range():
                raise OptimizerConfigError(
                    ConfigErrorCode.EMPTY_RESTRICTION_RANGE,
                    f"The restriction of agent group {canonical} has a minimum above its maximum.",
                )
            restrictions[canonical] = restriction.bounds(interval_count)
        return restrictions

    def _minimum_shift_lengths_active(self) -> bool:
        if self.model.minimum_shift_length > 1:
            return True
        return any(
            agents.is_variable and agents.minimum_shift_length > 1
            for _, agents in self.model.iter_agent_groups()
        )

    def _interval_count(self) -> int:
        n = self.model.interval_count()
        for restriction in self.target.group_restrictions:
            if max(len(restriction.min_per_interval), len(restriction.max_per_interval)) > n:
                n = 96
        return n

    def check_and_init(self) -> None:
        """Validate target and model, then prepare a fresh session.

        Raises:
            OptimizerConfigError: On the first failing check. The optimizer is
                left untouched in that case.
        """
        spec = self.target
        selected = self._resolve_selection()
        mutable = self._resolve_mutable_groups()
        self._check_band()
        if not any(spec.active_interval_mask):
            raise OptimizerConfigError(
                ConfigErrorCode.NO_INTERVAL_SELECTED,
                "At least one interval must be taken into account.",
            )
        n = self._interval_count()
        restrictions = self._resolve_restrictions(n)
        if spec.is_band and self._minimum_shift_lengths_active():
            raise OptimizerConfigError(
                ConfigErrorCode.MIN_SHIFT_LENGTH_INCOMPATIBLE_WITH_BAND,
                "A maximum value cannot be used while minimum shift lengths are defined.",
            )
        error = self.model.check_and_init(strict=self.config.strict_check)
        if error is not None:
            raise OptimizerConfigError(ConfigErrorCode.MODEL_INVALID, f"Preparation error:\n{error}")

        resolved = ResolvedTarget(
            spec=spec,
            interval_count=n,
            interval_mask=spec.interval_mask(n),
            selected_groups=selected,
            mutable_groups=mutable,
            restrictions=restrictions,
        )
        archive = ResultArchive(spec, max_entries=self.config.max_archive_entries)
        self.state = OptimizerState.initial(resolved, self.model, archive)
        self.status = OptimizerStatus.IDLE
        self.message = None
        self.handle = None
        self._next_direction = NEEDS_INCREASE
        self._cancel_requested = False
        self._started_at = None
        logger.info(
            "Optimizing %s for %s (target %s, %d intervals, %d mutable groups)",
            spec.kpi.value, self.model.name, spec.target_value, n, len(mutable),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_state(self) -> OptimizerState:
        if self.state is None:
            raise ValueError("Optimizer is not initialized. Call check_and_init() first.")
        return self.state

    def _fail(self, message: str) -> None:
        self.status = OptimizerStatus.FAILED
        self.message = message
        self.handle = None
        self._finish_archive()
        logger.error("Optimization failed: %s", message)

    def _finish_archive(self) -> None:
        state = self.state
        state.archive.close()
        state.archive.run_count = state.iteration_count
        if self._started_at is not None:
            state.archive.elapsed_seconds = time.monotonic() - self._started_at

    def _advance_stalled(self, state: OptimizerState, direction: int) -> OptimizerState:
        spec = state.target.spec
        n = state.target.interval_count
        if spec.interval_mode is not IntervalMode.PER_INTERVAL_ORDERED:
            return replace(state, last_run=True)
        if direction >= 0 and state.locked_index_ascending < n - 1:
            return replace(state, locked_index_ascending=state.locked_index_ascending + 1)
        if direction < 0 and state.locked_index_descending < n - 1:
            return replace(state, locked_index_descending=state.locked_index_descending + 1)
        return replace(state, last_run=True)

    def simulation_start(self, direction: int | None = None) -> bool:
        """Build the next candidate and hand it to the oracle.

        Args:
            direction: +1 to add agents, -1 to remove them. Defaults to the
                direction returned by the last ``simulation_done``.

        Returns:
            True if a run was dispatched, False if a pending cancel ended the session.

        Raises:
            PreparationError: If the candidate cannot be prepared or started.
        """
        state = self._require_state()
        if self.status not in (OptimizerStatus.IDLE, OptimizerStatus.EVALUATING):
            raise ValueError(f"Cannot start a simulation while the optimizer is {self.status.value}")
        if self._cancel_requested:
            self._finish_cancelled()
            return False
        max_runs = self.config.max_runs
        if max_runs is not None and state.iteration_count >= max_runs:
            self.message = f"Run budget of {max_runs} simulations exhausted."
            self._finish_cancelled()
            return False
        if direction is None:
            direction = self._next_direction

        state = replace(state, iteration_count=state.iteration_count + 1)
        if self._started_at is None:
            self._started_at = time.monotonic()

        candidate = build_candidate(state, direction, self.config.plateau_retry_limit)
        state = candidate.state
        if state.iteration_count > 1 and not candidate.changed:
            logger.debug("Run %d: candidate equals the previous one", state.iteration_count)
            state = self._advance_stalled(state, direction)
        self.state = state

        try:
            run_model = self.carry_over_builder(candidate.model, state.target.spec.carry_over)
        except PreparationError as e:
            self._fail(str(e))
            raise

        error = run_model.check_and_init(strict=self.config.strict_check)
        if error is None:
            error = self.oracle.check(run_model)
        if error is not None:
            message = f"Preparation error:\n{error}"
            self._fail(message)
            raise PreparationError(message)

        self.handle = self.oracle.run(run_model)
        self.handle.start(background=True)
        self.status = OptimizerStatus.DISPATCHED
        logger.info(
            "Run %d dispatched: %.0f agent slots (baseline %.0f)",
            state.iteration_count, state.schedule_current.sum(), state.schedule_baseline.sum(),
        )
        return True

    def simulation_done(self) -> int:
        """Collect and judge the finished run.

        Returns:
            0 when the target is met (or no further change is possible),
            otherwise the direction for the next run.

        Raises:
            SimulationError: If the oracle reports a fatal error.
        """
        state = self._require_state()
        if self.status is not OptimizerStatus.DISPATCHED:
            raise ValueError(f"No simulation in flight (optimizer is {self.status.value})")
        self.status = OptimizerStatus.EVALUATING

        try:
            error = self.handle.finalize_run()
            statistics = self.handle.collect_statistic() if error is None else None
        except Exception as e:
            self._fail(f"The simulation crashed: {e}")
            raise SimulationError(self.message) from e
        if error is None and statistics is None:
            error = "The simulation returned no statistics."
        if error is not None:
            self._fail(error)
            raise SimulationError(error)

        evaluation = evaluate(state, statistics)
        state = evaluation.state
        direction = 0 if state.last_run else evaluation.direction
        self.state = state

        state.archive.record(
            ArchiveEntry(
                run_number=state.iteration_count,
                statistics=statistics,
                schedule=state.schedule_current.copy(),
                kpi_per_interval=evaluation.kpi.per_interval.copy(),
            ),
            is_final=direction == 0,
        )
        self.handle = None

        if direction == 0:
            self.status = OptimizerStatus.CONVERGED
            if state.last_run and evaluation.direction != 0:
                self.message = "No further staffing change possible; target not reached."
            self._finish_archive()
            logger.info(
                "Optimization finished after %d runs (%.1f s)",
                state.iteration_count, state.archive.elapsed_seconds,
            )
        else:
            self._next_direction = direction
        return direction

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation; honoured at the next poll or start."""
        if self.status.is_terminal:
            return
        self._cancel_requested = True
        if reason is not None:
            self.message = reason
        if self.handle is not None:
            self.handle.cancel()

    def _finish_cancelled(self) -> None:
        self.status = OptimizerStatus.CANCELLED
        self.handle = None
        self._finish_archive()
        logger.info("Optimization cancelled after %d runs", self.state.iteration_count)

    def poll(self) -> OptimizerStatus:
        """Advance the state machine as far as possible without waiting.

        Raises:
            PreparationError, SimulationError: On fatal session errors.
        """
        self._require_state()
        if self.status.is_terminal:
            return self.status
        if self._cancel_requested:
            self._finish_cancelled()
            return self.status
        if self.status is OptimizerStatus.DISPATCHED:
            if self.handle.is_running():
                return self.status
            if self.simulation_done() == 0:
                return self.status
        self.simulation_start()
        return self.status

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def archive(self) -> ResultArchive:
        """Result archive of a finished session."""
        state = self._require_state()
        if not self.status.is_terminal:
            raise ValueError("The result archive is available once the optimization has finished.")
        return state.archive

    def progress(self) -> OptimizerProgress:
        state = self._require_state()
        return OptimizerProgress(
            run_number=state.iteration_count,
            status=self.status,
            schedule_baseline=state.schedule_baseline.copy(),
            schedule_current=state.schedule_current.copy(),
            schedule_last=state.schedule_last.copy(),
            percent_factor=state.percent_factor.copy(),
            kpi_current=None if state.last_kpi_per_interval is None else state.last_kpi_per_interval.copy(),
            kpi_previous=None if state.previous_kpi_per_interval is None else state.previous_kpi_per_interval.copy(),
            locked_index_ascending=state.locked_index_ascending,
            locked_index_descending=state.locked_index_descending,
        )
