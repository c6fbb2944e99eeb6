"""
Result Evaluator
================

Turns the statistics of one run into a verdict for the next one:

    statistics --[kpi]--> per-group (value, per-interval KPI, volume)
               --[group mode]--> one pseudo-series
               --[interval mode]--> flags per interval + overall "met"
               --[band]--> second pass against target_max_value

Intervals without volume carry no signal and always count as met.
"""

import logging
from dataclasses import dataclass, replace

import numpy as np

from .schedule import safe_divide, spread, stretch
from .state import LOCKED, NEEDS_DECREASE, NEEDS_INCREASE, OptimizerState
from .statistics import AgentStatistics, ClientStatistics, Statistics
from .target import GroupMode, IntervalMode, KpiProperty, TargetSpec

logger = logging.getLogger(__name__)


@dataclass
class KpiSeries:
    """A KPI for one group (or the aggregate of several).

    Attributes:
        value: Whole-day value.
        per_interval: KPI per interval.
        volume: Denominator per interval; 0 means "no data".
    """
    value: float
    per_interval: np.ndarray
    volume: np.ndarray


@dataclass
class Evaluation:
    """Outcome of one evaluation.

    Attributes:
        direction: 0 when the target is met, +1 to add agents, -1 to remove them.
        state: Successor state with new flags, cursors and KPI history.
        kpi: The aggregated series the verdict was based on.
    """
    direction: int
    state: OptimizerState
    kpi: KpiSeries


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def client_kpi(clients: ClientStatistics, kpi: KpiProperty) -> KpiSeries:
    """Extract a caller-side KPI from one client statistics record."""
    calls = clients.calls_per_interval
    calls_success = clients.calls_success_per_interval
    customers = clients.clients_per_interval
    customers_success = clients.clients_success_per_interval

    if kpi is KpiProperty.ACCESSIBILITY_BY_CALL:
        value = _ratio(clients.calls_success, clients.calls - clients.calls_carried_over)
        return KpiSeries(value, safe_divide(calls_success, calls), calls.copy())
    if kpi is KpiProperty.ACCESSIBILITY_BY_CLIENT:
        value = _ratio(
            clients.clients_success,
            clients.clients + clients.clients_retry - clients.clients_carried_over,
        )
        return KpiSeries(value, safe_divide(customers_success, customers), customers.copy())

    if kpi is KpiProperty.WAITING_TIME_BY_CALL:
        numerator, denominator = clients.calls_waiting_time_per_interval, calls_success
    elif kpi is KpiProperty.WAITING_TIME_BY_CLIENT:
        numerator, denominator = clients.clients_waiting_time_per_interval, customers_success
    elif kpi is KpiProperty.RESIDENCE_TIME_BY_CALL:
        numerator, denominator = clients.calls_residence_time_per_interval, calls_success
    elif kpi is KpiProperty.RESIDENCE_TIME_BY_CLIENT:
        numerator, denominator = clients.clients_residence_time_per_interval, customers_success
    elif kpi is KpiProperty.SERVICE_LEVEL_BY_CALL:
        numerator, denominator = clients.calls_service_level_per_interval, calls_success
    elif kpi is KpiProperty.SERVICE_LEVEL_BY_CALL_ALL:
        numerator, denominator = clients.calls_service_level_per_interval, calls
    elif kpi is KpiProperty.SERVICE_LEVEL_BY_CLIENT:
        numerator, denominator = clients.clients_service_level_per_interval, customers_success
    elif kpi is KpiProperty.SERVICE_LEVEL_BY_CLIENT_ALL:
        numerator, denominator = clients.clients_service_level_per_interval, customers
    else:
        raise ValueError(f"{kpi} is not a caller-side KPI")

    value = _ratio(float(numerator.sum()), float(denominator.sum()))
    return KpiSeries(value, safe_divide(numerator, denominator), np.asarray(denominator, dtype=float).copy())


def agent_kpi(agents: AgentStatistics) -> KpiSeries:
    """Work load: busy time over present time."""
    busy = agents.busy_per_interval
    present = agents.present_per_interval
    value = _ratio(float(busy.sum()), float(present.sum()))
    return KpiSeries(value, safe_divide(busy, present), present.copy())


def _series_for(statistics: Statistics, kpi: KpiProperty, global_only: bool) -> list[tuple[str, KpiSeries]]:
    if kpi.is_agent_metric:
        records = [statistics.agents_global] if global_only else statistics.agents_per_callcenter
        return [(record.name, agent_kpi(record)) for record in records]
    records = [statistics.clients_global] if global_only else statistics.clients_per_type
    return [(record.name, client_kpi(record, kpi)) for record in records]


def aggregate_kpi(statistics: Statistics, spec: TargetSpec, selected_groups: frozenset[str] = frozenset()) -> KpiSeries:
    """Combine the groups according to the target's group mode.

    In WORST and SELECTION mode the per-interval value of the aggregate is the
    worst value over the groups that have volume in that interval, and the
    whole-day value is the worst over the groups with any volume. Volumes add up.
    """
    if spec.group_mode is GroupMode.AVERAGE:
        return _series_for(statistics, spec.kpi, global_only=True)[0][1]

    groups = _series_for(statistics, spec.kpi, global_only=False)
    if spec.group_mode is GroupMode.SELECTION:
        wanted = {name.lower() for name in selected_groups}
        groups = [(name, series) for name, series in groups if name.lower() in wanted]

    n = statistics.interval_count
    larger = spec.kpi.larger_is_better
    value = 1.0 if larger else 0.0
    per_interval = np.ones(n) if larger else np.zeros(n)
    volume = np.zeros(n)
    for _, series in groups:
        volume += series.volume
        has_volume = series.volume > 0
        if not has_volume.any():
            continue
        if larger:
            value = min(value, series.value)
            per_interval[has_volume] = np.minimum(per_interval[has_volume], series.per_interval[has_volume])
        else:
            value = max(value, series.value)
            per_interval[has_volume] = np.maximum(per_interval[has_volume], series.per_interval[has_volume])
    return KpiSeries(value, per_interval, volume)


def _at_resolution(series: KpiSeries, interval_count: int) -> KpiSeries:
    if len(series.per_interval) == interval_count:
        return series
    if len(series.per_interval) > interval_count:
        raise ValueError(
            f"Statistics have {len(series.per_interval)} intervals, schedule has {interval_count}"
        )
    return KpiSeries(
        series.value,
        stretch(series.per_interval, interval_count),
        spread(series.volume, interval_count),
    )


def _compare(values, threshold: float, larger_is_better: bool, upper: bool) -> np.ndarray:
    # lower pass: reach the target; upper pass: do not overshoot target_max_value
    if larger_is_better:
        return values <= threshold if upper else values >= threshold
    return values >= threshold if upper else values <= threshold


def _intervals_met(series: KpiSeries, threshold: float, larger_is_better: bool, upper: bool) -> np.ndarray:
    return (series.volume <= 0) | _compare(series.per_interval, threshold, larger_is_better, upper)


def _masked_value(series: KpiSeries, mask: np.ndarray) -> tuple[float, float]:
    usable = mask & (series.volume > 0)
    if not np.any(usable):
        return 0.0, 0.0
    return float(np.mean(series.per_interval[usable])), float(series.volume[usable].sum())


@dataclass
class _Pass:
    met: bool
    flags: np.ndarray
    cursor: int


def _check_pass(
    state: OptimizerState,
    series: KpiSeries,
    threshold: float,
    upper: bool,
    cursor: int,
) -> _Pass:
    target = state.target
    spec = target.spec
    n = target.interval_count
    mask = target.interval_mask
    larger = spec.kpi.larger_is_better
    allowed = state.change_allowed_mask()
    flag = NEEDS_DECREASE if upper else NEEDS_INCREASE

    if spec.interval_mode is IntervalMode.AVERAGE:
        if spec.all_intervals_active:
            value, volume = series.value, float(series.volume.sum())
        else:
            value, volume = _masked_value(series, mask)
        met = volume <= 0 or bool(_compare(value, threshold, larger, upper))
        if met or spec.all_intervals_active:
            flags = np.full(n, LOCKED if met else flag, dtype=np.int8)
        else:
            flags = np.where(mask & allowed, flag, LOCKED).astype(np.int8)
        return _Pass(met, flags, cursor)

    ok = _intervals_met(series, threshold, larger, upper) | ~mask

    if spec.interval_mode is IntervalMode.PER_INTERVAL:
        ok |= ~allowed
        flags = np.where(ok, LOCKED, flag).astype(np.int8)
        return _Pass(bool(ok.all()), flags, cursor)

    if upper:
        # intervals already staffed above the baseline are not taken back
        ok |= state.schedule_current > state.schedule_baseline
    flags = np.full(n, LOCKED, dtype=np.int8)
    met = True
    index = cursor + 1
    while index < n:
        if ok[index] or not allowed[index]:
            cursor = index
            index += 1
            continue
        flags[index] = flag
        met = False
        break
    return _Pass(met, flags, cursor)


def evaluate(state: OptimizerState, statistics: Statistics) -> Evaluation:
    """Judge the statistics of the current candidate.

    Args:
        state: State of the run that produced ``statistics``.
        statistics: Raw result of that run.

    Returns:
        Evaluation with the direction for the next run and the successor state.
    """
    target = state.target
    spec = target.spec
    series = _at_resolution(aggregate_kpi(statistics, spec, target.selected_groups), target.interval_count)

    ascending = state.locked_index_ascending
    descending = state.locked_index_descending
    lower = _check_pass(state, series, spec.target_value, upper=False, cursor=ascending)
    flags, ascending = lower.flags, lower.cursor
    direction = 0 if lower.met else NEEDS_INCREASE

    if lower.met and spec.is_band:
        upper = _check_pass(state, series, spec.target_max_value, upper=True, cursor=descending)
        flags, descending = upper.flags, upper.cursor
        direction = 0 if upper.met else NEEDS_DECREASE

    if ascending != state.locked_index_ascending or descending != state.locked_index_descending:
        logger.debug(
            "Run %d: locked intervals up to %d (ascending) / %d (descending)",
            state.iteration_count, ascending, descending,
        )

    new_state = replace(
        state,
        interval_needs_change=flags,
        locked_index_ascending=ascending,
        locked_index_descending=descending,
        previous_kpi_per_interval=state.last_kpi_per_interval,
        last_kpi_per_interval=series.per_interval.copy(),
    )
    return Evaluation(direction=direction, state=new_state, kpi=series)
