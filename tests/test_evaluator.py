from dataclasses import replace

import numpy as np
import pytest

from callcenter_planning.optimizer import (
    GroupMode,
    IntervalMode,
    KpiProperty,
    Statistics,
    TargetSpec,
)
from callcenter_planning.optimizer.evaluator import aggregate_kpi, agent_kpi, client_kpi, evaluate
from callcenter_planning.optimizer.model import Callcenter, CallerGroup, AgentGroup
from callcenter_planning.optimizer.state import LOCKED, NEEDS_DECREASE, NEEDS_INCREASE
from conftest import agent_stats, client_stats, make_model

N = 48


def _target(mode=IntervalMode.PER_INTERVAL, **overrides) -> TargetSpec:
    values = dict(kpi=KpiProperty.ACCESSIBILITY_BY_CALL, target_value=0.8, interval_mode=mode)
    values.update(overrides)
    return TargetSpec(**values)


def _accessibility(share, calls=100.0, name="Callers") -> Statistics:
    share = np.full(N, float(share)) if np.ndim(share) == 0 else np.asarray(share, dtype=float)
    calls = np.full(N, float(calls)) if np.ndim(calls) == 0 else np.asarray(calls, dtype=float)
    clients = client_stats(name, calls, calls * share)
    agents = agent_stats("Main", np.full(N, 900.0), np.full(N, 900.0))
    return Statistics.from_groups([clients], [agents])


class TestKpiExtraction:
    def test_accessibility_excludes_carried_over_calls(self):
        clients = client_stats("A", [10.0] * N, [8.0] * N, calls_carried_over=80)
        series = client_kpi(clients, KpiProperty.ACCESSIBILITY_BY_CALL)
        assert series.value == pytest.approx(384 / 400)
        np.testing.assert_allclose(series.per_interval, 0.8)
        np.testing.assert_allclose(series.volume, 10.0)

    def test_accessibility_by_client_counts_retries(self):
        clients = client_stats("A", [10.0] * N, [5.0] * N, clients_retry=80)
        series = client_kpi(clients, KpiProperty.ACCESSIBILITY_BY_CLIENT)
        assert series.value == pytest.approx(240 / 560)

    def test_waiting_time_is_per_successful_call(self):
        clients = client_stats("A", [10.0] * N, [5.0] * N, waiting_time=[100.0] * N)
        series = client_kpi(clients, KpiProperty.WAITING_TIME_BY_CALL)
        assert series.value == pytest.approx(20.0)
        np.testing.assert_allclose(series.per_interval, 20.0)
        np.testing.assert_allclose(series.volume, 5.0)

    def test_service_level_variants(self):
        clients = client_stats("A", [10.0] * N, [5.0] * N, service_level=[4.0] * N)
        assert client_kpi(clients, KpiProperty.SERVICE_LEVEL_BY_CALL).value == pytest.approx(0.8)
        assert client_kpi(clients, KpiProperty.SERVICE_LEVEL_BY_CALL_ALL).value == pytest.approx(0.4)
        assert client_kpi(clients, KpiProperty.SERVICE_LEVEL_BY_CLIENT_ALL).value == pytest.approx(0.4)

    def test_zero_denominator_gives_zero(self):
        clients = client_stats("A", np.zeros(N), np.zeros(N))
        series = client_kpi(clients, KpiProperty.RESIDENCE_TIME_BY_CALL)
        assert series.value == 0.0
        assert not np.any(series.per_interval)

    def test_work_load(self):
        series = agent_kpi(agent_stats("Main", [600.0] * N, [1200.0] * N))
        assert series.value == pytest.approx(1 / 3)
        np.testing.assert_allclose(series.volume, 1800.0)

    def test_work_load_is_not_a_client_kpi(self):
        with pytest.raises(ValueError):
            client_kpi(client_stats("A", [1.0] * N, [1.0] * N), KpiProperty.WORK_LOAD)


class TestGroupModes:
    def _two_groups(self):
        first = client_stats("First", [10.0] * N, [9.0] * N)
        second_calls = np.full(N, 10.0)
        second_calls[0] = 0.0
        second = client_stats("Second", second_calls, second_calls * 0.5)
        return Statistics.from_groups([first, second], [agent_stats("Main", [1.0] * N, [1.0] * N)])

    def test_average_uses_global_record(self):
        series = aggregate_kpi(self._two_groups(), _target())
        assert series.per_interval[1] == pytest.approx(0.7)

    def test_worst_takes_minimum_where_group_has_volume(self):
        series = aggregate_kpi(self._two_groups(), _target(group_mode=GroupMode.WORST))
        assert series.per_interval[1] == pytest.approx(0.5)
        assert series.per_interval[0] == pytest.approx(0.9)
        assert series.volume[1] == 20.0
        assert series.value == pytest.approx(0.5)

    def test_selection_restricts_groups(self):
        target = _target(group_mode=GroupMode.SELECTION, selected_group_names=("First",))
        series = aggregate_kpi(self._two_groups(), target, frozenset({"First"}))
        np.testing.assert_allclose(series.per_interval, 0.9)

    def test_worst_takes_maximum_for_smaller_is_better(self):
        first = client_stats("First", [10.0] * N, [10.0] * N, waiting_time=[100.0] * N)
        second = client_stats("Second", [10.0] * N, [10.0] * N, waiting_time=[300.0] * N)
        statistics = Statistics.from_groups([first, second], [agent_stats("Main", [1.0] * N, [1.0] * N)])
        target = _target(kpi=KpiProperty.WAITING_TIME_BY_CALL, target_value=20, group_mode=GroupMode.WORST)
        np.testing.assert_allclose(aggregate_kpi(statistics, target).per_interval, 30.0)

    def test_worst_includes_group_without_successes(self):
        answered = client_stats("Answered", [10.0] * N, [9.0] * N)
        unanswered = client_stats("Unanswered", [10.0] * N, [0.0] * N)
        statistics = Statistics.from_groups([answered, unanswered], [agent_stats("Main", [1.0] * N, [1.0] * N)])
        series = aggregate_kpi(statistics, _target(group_mode=GroupMode.WORST))
        assert series.value == 0.0
        np.testing.assert_allclose(series.per_interval, 0.0)


class TestAverageMode:
    def test_below_target_flags_everything(self, initialized):
        state = initialized(make_model(), _target(IntervalMode.AVERAGE))
        result = evaluate(state, _accessibility(0.6))
        assert result.direction == NEEDS_INCREASE
        assert np.all(result.state.interval_needs_change == NEEDS_INCREASE)

    def test_target_reached(self, initialized):
        state = initialized(make_model(), _target(IntervalMode.AVERAGE))
        result = evaluate(state, _accessibility(0.8))
        assert result.direction == 0
        assert np.all(result.state.interval_needs_change == LOCKED)

    def test_partial_mask_averages_active_intervals(self, initialized):
        mask = [False] * N
        mask[10] = mask[11] = True
        share = np.full(N, 0.2)
        share[10], share[11] = 0.9, 0.8
        state = initialized(make_model(), _target(IntervalMode.AVERAGE, active_interval_mask=mask))
        assert evaluate(state, _accessibility(share)).direction == 0

        share[11] = 0.6
        result = evaluate(state, _accessibility(share))
        assert result.direction == NEEDS_INCREASE
        assert set(np.flatnonzero(result.state.interval_needs_change)) == {10, 11}

    def test_no_volume_counts_as_met(self, initialized):
        state = initialized(make_model(), _target(IntervalMode.AVERAGE))
        assert evaluate(state, _accessibility(0.0, calls=0.0)).direction == 0

    def test_unanswered_group_blocks_worst_mode(self, initialized):
        model = make_model()
        model.callers.append(CallerGroup("Unanswered", calls_per_interval=np.full(N, 10.0)))
        state = initialized(model, _target(IntervalMode.AVERAGE, group_mode=GroupMode.WORST))
        answered = client_stats("Callers", [10.0] * N, [9.0] * N)
        unanswered = client_stats("Unanswered", [10.0] * N, [0.0] * N)
        statistics = Statistics.from_groups([answered, unanswered], [agent_stats("Main", [1.0] * N, [1.0] * N)])
        result = evaluate(state, statistics)
        assert result.direction == NEEDS_INCREASE
        assert np.all(result.state.interval_needs_change == NEEDS_INCREASE)


class TestPerIntervalMode:
    def test_flags_unmet_intervals(self, initialized):
        share = np.full(N, 0.9)
        share[[3, 30]] = 0.5
        state = initialized(make_model(), _target())
        result = evaluate(state, _accessibility(share))
        assert result.direction == NEEDS_INCREASE
        assert set(np.flatnonzero(result.state.interval_needs_change)) == {3, 30}

    def test_zero_volume_interval_never_blocks(self, initialized):
        share = np.full(N, 0.9)
        calls = np.full(N, 100.0)
        share[5] = 0.0
        calls[5] = 0.0
        state = initialized(make_model(), _target())
        result = evaluate(state, _accessibility(share, calls))
        assert result.direction == 0

    def test_inactive_intervals_are_ignored(self, initialized):
        mask = [True] * N
        mask[3] = False
        share = np.full(N, 0.9)
        share[3] = 0.1
        state = initialized(make_model(), _target(active_interval_mask=mask))
        assert evaluate(state, _accessibility(share)).direction == 0

    def test_saturated_interval_counts_as_met(self, initialized):
        share = np.full(N, 0.9)
        share[3] = 0.1
        state = initialized(make_model(), _target())
        key = state.target.mutable_groups[0]
        permitted = state.change_permitted[key].copy()
        permitted[3] = False
        state = replace(state, change_permitted={key: permitted})
        assert evaluate(state, _accessibility(share)).direction == 0

    def test_smaller_is_better(self, initialized):
        clients = client_stats("Callers", [10.0] * N, [10.0] * N, waiting_time=[300.0] * N)
        statistics = Statistics.from_groups([clients], [agent_stats("Main", [1.0] * N, [1.0] * N)])
        state = initialized(make_model(), _target(kpi=KpiProperty.WAITING_TIME_BY_CALL, target_value=30))
        assert evaluate(state, statistics).direction == 0
        state = initialized(make_model(), _target(kpi=KpiProperty.WAITING_TIME_BY_CALL, target_value=20))
        assert evaluate(state, statistics).direction == NEEDS_INCREASE


class TestOrderedMode:
    def test_cursor_jumps_over_satisfied_prefix(self, initialized):
        share = np.full(N, 0.5)
        share[:11] = 0.9
        state = initialized(make_model(), _target(IntervalMode.PER_INTERVAL_ORDERED))
        result = evaluate(state, _accessibility(share))
        assert result.direction == NEEDS_INCREASE
        assert result.state.locked_index_ascending == 10
        assert list(np.flatnonzero(result.state.interval_needs_change)) == [11]

    def test_cursor_never_moves_back(self, initialized):
        share = np.full(N, 0.5)
        share[:11] = 0.9
        state = initialized(make_model(), _target(IntervalMode.PER_INTERVAL_ORDERED))
        state = evaluate(state, _accessibility(share)).state
        result = evaluate(state, _accessibility(0.1))
        assert result.state.locked_index_ascending == 10
        assert list(np.flatnonzero(result.state.interval_needs_change)) == [11]

    def test_saturated_interval_is_skipped(self, initialized):
        share = np.full(N, 0.9)
        share[2] = 0.1
        share[5] = 0.1
        state = initialized(make_model(), _target(IntervalMode.PER_INTERVAL_ORDERED))
        key = state.target.mutable_groups[0]
        permitted = np.ones(N, dtype=bool)
        permitted[2] = False
        state = replace(state, change_permitted={key: permitted})
        result = evaluate(state, _accessibility(share))
        assert result.state.locked_index_ascending == 4
        assert list(np.flatnonzero(result.state.interval_needs_change)) == [5]

    def test_met_once_cursor_passes_last_interval(self, initialized):
        state = initialized(make_model(), _target(IntervalMode.PER_INTERVAL_ORDERED))
        result = evaluate(state, _accessibility(0.9))
        assert result.direction == 0
        assert result.state.locked_index_ascending == N - 1


class TestBand:
    def test_upper_bound_violation_flags_decrease(self, initialized):
        state = initialized(make_model(), _target(target_max_value=0.9))
        share = np.full(N, 0.85)
        share[7] = 0.97
        result = evaluate(state, _accessibility(share))
        assert result.direction == NEEDS_DECREASE
        assert result.state.interval_needs_change[7] == NEEDS_DECREASE
        assert np.count_nonzero(result.state.interval_needs_change) == 1

    def test_lower_bound_first(self, initialized):
        state = initialized(make_model(), _target(target_max_value=0.9))
        share = np.full(N, 0.95)
        share[1] = 0.5
        result = evaluate(state, _accessibility(share))
        assert result.direction == NEEDS_INCREASE
        assert result.state.interval_needs_change[1] == NEEDS_INCREASE
        assert result.state.interval_needs_change[2] == LOCKED

    @pytest.mark.parametrize("mode", list(IntervalMode))
    def test_acceptance_implies_both_thresholds(self, initialized, mode):
        low, high = 0.8, 0.9
        state = initialized(make_model(), _target(mode, target_value=low, target_max_value=high))
        for value in np.linspace(0.0125, 0.9875, 40):
            result = evaluate(state, _accessibility(value))
            if result.direction == 0:
                assert low <= value <= high

    def test_ordered_upper_pass_keeps_added_agents(self, initialized):
        state = initialized(make_model(), _target(IntervalMode.PER_INTERVAL_ORDERED, target_max_value=0.9))
        current = state.schedule_current.copy()
        current[0] = 1.0
        state = replace(state, schedule_current=current)
        share = np.full(N, 0.85)
        share[0] = 0.97
        share[4] = 0.97
        result = evaluate(state, _accessibility(share))
        assert result.direction == NEEDS_DECREASE
        assert result.state.locked_index_descending == 3
        assert list(np.flatnonzero(result.state.interval_needs_change)) == [4]

    def test_work_load_band(self, initialized):
        target = _target(kpi=KpiProperty.WORK_LOAD, target_value=0.85, target_max_value=0.6)
        state = initialized(make_model(), target)
        low_load = Statistics.from_groups(
            [client_stats("Callers", [1.0] * N, [1.0] * N)],
            [agent_stats("Main", [450.0] * N, [1350.0] * N)],
        )
        assert evaluate(state, low_load).direction == NEEDS_DECREASE


class TestHistory:
    def test_kpi_history_shifts(self, initialized):
        state = initialized(make_model(), _target())
        state = evaluate(state, _accessibility(0.5)).state
        state = evaluate(state, _accessibility(0.7)).state
        np.testing.assert_allclose(state.previous_kpi_per_interval, 0.5)
        np.testing.assert_allclose(state.last_kpi_per_interval, 0.7)

    def test_lower_resolution_statistics_are_stretched(self, initialized):
        model = make_model(agents=np.full(96, 5.0), calls=np.full(96, 50.0), n=96)
        state = initialized(model, _target())
        share = np.full(N, 0.9)
        share[0] = 0.1
        result = evaluate(state, _accessibility(share))
        assert len(result.state.last_kpi_per_interval) == 96
        assert list(np.flatnonzero(result.state.interval_needs_change)) == [0, 1]


def test_multi_group_model_selection(initialized):
    model = make_model()
    model.callers.append(CallerGroup("Other", calls_per_interval=np.full(N, 10.0)))
    model.callcenters.append(Callcenter("Branch", agents=[AgentGroup(count_per_interval=np.ones(N))]))
    target = _target(group_mode=GroupMode.SELECTION, selected_group_names=("other",))
    state = initialized(model, target)
    assert state.target.selected_groups == frozenset({"Other"})
    good = client_stats("Callers", [10.0] * N, [10.0] * N)
    bad = client_stats("Other", [10.0] * N, [1.0] * N)
    statistics = Statistics.from_groups([good, bad], [agent_stats("Main", [1.0] * N, [1.0] * N)])
    assert evaluate(state, statistics).direction == NEEDS_INCREASE
