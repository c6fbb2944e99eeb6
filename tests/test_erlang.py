import time

import numpy as np
import pytest

from callcenter_planning.optimizer import (
    AgentGroup,
    Callcenter,
    CallcenterModel,
    CallerGroup,
    CapacityOptimizer,
    EmulatorConfig,
    ErlangEmulator,
    ErlangSimulationOracle,
    IntervalMode,
    KpiProperty,
    OptimizerConfig,
    TargetSpec,
    run_optimization,
)
from conftest import make_model

SLOT = 1800.0


@pytest.fixture
def emulator():
    return ErlangEmulator()


class TestIntervalMetrics:
    def test_no_calls(self, emulator):
        metrics = emulator.simulate_interval(5, 0, 300, 180, SLOT)
        assert metrics.service_level == 1.0
        assert metrics.calls_handled == 0
        assert metrics.utilization_rate == 0

    def test_no_agents(self, emulator):
        metrics = emulator.simulate_interval(0, 40, 300, 180, SLOT)
        assert metrics.abandonment_rate == 1.0
        assert metrics.calls_abandoned == 40
        assert metrics.calls_handled == 0

    def test_more_agents_serve_better(self, emulator):
        results = [emulator.simulate_interval(n, 100, 300, 180, SLOT) for n in (10, 15, 20, 25, 30)]
        abandonment = [m.abandonment_rate for m in results]
        service = [m.service_level for m in results]
        assert abandonment == sorted(abandonment, reverse=True)
        assert service == sorted(service)
        assert service[-1] > service[2]

    def test_abandonment_is_monotonic_across_saturation(self, emulator):
        # traffic of 16.7 Erlang
        abandonment = [emulator.simulate_interval(n, 100, 300, 180, SLOT).abandonment_rate for n in range(10, 31)]
        assert all(a >= b for a, b in zip(abandonment, abandonment[1:]))

    def test_counts_are_consistent(self, emulator):
        metrics = emulator.simulate_interval(18, 100, 300, 180, SLOT)
        assert metrics.calls_handled + metrics.calls_abandoned == pytest.approx(100)
        assert 0 <= metrics.utilization_rate <= 1
        assert 0 <= metrics.service_level <= 1

    def test_erlang_c(self, emulator):
        assert emulator._erlang_c(3, 2.0) == pytest.approx(4 / 9)
        assert emulator._erlang_c(2, 2.0) == 1.0
        assert emulator._erlang_c(0, 1.0) == 1.0
        assert 0 < emulator._erlang_c(400, 350.0) < 1

    def test_erlang_c_mode(self):
        emulator = ErlangEmulator(EmulatorConfig(model="erlang_c"))
        metrics = emulator.simulate_interval(25, 100, 300, 180, SLOT)
        assert 0 < metrics.service_level <= 1
        assert metrics.abandonment_rate < 0.1

    def test_unknown_model_rejected(self):
        with pytest.raises(ValueError):
            EmulatorConfig(model="erlang_x")


class TestSimulateModel:
    def test_records(self, emulator):
        statistics = emulator.simulate_model(make_model(agents=20.0))
        assert [c.name for c in statistics.clients_per_type] == ["Callers"]
        assert [a.name for a in statistics.agents_per_callcenter] == ["Main"]
        assert statistics.interval_count == 48
        assert statistics.clients_global.calls == pytest.approx(4800)
        assert statistics.clients_global.calls_success <= statistics.clients_global.calls
        np.testing.assert_allclose(statistics.agents_global.present_per_interval, np.full(48, 20 * SLOT))

    def test_work_is_shared_by_headcount(self, emulator):
        model = CallcenterModel(
            name="Two sites",
            callers=[CallerGroup("Callers", np.full(48, 100.0))],
            callcenters=[
                Callcenter("Main", agents=[AgentGroup(count_per_interval=np.full(48, 10.0))]),
                Callcenter("Branch", agents=[AgentGroup(count_per_interval=np.full(48, 30.0))]),
            ],
        )
        statistics = emulator.simulate_model(model)
        main, branch = statistics.agents_per_callcenter
        np.testing.assert_allclose(branch.work_per_interval, 3 * main.work_per_interval)

    def test_hourly_demand_is_spread(self, emulator):
        model = make_model(agents=20.0)
        model.callers[0].calls_per_interval = np.full(24, 200.0)
        statistics = emulator.simulate_model(model)
        np.testing.assert_allclose(statistics.clients_global.calls_per_interval, np.full(48, 100.0))

    def test_inactive_callers_are_ignored(self, emulator):
        model = make_model(agents=20.0)
        model.callers.append(CallerGroup("Sleeping", np.full(48, 50.0), active=False))
        statistics = emulator.simulate_model(model)
        assert len(statistics.clients_per_type) == 1


class TestOracle:
    def test_background_run(self):
        with ErlangSimulationOracle() as oracle:
            handle = oracle.run(make_model(agents=20.0))
            handle.start()
            while handle.is_running():
                time.sleep(0.001)
            assert handle.finalize_run() is None
            assert handle.collect_statistic().clients_global.calls == pytest.approx(4800)

    def test_foreground_run(self):
        with ErlangSimulationOracle() as oracle:
            handle = oracle.run(make_model(agents=20.0))
            handle.start(background=False)
            assert not handle.is_running()
            assert handle.finalize_run() is None
            assert handle.collect_statistic() is not None

    def test_cancelled_run(self):
        with ErlangSimulationOracle() as oracle:
            handle = oracle.run(make_model())
            handle.start(background=False)
            handle.cancel()
            assert handle.finalize_run() == "The simulation was cancelled."

    def test_unexpected_error_is_reported(self, monkeypatch):
        def crash(model):
            raise RuntimeError("worker died")

        with ErlangSimulationOracle() as oracle:
            monkeypatch.setattr(oracle.emulator, "simulate_model", crash)
            handle = oracle.run(make_model())
            handle.start()
            while handle.is_running():
                time.sleep(0.001)
            assert handle.finalize_run() == "worker died"
            assert handle.collect_statistic() is None

    def test_check(self):
        oracle = ErlangSimulationOracle()
        model = make_model()
        assert oracle.check(model) is None
        model.callers[0].active = False
        assert oracle.check(model) == "No active caller group to simulate."


def test_optimizer_reaches_accessibility_target():
    target = TargetSpec(kpi=KpiProperty.ACCESSIBILITY_BY_CALL, target_value=0.95, interval_mode=IntervalMode.AVERAGE)
    with ErlangSimulationOracle() as oracle:
        optimizer = CapacityOptimizer(make_model(agents=10.0), target, oracle, config=OptimizerConfig(max_runs=200))
        outcome = run_optimization(optimizer, sleep=lambda s: time.sleep(0.001))
    assert outcome.converged
    final = outcome.archive.latest.statistics.clients_global
    assert final.calls_success / final.calls >= 0.95
    assert outcome.archive.latest.schedule.min() > 10
