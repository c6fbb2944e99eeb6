"""
Erlang Simulation Oracle
========================

Analytic stand-in for a discrete-event call center simulator. Each interval is
treated as a stationary queue with all active caller groups pooled onto all
present agents.

Mathematical Context:
    Erlang-C: P(wait) = f(arrival_rate, service_rate, num_agents)
    Erlang-A adds exponential patience (rate theta = 1 / avg_patience_time):
        P(abandon) ~ P(wait) * theta * A / (N * (1 - rho) + theta * A)
    Per interval we derive successful calls, waiting/residence time sums,
    calls answered within the service level threshold and agent busy time.

Data Flow:
    CallcenterModel -> ErlangEmulator.simulate_model() -> Statistics
    ErlangSimulationOracle.run(model).start() -> background thread -> Statistics
"""

import logging
import math
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from .model import CallcenterModel
from .schedule import interval_slot_seconds, rebin
from .statistics import AgentStatistics, ClientStatistics, Statistics

logger = logging.getLogger(__name__)

# Abandonment share at rho = 1; both branches of the Erlang-A estimate meet here.
SATURATION_ABANDONMENT = 0.1


@dataclass
class EmulatorConfig:
    """Settings of the analytic emulator.

    Attributes:
        sla_threshold_seconds: Waiting time within which a call counts as
            answered in time.
        model: "erlang_a" (with abandonment) or "erlang_c" (infinite patience).
        max_workers: Threads used for background runs.
    """
    sla_threshold_seconds: float = 20.0
    model: str = "erlang_a"
    max_workers: int = 1

    def __post_init__(self) -> None:
        if self.model not in ("erlang_a", "erlang_c"):
            raise ValueError(f"Unknown emulator model: {self.model}")


@dataclass
class IntervalMetrics:
    """Predicted performance of one interval.

    Attributes:
        avg_wait_time: Mean waiting time of served calls in seconds.
        utilization_rate: Busy share of the present agents (0-1).
        service_level: Share of all calls answered within the threshold (0-1).
        abandonment_rate: Share of calls that gave up (0-1).
        calls_handled: Calls that reached an agent.
        calls_abandoned: Calls that gave up.
    """
    avg_wait_time: float
    utilization_rate: float
    service_level: float
    abandonment_rate: float
    calls_handled: float
    calls_abandoned: float


class ErlangEmulator:
    """Erlang-A / Erlang-C queueing model of a pooled call center."""

    def __init__(self, config: EmulatorConfig = None):
        self.config = config or EmulatorConfig()

    def _erlang_c(self, num_agents: int, traffic_intensity: float) -> float:
        """Probability that an arriving call has to wait."""
        A = traffic_intensity
        N = num_agents
        if N <= 0:
            return 1.0
        if A <= 0:
            return 0.0
        if N <= A:
            return 1.0

        # log-space to stay finite for large N
        log_numerator = N * math.log(A) - math.lgamma(N + 1) + math.log(N / (N - A))
        terms = [k * math.log(A) - math.lgamma(k + 1) for k in range(N)]
        max_term = max(terms)
        log_sum = max_term + math.log(sum(math.exp(t - max_term) for t in terms))

        max_val = max(log_numerator, log_sum)
        numerator = math.exp(log_numerator - max_val)
        return numerator / (numerator + math.exp(log_sum - max_val))

    def _erlang_a(self, num_agents: int, traffic_intensity: float, theta: float) -> tuple[float, float]:
        """(P(wait), P(abandon)) with patience; theta is patience rate / service rate."""
        rho = traffic_intensity / num_agents
        if rho >= 1.0:
            # overloaded: the excess traffic leaves the queue
            prob_wait = self._erlang_c(num_agents, traffic_intensity * 0.99)
            excess = (traffic_intensity - num_agents) / traffic_intensity
            return prob_wait, min(0.9, excess + SATURATION_ABANDONMENT)

        prob_wait = self._erlang_c(num_agents, traffic_intensity)
        alpha = num_agents * (1 - rho) + theta * traffic_intensity
        prob_abandon = prob_wait * theta * traffic_intensity / alpha if alpha > 0 else prob_wait * 0.5
        return prob_wait, max(0.0, min(SATURATION_ABANDONMENT, prob_abandon))

    def simulate_interval(
        self,
        num_agents: float,
        calls: float,
        avg_handle_time: float,
        avg_patience_time: float,
        interval_seconds: float,
    ) -> IntervalMetrics:
        """Predict the metrics of one interval."""
        if calls <= 0:
            return IntervalMetrics(0.0, 0.0, 1.0, 0.0, 0.0, 0.0)
        agents = int(math.floor(num_agents + 0.5))
        if agents <= 0:
            return IntervalMetrics(0.0, 0.0, 0.0, 1.0, 0.0, calls)

        arrival_rate = calls / interval_seconds
        service_rate = 1.0 / avg_handle_time
        traffic_intensity = arrival_rate / service_rate
        threshold = self.config.sla_threshold_seconds

        if self.config.model == "erlang_a":
            patience_rate = 1.0 / avg_patience_time
            prob_wait, prob_abandon = self._erlang_a(agents, traffic_intensity, patience_rate / service_rate)
            rho = min(traffic_intensity / agents, 0.99)
            decay = agents * service_rate * (1 - rho) + patience_rate
            avg_wait = prob_wait / decay
            service_level = 1.0 - prob_wait * math.exp(-decay * threshold) - prob_abandon
        else:
            if traffic_intensity >= agents:
                return IntervalMetrics(avg_patience_time, 1.0, 0.0, 0.5, calls * 0.5, calls * 0.5)
            prob_wait = self._erlang_c(agents, traffic_intensity)
            decay = (agents - traffic_intensity) * service_rate
            avg_wait = prob_wait / decay
            service_level = 1.0 - prob_wait * math.exp(-decay * threshold)
            prob_abandon = min(1.0, 1.0 - math.exp(-avg_wait / avg_patience_time))

        handled = calls * (1.0 - prob_abandon)
        utilization = min(1.0, handled * avg_handle_time / (agents * interval_seconds))
        return IntervalMetrics(
            avg_wait_time=max(avg_wait, 0.0),
            utilization_rate=utilization,
            service_level=max(0.0, min(1.0, service_level)),
            abandonment_rate=prob_abandon,
            calls_handled=handled,
            calls_abandoned=calls - handled,
        )

    def simulate_model(self, model: CallcenterModel) -> Statistics:
        """Simulate a whole day of the model at its working resolution."""
        n = model.interval_count()
        slot = interval_slot_seconds(n)
        callers = [c for c in model.callers if c.active]
        calls = {c.name: rebin(c.calls_per_interval, n) for c in callers}

        present: dict[str, np.ndarray] = {}
        for callcenter in model.callcenters:
            if not callcenter.active:
                continue
            agents = np.zeros(n)
            for group in callcenter.agents:
                if group.active:
                    agents += group.counts(n)
            present[callcenter.name] = agents
        total_agents = sum(present.values(), np.zeros(n))

        clients = {c.name: ClientStatistics(name=c.name, **_zero_client_vectors(n)) for c in callers}
        work_total = np.zeros(n)
        for i in range(n):
            volume = sum(calls[c.name][i] for c in callers)
            if volume <= 0:
                continue
            aht = sum(calls[c.name][i] * c.avg_handle_time for c in callers) / volume
            patience = sum(calls[c.name][i] * c.avg_patience_time for c in callers) / volume
            metrics = self.simulate_interval(total_agents[i], volume, aht, patience, slot)
            answered_share = metrics.calls_handled / volume
            in_time_share = min(metrics.service_level, answered_share)
            for caller in callers:
                offered = calls[caller.name][i]
                success = offered * answered_share
                record = clients[caller.name]
                for prefix in ("calls", "clients"):
                    getattr(record, f"{prefix}_per_interval")[i] = offered
                    getattr(record, f"{prefix}_success_per_interval")[i] = success
                    getattr(record, f"{prefix}_waiting_time_per_interval")[i] = success * metrics.avg_wait_time
                    getattr(record, f"{prefix}_residence_time_per_interval")[i] = success * (
                        metrics.avg_wait_time + caller.avg_handle_time
                    )
                    getattr(record, f"{prefix}_service_level_per_interval")[i] = offered * in_time_share
                work_total[i] += success * caller.avg_handle_time

        agent_records = []
        for name, agents in present.items():
            share = np.divide(agents, total_agents, out=np.zeros(n), where=total_agents > 0)
            present_time = agents * slot
            work = np.minimum(work_total * share, present_time)
            agent_records.append(
                AgentStatistics(
                    name=name,
                    idle_per_interval=present_time - work,
                    technical_idle_per_interval=np.zeros(n),
                    work_per_interval=work,
                    post_processing_per_interval=np.zeros(n),
                )
            )
        return Statistics.from_groups(list(clients.values()), agent_records)


def _zero_client_vectors(n: int) -> dict[str, np.ndarray]:
    fields = ("per_interval", "success_per_interval", "waiting_time_per_interval",
              "residence_time_per_interval", "service_level_per_interval")
    return {f"{prefix}_{field}": np.zeros(n) for prefix in ("calls", "clients") for field in fields}


class ErlangRun:
    """Handle of one emulator run; follows the oracle handle contract."""

    def __init__(self, emulator: ErlangEmulator, model: CallcenterModel, executor: ThreadPoolExecutor):
        self.emulator = emulator
        self.model = model
        self._executor = executor
        self._future: Future | None = None
        self._statistics: Statistics | None = None
        self._error: str | None = None
        self._cancelled = False

    def _simulate(self) -> Statistics:
        return self.emulator.simulate_model(self.model)

    def start(self, background: bool = True) -> None:
        if background:
            self._future = self._executor.submit(self._simulate)
            return
        try:
            self._statistics = self._simulate()
        except Exception as e:
            self._error = str(e)

    def is_running(self) -> bool:
        return self._future is not None and not self._future.done()

    def finalize_run(self) -> str | None:
        if self._cancelled:
            return "The simulation was cancelled."
        if self._future is not None:
            try:
                self._statistics = self._future.result()
            except Exception as e:
                self._error = str(e)
            self._future = None
        return self._error

    def collect_statistic(self) -> Statistics | None:
        return self._statistics

    def cancel(self) -> None:
        self._cancelled = True
        if self._future is not None:
            self._future.cancel()


class ErlangSimulationOracle:
    """Simulation oracle backed by :class:`ErlangEmulator`.

    Example:
        >>> with ErlangSimulationOracle() as oracle:
        ...     optimizer = CapacityOptimizer(model, target, oracle)
    """

    def __init__(self, config: EmulatorConfig = None):
        self.config = config or EmulatorConfig()
        self.emulator = ErlangEmulator(self.config)
        self._executor: ThreadPoolExecutor | None = None

    def check(self, model: CallcenterModel) -> str | None:
        if not any(c.active for c in model.callers):
            return "No active caller group to simulate."
        if not any(c.active for c in model.callcenters):
            return "No active callcenter to simulate."
        return None

    def run(self, model: CallcenterModel) -> ErlangRun:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.config.max_workers)
        logger.debug("Simulating %s", model.name)
        return ErlangRun(self.emulator, model, self._executor)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def __enter__(self) -> "ErlangSimulationOracle":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
