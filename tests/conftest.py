"""Shared fixtures: deterministic fake oracle and small models."""

import numpy as np
import pytest

from callcenter_planning.optimizer import (
    AgentGroup,
    AgentStatistics,
    Callcenter,
    CallcenterModel,
    CallerGroup,
    CapacityOptimizer,
    ClientStatistics,
    OptimizerConfig,
    Statistics,
    TargetSpec,
)
from callcenter_planning.optimizer.schedule import interval_slot_seconds, rebin


def client_stats(name, calls, success, waiting_time=None, service_level=None, **scalars) -> ClientStatistics:
    """Client record with identical call- and client-based counters."""
    calls = np.asarray(calls, dtype=float)
    success = np.asarray(success, dtype=float)
    waiting_time = np.zeros_like(calls) if waiting_time is None else np.asarray(waiting_time, dtype=float)
    service_level = success.copy() if service_level is None else np.asarray(service_level, dtype=float)
    return ClientStatistics(
        name=name,
        calls_per_interval=calls,
        calls_success_per_interval=success,
        calls_waiting_time_per_interval=waiting_time,
        calls_residence_time_per_interval=waiting_time + success * 300,
        calls_service_level_per_interval=service_level,
        clients_per_interval=calls.copy(),
        clients_success_per_interval=success.copy(),
        clients_waiting_time_per_interval=waiting_time.copy(),
        clients_residence_time_per_interval=waiting_time + success * 300,
        clients_service_level_per_interval=service_level.copy(),
        **scalars,
    )


def agent_stats(name, work, idle) -> AgentStatistics:
    work = np.asarray(work, dtype=float)
    return AgentStatistics(
        name=name,
        idle_per_interval=np.asarray(idle, dtype=float),
        technical_idle_per_interval=np.zeros_like(work),
        work_per_interval=work,
        post_processing_per_interval=np.zeros_like(work),
    )


def capacity_statistics(model: CallcenterModel, required) -> Statistics:
    """Share of successful calls = agents / required (capped at 1).

    Waiting time per successful call is 10 s for every missing agent.
    """
    n = model.interval_count()
    slot = interval_slot_seconds(n)
    required = rebin(np.asarray(required, dtype=float), n) if np.ndim(required) else np.full(n, float(required))
    clients = []
    agents_total = np.zeros(n)
    agent_records = []
    for callcenter in model.callcenters:
        if not callcenter.active:
            continue
        present = np.zeros(n)
        for group in callcenter.agents:
            if group.active:
                present += group.counts(n)
        agents_total += present
        agent_records.append((callcenter.name, present))

    share = np.ones(n)
    np.divide(agents_total, required, out=share, where=required > 0)
    share = np.clip(share, 0.0, 1.0)
    missing = np.maximum(required - agents_total, 0)
    for caller in model.callers:
        if not caller.active:
            continue
        calls = rebin(caller.calls_per_interval, n)
        success = calls * share
        clients.append(client_stats(caller.name, calls, success, waiting_time=success * missing * 10))

    busy = np.minimum(required, agents_total)
    records = []
    for name, present in agent_records:
        part = np.divide(present, agents_total, out=np.zeros(n), where=agents_total > 0)
        records.append(agent_stats(name, busy * part * slot, (present - busy * part) * slot))
    return Statistics.from_groups(clients, records)


class FakeHandle:
    def __init__(self, statistics, polls=0, error=None):
        self.statistics = statistics
        self.remaining_polls = polls
        self.error = error
        self.started = False
        self.background = None
        self.cancelled = False

    def start(self, background=True):
        self.started = True
        self.background = background

    def is_running(self):
        if self.remaining_polls > 0:
            self.remaining_polls -= 1
            return True
        return False

    def finalize_run(self):
        return self.error

    def collect_statistic(self):
        return self.statistics

    def cancel(self):
        self.cancelled = True


class CapacityOracle:
    """Fake oracle whose results only depend on the staffed agents.

    Args:
        required: Agents needed per interval for full accessibility.
        polls: ``is_running`` answers True this many times per run.
        fail_on_run: 1-based run number whose finalize reports an error.
        check_error: Returned by ``check``.
    """

    def __init__(self, required=10.0, polls=0, fail_on_run=None, check_error=None):
        self.required = required
        self.polls = polls
        self.fail_on_run = fail_on_run
        self.check_error = check_error
        self.models = []
        self.handles = []

    def check(self, model):
        return self.check_error

    def run(self, model):
        self.models.append(model)
        error = "Simulation engine crashed." if len(self.models) == self.fail_on_run else None
        handle = FakeHandle(capacity_statistics(model, self.required), self.polls, error)
        self.handles.append(handle)
        return handle


def make_model(agents=6.0, calls=100.0, n=48, fixed_count=None, minimum_shift_length=1) -> CallcenterModel:
    """One caller group and one agent group, variable unless ``fixed_count`` is given."""
    calls_vector = np.full(n, float(calls)) if np.ndim(calls) == 0 else np.asarray(calls, dtype=float)
    if fixed_count is None:
        agents_vector = np.full(n, float(agents)) if np.ndim(agents) == 0 else np.asarray(agents, dtype=float)
        group = AgentGroup(count_per_interval=agents_vector)
    else:
        group = AgentGroup(count=fixed_count)
    return CallcenterModel(
        name="Test",
        callers=[CallerGroup("Callers", calls_per_interval=calls_vector)],
        callcenters=[Callcenter("Main", agents=[group])],
        minimum_shift_length=minimum_shift_length,
    )


def drive(optimizer: CapacityOptimizer, limit: int = 10_000):
    """Poll until terminal; fails the test instead of hanging."""
    for _ in range(limit):
        status = optimizer.poll()
        if status.is_terminal:
            return status
    pytest.fail("optimizer did not terminate")


@pytest.fixture
def model():
    return make_model()


@pytest.fixture
def oracle():
    return CapacityOracle(required=10.0)


@pytest.fixture
def initialized():
    """Factory: validated optimizer state for a model and target."""
    def _initialized(model, target: TargetSpec, oracle=None, config=None):
        optimizer = CapacityOptimizer(model, target, oracle or CapacityOracle(), config=config or OptimizerConfig())
        optimizer.check_and_init()
        return optimizer.state
    return _initialized
