"""
Simulation Statistics
=====================

Result bundle of one simulation run, as consumed by the evaluator. Every
per-interval vector has the resolution of the simulated schedule.

Call-based counters count every call attempt; client-based counters count
distinct customers (first attempts plus retries).
"""

from dataclasses import dataclass, field, replace

import numpy as np


def _vector() -> np.ndarray:
    return np.zeros(48)


@dataclass
class ClientStatistics:
    """Counters for one caller group (or all caller groups combined).

    Attributes:
        name: Caller group name ("" for the global record).
        calls_per_interval: Call attempts.
        calls_success_per_interval: Calls that reached an agent.
        calls_waiting_time_per_interval: Waiting time sum of successful calls (s).
        calls_residence_time_per_interval: Residence time sum of successful calls (s).
        calls_service_level_per_interval: Successful calls answered within the
            service level threshold.
        clients_*: The same counters on a per-customer basis.
        calls_carried_over: Calls inherited from the previous day.
        clients_retry: Customers that called again after giving up.
        clients_carried_over: Customers inherited from the previous day.
    """
    name: str = ""
    calls_per_interval: np.ndarray = field(default_factory=_vector)
    calls_success_per_interval: np.ndarray = field(default_factory=_vector)
    calls_waiting_time_per_interval: np.ndarray = field(default_factory=_vector)
    calls_residence_time_per_interval: np.ndarray = field(default_factory=_vector)
    calls_service_level_per_interval: np.ndarray = field(default_factory=_vector)
    clients_per_interval: np.ndarray = field(default_factory=_vector)
    clients_success_per_interval: np.ndarray = field(default_factory=_vector)
    clients_waiting_time_per_interval: np.ndarray = field(default_factory=_vector)
    clients_residence_time_per_interval: np.ndarray = field(default_factory=_vector)
    clients_service_level_per_interval: np.ndarray = field(default_factory=_vector)
    calls_carried_over: int = 0
    clients_retry: int = 0
    clients_carried_over: int = 0

    def __post_init__(self) -> None:
        for name in self.__dataclass_fields__:
            if name.endswith("_per_interval"):
                setattr(self, name, np.asarray(getattr(self, name), dtype=float))

    @property
    def calls(self) -> float:
        return float(self.calls_per_interval.sum())

    @property
    def calls_success(self) -> float:
        return float(self.calls_success_per_interval.sum())

    @property
    def clients(self) -> float:
        return float(self.clients_per_interval.sum())

    @property
    def clients_success(self) -> float:
        return float(self.clients_success_per_interval.sum())

    def __add__(self, other: "ClientStatistics") -> "ClientStatistics":
        merged = ClientStatistics(name=self.name)
        for name in self.__dataclass_fields__:
            if name == "name":
                continue
            setattr(merged, name, getattr(self, name) + getattr(other, name))
        return merged


@dataclass
class AgentStatistics:
    """Time sums (seconds) for the agents of one callcenter (or all of them)."""
    name: str = ""
    idle_per_interval: np.ndarray = field(default_factory=_vector)
    technical_idle_per_interval: np.ndarray = field(default_factory=_vector)
    work_per_interval: np.ndarray = field(default_factory=_vector)
    post_processing_per_interval: np.ndarray = field(default_factory=_vector)

    def __post_init__(self) -> None:
        for name in self.__dataclass_fields__:
            if name.endswith("_per_interval"):
                setattr(self, name, np.asarray(getattr(self, name), dtype=float))

    @property
    def busy_per_interval(self) -> np.ndarray:
        return self.technical_idle_per_interval + self.work_per_interval + self.post_processing_per_interval

    @property
    def present_per_interval(self) -> np.ndarray:
        return self.busy_per_interval + self.idle_per_interval

    def __add__(self, other: "AgentStatistics") -> "AgentStatistics":
        return AgentStatistics(
            name=self.name,
            idle_per_interval=self.idle_per_interval + other.idle_per_interval,
            technical_idle_per_interval=self.technical_idle_per_interval + other.technical_idle_per_interval,
            work_per_interval=self.work_per_interval + other.work_per_interval,
            post_processing_per_interval=self.post_processing_per_interval + other.post_processing_per_interval,
        )


@dataclass
class Statistics:
    """Complete result of one simulation run."""
    clients_global: ClientStatistics
    clients_per_type: list[ClientStatistics]
    agents_global: AgentStatistics
    agents_per_callcenter: list[AgentStatistics]

    @classmethod
    def from_groups(
        cls,
        clients_per_type: list[ClientStatistics],
        agents_per_callcenter: list[AgentStatistics],
    ) -> "Statistics":
        """Build a bundle whose global records are the sums of the group records.

        Raises:
            ValueError: If either list is empty.
        """
        if not clients_per_type or not agents_per_callcenter:
            raise ValueError("Statistics need at least one caller group and one callcenter")
        clients_global = replace(clients_per_type[0], name="")
        for client in clients_per_type[1:]:
            clients_global = clients_global + client
        agents_global = replace(agents_per_callcenter[0], name="")
        for agents in agents_per_callcenter[1:]:
            agents_global = agents_global + agents
        return cls(
            clients_global=clients_global,
            clients_per_type=list(clients_per_type),
            agents_global=agents_global,
            agents_per_callcenter=list(agents_per_callcenter),
        )

    @property
    def interval_count(self) -> int:
        return len(self.clients_global.calls_per_interval)
