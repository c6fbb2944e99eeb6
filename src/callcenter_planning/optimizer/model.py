"""
Callcenter Model
================

The slice of the staffing/demand model the optimizer reads and mutates:

    CallcenterModel
        callers      -> CallerGroup (demand per interval)
        callcenters  -> Callcenter -> AgentGroup (fixed shift or per-interval counts)

Agent groups are addressed by ``GroupKey(callcenter, group)`` with a 0-based
group index inside the callcenter.
"""

import copy
from dataclasses import dataclass, field
from typing import Iterator

import numpy as np

from .schedule import (
    SUPPORTED_INTERVAL_COUNTS,
    interval_slot_seconds,
    stretch,
)


@dataclass(frozen=True, order=True)
class GroupKey:
    """Composite key of an agent group: callcenter name plus 0-based index."""
    callcenter: str
    group: int

    @classmethod
    def parse(cls, text: str) -> "GroupKey":
        """Parse the legacy ``"<1-based number>-<callcenter name>"`` form.

        Raises:
            ValueError: If the text has no leading group number.
        """
        number, sep, name = text.partition("-")
        if not sep or not number.strip().isdigit() or int(number) < 1:
            raise ValueError(f"Invalid agent group reference: {text!r}")
        return cls(callcenter=name.strip(), group=int(number) - 1)

    def __str__(self) -> str:
        return f"{self.group + 1}-{self.callcenter}"


@dataclass
class CallerGroup:
    """A demand group (caller type).

    Attributes:
        name: Unique caller type name.
        calls_per_interval: Expected fresh calls per interval (24/48/96 entries).
        avg_handle_time: Mean talk time in seconds.
        avg_patience_time: Mean waiting time tolerance in seconds.
        active: Inactive groups produce no calls.
    """
    name: str
    calls_per_interval: np.ndarray
    avg_handle_time: float = 300.0
    avg_patience_time: float = 180.0
    active: bool = True

    def __post_init__(self) -> None:
        self.calls_per_interval = np.asarray(self.calls_per_interval, dtype=float)


@dataclass
class AgentGroup:
    """A staffing group.

    Either ``count`` (fixed shift between ``working_time_start`` and
    ``working_time_end``, in seconds since midnight; ``None`` end means open end)
    or ``count_per_interval`` (variable staffing) is set.
    """
    count: int | None = None
    working_time_start: int = 0
    working_time_end: int | None = None
    count_per_interval: np.ndarray | None = None
    minimum_shift_length: int = 1
    active: bool = True

    def __post_init__(self) -> None:
        if self.count_per_interval is not None:
            self.count_per_interval = np.asarray(self.count_per_interval, dtype=float)

    @property
    def is_variable(self) -> bool:
        return self.count is None

    def shift_window(self, interval_count: int) -> tuple[int, int]:
        """Inclusive first/last interval of a fixed shift."""
        slot = interval_slot_seconds(interval_count)
        last = interval_count - 1
        start = min(last, max(0, int(np.floor(self.working_time_start / slot + 0.5))))
        if self.working_time_end is None:
            return start, last
        end = min(last, max(0, int(np.floor(self.working_time_end / slot + 0.5))))
        return start, end

    def counts(self, interval_count: int) -> np.ndarray:
        """Agents present per interval at the given resolution."""
        if self.is_variable:
            if self.count_per_interval is None:
                return np.zeros(interval_count)
            return stretch(self.count_per_interval, interval_count).astype(float)
        result = np.zeros(interval_count)
        start, end = self.shift_window(interval_count)
        result[start:end + 1] = self.count
        return result


@dataclass
class Callcenter:
    name: str
    agents: list[AgentGroup] = field(default_factory=list)
    active: bool = True


@dataclass
class CallcenterModel:
    """Base model handed to the optimizer. Never mutated by the optimizer."""
    name: str
    callers: list[CallerGroup] = field(default_factory=list)
    callcenters: list[Callcenter] = field(default_factory=list)
    description: str = ""
    minimum_shift_length: int = 1

    def clone(self) -> "CallcenterModel":
        return copy.deepcopy(self)

    def interval_count(self) -> int:
        """Working resolution: 96 if any active variable group uses 96 slots, else 48."""
        for _, agents in self.iter_agent_groups():
            if agents.is_variable and agents.count_per_interval is not None:
                if len(agents.count_per_interval) == 96:
                    return 96
        return 48

    def iter_agent_groups(self, active_only: bool = True) -> Iterator[tuple[GroupKey, AgentGroup]]:
        for callcenter in self.callcenters:
            if active_only and not callcenter.active:
                continue
            for index, agents in enumerate(callcenter.agents):
                if active_only and not agents.active:
                    continue
                yield GroupKey(callcenter.name, index), agents

    def agent_group(self, key: GroupKey) -> AgentGroup | None:
        for callcenter in self.callcenters:
            if callcenter.name.lower() == key.callcenter.lower():
                if 0 <= key.group < len(callcenter.agents):
                    return callcenter.agents[key.group]
                return None
        return None

    def caller(self, name: str) -> CallerGroup | None:
        for caller in self.callers:
            if caller.name.lower() == name.lower():
                return caller
        return None

    def check_and_init(self, strict: bool = False) -> str | None:
        """Structural validation.

        Returns:
            None if the model can be simulated, otherwise an error message.
        """
        active_callers = [c for c in self.callers if c.active]
        if not active_callers:
            return "The model contains no active caller group."
        names = [c.name.lower() for c in self.callers]
        if len(names) != len(set(names)):
            return "Caller group names must be unique."
        for caller in active_callers:
            if len(caller.calls_per_interval) not in SUPPORTED_INTERVAL_COUNTS:
                return f"Caller group '{caller.name}' needs 24, 48 or 96 interval values."
            if np.any(caller.calls_per_interval < 0):
                return f"Caller group '{caller.name}' has negative call counts."
            if caller.avg_handle_time <= 0:
                return f"Caller group '{caller.name}' needs a positive handle time."
            if caller.avg_patience_time <= 0:
                return f"Caller group '{caller.name}' needs a positive patience time."

        centers = [c.name.lower() for c in self.callcenters]
        if len(centers) != len(set(centers)):
            return "Callcenter names must be unique."
        if not any(c.active for c in self.callcenters):
            return "The model contains no active callcenter."

        total = 0.0
        for key, agents in self.iter_agent_groups():
            if agents.is_variable:
                if agents.count_per_interval is None:
                    return f"Agent group {key} has neither a fixed count nor interval counts."
                if len(agents.count_per_interval) not in SUPPORTED_INTERVAL_COUNTS:
                    return f"Agent group {key} needs 24, 48 or 96 interval values."
                if np.any(agents.count_per_interval < 0):
                    return f"Agent group {key} has negative agent counts."
                total += float(np.sum(agents.count_per_interval))
            else:
                if agents.count < 0:
                    return f"Agent group {key} has a negative agent count."
                end = agents.working_time_end
                if end is not None and end < agents.working_time_start:
                    return f"Agent group {key} ends its shift before it starts."
                total += agents.count
        if strict and total <= 0:
            return "The model contains no agents."
        return None
