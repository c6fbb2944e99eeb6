"""
Collaborator Contracts
======================

The optimizer never simulates anything itself. It talks to a simulation oracle:

    oracle.check(model)    -> error message or None
    oracle.run(model)      -> OracleHandle
    handle.start(background=True)
    handle.is_running()    (polled by the caller)
    handle.finalize_run()  -> error message or None
    handle.collect_statistic() -> Statistics

Errors travel as plain strings, matching the model's ``check_and_init``.
"""

from typing import Any, Protocol

from .model import CallcenterModel
from .statistics import Statistics


class OracleHandle(Protocol):
    def start(self, background: bool = True) -> None: ...

    def is_running(self) -> bool: ...

    def finalize_run(self) -> str | None: ...

    def collect_statistic(self) -> Statistics | None: ...

    def cancel(self) -> None: ...


class SimulationOracle(Protocol):
    def check(self, model: CallcenterModel) -> str | None: ...

    def run(self, model: CallcenterModel) -> OracleHandle: ...


class CarryOverBuilder(Protocol):
    """Merges previous-day leftovers into a candidate model.

    Raises:
        PreparationError: If the leftovers cannot be applied.
    """

    def __call__(self, model: CallcenterModel, carry_over: Any) -> CallcenterModel: ...


def no_carry_over(model: CallcenterModel, carry_over: Any) -> CallcenterModel:
    """Default builder: simulate the candidate as it is."""
    return model
