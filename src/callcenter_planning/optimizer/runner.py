"""
Poll Driver
===========

Pumps a ``CapacityOptimizer`` until it reaches a terminal state:

    check_and_init -> loop { poll(); on_progress(); budget/cancel checks; sleep }

The time budget (``OptimizerConfig.max_seconds``) ends the session as CANCELLED
with a reason; the run budget is enforced by the optimizer itself.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .archive import ResultArchive
from .control_loop import CapacityOptimizer, OptimizerProgress, OptimizerStatus
from .errors import OptimizerError

logger = logging.getLogger(__name__)


@dataclass
class OptimizationOutcome:
    """Final report of a session.

    Attributes:
        status: CONVERGED, CANCELLED or FAILED.
        run_count: Number of dispatched simulation runs.
        elapsed_seconds: Wall-clock time from first dispatch to the end.
        archive: Archived run results.
        message: Failure or cancellation reason, if any.
    """
    status: OptimizerStatus
    run_count: int
    elapsed_seconds: float
    archive: ResultArchive
    message: str | None = None

    @property
    def converged(self) -> bool:
        return self.status is OptimizerStatus.CONVERGED


def run_optimization(
    optimizer: CapacityOptimizer,
    sleep: Callable[[float], None] = time.sleep,
    should_cancel: Callable[[], bool] | None = None,
    on_progress: Callable[[OptimizerProgress], None] | None = None,
) -> OptimizationOutcome:
    """Drive an optimizer from validation to a terminal state.

    Args:
        optimizer: Optimizer to run. ``check_and_init`` is called here.
        sleep: Waits between polls while a run is in flight.
        should_cancel: Polled every tick; True requests cancellation.
        on_progress: Receives a snapshot whenever a new run was dispatched.

    Returns:
        OptimizationOutcome of the session.

    Raises:
        OptimizerConfigError: If the target does not fit the model. No run is
            dispatched in that case.
    """
    config = optimizer.config
    optimizer.check_and_init()
    started = time.monotonic()
    reported_run = 0

    while True:
        try:
            status = optimizer.poll()
        except OptimizerError as e:
            logger.error("Optimization aborted: %s", e)
            status = optimizer.status
        if status.is_terminal:
            break

        progress = optimizer.progress()
        if on_progress is not None and progress.run_number != reported_run:
            reported_run = progress.run_number
            on_progress(progress)

        if should_cancel is not None and should_cancel():
            optimizer.cancel("Cancelled by caller.")
        elif config.max_seconds is not None and time.monotonic() - started > config.max_seconds:
            optimizer.cancel(f"Time budget of {config.max_seconds} s exhausted.")
        elif status is OptimizerStatus.DISPATCHED:
            sleep(config.poll_interval_seconds)

    archive = optimizer.archive
    return OptimizationOutcome(
        status=optimizer.status,
        run_count=archive.run_count,
        elapsed_seconds=archive.elapsed_seconds,
        archive=archive,
        message=optimizer.message,
    )
