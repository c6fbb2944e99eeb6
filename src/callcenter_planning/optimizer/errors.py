"""Exceptions raised by the capacity optimizer."""

from enum import Enum


class ConfigErrorCode(Enum):
    """One code per check performed by ``CapacityOptimizer.check_and_init``."""
    NO_GROUP_SELECTED = "no_group_selected"
    NO_CHANGE_GROUP_SELECTED = "no_change_group_selected"
    BOUND_ORDER_ERROR = "bound_order_error"
    FIXED_SHIFT_INCOMPATIBLE_WITH_BAND = "fixed_shift_incompatible_with_band"
    NO_INTERVAL_SELECTED = "no_interval_selected"
    RESTRICTIONS_REQUIRE_INTERVAL_MODE = "restrictions_require_interval_mode"
    UNKNOWN_RESTRICTION_GROUP = "unknown_restriction_group"
    RESTRICTION_ON_FIXED_SHIFT_GROUP = "restriction_on_fixed_shift_group"
    EMPTY_RESTRICTION_RANGE = "empty_restriction_range"
    MIN_SHIFT_LENGTH_INCOMPATIBLE_WITH_BAND = "min_shift_length_incompatible_with_band"
    MODEL_INVALID = "model_invalid"


class OptimizerError(Exception):
    """Base class for every fatal optimizer condition."""


class OptimizerConfigError(OptimizerError):
    """The target specification does not fit the base model.

    Attributes:
        code: Which validation check failed.
        message: Human-readable description, surfaced verbatim to the caller.
    """

    def __init__(self, code: ConfigErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class PreparationError(OptimizerError):
    """A candidate model could not be turned into a runnable simulation."""


class SimulationError(OptimizerError):
    """The simulation oracle reported a fatal error for a run."""
