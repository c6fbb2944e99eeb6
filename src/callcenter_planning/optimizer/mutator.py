"""
Schedule Mutator
================

Derives the next candidate model from the base model:

    candidate[group, i] = round(base[group, i] * percent[i]) + absolute[i]   (>= 0)
    candidate[group, i] = clamp(candidate, restriction min, restriction max)

Only flagged intervals move their ``percent`` by one step per pass. When a pass
leaves the total schedule unchanged (integer rounding at small counts), the
pass is repeated; after PLATEAU_RETRY_LIMIT unchanged passes the percentages are
reverted and flagged intervals get one agent more (or less) instead.
"""

import logging
from dataclasses import dataclass, replace

import numpy as np

from .config import PLATEAU_RETRY_LIMIT, UNRESTRICTED_MAX_AGENTS
from .model import CallcenterModel, GroupKey
from .schedule import interval_label, round_half_up
from .state import LOCKED, OptimizerState

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """Result of one mutation.

    Attributes:
        model: Independent clone of the base model with the new counts.
        state: Optimizer state carrying the new factors and schedules.
        changed: False if the schedule equals the previous candidate.
    """
    model: CallcenterModel
    state: OptimizerState
    changed: bool


def _mutation_pass(
    state: OptimizerState,
    percent: np.ndarray,
    absolute: np.ndarray,
    permitted: dict[GroupKey, np.ndarray],
    first_run: bool,
) -> tuple[CallcenterModel, np.ndarray, np.ndarray]:
    target = state.target
    n = target.interval_count
    model = state.base_model.clone()
    baseline = np.zeros(n)
    changed = np.zeros(n)
    unrestricted = (np.zeros(n), np.full(n, float(UNRESTRICTED_MAX_AGENTS)))

    for key in target.mutable_groups:
        agents = model.agent_group(key)
        base_counts = agents.counts(n)
        baseline += base_counts

        if not agents.is_variable:
            # fixed shifts can only be scaled as a whole
            if not first_run:
                growth = 1 + target.spec.change_step_fraction * state.iteration_count
                agents.count = int(round_half_up(agents.count * growth))
            changed += agents.counts(n)
            continue

        low, high = target.restrictions.get(key, unrestricted)
        if first_run:
            counts = np.minimum(np.maximum(base_counts, low), high)
        else:
            raw = np.maximum(round_half_up(base_counts * percent) + absolute, 0)
            counts = np.minimum(np.maximum(raw, low), high)
            saturated = (raw < low) | (raw > high)
            if np.any(saturated):
                permitted[key] = permitted[key] & ~saturated

        agents.count_per_interval = counts
        changed += counts

    return model, baseline, changed


def _describe_changes(state: OptimizerState, percent: np.ndarray, absolute: np.ndarray) -> str:
    n = state.target.interval_count
    lines = ["", "", "Change of number of agents by optimizer:"]
    has_absolute = False
    for i in range(n):
        line = f"{interval_label(i, n)}: {percent[i] * 100:.4g}%"
        if abs(absolute[i]) > 0.5:
            has_absolute = True
            line += f" {int(round_half_up(absolute[i])):+d}"
        lines.append(line)
    if has_absolute:
        lines.append("")
        lines.append(
            "Signed values are whole agents added after the percentage change, "
            "because the percentage step alone no longer changed the rounded counts."
        )
    if not state.target.spec.all_intervals_active:
        lines.append("")
        lines.append("Intervals taken into account:")
        mask = state.target.interval_mask
        lines.extend(interval_label(i, n) for i in range(n) if mask[i])
    return "\n".join(lines) + "\n"


def build_candidate(
    state: OptimizerState,
    direction: int,
    plateau_retry_limit: int = PLATEAU_RETRY_LIMIT,
) -> Candidate:
    """Build the candidate model for run ``state.iteration_count``.

    Args:
        state: Current state; ``iteration_count`` already counts this run.
        direction: > 0 to add agents, < 0 to remove them. Ignored on run 1,
            which only clamps the baseline into the restrictions.
        plateau_retry_limit: Unchanged passes before switching to absolute steps,
            and the number of absolute steps before accepting a stalled candidate.

    Returns:
        Candidate with the cloned model and the successor state.
    """
    target = state.target
    step = target.spec.change_step_fraction
    first_run = state.iteration_count <= 1
    sign = 1 if direction >= 0 else -1
    flagged = state.interval_needs_change != LOCKED
    previous = state.schedule_current.copy()

    percent = state.percent_factor.copy()
    absolute = state.absolute_add.copy()
    if first_run:
        percent[:] = 1.0
        absolute[:] = 0.0
    percent_saved = percent.copy()
    permitted = {key: allowed.copy() for key, allowed in state.change_permitted.items()}

    passes = 0
    fallbacks = 0
    changed = first_run
    while True:
        passes += 1
        if not first_run:
            percent[flagged] += sign * step

        model, baseline, schedule = _mutation_pass(state, percent, absolute, permitted, first_run)
        if first_run:
            break

        if np.any(np.abs(schedule - previous) > 0.5):
            changed = True
            break

        if passes >= plateau_retry_limit:
            if fallbacks >= plateau_retry_limit:
                logger.debug("Run %d: no schedule change possible, accepting stalled candidate", state.iteration_count)
                break
            fallbacks += 1
            passes = 0
            percent = percent_saved.copy()
            absolute[flagged] += sign
            logger.debug(
                "Run %d: percentage steps ineffective, switching to absolute change (%d)",
                state.iteration_count, fallbacks,
            )

        allowed = np.logical_or.reduce(list(permitted.values())) if permitted else np.ones_like(flagged)
        if not np.any(flagged & allowed):
            break

    new_state = replace(
        state,
        percent_factor=percent,
        absolute_add=absolute,
        change_permitted=permitted,
        schedule_baseline=baseline,
        schedule_last=previous,
        schedule_current=schedule,
    )
    model.name = f"{model.name} (Simulation run {state.iteration_count})"
    model.description = model.description + _describe_changes(new_state, percent, absolute)
    return Candidate(model=model, state=new_state, changed=changed)
