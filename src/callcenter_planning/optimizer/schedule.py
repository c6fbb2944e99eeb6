"""
Interval Schedule Helpers
=========================

A schedule is a numpy vector with one entry per interval of the day. The
optimizer works on 48 (half-hour) or 96 (quarter-hour) slots; inputs may come
in at 24, 48 or 96 slots and are stretched to the working resolution.
"""

import numpy as np

SECONDS_PER_DAY = 86400
SUPPORTED_INTERVAL_COUNTS = (24, 48, 96)


def check_interval_count(length: int) -> None:
    if length not in SUPPORTED_INTERVAL_COUNTS:
        raise ValueError(
            f"Interval vectors must have 24, 48 or 96 entries, got {length}"
        )


def stretch(values, interval_count: int) -> np.ndarray:
    """Repeat each entry so that the vector has ``interval_count`` entries.

    Used for levels (agent counts, limits, flags) that hold for the whole slot.

    Raises:
        ValueError: If the vector would have to be shrunk.
    """
    data = np.asarray(values)
    check_interval_count(len(data))
    if len(data) == interval_count:
        return data.copy()
    if interval_count % len(data) != 0:
        raise ValueError(
            f"Cannot stretch {len(data)} intervals to {interval_count}"
        )
    return np.repeat(data, interval_count // len(data))


def spread(values, interval_count: int) -> np.ndarray:
    """Like :func:`stretch`, but splits amounts (e.g. calls) over the sub-slots."""
    data = np.asarray(values, dtype=float)
    factor = interval_count // len(data) if len(data) else 1
    return stretch(data, interval_count) / factor


def round_half_up(values) -> np.ndarray:
    # numpy rounds half to even; agent counts round .5 upward
    return np.floor(np.asarray(values, dtype=float) + 0.5)


def safe_divide(numerator, denominator) -> np.ndarray:
    """Element-wise division yielding 0 where the denominator is 0."""
    num = np.asarray(numerator, dtype=float)
    den = np.asarray(denominator, dtype=float)
    out = np.zeros(np.broadcast(num, den).shape, dtype=float)
    np.divide(num, den, out=out, where=den != 0)
    return out


def interval_slot_seconds(interval_count: int) -> float:
    return SECONDS_PER_DAY / interval_count


def format_time(seconds: float) -> str:
    total = int(round(seconds))
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}"


def interval_label(index: int, interval_count: int) -> str:
    """Return e.g. ``"08:30-09:00"`` for interval 17 of 48."""
    slot = interval_slot_seconds(interval_count)
    return f"{format_time(index * slot)}-{format_time((index + 1) * slot)}"


def rebin(values, interval_count: int) -> np.ndarray:
    """Spread or sum amounts so that the vector has ``interval_count`` entries."""
    data = np.asarray(values, dtype=float)
    if len(data) > interval_count:
        check_interval_count(len(data))
        return data.reshape(interval_count, -1).sum(axis=1)
    return spread(data, interval_count)
