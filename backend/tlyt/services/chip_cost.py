"""Chip cost calculation"""
import math

from tlyt.core.exceptions import InvalidDurationError

# One chip covers 30 minutes of video
SECONDS_PER_CHIP = 30 * 60


def calculate_chip_cost(duration_seconds) -> int:
    """
    Chips needed to analyse a video of the given length.

    cost = ceil(duration / 30 minutes), never less than 1. A zero, negative or
    non-numeric duration is an input error, never a default cost.
    """
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, (int, float)):
        raise InvalidDurationError(f"Duration must be a number of seconds, got {duration_seconds!r}")
    if not math.isfinite(duration_seconds) or duration_seconds <= 0:
        raise InvalidDurationError(f"Duration must be positive, got {duration_seconds!r}")

    return max(1, math.ceil(duration_seconds / SECONDS_PER_CHIP))
