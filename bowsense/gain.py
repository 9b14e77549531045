from __future__ import annotations

from typing import NamedTuple

from .config import MAX_MOTION_SPEED

DEFAULT_PAUSE_FLOOR = 0.05


class GainTarget(NamedTuple):
    target_gain: float
    should_play: bool


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def ease_in_out(progress: float) -> float:
    """Symmetric quadratic ease over [0, 1]."""
    p = _clamp01(progress)
    if p < 0.5:
        return 2.0 * p * p
    return 1.0 - 2.0 * (1.0 - p) ** 2


def ease_out_steep(progress: float, exponent: int = 20) -> float:
    """Front-loaded ease-out: most of the change happens in the first few percent."""
    p = _clamp01(progress)
    return 1.0 - (1.0 - p) ** exponent


def normalize_speed(motion_speed: float, max_motion_speed: float = MAX_MOTION_SPEED) -> float:
    if max_motion_speed <= 0:
        raise ValueError("max_motion_speed must be positive")
    return _clamp01(motion_speed / max_motion_speed)


def compute_target_gain(
    motion_speed: float,
    threshold: float,
    max_gain: float,
    *,
    max_motion_speed: float = MAX_MOTION_SPEED,
    pause_floor: float = DEFAULT_PAUSE_FLOOR,
) -> GainTarget:
    """Map smoothed motion speed to a target gain.

    At or above the threshold the gain saturates at ``max_gain``. Below it
    the gain follows an eased ramp, and ``should_play`` drops once the gain
    falls under ``pause_floor * max_gain``. Silence itself is left to the fade
    engine settling at zero.
    """

    normalized = normalize_speed(motion_speed, max_motion_speed)
    if threshold <= 0.0 or normalized >= threshold:
        return GainTarget(max_gain, True)

    progress = min(normalized / threshold, 1.0)
    target = ease_in_out(progress) * max_gain
    return GainTarget(target, target >= pause_floor * max_gain)
