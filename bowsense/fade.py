from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Literal

from .gain import ease_in_out, ease_out_steep

_LOGGER = logging.getLogger("bowsense.fade")

FadeDirection = Literal["in", "out"]

ZERO_EPSILON = 0.01
REDIRECT_TOLERANCE = 0.02
REACHED_TOLERANCE = 0.01
CLOSE_ENOUGH_TOLERANCE = 0.05


@dataclass(slots=True)
class FadeState:
    direction: FadeDirection
    start_time_ms: float
    start_volume: float
    target_volume: float
    duration_ms: float
    elapsed_ms: float = 0.0

    @property
    def progress(self) -> float:
        if self.duration_ms <= 0:
            return 1.0
        return min(max(self.elapsed_ms, 0.0) / self.duration_ms, 1.0)

    def eased(self) -> float:
        if self.direction == "out":
            return ease_out_steep(self.progress)
        return ease_in_out(self.progress)


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class FadeEngine:
    """Timed fade-in/fade-out followed by a moving-average pass.

    ``advance`` is called once per processed sample. A fade only starts on a
    crossing to or from silence; any other change is applied directly and
    softened by the volume history alone.
    """

    def __init__(
        self,
        *,
        fade_in_duration_ms: float = 500.0,
        fade_out_duration_ms: float = 30.0,
        history_size: int = 5,
    ) -> None:
        if history_size < 1:
            raise ValueError("history_size must be >= 1")
        self.fade_in_duration_ms = fade_in_duration_ms
        self.fade_out_duration_ms = fade_out_duration_ms
        self._history: deque[float] = deque(maxlen=history_size)
        self._state: FadeState | None = None
        self._volume = 0.0

    @property
    def state(self) -> FadeState | None:
        return self._state

    @property
    def is_fading(self) -> bool:
        return self._state is not None

    @property
    def volume(self) -> float:
        """Last emitted (smoothed) volume."""
        return self._volume

    @property
    def history(self) -> tuple[float, ...]:
        return tuple(self._history)

    def resize_history(self, history_size: int) -> None:
        if history_size < 1:
            raise ValueError("history_size must be >= 1")
        self._history = deque(self._history, maxlen=history_size)

    def is_settled_at_zero(self, epsilon: float = ZERO_EPSILON) -> bool:
        return self._volume < epsilon

    def cancel(self) -> None:
        """Drop any in-flight fade and the smoothing history."""
        if self._state is not None:
            _LOGGER.debug("Fade %s cancelled", self._state.direction)
        self._state = None
        self._history.clear()
        self._volume = 0.0

    def _duration_for(self, direction: FadeDirection) -> float:
        return self.fade_in_duration_ms if direction == "in" else self.fade_out_duration_ms

    def _maybe_start(self, current: float, target: float, now_ms: float) -> None:
        from_zero = current < ZERO_EPSILON and target > ZERO_EPSILON
        to_zero = current > ZERO_EPSILON and target < ZERO_EPSILON
        if not (from_zero or to_zero):
            return
        direction: FadeDirection = "in" if from_zero else "out"
        duration = self._duration_for(direction)
        if duration <= 0:
            return
        self._state = FadeState(
            direction=direction,
            start_time_ms=now_ms,
            start_volume=current,
            target_volume=target,
            duration_ms=duration,
        )
        # Old history would drag the fade's first steps back toward the previous level.
        self._history.clear()
        _LOGGER.debug(
            "Starting fade-%s from %.0f%% to %.0f%%", direction, current * 100, target * 100
        )

    def _step_fade(self, state: FadeState, target: float, now_ms: float) -> float:
        target_changed = abs(state.target_volume - target) > REDIRECT_TOLERANCE
        if target_changed:
            state.target_volume = target

        state.duration_ms = self._duration_for(state.direction)
        state.elapsed_ms = now_ms - state.start_time_ms
        progress = state.progress
        output = state.start_volume + (target - state.start_volume) * state.eased()

        reached = abs(output - target) < REACHED_TOLERANCE
        overshot = (state.start_volume < target and output > target) or (
            state.start_volume > target and output < target
        )
        close_enough = abs(output - target) < CLOSE_ENOUGH_TOLERANCE and not target_changed
        if progress >= 1.0 or reached or overshot or close_enough:
            if progress < 1.0:
                _LOGGER.debug("Fade stopped early at %.0f%%", target * 100)
            else:
                _LOGGER.debug("Fade complete at %.0f%%", target * 100)
            self._state = None
            return target
        return output

    def advance(self, current_volume: float, target_volume: float, now_ms: float) -> float:
        """Return the next volume to emit downstream."""

        current = _clamp01(current_volume)
        target = _clamp01(target_volume)

        if self._state is None:
            self._maybe_start(current, target, now_ms)

        if self._state is not None:
            value = self._step_fade(self._state, target, now_ms)
        else:
            value = target

        self._history.append(value)
        self._volume = sum(self._history) / len(self._history)
        return self._volume
