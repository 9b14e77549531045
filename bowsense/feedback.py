from __future__ import annotations

import logging
import math
from typing import Callable

from .logging_utils import debug_enabled
from .timers import Cancellable, Scheduler, resolve_scheduler

_LOGGER = logging.getLogger("bowsense.feedback")

SIGNIFICANT_CHANGE = 0.02
IDLE_RAMP_MS = 3000.0
IDLE_WAVE_PERIOD_MS = 4000.0
IDLE_WAVE_CENTER = 60.0
IDLE_WAVE_DEPTH = 40.0


def encode_volume_message(percent: int) -> bytes:
    """Wire format understood by the motion device: ``VOL:<0-100>\\n``."""
    clamped = max(0, min(100, int(percent)))
    return f"VOL:{clamped}\n".encode("ascii")


class VolumeFeedback:
    """Decides which emitted volumes are echoed back to the device.

    Messages go out on a transition to silence, on a transition to full
    volume, on a change of more than two percent in between, or when forced.
    """

    def __init__(self, *, scale: float = 1.0, enabled: bool = True) -> None:
        self.scale = scale
        self.enabled = enabled
        self._previous = 0.0

    @property
    def previous(self) -> float:
        return self._previous

    def percent_for(self, volume: float) -> int:
        return round(max(0.0, min(1.0, volume)) * self.scale * 100)

    def observe(self, volume: float, *, force: bool = False) -> bytes | None:
        clamped = max(0.0, min(1.0, volume))
        previous = self._previous
        self._previous = clamped
        if not self.enabled:
            return None

        to_zero = clamped == 0.0 and previous > 0.0
        to_max = clamped == 1.0 and previous < 1.0
        significant = 0.0 < clamped < 1.0 and abs(clamped - previous) > SIGNIFICANT_CHANGE
        if not (force or to_zero or to_max or significant):
            return None
        return encode_volume_message(self.percent_for(clamped))

    def reset(self) -> None:
        self._previous = 0.0


def idle_level(elapsed_ms: float) -> int:
    """LED level while no playback is active: ramp up, then breathe."""

    if elapsed_ms < IDLE_RAMP_MS:
        return round(max(elapsed_ms, 0.0) / IDLE_RAMP_MS * 100)
    phase = ((elapsed_ms - IDLE_RAMP_MS) % IDLE_WAVE_PERIOD_MS) / IDLE_WAVE_PERIOD_MS
    return round(IDLE_WAVE_CENTER + IDLE_WAVE_DEPTH * math.cos(phase * math.pi * 2))


def fade_to_zero_levels(
    start_percent: int,
    duration_ms: float = 1000.0,
    *,
    step_ms: float = 30.0,
) -> list[int]:
    """Levels for a quadratic ease-out from ``start_percent`` down to 0."""

    if step_ms <= 0:
        raise ValueError("step_ms must be positive")
    if duration_ms <= 0:
        return [0]
    levels: list[int] = []
    elapsed = 0.0
    while True:
        progress = min(elapsed / duration_ms, 1.0)
        eased = 1.0 - (1.0 - progress) ** 2
        levels.append(round(start_percent * (1.0 - eased)))
        if progress >= 1.0:
            break
        elapsed += step_ms
    _LOGGER.debug("Fade-to-zero: %d steps from %d%%", len(levels), start_percent)
    return levels


class DeviceFeedback:
    """Echoes playback volume to the motion device and runs its idle animation.

    ``emit`` receives encoded ``VOL:`` messages. When playback stops the level
    is eased down to zero, and after ``idle_delay_ms`` of inactivity the
    device switches to the breathing idle animation until playback resumes.
    """

    def __init__(
        self,
        emit: Callable[[bytes], None],
        *,
        scale: float = 1.0,
        enabled: bool = True,
        scheduler: Scheduler | None = None,
        idle_delay_ms: float = 5000.0,
        idle_interval_ms: float = 50.0,
        fade_ms: float = 1000.0,
        fade_step_ms: float = 30.0,
    ) -> None:
        self._emit = emit
        self._volume = VolumeFeedback(scale=scale, enabled=enabled)
        self._scheduler = resolve_scheduler(scheduler)
        self._idle_delay_ms = idle_delay_ms
        self._idle_interval_ms = idle_interval_ms
        self._fade_ms = fade_ms
        self._fade_step_ms = fade_step_ms
        self._pending: Cancellable | None = None
        self._idle = False
        self._idle_elapsed_ms = 0.0
        self._last_idle_level: int | None = None
        self._held_level = 0

    @property
    def idle(self) -> bool:
        return self._idle

    @property
    def enabled(self) -> bool:
        return self._volume.enabled

    def configure(self, *, scale: float, enabled: bool) -> None:
        was_enabled = self._volume.enabled
        self._volume.scale = scale
        self._volume.enabled = enabled
        if was_enabled and not enabled:
            # Keep the device lit while its level no longer tracks playback.
            self.send_level(100)

    def report(self, volume: float, *, force: bool = False) -> None:
        if self._idle:
            return
        message = self._volume.observe(volume, force=force)
        if message is not None:
            self._send(message)

    def send_level(self, percent: int) -> None:
        self._send(encode_volume_message(percent))

    def hold_level(self, percent: int) -> None:
        """Send a fixed level that ``wind_down`` later eases from."""
        self._held_level = max(0, min(100, int(percent)))
        self.send_level(self._held_level)

    def wake(self) -> None:
        """Cancel any ramp or idle animation; playback is about to start."""
        self._cancel_pending()
        self._held_level = 0
        if self._idle:
            _LOGGER.info("Exiting idle mode")
        self._idle = False

    def wind_down(self) -> None:
        """Ease the device level to zero, then schedule the idle animation."""
        start = max(self._volume.percent_for(self._volume.previous), self._held_level)
        self.wake()
        self._volume.reset()
        levels: list[int] = []
        if start > 0:
            levels = fade_to_zero_levels(start, self._fade_ms, step_ms=self._fade_step_ms)
        self._run_ramp(levels)

    def _run_ramp(self, levels: list[int]) -> None:
        self._pending = None
        if not levels:
            self._pending = self._scheduler.call_later(
                self._idle_delay_ms / 1000.0, self._enter_idle
            )
            return
        level, rest = levels[0], levels[1:]
        self.send_level(level)
        self._pending = self._scheduler.call_later(
            self._fade_step_ms / 1000.0, lambda: self._run_ramp(rest)
        )

    def _enter_idle(self) -> None:
        self._pending = None
        self._idle = True
        self._idle_elapsed_ms = 0.0
        self._last_idle_level = None
        _LOGGER.info("Entering idle mode")
        self._idle_tick()

    def _idle_tick(self) -> None:
        self._pending = None
        if not self._idle:
            return
        level = idle_level(self._idle_elapsed_ms)
        if level != self._last_idle_level:
            self.send_level(level)
            self._last_idle_level = level
        self._idle_elapsed_ms += self._idle_interval_ms
        self._pending = self._scheduler.call_later(
            self._idle_interval_ms / 1000.0, self._idle_tick
        )

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _send(self, message: bytes) -> None:
        try:
            self._emit(message)
        except Exception as exc:
            _LOGGER.warning("Device feedback failed: %s", exc, exc_info=debug_enabled())
