from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

_LOGGER = logging.getLogger("bowsense.motion")

BowDirection = Literal["unknown", "up", "down"]

FIELD_COUNT = 6
GYRO_WEIGHT = 0.7
ACCEL_WEIGHT = 0.3


@dataclass(frozen=True, slots=True)
class MotionSample:
    """One accelerometer + gyroscope reading."""

    ax: float = 0.0
    ay: float = 0.0
    az: float = 0.0
    gx: float = 0.0
    gy: float = 0.0
    gz: float = 0.0

    @property
    def accel_norm(self) -> float:
        return math.sqrt(self.ax * self.ax + self.ay * self.ay + self.az * self.az)

    @property
    def gyro_norm(self) -> float:
        return math.sqrt(self.gx * self.gx + self.gy * self.gy + self.gz * self.gz)

    @property
    def magnitude(self) -> float:
        return GYRO_WEIGHT * self.gyro_norm + ACCEL_WEIGHT * self.accel_norm


def _parse_field(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return value


def decode_line(line: str) -> MotionSample | None:
    """Decode ``ax,ay,az,gx,gy,gz``.

    Returns None when the line has fewer than six fields so the caller keeps
    its previous sample. Unparseable fields become 0.0; extra fields are ignored.
    """

    parts = line.strip().split(",")
    if len(parts) < FIELD_COUNT:
        return None
    values = [_parse_field(part.strip()) for part in parts[:FIELD_COUNT]]
    return MotionSample(*values)


class SampleFramer:
    """Reassembles newline-delimited samples from notification byte chunks."""

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | bytearray | memoryview) -> Iterator[MotionSample]:
        self._buffer += bytes(chunk).decode(self._encoding, errors="replace")
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            sample = decode_line(stripped)
            if sample is None:
                _LOGGER.debug("Dropping short sample line: %r", stripped)
                continue
            yield sample

    def reset(self) -> None:
        self._buffer = ""


@dataclass(frozen=True, slots=True)
class MotionReading:
    speed: float
    direction: BowDirection
    direction_changed: bool


class MotionSmoother:
    """Moving average of motion magnitude plus bow-direction hysteresis."""

    def __init__(self, *, window_size: int = 5, direction_threshold: float = 0.2) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self._window: deque[float] = deque(maxlen=window_size)
        self._direction_threshold = direction_threshold
        self._last_direction: BowDirection = "unknown"
        self._speed = 0.0

    @property
    def window(self) -> tuple[float, ...]:
        return tuple(self._window)

    @property
    def window_size(self) -> int:
        return self._window.maxlen or 0

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def direction(self) -> BowDirection:
        return self._last_direction

    def resize(self, window_size: int) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        if window_size == self.window_size:
            return
        self._window = deque(self._window, maxlen=window_size)
        self._speed = sum(self._window) / len(self._window) if self._window else 0.0

    def observe(self, sample: MotionSample) -> MotionReading:
        self._window.append(sample.magnitude)
        self._speed = sum(self._window) / len(self._window)

        threshold = self._direction_threshold
        if sample.ax > threshold:
            direction: BowDirection = "up"
        elif sample.ax < -threshold:
            direction = "down"
        else:
            direction = self._last_direction

        changed = (
            direction != "unknown"
            and self._last_direction != "unknown"
            and direction != self._last_direction
        )
        if changed:
            _LOGGER.debug("Bow direction changed: %s -> %s", self._last_direction, direction)
        if direction != "unknown":
            self._last_direction = direction
        return MotionReading(speed=self._speed, direction=direction, direction_changed=changed)

    def reset(self) -> None:
        self._window.clear()
        self._speed = 0.0
        self._last_direction = "unknown"
