from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("bowsense.config")

ENV_PREFIX = "BOWSENSE_"

DEFAULT_MOTION_THRESHOLD = 0.15
DEFAULT_MAX_GAIN = 1.0
DEFAULT_WINDOW_SIZE = 5
DEFAULT_FADE_IN_MS = 500.0
DEFAULT_FADE_OUT_MS = 30.0
MAX_MOTION_SPEED = 250.0
DEFAULT_VOLUME_HISTORY_SIZE = 5
DEFAULT_PARSE_TIMEOUT_S = 10.0


class EngineConfig(BaseModel):
    """Tuning knobs shared by the motion, gain, fade and sequencer engines."""

    motion_threshold: float = Field(default=DEFAULT_MOTION_THRESHOLD, ge=0.0, le=1.0)
    max_gain: float = Field(default=DEFAULT_MAX_GAIN, ge=0.0, le=1.0)
    smoothing_window_size: int = Field(default=DEFAULT_WINDOW_SIZE, ge=1)
    fade_in_duration_ms: float = Field(default=DEFAULT_FADE_IN_MS, ge=0.0)
    # Deliberately fast so silence arrives as soon as the bow stops.
    fade_out_duration_ms: float = Field(default=DEFAULT_FADE_OUT_MS, ge=0.0)
    max_motion_speed: float = Field(default=MAX_MOTION_SPEED, gt=0.0)
    volume_history_size: int = Field(default=DEFAULT_VOLUME_HISTORY_SIZE, ge=1)
    direction_threshold: float = Field(default=0.2, gt=0.0)
    pause_floor: float = Field(default=0.05, ge=0.0, le=1.0)
    settle_epsilon: float = Field(default=0.01, gt=0.0)
    parse_timeout_s: float = Field(default=DEFAULT_PARSE_TIMEOUT_S, gt=0.0)
    feedback_scale: float = Field(default=1.0, ge=0.0, le=1.0)
    feedback_enabled: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """Create config from dict (e.g., from JSON)."""
        return cls.model_validate(data)


class EngineConfigUpdate(BaseModel):
    """Partial config change, e.g. a slider moved while a session is live."""

    motion_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    max_gain: float | None = Field(default=None, ge=0.0, le=1.0)
    smoothing_window_size: int | None = Field(default=None, ge=1)
    fade_in_duration_ms: float | None = Field(default=None, ge=0.0)
    fade_out_duration_ms: float | None = Field(default=None, ge=0.0)
    max_motion_speed: float | None = Field(default=None, gt=0.0)
    volume_history_size: int | None = Field(default=None, ge=1)
    direction_threshold: float | None = Field(default=None, gt=0.0)
    pause_floor: float | None = Field(default=None, ge=0.0, le=1.0)
    settle_epsilon: float | None = Field(default=None, gt=0.0)
    parse_timeout_s: float | None = Field(default=None, gt=0.0)
    feedback_scale: float | None = Field(default=None, ge=0.0, le=1.0)
    feedback_enabled: bool | None = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: object) -> object:
        if not isinstance(data, Mapping):
            return data
        return {key: value for key, value in data.items() if value is not None}

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.changes()

    def apply_to(self, base: EngineConfig) -> EngineConfig:
        """Return a new validated config with this update's fields applied."""
        changes = self.changes()
        if not changes:
            return base
        merged = {**base.model_dump(), **changes}
        return parse_config(merged)


def parse_config(payload: Mapping[str, Any]) -> EngineConfig:
    try:
        return EngineConfig.model_validate(payload)
    except ValidationError as exc:
        raise InvalidConfigError(f"Invalid engine config: {exc}") from exc


def parse_update(payload: Mapping[str, Any]) -> EngineConfigUpdate:
    try:
        return EngineConfigUpdate.model_validate(payload)
    except ValidationError as exc:
        raise InvalidConfigError(f"Invalid engine config update: {exc}") from exc


def config_from_env(
    *,
    prefix: str = ENV_PREFIX,
    environ: Mapping[str, str] | None = None,
    base: EngineConfig | None = None,
) -> EngineConfig:
    """Overlay ``<PREFIX><FIELD>`` environment variables onto ``base``."""

    source = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name in EngineConfig.model_fields:
        raw = source.get(f"{prefix}{name.upper()}")
        if raw is None or raw.strip() == "":
            continue
        overrides[name] = raw.strip()
    if overrides:
        _LOGGER.info("Config overrides from environment: %s", sorted(overrides))
    return parse_update(overrides).apply_to(base or EngineConfig())
