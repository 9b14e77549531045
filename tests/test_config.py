from __future__ import annotations

import pytest
from pydantic import ValidationError

from bowsense.config import (
    EngineConfig,
    EngineConfigUpdate,
    config_from_env,
    parse_config,
    parse_update,
)
from bowsense.errors import BowsenseError, InvalidConfigError


def test_defaults() -> None:
    config = EngineConfig()
    assert config.motion_threshold == 0.15
    assert config.max_gain == 1.0
    assert config.smoothing_window_size == 5
    assert config.fade_in_duration_ms == 500.0
    assert config.fade_out_duration_ms == 30.0
    assert config.max_motion_speed == 250.0
    assert config.volume_history_size == 5
    assert config.settle_epsilon == 0.01


@pytest.mark.parametrize(
    "payload",
    [
        {"motion_threshold": 1.5},
        {"max_gain": -0.1},
        {"smoothing_window_size": 0},
        {"fade_out_duration_ms": -1},
        {"max_motion_speed": 0},
        {"volume_history_size": 0},
    ],
)
def test_rejects_out_of_range(payload: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        EngineConfig.model_validate(payload)


def test_rejects_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        EngineConfig.model_validate({"gain": 0.5})


def test_config_is_frozen() -> None:
    config = EngineConfig()
    with pytest.raises(ValidationError):
        config.max_gain = 0.5  # type: ignore[misc]


def test_from_dict() -> None:
    assert EngineConfig.from_dict({"max_gain": 0.25}).max_gain == 0.25


def test_parse_config_wraps_validation_errors() -> None:
    with pytest.raises(InvalidConfigError) as excinfo:
        parse_config({"max_gain": 2.0})
    assert isinstance(excinfo.value, BowsenseError)
    assert isinstance(excinfo.value.__cause__, ValidationError)


def test_parse_update_wraps_validation_errors() -> None:
    with pytest.raises(InvalidConfigError):
        parse_update({"smoothing_window_size": "many"})


class TestUpdate:
    def test_apply_merges_changes(self) -> None:
        base = EngineConfig(max_gain=0.9)
        updated = EngineConfigUpdate(motion_threshold=0.3).apply_to(base)
        assert updated.motion_threshold == 0.3
        assert updated.max_gain == 0.9
        assert base.motion_threshold == 0.15

    def test_nulls_are_dropped(self) -> None:
        update = parse_update({"max_gain": None, "fade_in_duration_ms": 250})
        assert update.changes() == {"fade_in_duration_ms": 250.0}

    def test_empty_update_returns_base(self) -> None:
        base = EngineConfig()
        update = EngineConfigUpdate()
        assert update.is_empty()
        assert update.apply_to(base) is base


class TestFromEnv:
    def test_reads_prefixed_variables(self) -> None:
        environ = {
            "BOWSENSE_MOTION_THRESHOLD": "0.2",
            "BOWSENSE_FEEDBACK_ENABLED": "false",
            "BOWSENSE_SMOOTHING_WINDOW_SIZE": " 8 ",
            "BOWSENSE_MAX_GAIN": "",
            "OTHER_MAX_GAIN": "0.1",
        }
        config = config_from_env(environ=environ)
        assert config.motion_threshold == 0.2
        assert config.feedback_enabled is False
        assert config.smoothing_window_size == 8
        assert config.max_gain == 1.0

    def test_custom_prefix_and_base(self) -> None:
        base = EngineConfig(max_gain=0.5)
        environ = {"BOW_FADE_IN_DURATION_MS": "100"}
        config = config_from_env(prefix="BOW_", environ=environ, base=base)
        assert config.fade_in_duration_ms == 100.0
        assert config.max_gain == 0.5

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BOWSENSE_PAUSE_FLOOR", "0.1")
        assert config_from_env().pause_floor == 0.1

    def test_invalid_value_raises(self) -> None:
        with pytest.raises(InvalidConfigError):
            config_from_env(environ={"BOWSENSE_MAX_GAIN": "loud"})
