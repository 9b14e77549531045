from __future__ import annotations

import pytest

from bowsense.gain import (
    compute_target_gain,
    ease_in_out,
    ease_out_steep,
    normalize_speed,
)


def test_still_bow_is_silent() -> None:
    target = compute_target_gain(0.0, 0.15, 1.0)
    assert target.target_gain == pytest.approx(0.0)
    assert target.should_play is False


def test_full_speed_saturates() -> None:
    target_gain, should_play = compute_target_gain(250.0, 0.15, 1.0)
    assert target_gain == 1.0
    assert should_play is True


def test_exactly_at_threshold_returns_max_gain() -> None:
    target = compute_target_gain(0.15 * 250.0, 0.15, 0.8)
    assert target.target_gain == 0.8
    assert target.should_play is True


def test_zero_threshold_is_always_above() -> None:
    assert compute_target_gain(0.0, 0.0, 0.6) == (0.6, True)


def test_monotonic_in_speed() -> None:
    gains = [compute_target_gain(float(speed), 0.3, 0.9).target_gain for speed in range(0, 300, 5)]
    assert all(later >= earlier for earlier, later in zip(gains, gains[1:]))


def test_below_threshold_uses_eased_ramp() -> None:
    # normalized 0.2 against threshold 0.5 -> progress 0.4 -> 2 * 0.4^2
    target = compute_target_gain(50.0, 0.5, 0.5)
    assert target.target_gain == pytest.approx(0.32 * 0.5)
    assert target.should_play is True


def test_pause_floor_drops_should_play() -> None:
    # progress 0.08 -> eased 0.0128, under the 5% floor
    target = compute_target_gain(10.0, 0.5, 1.0)
    assert target.target_gain == pytest.approx(0.0128)
    assert target.should_play is False


def test_custom_pause_floor() -> None:
    target = compute_target_gain(10.0, 0.5, 1.0, pause_floor=0.01)
    assert target.should_play is True


def test_easing_curves() -> None:
    assert ease_in_out(0.0) == 0.0
    assert ease_in_out(0.25) == pytest.approx(0.125)
    assert ease_in_out(0.5) == pytest.approx(0.5)
    assert ease_in_out(1.0) == 1.0
    assert ease_out_steep(0.1) == pytest.approx(1.0 - 0.9**20)
    assert ease_out_steep(1.0) == 1.0


def test_normalize_speed_clamps() -> None:
    assert normalize_speed(125.0) == pytest.approx(0.5)
    assert normalize_speed(1000.0) == 1.0
    assert normalize_speed(-5.0) == 0.0
    with pytest.raises(ValueError):
        normalize_speed(1.0, 0.0)
