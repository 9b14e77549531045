from __future__ import annotations

import pytest
from fakes import FakeScheduler

from bowsense.errors import SchedulerUnavailableError
from bowsense.feedback import (
    DeviceFeedback,
    VolumeFeedback,
    encode_volume_message,
    fade_to_zero_levels,
    idle_level,
)


def test_encode_volume_message_clamps() -> None:
    assert encode_volume_message(55) == b"VOL:55\n"
    assert encode_volume_message(150) == b"VOL:100\n"
    assert encode_volume_message(-5) == b"VOL:0\n"


class TestVolumeFeedback:
    def test_sends_on_significant_changes_only(self) -> None:
        feedback = VolumeFeedback()
        assert feedback.observe(0.5) == b"VOL:50\n"
        assert feedback.observe(0.51) is None
        assert feedback.observe(0.6) == b"VOL:60\n"
        assert feedback.observe(1.0) == b"VOL:100\n"
        assert feedback.observe(1.0) is None
        assert feedback.observe(0.0) == b"VOL:0\n"
        assert feedback.observe(0.0) is None

    def test_force_always_sends(self) -> None:
        feedback = VolumeFeedback()
        assert feedback.observe(0.0, force=True) == b"VOL:0\n"

    def test_scale_applies_to_percent(self) -> None:
        feedback = VolumeFeedback(scale=0.5)
        assert feedback.observe(1.0) == b"VOL:50\n"

    def test_disabled_tracks_but_never_sends(self) -> None:
        feedback = VolumeFeedback(enabled=False)
        assert feedback.observe(0.7) is None
        assert feedback.previous == pytest.approx(0.7)


def test_idle_level_ramps_then_breathes() -> None:
    assert idle_level(0.0) == 0
    assert idle_level(1500.0) == 50
    assert idle_level(3000.0) == 100
    assert idle_level(5000.0) == 20
    assert idle_level(7000.0) == 100


def test_fade_to_zero_levels() -> None:
    assert fade_to_zero_levels(100, 90.0, step_ms=30.0) == [100, 44, 11, 0]
    assert fade_to_zero_levels(80, 0.0) == [0]
    with pytest.raises(ValueError):
        fade_to_zero_levels(80, 100.0, step_ms=0.0)


class TestDeviceFeedback:
    def _device(self) -> tuple[DeviceFeedback, list[bytes], FakeScheduler]:
        sent: list[bytes] = []
        scheduler = FakeScheduler()
        device = DeviceFeedback(
            sent.append,
            scheduler=scheduler,
            idle_delay_ms=5000.0,
            fade_ms=90.0,
            fade_step_ms=30.0,
        )
        return device, sent, scheduler

    def test_report_forwards_messages(self) -> None:
        device, sent, _ = self._device()
        device.report(0.5)
        device.report(0.505)
        assert sent == [b"VOL:50\n"]

    def test_wind_down_ramps_then_idles(self) -> None:
        device, sent, scheduler = self._device()
        device.report(1.0)
        device.wind_down()
        assert sent == [b"VOL:100\n", b"VOL:100\n"]

        for _ in range(3):
            scheduler.fire_next()
        assert sent[-3:] == [b"VOL:44\n", b"VOL:11\n", b"VOL:0\n"]
        assert not device.idle

        scheduler.fire_next()
        assert not device.idle
        idle_handle = scheduler.fire_next()
        assert idle_handle.delay == pytest.approx(5.0)
        assert device.idle
        assert sent[-1] == b"VOL:0\n"

        scheduler.fire_next()
        assert device.idle
        assert sent[-1] == b"VOL:2\n"
        assert scheduler.pending[0].delay == pytest.approx(0.05)

    def test_wind_down_eases_from_held_level(self) -> None:
        device, sent, scheduler = self._device()
        device.hold_level(100)
        device.wind_down()
        for _ in range(4):
            scheduler.fire_next()
        assert sent == [b"VOL:100\n", b"VOL:100\n", b"VOL:44\n", b"VOL:11\n", b"VOL:0\n"]
        assert scheduler.pending[0].delay == pytest.approx(5.0)

    def test_wake_forgets_held_level(self) -> None:
        device, sent, scheduler = self._device()
        device.hold_level(100)
        device.wake()
        device.wind_down()
        assert sent == [b"VOL:100\n"]
        assert scheduler.pending[0].delay == pytest.approx(5.0)

    def test_reports_are_ignored_while_idle(self) -> None:
        device, sent, scheduler = self._device()
        device.wind_down()
        scheduler.fire_next()
        assert device.idle
        count = len(sent)
        device.report(0.8)
        assert len(sent) == count

    def test_wake_cancels_animation(self) -> None:
        device, _, scheduler = self._device()
        device.wind_down()
        scheduler.fire_next()
        assert device.idle
        device.wake()
        assert not device.idle
        assert scheduler.pending == []

    def test_disabling_keeps_device_lit(self) -> None:
        device, sent, _ = self._device()
        device.configure(scale=1.0, enabled=False)
        assert sent == [b"VOL:100\n"]
        assert not device.enabled
        device.report(0.3)
        assert sent == [b"VOL:100\n"]

    def test_emit_failure_is_logged(self) -> None:
        def _broken(message: bytes) -> None:
            raise OSError("link lost")

        device = DeviceFeedback(_broken, scheduler=FakeScheduler())
        device.report(0.5)
        device.send_level(10)


def test_device_feedback_requires_scheduler_outside_event_loop() -> None:
    with pytest.raises(SchedulerUnavailableError):
        DeviceFeedback(lambda message: None)
