from __future__ import annotations

import logging
import time
from typing import Callable, Literal, Protocol

from pydantic import BaseModel, ConfigDict

from .config import EngineConfig, EngineConfigUpdate
from .fade import FadeEngine
from .feedback import DeviceFeedback
from .gain import compute_target_gain, normalize_speed
from .logging_utils import debug_enabled
from .midi import FALLBACK_SCALE, MidiBytes, MidiNoteEvent, NoteSequence
from .midi import aload_note_sequence, load_note_sequence
from .motion import BowDirection, MotionSample, MotionSmoother, SampleFramer, decode_line
from .sequencer import NoteSequencer, NoteSink
from .timers import Scheduler, resolve_scheduler

_LOGGER = logging.getLogger("bowsense.session")

PlaybackMode = Literal["stream", "notes"]


class AudioSink(Protocol):
    """Streamed recording whose gain the session controls."""

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def set_volume(self, volume: float) -> None: ...


class SessionFrame(BaseModel):
    """Snapshot of one processed sample."""

    sample: MotionSample
    speed: float
    normalized_speed: float
    direction: BowDirection
    direction_changed: bool
    target_gain: float | None = None
    should_play: bool | None = None
    volume: float | None = None

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)


class SessionHooks(BaseModel):
    on_frame: Callable[[SessionFrame], None] | None = None
    on_direction_change: Callable[[BowDirection], None] | None = None
    on_volume: Callable[[float, bool], None] | None = None
    on_feedback: Callable[[bytes], None] | None = None
    on_note: Callable[[int, MidiNoteEvent], None] | None = None
    on_mode_change: Callable[[PlaybackMode], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class Session:
    """One motion-controlled playback session.

    Owns the smoothing window, fade engine, note sequencer and device
    feedback, plus the mode and play/preview flags. Everything runs on the
    caller's thread; a multi-threaded host must serialize calls. Without an
    explicit ``scheduler`` it must be built inside a running event loop.
    """

    def __init__(
        self,
        sink: AudioSink,
        note_sink: NoteSink,
        *,
        config: EngineConfig | None = None,
        hooks: SessionHooks | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = _monotonic_ms,
        notes: NoteSequence = FALLBACK_SCALE,
    ) -> None:
        self._config = config or EngineConfig()
        self._hooks = hooks or SessionHooks()
        self._sink = sink
        self._clock = clock
        self._scheduler = resolve_scheduler(scheduler)
        self._smoother = MotionSmoother(
            window_size=self._config.smoothing_window_size,
            direction_threshold=self._config.direction_threshold,
        )
        self._fade = FadeEngine(
            fade_in_duration_ms=self._config.fade_in_duration_ms,
            fade_out_duration_ms=self._config.fade_out_duration_ms,
            history_size=self._config.volume_history_size,
        )
        self._sequencer = NoteSequencer(
            note_sink,
            notes=notes,
            scheduler=self._scheduler,
            max_gain=self._config.max_gain,
            on_note=self._hooks.on_note,
        )
        self._feedback = DeviceFeedback(
            self._emit_feedback,
            scale=self._config.feedback_scale,
            enabled=self._config.feedback_enabled,
            scheduler=self._scheduler,
        )
        self._framer = SampleFramer()
        self._sample = MotionSample()
        self._mode: PlaybackMode = "stream"
        self._motion_playing = False
        self._preview_playing = False
        self._sink_playing = False

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def mode(self) -> PlaybackMode:
        return self._mode

    @property
    def motion_playing(self) -> bool:
        return self._motion_playing

    @property
    def preview_playing(self) -> bool:
        return self._preview_playing

    @property
    def sink_playing(self) -> bool:
        return self._sink_playing

    @property
    def volume(self) -> float:
        return self._fade.volume

    @property
    def sample(self) -> MotionSample:
        return self._sample

    @property
    def smoother(self) -> MotionSmoother:
        return self._smoother

    @property
    def fade(self) -> FadeEngine:
        return self._fade

    @property
    def sequencer(self) -> NoteSequencer:
        return self._sequencer

    @property
    def feedback(self) -> DeviceFeedback:
        return self._feedback

    # ------------------------------------------------------------------
    # Sample intake
    # ------------------------------------------------------------------

    def handle_bytes(self, chunk: bytes, now_ms: float | None = None) -> list[SessionFrame]:
        return [self.handle_sample(sample, now_ms) for sample in self._framer.feed(chunk)]

    def handle_line(self, line: str, now_ms: float | None = None) -> SessionFrame | None:
        sample = decode_line(line)
        if sample is None:
            _LOGGER.debug("Ignoring short sample line: %r", line)
            return None
        return self.handle_sample(sample, now_ms)

    def handle_sample(self, sample: MotionSample, now_ms: float | None = None) -> SessionFrame:
        now = self._clock() if now_ms is None else now_ms
        self._sample = sample
        reading = self._smoother.observe(sample)
        normalized = normalize_speed(reading.speed, self._config.max_motion_speed)
        self._sequencer.normalized_speed = normalized

        if reading.direction_changed:
            hook = self._hooks.on_direction_change
            self._call_hook("on_direction_change", hook, reading.direction)

        target_gain: float | None = None
        should_play: bool | None = None
        volume: float | None = None
        if self._motion_playing and self._mode == "notes":
            self._gate_notes(normalized)
        elif self._motion_playing and self._mode == "stream":
            target = compute_target_gain(
                reading.speed,
                self._config.motion_threshold,
                self._config.max_gain,
                max_motion_speed=self._config.max_motion_speed,
                pause_floor=self._config.pause_floor,
            )
            target_gain, should_play = target
            volume = self._drive_stream(target_gain, should_play, now)

        frame = SessionFrame(
            sample=sample,
            speed=reading.speed,
            normalized_speed=normalized,
            direction=reading.direction,
            direction_changed=reading.direction_changed,
            target_gain=target_gain,
            should_play=should_play,
            volume=volume,
        )
        self._call_hook("on_frame", self._hooks.on_frame, frame)
        return frame

    def _gate_notes(self, normalized: float) -> None:
        threshold = self._config.motion_threshold
        moving = threshold <= 0.0 or normalized >= threshold
        if moving and not self._sequencer.is_playing:
            self._sequencer.start_motion()
        elif not moving and self._sequencer.is_playing:
            self._sequencer.stop()

    def _drive_stream(self, target_gain: float, should_play: bool, now: float) -> float:
        if should_play:
            if not self._sink_playing:
                self._sink_call("play")
            volume = self._fade.advance(self._fade.volume, target_gain, now)
            self._set_volume(volume)
            self._call_hook("on_volume", self._hooks.on_volume, volume, True)
            return volume

        volume = self._fade.advance(self._fade.volume, 0.0, now)
        self._set_volume(volume)
        if self._sink_playing and self._fade.is_settled_at_zero(self._config.settle_epsilon):
            self._sink_call("pause")
            self._set_volume(0.0, force=True)
            _LOGGER.info("Audio paused after fade-out complete")
        self._call_hook("on_volume", self._hooks.on_volume, volume, False)
        return volume

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def set_mode(self, mode: PlaybackMode) -> None:
        if mode == self._mode:
            return
        if self._preview_playing:
            self._preview_playing = False
        self._halt_output()
        self._mode = mode
        _LOGGER.info("Playback mode changed to: %s", mode)
        self._call_hook("on_mode_change", self._hooks.on_mode_change, mode)

    def start_motion_playback(self) -> None:
        if self._motion_playing:
            return
        self._feedback.wake()
        if self._preview_playing:
            self._preview_playing = False
            self._halt_output()
            _LOGGER.info("Preview stopped (motion playback started)")
        self._motion_playing = True
        if self._mode == "stream":
            self._sink_call("play")
        _LOGGER.info("Motion playback started (%s mode)", self._mode)

    def stop_motion_playback(self) -> None:
        if not self._motion_playing:
            return
        self._motion_playing = False
        self._halt_output()
        self._feedback.wind_down()
        _LOGGER.info("Motion playback stopped")

    def toggle_motion_playback(self) -> bool:
        if self._motion_playing:
            self.stop_motion_playback()
        else:
            self.start_motion_playback()
        return self._motion_playing

    def start_preview(self) -> None:
        if self._preview_playing:
            return
        self._feedback.wake()
        if self._motion_playing:
            self._motion_playing = False
            self._halt_output()
            _LOGGER.info("Motion playback paused (preview started)")
        self._preview_playing = True
        self._feedback.hold_level(100)
        if self._mode == "stream":
            self._fade.cancel()
            self._sink_call("play")
            self._sink_call("set_volume", self._config.max_gain)
        else:
            self._sequencer.start_preview()
        _LOGGER.info("Preview started (%s mode)", self._mode)

    def stop_preview(self) -> None:
        if not self._preview_playing:
            return
        self._preview_playing = False
        self._halt_output()
        self._feedback.wind_down()
        _LOGGER.info("Preview stopped")

    def toggle_preview(self) -> bool:
        if self._preview_playing:
            self.stop_preview()
        else:
            self.start_preview()
        return self._preview_playing

    def stop(self) -> None:
        """Stop everything; the session is silent and idle on return."""
        self._motion_playing = False
        self._preview_playing = False
        self._halt_output()
        self._feedback.wake()

    def _halt_output(self) -> None:
        self._sequencer.stop()
        self._fade.cancel()
        if self._sink_playing:
            self._sink_call("pause")
        self._sink_call("set_volume", 0.0)

    # ------------------------------------------------------------------
    # Configuration and material
    # ------------------------------------------------------------------

    def update_config(self, update: EngineConfigUpdate) -> EngineConfig:
        config = update.apply_to(self._config)
        self._config = config
        self._smoother.resize(config.smoothing_window_size)
        self._fade.fade_in_duration_ms = config.fade_in_duration_ms
        self._fade.fade_out_duration_ms = config.fade_out_duration_ms
        self._fade.resize_history(config.volume_history_size)
        self._sequencer.max_gain = config.max_gain
        self._feedback.configure(scale=config.feedback_scale, enabled=config.feedback_enabled)
        if self._preview_playing and update.max_gain is not None:
            if self._mode == "stream":
                self._sink_call("set_volume", config.max_gain)
            else:
                self._sequencer.refresh_gain()
        return config

    def load_notes(self, data: MidiBytes) -> NoteSequence:
        notes = load_note_sequence(data, timeout_s=self._config.parse_timeout_s)
        self._sequencer.load(notes)
        return notes

    async def aload_notes(self, data: MidiBytes) -> NoteSequence:
        notes = await aload_note_sequence(data, timeout_s=self._config.parse_timeout_s)
        self._sequencer.load(notes)
        return notes

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    def _set_volume(self, volume: float, *, force: bool = False) -> None:
        self._sink_call("set_volume", volume)
        self._feedback.report(volume, force=force)

    def _sink_call(self, name: str, *args: float) -> None:
        try:
            getattr(self._sink, name)(*args)
        except Exception as exc:
            _LOGGER.warning("Audio sink %s failed: %s", name, exc, exc_info=debug_enabled())
            return
        if name == "play":
            self._sink_playing = True
        elif name == "pause":
            self._sink_playing = False

    def _emit_feedback(self, message: bytes) -> None:
        if self._hooks.on_feedback is not None:
            self._hooks.on_feedback(message)

    def _call_hook(self, name: str, hook: Callable[..., None] | None, *args: object) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as exc:
            _LOGGER.warning("Session hook %s failed: %s", name, exc, exc_info=debug_enabled())
