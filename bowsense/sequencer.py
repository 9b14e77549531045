from __future__ import annotations

import logging
from typing import Callable, Literal, Protocol

from .logging_utils import debug_enabled
from .midi import FALLBACK_SCALE, MidiNoteEvent, NoteSequence
from .timers import Cancellable, Scheduler, resolve_scheduler

_LOGGER = logging.getLogger("bowsense.sequencer")

SequencerPolicy = Literal["motion", "preview"]

REFERENCE_PITCH = 69  # A4
SEMITONE_RATIO = 1.059463
MIN_RATE = 0.5
MAX_RATE = 2.0


class NoteSink(Protocol):
    """Monophonic voice driven by the sequencer."""

    def start_note(self, note: MidiNoteEvent, *, gain: float, rate: float) -> None: ...

    def stop_note(self) -> None: ...

    def set_note_gain(self, gain: float) -> None: ...


def pitch_to_rate(pitch: int, *, reference: int = REFERENCE_PITCH) -> float:
    """Playback-rate multiplier for a single reference sample."""
    rate = SEMITONE_RATIO ** (pitch - reference)
    return max(MIN_RATE, min(MAX_RATE, rate))


def note_gain(
    velocity: int,
    *,
    max_gain: float,
    normalized_speed: float,
    preview: bool,
) -> float:
    level = max_gain if preview else normalized_speed * max_gain
    return velocity / 127.0 * level


class NoteSequencer:
    """Loops a note list, one voice at a time, on cancellable timers."""

    def __init__(
        self,
        sink: NoteSink,
        *,
        notes: NoteSequence = FALLBACK_SCALE,
        scheduler: Scheduler | None = None,
        max_gain: float = 1.0,
        on_note: Callable[[int, MidiNoteEvent], None] | None = None,
    ) -> None:
        self._sink = sink
        self._notes: NoteSequence = tuple(notes)
        self._scheduler = resolve_scheduler(scheduler)
        self._index = 0
        self._policy: SequencerPolicy | None = None
        self._pending: Cancellable | None = None
        self._current: MidiNoteEvent | None = None
        self._on_note = on_note
        self.max_gain = max_gain
        self.normalized_speed = 0.0

    @property
    def notes(self) -> NoteSequence:
        return self._notes

    @property
    def index(self) -> int:
        return self._index

    @property
    def policy(self) -> SequencerPolicy | None:
        return self._policy

    @property
    def is_playing(self) -> bool:
        return self._policy is not None

    @property
    def current_note(self) -> MidiNoteEvent | None:
        return self._current

    def load(self, notes: NoteSequence) -> None:
        """Replace the note list; stops playback and rewinds."""
        self.stop()
        self._notes = tuple(notes)
        self._index = 0
        _LOGGER.info("Loaded %d notes", len(self._notes))

    def start_motion(self) -> None:
        self._start("motion")

    def start_preview(self) -> None:
        self._start("preview", rewind=True)

    def stop(self) -> None:
        """Cancel the pending advance and silence the sounding note."""
        was_playing = self._policy is not None
        self._policy = None
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._silence()
        if was_playing:
            _LOGGER.info("Note playback stopped")

    def refresh_gain(self) -> None:
        """Re-derive the sounding note's gain after a max-gain change."""
        if self._current is None or self._policy is None:
            return
        gain = self._gain_for(self._current)
        try:
            self._sink.set_note_gain(gain)
        except Exception as exc:
            _LOGGER.warning("Note gain update failed: %s", exc, exc_info=debug_enabled())

    def _start(self, policy: SequencerPolicy, *, rewind: bool = False) -> None:
        if self._policy == policy:
            return
        self.stop()
        if not self._notes:
            _LOGGER.warning("No notes loaded; %s playback not started", policy)
            return
        if rewind:
            self._index = 0
        self._policy = policy
        _LOGGER.info("Starting %s note playback at note %d", policy, self._index + 1)
        self._play_current()

    def _gain_for(self, note: MidiNoteEvent) -> float:
        return note_gain(
            note.velocity,
            max_gain=self.max_gain,
            normalized_speed=self.normalized_speed,
            preview=self._policy == "preview",
        )

    def _silence(self) -> None:
        if self._current is None:
            return
        self._current = None
        try:
            self._sink.stop_note()
        except Exception as exc:
            _LOGGER.warning("Stopping note failed: %s", exc, exc_info=debug_enabled())

    def _play_current(self) -> None:
        if self._index >= len(self._notes):
            self._index = 0
        note = self._notes[self._index]
        self._silence()
        gain = self._gain_for(note)
        rate = pitch_to_rate(note.pitch)
        try:
            self._sink.start_note(note, gain=gain, rate=rate)
            self._current = note
        except Exception as exc:
            debug = debug_enabled()
            _LOGGER.warning("Playing note %d failed: %s", note.pitch, exc, exc_info=debug)
        _LOGGER.debug(
            "Note %d/%d: pitch=%d rate=%.3f gain=%.3f duration=%dms",
            self._index + 1,
            len(self._notes),
            note.pitch,
            rate,
            gain,
            note.duration_ms,
        )
        if self._on_note is not None:
            try:
                self._on_note(self._index, note)
            except Exception as exc:
                _LOGGER.warning("Note hook failed: %s", exc, exc_info=debug_enabled())
        self._pending = self._scheduler.call_later(note.duration_ms / 1000.0, self._on_elapsed)

    def _on_elapsed(self) -> None:
        self._pending = None
        if self._policy is None:
            return
        self._index = (self._index + 1) % len(self._notes)
        self._play_current()
