from __future__ import annotations

import numpy as np
import pytest
import soundfile as sf  # type: ignore[import]

from bowsense.audio import (
    ensure_audio_contract,
    midi_to_freq,
    render_notes,
    render_tone,
    write_wav,
)
from bowsense.errors import InvalidConfigError
from bowsense.midi import FALLBACK_SCALE, MidiNoteEvent


def test_midi_to_freq() -> None:
    assert midi_to_freq(69) == pytest.approx(440.0)
    assert midi_to_freq(81) == pytest.approx(880.0)


def test_render_tone_shape_and_edges() -> None:
    tone = render_tone(MidiNoteEvent(69, 127, 100), sample_rate=1000)
    assert tone.dtype == np.float32
    assert tone.shape == (100,)
    assert tone[0] == 0.0
    assert float(np.max(np.abs(tone))) <= 1.0


def test_render_tone_scales_with_velocity_and_gain() -> None:
    loud = render_tone(MidiNoteEvent(69, 127, 200), sample_rate=8000)
    soft = render_tone(MidiNoteEvent(69, 127, 200), gain=0.5, sample_rate=8000)
    assert float(np.max(np.abs(soft))) == pytest.approx(float(np.max(np.abs(loud))) * 0.5, rel=1e-4)


def test_render_notes_concatenates() -> None:
    audio = render_notes(FALLBACK_SCALE, sample_rate=1000)
    assert audio.shape == (sum(note.duration_ms for note in FALLBACK_SCALE),)
    assert float(np.max(np.abs(audio))) <= 1.0


def test_render_notes_empty() -> None:
    audio = render_notes([])
    assert audio.size == 0
    assert audio.dtype == np.float32


def test_render_notes_rejects_bad_sample_rate() -> None:
    with pytest.raises(InvalidConfigError):
        render_notes(FALLBACK_SCALE, sample_rate=0)


def test_ensure_audio_contract_normalizes_peak() -> None:
    audio = ensure_audio_contract([0.0, 2.0, -4.0])
    assert audio.dtype == np.float32
    assert audio.tolist() == pytest.approx([0.0, 0.5, -1.0])


def test_write_wav_round_trips(tmp_path) -> None:
    audio = render_notes([MidiNoteEvent(60, 100, 150)], sample_rate=8000)
    path = write_wav(tmp_path / "note.wav", audio, sample_rate=8000)
    data, sample_rate = sf.read(path)
    assert sample_rate == 8000
    assert len(data) == len(audio)


def test_write_wav_rejects_text(tmp_path) -> None:
    with pytest.raises(InvalidConfigError):
        write_wav(tmp_path / "bad.wav", "not audio")  # type: ignore[arg-type]
