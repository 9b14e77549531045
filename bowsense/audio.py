from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Callable, cast

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import InvalidConfigError
from .midi import MidiNoteEvent

_LOGGER = logging.getLogger("bowsense.audio")

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100
EDGE_MS = 5.0


def midi_to_freq(pitch: int) -> float:
    """Convert MIDI note number to frequency in Hz."""
    return 440.0 * (2.0 ** ((pitch - 69) / 12.0))


def ensure_audio_contract(audio: AudioNumbers, *, peak_limit: float = 1.0) -> FloatArray:
    """Flatten to mono float32 and scale down anything that would clip."""

    mono: FloatArray = np.asarray(audio, dtype=np.float32).reshape(-1)
    peak = float(np.max(np.abs(mono), initial=0.0))
    if peak <= peak_limit:
        return mono
    return (mono * (peak_limit / peak)).astype(np.float32)


def render_tone(
    note: MidiNoteEvent,
    *,
    gain: float = 1.0,
    sample_rate: int = SAMPLE_RATE,
) -> FloatArray:
    """Sine voice for one note with short linear edges against clicks."""

    size = max(1, int(sample_rate * note.duration_ms / 1000.0))
    t = np.arange(size, dtype=np.float32) / float(sample_rate)
    amplitude = note.velocity / 127.0 * gain
    tone = np.sin(2.0 * np.pi * midi_to_freq(note.pitch) * t) * amplitude

    edge = min(size // 2, int(sample_rate * EDGE_MS / 1000.0))
    if edge > 0:
        ramp = np.linspace(0.0, 1.0, edge, dtype=np.float32)
        tone[:edge] *= ramp
        tone[-edge:] *= ramp[::-1]
    return tone.astype(np.float32)


def render_notes(
    notes: Iterable[MidiNoteEvent],
    *,
    gain: float = 1.0,
    sample_rate: int = SAMPLE_RATE,
) -> FloatArray:
    """Render a note sequence back to back, as the sequencer would play it."""

    if sample_rate <= 0:
        raise InvalidConfigError("sample_rate must be greater than 0")
    chunks = [render_tone(note, gain=gain, sample_rate=sample_rate) for note in notes]
    if not chunks:
        return np.zeros(0, dtype=np.float32)
    return ensure_audio_contract(np.concatenate(chunks))


def write_wav(
    path: str | Path,
    audio: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write a rendered mono buffer as 16-bit PCM."""

    if isinstance(audio, (str, bytes)):
        raise InvalidConfigError("audio must be a sequence of samples")
    if sample_rate <= 0:
        raise InvalidConfigError("sample_rate must be greater than 0")
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    write_audio = cast(Callable[..., None], getattr(sf, "write"))
    write_audio(target, ensure_audio_contract(audio), sample_rate, subtype="PCM_16")
    _LOGGER.info("Wrote %.2fs of audio to %s", len(audio) / sample_rate, target)
    return target
