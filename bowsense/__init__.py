from __future__ import annotations

from .audio import SAMPLE_RATE, render_notes, write_wav
from .config import (
    EngineConfig,
    EngineConfigUpdate,
    config_from_env,
    parse_config,
    parse_update,
)
from .errors import (
    BowsenseError,
    InvalidConfigError,
    MidiParseError,
    MidiTimeoutError,
    SchedulerUnavailableError,
)
from .fade import FadeEngine, FadeState
from .feedback import DeviceFeedback, VolumeFeedback, encode_volume_message
from .gain import GainTarget, compute_target_gain, ease_in_out, normalize_speed
from .logging_utils import configure_logging as _configure_logging
from .midi import (
    FALLBACK_SCALE,
    MidiNoteEvent,
    NoteSequence,
    aload_note_sequence,
    load_note_sequence,
    parse_midi,
)
from .motion import (
    BowDirection,
    MotionReading,
    MotionSample,
    MotionSmoother,
    SampleFramer,
    decode_line,
)
from .sequencer import NoteSequencer, NoteSink, pitch_to_rate
from .session import AudioSink, PlaybackMode, Session, SessionFrame, SessionHooks

__all__ = [
    "FALLBACK_SCALE",
    "SAMPLE_RATE",
    "AudioSink",
    "BowDirection",
    "BowsenseError",
    "DeviceFeedback",
    "EngineConfig",
    "EngineConfigUpdate",
    "FadeEngine",
    "FadeState",
    "GainTarget",
    "InvalidConfigError",
    "MidiNoteEvent",
    "MidiParseError",
    "MidiTimeoutError",
    "MotionReading",
    "MotionSample",
    "MotionSmoother",
    "NoteSequence",
    "NoteSequencer",
    "NoteSink",
    "PlaybackMode",
    "SampleFramer",
    "Session",
    "SessionFrame",
    "SchedulerUnavailableError",
    "SessionHooks",
    "VolumeFeedback",
    "aload_note_sequence",
    "compute_target_gain",
    "config_from_env",
    "decode_line",
    "ease_in_out",
    "encode_volume_message",
    "load_note_sequence",
    "normalize_speed",
    "parse_config",
    "parse_midi",
    "parse_update",
    "pitch_to_rate",
    "render_notes",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
