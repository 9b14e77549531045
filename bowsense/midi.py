from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Union

from .errors import MidiParseError, MidiTimeoutError

_LOGGER = logging.getLogger("bowsense.midi")

MidiBytes = Union[bytes, bytearray, memoryview]

HEADER_MAGIC = b"MThd"
TRACK_MAGIC = b"MTrk"
HEADER_SIZE = 14
MAX_TRACKS = 1000
MAX_EVENTS_PER_TRACK = 100_000
MAX_VLQ_BYTES = 4
DEFAULT_TICKS_PER_QUARTER = 480
DEFAULT_TEMPO_US = 500_000  # 120 BPM
MIN_NOTE_MS = 100
DEADLINE_CHECK_EVERY = 1024

META_EVENT = 0xFF
META_SET_TEMPO = 0x51
SYSEX_START = 0xF0
SYSEX_ESCAPE = 0xF7


@dataclass(frozen=True, slots=True)
class MidiNoteEvent:
    pitch: int
    velocity: int
    duration_ms: int


NoteSequence = tuple[MidiNoteEvent, ...]

# G major, G4 to G5.
FALLBACK_SCALE: NoteSequence = (
    MidiNoteEvent(67, 80, 500),
    MidiNoteEvent(69, 80, 500),
    MidiNoteEvent(71, 80, 500),
    MidiNoteEvent(72, 80, 500),
    MidiNoteEvent(74, 80, 500),
    MidiNoteEvent(76, 80, 500),
    MidiNoteEvent(78, 80, 500),
    MidiNoteEvent(79, 80, 1000),
)


@dataclass(frozen=True, slots=True)
class MidiHeader:
    format: int
    track_count: int
    division: int

    @property
    def ticks_per_quarter(self) -> int:
        # SMPTE (negative) and zero divisions are not supported.
        return self.division if self.division > 0 else DEFAULT_TICKS_PER_QUARTER


@dataclass(slots=True)
class _OpenNote:
    velocity: int
    start_tick: int


@dataclass(slots=True)
class _TrackContext:
    offset: int
    end: int
    ticks_per_quarter: int
    tempo_us: int = DEFAULT_TEMPO_US
    tick: int = 0
    running_status: int = 0
    open_notes: dict[int, _OpenNote] = field(default_factory=dict)
    notes: list[MidiNoteEvent] = field(default_factory=list)


def read_uint16(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + 2], "big")


def read_int16(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + 2], "big", signed=True)


def read_uint32(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + 4], "big")


def read_variable_length(data: bytes, offset: int, end: int) -> tuple[int, int]:
    """Decode a variable-length quantity; returns ``(value, bytes_read)``."""

    value = 0
    for index in range(MAX_VLQ_BYTES):
        position = offset + index
        if position >= end:
            raise MidiParseError(f"variable-length value truncated at offset {position}")
        byte = data[position]
        value = (value << 7) | (byte & 0x7F)
        if not byte & 0x80:
            return value, index + 1
    raise MidiParseError(f"variable-length value at offset {offset} exceeds {MAX_VLQ_BYTES} bytes")


def ticks_to_ms(ticks: int, ticks_per_quarter: int, tempo_us: int) -> int:
    """Convert a tick span to whole milliseconds, never below ``MIN_NOTE_MS``."""

    if ticks_per_quarter <= 0:
        ticks_per_quarter = DEFAULT_TICKS_PER_QUARTER
    milliseconds = (max(ticks, 0) * tempo_us) // (ticks_per_quarter * 1000)
    return max(milliseconds, MIN_NOTE_MS)


def read_header(data: bytes) -> MidiHeader | None:
    if len(data) < HEADER_SIZE or data[:4] != HEADER_MAGIC:
        return None
    return MidiHeader(
        format=read_uint16(data, 8),
        track_count=read_uint16(data, 10),
        division=read_int16(data, 12),
    )


def _take(ctx: _TrackContext, data: bytes, count: int) -> bytes:
    if ctx.offset + count > ctx.end:
        raise MidiParseError(f"event data truncated at offset {ctx.offset}")
    chunk = data[ctx.offset : ctx.offset + count]
    ctx.offset += count
    return chunk


def _close_note(ctx: _TrackContext, pitch: int) -> None:
    open_note = ctx.open_notes.pop(pitch, None)
    if open_note is None:
        return
    duration = ticks_to_ms(ctx.tick - open_note.start_tick, ctx.ticks_per_quarter, ctx.tempo_us)
    ctx.notes.append(MidiNoteEvent(pitch=pitch, velocity=open_note.velocity, duration_ms=duration))


def _note_data(ctx: _TrackContext, data: bytes) -> tuple[int, int]:
    pitch, velocity = _take(ctx, data, 2)
    if pitch & 0x80 or velocity & 0x80:
        raise MidiParseError(f"note data byte out of range at offset {ctx.offset - 2}")
    return pitch, velocity


def _handle_meta(ctx: _TrackContext, data: bytes) -> None:
    (meta_type,) = _take(ctx, data, 1)
    length, consumed = read_variable_length(data, ctx.offset, ctx.end)
    ctx.offset += consumed
    if meta_type == META_SET_TEMPO and length >= 3 and ctx.offset + 3 <= ctx.end:
        ctx.tempo_us = int.from_bytes(data[ctx.offset : ctx.offset + 3], "big")
        _LOGGER.debug("Tempo change: %d us/quarter at tick %d", ctx.tempo_us, ctx.tick)
    ctx.offset += length


def _dispatch(ctx: _TrackContext, data: bytes, status: int) -> None:
    kind = status & 0xF0
    match kind:
        case 0x80:
            pitch, _velocity = _note_data(ctx, data)
            _close_note(ctx, pitch)
        case 0x90:
            pitch, velocity = _note_data(ctx, data)
            if velocity > 0:
                ctx.open_notes[pitch] = _OpenNote(velocity=velocity, start_tick=ctx.tick)
            else:
                _close_note(ctx, pitch)
        case 0xA0 | 0xB0 | 0xE0:
            _take(ctx, data, 2)
        case 0xC0 | 0xD0:
            _take(ctx, data, 1)
        case _ if status == META_EVENT:
            _handle_meta(ctx, data)
        case _ if status in (SYSEX_START, SYSEX_ESCAPE):
            length, consumed = read_variable_length(data, ctx.offset, ctx.end)
            ctx.offset += consumed + length
        case _:
            _LOGGER.warning("Unknown MIDI event 0x%02x at offset %d; skipping", status, ctx.offset)
            ctx.offset += 1


def _parse_track(
    data: bytes,
    start: int,
    end: int,
    ticks_per_quarter: int,
    *,
    deadline: float | None = None,
) -> list[MidiNoteEvent]:
    ctx = _TrackContext(offset=start, end=end, ticks_per_quarter=ticks_per_quarter)
    events = 0
    try:
        while ctx.offset < ctx.end:
            events += 1
            if events > MAX_EVENTS_PER_TRACK:
                _LOGGER.warning("MIDI parser safety limit reached (%d events)", events - 1)
                break
            if deadline is not None and events % DEADLINE_CHECK_EVERY == 0:
                if time.monotonic() > deadline:
                    raise MidiTimeoutError("MIDI parsing exceeded its time limit")

            iteration_start = ctx.offset
            delta, consumed = read_variable_length(data, ctx.offset, ctx.end)
            ctx.offset += consumed
            ctx.tick += delta
            if ctx.offset >= ctx.end:
                break

            status = data[ctx.offset]
            if status & 0x80:
                ctx.offset += 1
                # Only channel messages establish running status.
                if status < 0xF0:
                    ctx.running_status = status
            elif ctx.running_status:
                status = ctx.running_status
            else:
                raise MidiParseError(f"data byte without running status at offset {ctx.offset}")

            _dispatch(ctx, data, status)

            if ctx.offset <= iteration_start:
                raise MidiParseError(f"parser stalled at offset {iteration_start}")
    except MidiParseError as exc:
        _LOGGER.warning("Track parsing ended early: %s", exc)

    if ctx.open_notes:
        _LOGGER.debug("Dropping %d unterminated notes", len(ctx.open_notes))
    _LOGGER.debug("Parsed %d notes from track (%d events)", len(ctx.notes), events)
    return ctx.notes


def parse_midi(data: MidiBytes, *, deadline: float | None = None) -> NoteSequence:
    """Decode a Standard MIDI File into a flat note list.

    Structural problems never raise: an invalid header yields an empty
    sequence and a damaged track ends that track (and, when its declared
    length overruns the buffer, all later tracks). The only exception is
    ``MidiTimeoutError`` once ``deadline`` (a ``time.monotonic()`` value) passes.
    """

    raw = bytes(data)
    header = read_header(raw)
    if header is None:
        _LOGGER.warning("Invalid MIDI file header (%d bytes)", len(raw))
        return ()

    _LOGGER.debug(
        "MIDI header: format=%d, tracks=%d, division=%d",
        header.format,
        header.track_count,
        header.division,
    )
    if header.track_count > MAX_TRACKS:
        _LOGGER.warning("Invalid track count: %d", header.track_count)
        return ()

    notes: list[MidiNoteEvent] = []
    offset = HEADER_SIZE
    for track_index in range(header.track_count):
        if offset + 8 > len(raw):
            break
        if raw[offset : offset + 4] != TRACK_MAGIC:
            _LOGGER.warning("Missing MTrk marker for track %d at offset %d", track_index, offset)
            break
        track_length = read_uint32(raw, offset + 4)
        offset += 8
        track_end = offset + track_length
        if track_end > len(raw):
            _LOGGER.warning("Track %d length exceeds file size", track_index)
            break
        notes.extend(
            _parse_track(raw, offset, track_end, header.ticks_per_quarter, deadline=deadline)
        )
        offset = track_end

    _LOGGER.info("Decoded %d notes from %d tracks", len(notes), header.track_count)
    return tuple(notes)


def _with_fallback(notes: NoteSequence) -> NoteSequence:
    if notes:
        return notes
    _LOGGER.warning("No notes found in MIDI data, using fallback scale")
    return FALLBACK_SCALE


def load_note_sequence(data: MidiBytes, *, timeout_s: float = 10.0) -> NoteSequence:
    """Parse ``data`` within ``timeout_s``; any failure yields the fallback scale."""

    deadline = time.monotonic() + timeout_s
    try:
        return _with_fallback(parse_midi(data, deadline=deadline))
    except MidiTimeoutError:
        _LOGGER.warning("MIDI parsing timeout (%.1fs), using fallback scale", timeout_s)
        return FALLBACK_SCALE


async def aload_note_sequence(data: MidiBytes, *, timeout_s: float = 10.0) -> NoteSequence:
    """Async variant: races a worker-thread parse against ``timeout_s``."""

    deadline = time.monotonic() + timeout_s
    try:
        notes = await asyncio.wait_for(
            asyncio.to_thread(parse_midi, bytes(data), deadline=deadline),
            timeout=timeout_s,
        )
    except (asyncio.TimeoutError, MidiTimeoutError):
        _LOGGER.warning("MIDI parsing timeout (%.1fs), using fallback scale", timeout_s)
        return FALLBACK_SCALE
    return _with_fallback(notes)
