"""Hand-built Standard MIDI File bytes for tests."""

from __future__ import annotations


def vlq(value: int) -> bytes:
    out = [value & 0x7F]
    value >>= 7
    while value:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    return bytes(reversed(out))


def header(*, tracks: int = 1, division: int = 480, fmt: int = 0) -> bytes:
    return (
        b"MThd"
        + (6).to_bytes(4, "big")
        + fmt.to_bytes(2, "big")
        + tracks.to_bytes(2, "big")
        + division.to_bytes(2, "big", signed=True)
    )


def event(delta: int, *payload: int) -> bytes:
    return vlq(delta) + bytes(payload)


def tempo(us_per_quarter: int, delta: int = 0) -> bytes:
    return event(delta, 0xFF, 0x51, 0x03, *us_per_quarter.to_bytes(3, "big"))


END_OF_TRACK = event(0, 0xFF, 0x2F, 0x00)


def track(*events: bytes) -> bytes:
    body = b"".join(events)
    return b"MTrk" + len(body).to_bytes(4, "big") + body


def single_note_file(pitch: int = 69, velocity: int = 80, ticks: int = 240) -> bytes:
    return header() + track(
        tempo(500_000),
        event(0, 0x90, pitch, velocity),
        event(ticks, 0x80, pitch, 0),
        END_OF_TRACK,
    )
