from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import traceback
from pathlib import Path
from typing import IO, Iterable

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.traceback import Traceback

from .audio import SAMPLE_RATE, render_notes, write_wav
from .config import EngineConfigUpdate, config_from_env
from .logging_utils import configure_logging, debug_enabled, get_log_path, log_exception
from .midi import FALLBACK_SCALE, MidiNoteEvent, NoteSequence, load_note_sequence
from .session import Session, SessionFrame

_LOGGER = logging.getLogger("bowsense.cli")
_CONSOLE = Console()
REPLAY_SPACING_MS = 20.0


class _NullSink:
    """Audio sink that only remembers what it was told."""

    def __init__(self) -> None:
        self.playing = False
        self.volume = 0.0

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def set_volume(self, volume: float) -> None:
        self.volume = volume


class _NullNoteSink:
    def start_note(self, note: MidiNoteEvent, *, gain: float, rate: float) -> None:
        pass

    def stop_note(self) -> None:
        pass

    def set_note_gain(self, gain: float) -> None:
        pass


def render_error(context: str, exc: BaseException, *, stream: IO[str] | None = None) -> None:
    target = stream or sys.stderr
    log_path = get_log_path()
    if target.isatty():
        console = Console(file=target)
        body = Text.assemble(
            ("bowsense error while ", "bold"),
            (context, "bold"),
            (":\n\n", "bold"),
            (type(exc).__name__, "bold red"),
            (": ", "bold"),
            str(exc),
            (f"\nLogs: {log_path}", "dim"),
            ("\n\nSet BOWSENSE_DEBUG=1 for console trace.", "dim"),
        )
        console.print(Panel(body, title="Error", border_style="red"))
        if debug_enabled():
            console.print(Traceback.from_exception(type(exc), exc, exc.__traceback__))
    else:
        target.write(f"{context} failed: {type(exc).__name__}: {exc} (logs: {log_path})\n")
        if debug_enabled():
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=target)


def _notes_table(title: str, notes: NoteSequence) -> Table:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Pitch", justify="right")
    table.add_column("Velocity", justify="right")
    table.add_column("Duration (ms)", justify="right")
    for index, note in enumerate(notes, start=1):
        table.add_row(str(index), str(note.pitch), str(note.velocity), str(note.duration_ms))
    return table


def _read_notes(path: Path, timeout_s: float) -> NoteSequence:
    notes = load_note_sequence(path.read_bytes(), timeout_s=timeout_s)
    if notes is FALLBACK_SCALE:
        _CONSOLE.print(f"[yellow]No notes decoded from {path}; using the fallback scale.[/]")
    return notes


def _frames_table(frames: Iterable[tuple[int, SessionFrame]]) -> Table:
    table = Table(title="Replay")
    table.add_column("Line", justify="right")
    table.add_column("Speed", justify="right")
    table.add_column("Direction")
    table.add_column("Target", justify="right")
    table.add_column("Volume", justify="right")
    for line_number, frame in frames:
        direction = frame.direction + (" *" if frame.direction_changed else "")
        target = "-" if frame.target_gain is None else f"{frame.target_gain:.3f}"
        volume = "-" if frame.volume is None else f"{frame.volume:.3f}"
        table.add_row(str(line_number), f"{frame.speed:.2f}", direction, target, volume)
    return table


def _replay(
    path: Path,
    *,
    spacing_ms: float,
    threshold: float | None,
) -> list[tuple[int, SessionFrame]]:
    config = config_from_env()
    if threshold is not None:
        config = EngineConfigUpdate(motion_threshold=threshold).apply_to(config)
    # Replay is offline; timers are queued on an idle loop and never fire.
    loop = asyncio.new_event_loop()
    session = Session(_NullSink(), _NullNoteSink(), config=config, scheduler=loop)
    session.start_motion_playback()
    frames: list[tuple[int, SessionFrame]] = []
    now_ms = 0.0
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            for line_number, line in enumerate(handle, start=1):
                frame = session.handle_line(line, now_ms=now_ms)
                if frame is None:
                    continue
                frames.append((line_number, frame))
                now_ms += spacing_ms
    finally:
        session.stop()
        loop.close()
    _LOGGER.info("Replayed %d samples from %s", len(frames), path)
    return frames


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bowsense")
    sub = parser.add_subparsers(dest="command", required=True)

    notes = sub.add_parser("notes", help="Print the notes decoded from a MIDI file.")
    notes.add_argument("path", type=Path)

    replay = sub.add_parser("replay", help="Feed a recorded sample log through a session.")
    replay.add_argument("path", type=Path)
    replay.add_argument("--spacing-ms", type=float, default=REPLAY_SPACING_MS)
    replay.add_argument("--threshold", type=float, default=None)

    render = sub.add_parser("render", help="Render a MIDI file's notes to a wav file.")
    render.add_argument("path", type=Path)
    render.add_argument("-o", "--output", type=Path, default=Path("notes.wav"))
    render.add_argument("--gain", type=float, default=1.0)
    render.add_argument("--sample-rate", type=int, default=SAMPLE_RATE)
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        config = config_from_env()

        if args.command == "notes":
            notes = _read_notes(args.path, config.parse_timeout_s)
            _CONSOLE.print(_notes_table(str(args.path), notes))
            return 0

        if args.command == "replay":
            frames = _replay(args.path, spacing_ms=args.spacing_ms, threshold=args.threshold)
            _CONSOLE.print(_frames_table(frames))
            return 0

        if args.command == "render":
            notes = _read_notes(args.path, config.parse_timeout_s)
            audio = render_notes(notes, gain=args.gain, sample_rate=args.sample_rate)
            path = write_wav(args.output, audio, sample_rate=args.sample_rate)
            _CONSOLE.print(f"Wrote {len(notes)} notes to {path} (sr={args.sample_rate})")
            return 0

        parser.print_help()
        return 1
    except Exception as exc:
        _LOGGER.warning("bowsense CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("bowsense CLI", exc)
        render_error("bowsense CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
