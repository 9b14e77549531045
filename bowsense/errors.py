from __future__ import annotations


class BowsenseError(Exception):
    """Base error for the bowsense library."""


class InvalidConfigError(BowsenseError):
    """Raised when a config cannot be parsed or validated."""


class MidiParseError(BowsenseError):
    """Raised internally when a track cannot be decoded any further."""


class MidiTimeoutError(BowsenseError):
    """Raised when a MIDI parse exceeds its wall-clock limit."""


class SchedulerUnavailableError(BowsenseError):
    """Raised when no scheduler was given and no event loop is running."""
