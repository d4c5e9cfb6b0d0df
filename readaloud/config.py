"""Playback settings: defaults, clamping, and the optional JSON settings file."""

import json
import logging
import os
from dataclasses import dataclass, fields, replace

from readaloud.constants import (
    DEFAULT_PITCH,
    DEFAULT_RATE,
    MAX_PITCH,
    MAX_RATE,
    MIN_PITCH,
    MIN_RATE,
)

logger = logging.getLogger(__name__)


def clamp_rate(rate: float) -> float:
    return max(MIN_RATE, min(MAX_RATE, float(rate)))


def clamp_pitch(pitch: float) -> float:
    return max(MIN_PITCH, min(MAX_PITCH, float(pitch)))


@dataclass
class PlaybackConfig:
    rate: float = DEFAULT_RATE
    pitch: float = DEFAULT_PITCH
    voice: str = ""         # preferred voice name, "" = automatic
    wake_lock: bool = False

    def __post_init__(self):
        self.rate = clamp_rate(self.rate)
        self.pitch = clamp_pitch(self.pitch)


def load_config(path: str) -> PlaybackConfig:
    """Load settings from a JSON file.

    Returns defaults if the file doesn't exist or is malformed. Unknown keys
    are ignored; out-of-range numbers are clamped.
    """
    if not os.path.exists(path):
        return PlaybackConfig()
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError:
        logger.warning("Malformed settings file: %s — using defaults", path)
        return PlaybackConfig()
    if not isinstance(data, dict):
        logger.warning("Settings file %s is not a JSON object — using defaults", path)
        return PlaybackConfig()

    known = {f.name for f in fields(PlaybackConfig)}
    values = {k: v for k, v in data.items() if k in known}
    try:
        return PlaybackConfig(**values)
    except (TypeError, ValueError) as e:
        logger.warning("Invalid value in settings file %s (%s) — using defaults", path, e)
        return PlaybackConfig()


def config_from_args(base: PlaybackConfig, args) -> PlaybackConfig:
    """Overlay command-line flags that were given on top of base."""
    overrides = {}
    if getattr(args, "rate", None) is not None:
        overrides["rate"] = args.rate
    if getattr(args, "pitch", None) is not None:
        overrides["pitch"] = args.pitch
    if getattr(args, "voice", None):
        overrides["voice"] = args.voice
    if getattr(args, "wake_lock", False):
        overrides["wake_lock"] = True
    # replace() runs __post_init__ again, which clamps the overrides
    return replace(base, **overrides)
