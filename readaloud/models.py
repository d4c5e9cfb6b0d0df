"""Data models for read-aloud playback."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, NamedTuple, Optional


class PlaybackState(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


class Position(NamedTuple):
    paragraph: int
    sentence: int


@dataclass(frozen=True)
class Voice:
    name: str
    lang: str          # BCP-47 tag, e.g. "en-US"
    gender: str = ""


@dataclass(frozen=True)
class Utterance:
    """One unit of text submitted to the speech backend."""
    text: str
    rate: float
    pitch: float
    lang: str
    voice: Optional[Voice] = None


@dataclass(frozen=True)
class StateSnapshot:
    is_playing: bool
    is_paused: bool
    current_paragraph: int
    current_sentence: int
    total_paragraphs: int


@dataclass(frozen=True)
class Progress:
    paragraph_index: int
    total_paragraphs: int


@dataclass(frozen=True)
class ParagraphChanged:
    index: int
    text: str


@dataclass
class PlaybackCallbacks:
    """Optional listeners for scheduler notifications."""
    on_state_change: Optional[Callable[[StateSnapshot], None]] = None
    on_progress: Optional[Callable[[Progress], None]] = None
    on_paragraph_change: Optional[Callable[[ParagraphChanged], None]] = None
    on_end: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[str], None]] = None
