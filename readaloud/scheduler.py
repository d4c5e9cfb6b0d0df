"""Playback scheduler: drives the speech backend one sentence at a time.

The scheduler owns the playback state, the current position and a generation
counter. Every operation that abandons the sentence in flight bumps the
generation first; each backend completion carries the generation it was
submitted under and is ignored unless that still matches. Backends cannot
guarantee a cancelled sentence stays quiet, so this check is what keeps a
late completion from moving the position.

All methods must be called from one thread (the event loop thread when used
with EdgeSpeechBackend). Nothing here blocks.
"""

import asyncio
import logging
from typing import Callable, Sequence

from readaloud.config import PlaybackConfig, clamp_pitch, clamp_rate
from readaloud.constants import BENIGN_ERRORS, DEFAULT_LANG, PREFETCH_AHEAD, RESUME_GRACE_SECONDS
from readaloud.models import (
    ParagraphChanged,
    PlaybackCallbacks,
    PlaybackState,
    Position,
    Progress,
    StateSnapshot,
    Utterance,
    Voice,
)
from readaloud.segmenter import build_matrix
from readaloud.timeline import Timeline, compute_timeline, position_for_time
from readaloud.tts import SpeechBackend
from readaloud.voices import select_voice
from readaloud.wakelock import WakeLockManager

logger = logging.getLogger(__name__)

START = Position(0, 0)


def _loop_call_later(delay: float, callback: Callable[[], None]):
    return asyncio.get_running_loop().call_later(delay, callback)


def is_benign_error(reason: str) -> bool:
    """Errors produced by our own cancellations, never worth reporting."""
    return reason.strip().lower() in BENIGN_ERRORS


class PlaybackScheduler:
    def __init__(
        self,
        backend: SpeechBackend,
        wake_lock: WakeLockManager | None = None,
        callbacks: PlaybackCallbacks | None = None,
        config: PlaybackConfig | None = None,
        voices: Sequence[Voice] = (),
        call_later: Callable | None = None,
    ):
        self._backend = backend
        self._wake_lock = wake_lock
        self._cb = callbacks or PlaybackCallbacks()
        self._config = config or PlaybackConfig()
        self._voices = list(voices)
        self._call_later = call_later or _loop_call_later

        self._paragraphs: tuple[str, ...] = ()
        self._matrix: tuple[tuple[str, ...], ...] = ()
        self._lang = DEFAULT_LANG
        self._voice: Voice | None = None

        self._state = PlaybackState.IDLE
        self._position = START
        self._generation = 0
        self._in_flight = False
        self._resume_timer = None

        if self._wake_lock is not None:
            self._wake_lock.set_enabled(self._config.wake_lock)

    # --- Queries ---

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def position(self) -> Position:
        return self._position

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def sentences(self) -> tuple[tuple[str, ...], ...]:
        return self._matrix

    @property
    def voice(self) -> Voice | None:
        return self._voice

    @property
    def config(self) -> PlaybackConfig:
        return self._config

    @property
    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            is_playing=self._state in (PlaybackState.PLAYING, PlaybackState.PAUSED),
            is_paused=self._state is PlaybackState.PAUSED,
            current_paragraph=self._position.paragraph,
            current_sentence=self._position.sentence,
            total_paragraphs=len(self._matrix),
        )

    def timeline(self) -> Timeline:
        """Estimated (duration, position) in seconds at the current rate.

        Derived from character counts, not from real audio durations.
        """
        return compute_timeline(self._matrix, *self._position, self._config.rate)

    # --- Loading and settings ---

    def load(self, paragraphs: Sequence[str], lang: str = DEFAULT_LANG) -> None:
        """Replace the article. Always safe; any current playback is stopped."""
        self.stop()
        self._paragraphs = tuple(paragraphs)
        self._matrix = build_matrix(list(self._paragraphs))
        self._lang = lang
        self._voice = select_voice(self._voices, lang, self._config.voice or None)
        logger.debug(
            "Loaded %d paragraphs (%d sentences), lang=%s, voice=%s",
            len(self._matrix), sum(len(p) for p in self._matrix), lang,
            self._voice.name if self._voice else "default",
        )
        self._emit_state()

    def set_rate(self, rate: float) -> None:
        self._config.rate = clamp_rate(rate)

    def set_pitch(self, pitch: float) -> None:
        self._config.pitch = clamp_pitch(pitch)

    def set_voice(self, name: str) -> None:
        """Remember a preferred voice; it survives later loads and language changes."""
        self._config.voice = name
        self._voice = select_voice(self._voices, self._lang, name or None)

    def set_language(self, lang: str) -> None:
        self._lang = lang
        self._voice = select_voice(self._voices, lang, self._config.voice or None)

    def set_voices(self, voices: Sequence[Voice]) -> None:
        """The backend's voice catalog changed (or finished loading)."""
        self._voices = list(voices)
        self._voice = select_voice(self._voices, self._lang, self._config.voice or None)

    def set_wake_lock(self, enabled: bool) -> None:
        self._config.wake_lock = enabled
        if self._wake_lock is None:
            return
        self._wake_lock.set_enabled(enabled)
        if enabled and self._state is PlaybackState.PLAYING:
            self._wake_lock.acquire()

    # --- Transport ---

    def play(self) -> None:
        if not self._matrix:
            return
        if self._state is PlaybackState.PAUSED:
            self.resume()
            return
        if self._state is not PlaybackState.IDLE:
            return

        logger.debug("play at %s", tuple(self._position))
        self._state = PlaybackState.PLAYING
        self._acquire_wake_lock()
        self._emit_paragraph_change()
        self._submit_current()
        self._emit_state()

    def pause(self) -> None:
        if self._state is not PlaybackState.PLAYING:
            return
        logger.debug("pause at %s", tuple(self._position))
        self._clear_resume_timer()
        self._state = PlaybackState.PAUSED
        self._backend.pause()
        self._release_wake_lock()
        self._emit_state()

    def resume(self) -> None:
        if self._state is not PlaybackState.PAUSED:
            return
        logger.debug("resume at %s", tuple(self._position))
        self._state = PlaybackState.PLAYING
        self._acquire_wake_lock()
        if self._in_flight:
            self._backend.resume()
            self._arm_resume_watchdog()
        else:
            # Position moved (or the sentence finished) while paused
            self._submit_current()
        self._emit_state()

    def stop(self) -> None:
        self._cancel_in_flight()
        self._release_wake_lock()
        self._state = PlaybackState.IDLE
        self._position = START
        self._emit_state()

    def dispose(self) -> None:
        self.stop()
        dispose = getattr(self._backend, "dispose", None)
        if dispose is not None:
            dispose()

    # --- Navigation ---

    def skip_forward(self) -> None:
        if not self._can_navigate() or self._position.paragraph >= len(self._matrix) - 1:
            return
        self._move_to(Position(self._position.paragraph + 1, 0))

    def skip_backward(self) -> None:
        if not self._can_navigate() or self._position.paragraph <= 0:
            return
        self._move_to(Position(self._position.paragraph - 1, 0))

    def skip_sentence_forward(self) -> None:
        if not self._can_navigate():
            return
        paragraph, sentence = self._position
        if sentence < len(self._matrix[paragraph]) - 1:
            self._move_to(Position(paragraph, sentence + 1))
        elif paragraph < len(self._matrix) - 1:
            self._move_to(Position(paragraph + 1, 0))

    def skip_sentence_backward(self) -> None:
        if not self._can_navigate():
            return
        paragraph, sentence = self._position
        if sentence > 0:
            self._move_to(Position(paragraph, sentence - 1))
        elif paragraph > 0:
            self._move_to(Position(paragraph - 1, len(self._matrix[paragraph - 1]) - 1))

    def jump_to_paragraph(self, index: int) -> None:
        if not self._can_navigate() or not 0 <= index < len(self._matrix):
            return
        self._move_to(Position(index, 0), announce=True)

    def seek_to_time(self, seconds: float) -> None:
        """Move to the sentence the estimated timeline places at `seconds`."""
        if not self._can_navigate():
            return
        target = position_for_time(self._matrix, seconds, self._config.rate)
        if target is not None:
            self._move_to(target)

    # --- Host environment ---

    def on_visibility_change(self, visible: bool) -> None:
        """React to the app being backgrounded or brought back.

        Some platforms silently kill speech while in the background. If we
        come back believing we are playing but the backend is idle, the
        current sentence is spoken again from its start.
        """
        if not visible:
            self._clear_resume_timer()
            return
        if self._state is not PlaybackState.PLAYING:
            return
        self._acquire_wake_lock()
        if not self._backend.is_speaking and not self._backend.is_paused:
            logger.info("Speech stopped while in background — resubmitting %s", tuple(self._position))
            self._resubmit()

    # --- Internal: submission and completion ---

    def _utterance(self, text: str) -> Utterance:
        return Utterance(
            text=text,
            rate=self._config.rate,
            pitch=self._config.pitch,
            lang=self._lang,
            voice=self._voice,
        )

    def _submit_current(self) -> None:
        """Hand the sentence at the current position to the backend."""
        while not self._matrix[self._position.paragraph][self._position.sentence].strip():
            # Empty paragraphs yield a blank unit; there is nothing to speak
            if not self._advance():
                return

        paragraph, sentence = self._position
        generation = self._generation
        self._in_flight = True
        self._emit_progress()
        self._backend.speak(
            self._utterance(self._matrix[paragraph][sentence]),
            lambda error: self._on_done(generation, error),
        )
        self._prefetch_upcoming()

    def _on_done(self, generation: int, error: str | None) -> None:
        if generation != self._generation:
            logger.debug("Discarding stale completion (generation %d, current %d)", generation, self._generation)
            return

        self._in_flight = False
        self._clear_resume_timer()

        if error is not None:
            if is_benign_error(error):
                return
            logger.warning("Speech error at %s: %s", tuple(self._position), error)
            if self._cb.on_error:
                self._cb.on_error(f"TTS error: {error}")
            return

        if not self._advance():
            return
        if self._state is PlaybackState.PLAYING:
            self._submit_current()
        self._emit_state()

    def _advance(self) -> bool:
        """Step one sentence forward. False once the article is finished."""
        paragraph, sentence = self._position
        if sentence + 1 < len(self._matrix[paragraph]):
            self._position = Position(paragraph, sentence + 1)
            return True
        if paragraph + 1 < len(self._matrix):
            self._position = Position(paragraph + 1, 0)
            self._emit_paragraph_change()
            return True
        self._finish()
        return False

    def _finish(self) -> None:
        logger.debug("End of article")
        self._clear_resume_timer()
        self._in_flight = False
        self._state = PlaybackState.ENDED
        self._position = START
        self._release_wake_lock()
        self._emit_state()
        if self._cb.on_end:
            self._cb.on_end()

    def _prefetch_upcoming(self) -> None:
        upcoming = []
        paragraph, sentence = self._position
        sentence += 1
        while len(upcoming) < PREFETCH_AHEAD and paragraph < len(self._matrix):
            if sentence >= len(self._matrix[paragraph]):
                paragraph += 1
                sentence = 0
                continue
            text = self._matrix[paragraph][sentence]
            if text.strip():
                upcoming.append(self._utterance(text))
            sentence += 1
        if upcoming:
            self._backend.prefetch(upcoming)

    # --- Internal: cancellation ---

    def _cancel_in_flight(self) -> None:
        self._clear_resume_timer()
        self._generation += 1
        self._in_flight = False
        self._backend.cancel()

    def _resubmit(self) -> None:
        self._cancel_in_flight()
        self._submit_current()

    def _can_navigate(self) -> bool:
        return bool(self._matrix) and self._state is not PlaybackState.ENDED

    def _move_to(self, target: Position, announce: bool = False) -> None:
        previous = self._position
        self._cancel_in_flight()
        self._position = target
        # From Idle, play() announces the starting paragraph
        if self._state is not PlaybackState.IDLE and (announce or target.paragraph != previous.paragraph):
            self._emit_paragraph_change()
        if self._state is PlaybackState.PLAYING:
            self._submit_current()
        self._emit_state()

    # --- Internal: resume watchdog ---

    def _arm_resume_watchdog(self) -> None:
        self._clear_resume_timer()
        generation = self._generation
        self._resume_timer = self._call_later(
            RESUME_GRACE_SECONDS, lambda: self._check_resumed(generation)
        )

    def _check_resumed(self, generation: int) -> None:
        self._resume_timer = None
        if self._state is not PlaybackState.PLAYING or generation != self._generation:
            return
        if self._backend.is_paused or not self._backend.is_speaking:
            logger.info("Speech did not resume — resubmitting %s", tuple(self._position))
            self._resubmit()

    def _clear_resume_timer(self) -> None:
        if self._resume_timer is not None:
            self._resume_timer.cancel()
            self._resume_timer = None

    # --- Internal: wake lock ---

    def _acquire_wake_lock(self) -> None:
        if self._wake_lock is not None:
            self._wake_lock.acquire()

    def _release_wake_lock(self) -> None:
        if self._wake_lock is not None:
            self._wake_lock.release()

    # --- Internal: notifications ---

    def _emit_state(self) -> None:
        if self._cb.on_state_change:
            self._cb.on_state_change(self.snapshot)

    def _emit_progress(self) -> None:
        if self._cb.on_progress:
            self._cb.on_progress(Progress(self._position.paragraph, len(self._matrix)))

    def _emit_paragraph_change(self) -> None:
        index = self._position.paragraph
        if index >= len(self._paragraphs) or not self._paragraphs[index].strip():
            # Blank paragraphs are stepped over, never entered
            return
        if self._cb.on_paragraph_change:
            self._cb.on_paragraph_change(ParagraphChanged(index, self._paragraphs[index]))
