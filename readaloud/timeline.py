"""Elapsed/total time estimates for a sentence matrix.

These figures are approximations derived from character counts and a fixed
baseline speaking speed, not measured audio durations. They are good enough
for a progress bar and for seeking, nothing more.
"""

from typing import NamedTuple, Sequence

from readaloud.constants import BASELINE_CHARS_PER_SECOND
from readaloud.models import Position


class Timeline(NamedTuple):
    duration: float    # seconds, whole article
    position: float    # seconds, start of the current sentence


def _chars_per_second(rate: float) -> float:
    return BASELINE_CHARS_PER_SECOND * rate


def compute_timeline(
    matrix: Sequence[Sequence[str]],
    paragraph: int,
    sentence: int,
    rate: float,
) -> Timeline:
    """Estimate article duration and the elapsed time at (paragraph, sentence)."""
    total_chars = 0
    consumed_chars = 0

    for p, sentences in enumerate(matrix):
        for s, text in enumerate(sentences):
            total_chars += len(text)
            if p < paragraph or (p == paragraph and s < sentence):
                consumed_chars += len(text)

    chars_per_second = _chars_per_second(rate)
    return Timeline(
        duration=total_chars / chars_per_second,
        position=consumed_chars / chars_per_second,
    )


def last_position(matrix: Sequence[Sequence[str]]) -> Position | None:
    if not matrix:
        return None
    last = len(matrix) - 1
    return Position(last, max(len(matrix[last]) - 1, 0))


def position_for_time(
    matrix: Sequence[Sequence[str]],
    seconds: float,
    rate: float,
) -> Position | None:
    """Map a target time back to the sentence being spoken at that time.

    Walks the matrix accumulating sentence lengths until the running total
    reaches the target character offset. Times at or before zero land on
    (0, 0); times past the end land on the last sentence. Returns None for
    an empty matrix.
    """
    if not matrix:
        return None
    if seconds <= 0:
        return Position(0, 0)

    target_chars = seconds * _chars_per_second(rate)
    accumulated = 0
    for p, sentences in enumerate(matrix):
        for s, text in enumerate(sentences):
            accumulated += len(text)
            if accumulated > target_chars:
                return Position(p, s)

    return last_position(matrix)
