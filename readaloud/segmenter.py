"""Split article text into paragraphs and speakable sentence units."""

import re

from readaloud.constants import MIN_SENTENCE_LENGTH, MAX_UTTERANCE_LENGTH

# Terminal punctuation followed by whitespace; the punctuation stays with its sentence
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")


def _looks_abbreviated(fragment: str, min_length: int) -> bool:
    return len(fragment) < min_length and fragment.endswith(".")


def _merge_short_fragments(
    fragments: list[str],
    min_length: int,
    max_length: int,
) -> list[str]:
    """Merge abbreviation-like fragments forward into the next one.

    Fragments such as "Dr.", "e.g." or "U.S." come out of the boundary split
    on their own and trip up some synthesis backends when spoken alone.
    Only fragments ending in "." count: short exclamations and questions
    such as "Oh!" or "Why?" are complete sentences and stay separate.
    A merge never produces a unit longer than max_length, so an oversized
    sentence is only ever emitted on its own.
    """
    if len(fragments) <= 1:
        return fragments

    merged = []
    current = fragments[0]

    for fragment in fragments[1:]:
        if _looks_abbreviated(current, min_length) and len(current) + 1 + len(fragment) <= max_length:
            current = current + " " + fragment
        else:
            merged.append(current)
            current = fragment

    merged.append(current)
    return merged


def split_sentences(
    text: str,
    min_length: int = MIN_SENTENCE_LENGTH,
    max_length: int = MAX_UTTERANCE_LENGTH,
) -> list[str]:
    """Split a paragraph into sentence units.

    "Hello world." → ["Hello world."]
    "" → [""]
    """
    fragments = [f.strip() for f in _SENTENCE_BOUNDARY_RE.split(text)]
    fragments = [f for f in fragments if f]
    if not fragments:
        return [""]
    return _merge_short_fragments(fragments, min_length, max_length)


def split_paragraphs(text: str) -> list[str]:
    """Split plain text on blank lines, joining wrapped lines with a space."""
    paragraphs = []
    for block in _PARAGRAPH_BREAK_RE.split(text):
        para = " ".join(line.strip() for line in block.strip().splitlines() if line.strip())
        if para:
            paragraphs.append(para)
    return paragraphs


def build_matrix(paragraphs: list[str]) -> tuple[tuple[str, ...], ...]:
    """Segment every paragraph once; the result is the sentence matrix."""
    return tuple(tuple(split_sentences(p)) for p in paragraphs)
