"""Voice catalog loading and per-language voice selection."""

import asyncio
import logging

import edge_tts

from readaloud.constants import ENHANCED_VOICE_MARKERS, VOICE_CATALOG_TIMEOUT
from readaloud.models import Voice

logger = logging.getLogger(__name__)


def lang_matches(voice_lang: str, lang: str) -> bool:
    """True if voice_lang is lang itself or one of its regional variants.

    "en-US" matches "en"; "eng" does not.
    """
    voice_lang = voice_lang.lower().replace("_", "-")
    lang = lang.lower().replace("_", "-")
    return voice_lang == lang or voice_lang.startswith(lang + "-")


def _is_enhanced(voice: Voice) -> bool:
    name = voice.name.lower()
    return any(marker in name for marker in ENHANCED_VOICE_MARKERS)


def select_voice(
    voices: list[Voice],
    lang: str,
    preferred: str | None = None,
) -> Voice | None:
    """Pick the best voice for lang.

    Priority: preferred name (if it speaks lang) → enhanced/premium voice →
    first matching voice. Returns None when nothing matches; callers then
    leave the choice to the backend's default.
    """
    if preferred:
        for voice in voices:
            if voice.name == preferred and lang_matches(voice.lang, lang):
                return voice

    matching = [v for v in voices if lang_matches(v.lang, lang)]
    for voice in matching:
        if _is_enhanced(voice):
            return voice
    return matching[0] if matching else None


def filter_voices(
    voices: list[Voice],
    lang: str | None = None,
    substring: str | None = None,
) -> list[Voice]:
    """Filter a catalog by language and/or case-insensitive name substring."""
    result = voices
    if lang:
        result = [v for v in result if lang_matches(v.lang, lang)]
    if substring:
        needle = substring.lower()
        result = [v for v in result if needle in v.name.lower()]
    return result


def voice_from_edge(entry: dict) -> Voice:
    """Convert one edge-tts catalog entry into a Voice."""
    return Voice(
        name=entry["ShortName"],
        lang=entry.get("Locale", ""),
        gender=entry.get("Gender", ""),
    )


async def load_voice_catalog(timeout: float = VOICE_CATALOG_TIMEOUT) -> list[Voice]:
    """Fetch the edge-tts voice catalog, waiting at most timeout seconds.

    The catalog is a network resource; an empty list is returned (and
    logged) if it cannot be fetched in time, so playback can still start
    with the backend's default voice.
    """
    try:
        entries = await asyncio.wait_for(edge_tts.list_voices(), timeout)
    except asyncio.TimeoutError:
        logger.warning("Voice catalog not available after %.1fs — using default voice", timeout)
        return []
    except Exception as e:
        logger.warning("Could not load voice catalog: %s", e)
        return []
    return [voice_from_edge(entry) for entry in entries if "ShortName" in entry]
