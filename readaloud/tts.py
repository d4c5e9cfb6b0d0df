"""Speech backends: the interface the scheduler drives, and an edge-tts implementation."""

import asyncio
import functools
import io
import logging
import os
import signal
import tempfile
from collections import OrderedDict
from typing import Callable, Optional, Protocol, runtime_checkable

import edge_tts
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError
from pydub.utils import get_player_name

from readaloud.constants import AUDIO_CACHE_SIZE, TTS_RETRY_BASE_DELAY, TTS_RETRY_COUNT
from readaloud.models import Utterance

logger = logging.getLogger(__name__)

DEFAULT_EDGE_VOICE = "en-US-AriaNeural"

# Called exactly once per speak(): None on completion, otherwise a reason string
DoneCallback = Callable[[Optional[str]], None]


class SynthesisError(Exception):
    """Text could not be turned into audio."""


class PlaybackError(Exception):
    """Synthesized audio could not be played."""


@runtime_checkable
class SpeechBackend(Protocol):
    """Black-box speech capability consumed by the playback scheduler.

    pause(), resume() and cancel() are best-effort. A cancelled unit may
    still report back once; the scheduler discards such late reports.
    """

    def speak(self, utterance: Utterance, on_done: DoneCallback) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def cancel(self) -> None: ...

    def prefetch(self, utterances: list[Utterance]) -> None: ...

    @property
    def is_speaking(self) -> bool: ...

    @property
    def is_paused(self) -> bool: ...


def rate_to_edge(rate: float) -> str:
    """1.0 → "+0%", 1.5 → "+50%", 0.5 → "-50%"."""
    return f"{round((rate - 1.0) * 100):+d}%"


def pitch_to_edge(pitch: float) -> str:
    """1.0 → "+0Hz", 1.2 → "+10Hz"."""
    return f"{round((pitch - 1.0) * 50):+d}Hz"


class EdgeSpeechBackend:
    """Speak sentences with edge-tts and play them through ffplay/avplay.

    Synthesis results are cached per (voice, rate, pitch, text) so prefetched
    sentences start without a network round trip. Pause and resume stop and
    continue the player process; must be used from a running event loop.
    """

    def __init__(
        self,
        default_voice: str = DEFAULT_EDGE_VOICE,
        audio_format: str = "mp3",
        player: str | None = None,
        cache_size: int = AUDIO_CACHE_SIZE,
    ):
        self.default_voice = default_voice
        self.audio_format = audio_format
        self.player = player or get_player_name()
        self.cache_size = cache_size
        self._cache: OrderedDict[tuple, asyncio.Task] = OrderedDict()
        self._task: asyncio.Task | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._paused = False
        self._unpaused = asyncio.Event()
        self._unpaused.set()

    @property
    def is_speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_paused(self) -> bool:
        return self._paused

    # --- Public API ---

    def speak(self, utterance: Utterance, on_done: DoneCallback) -> None:
        if self.is_speaking:
            self.cancel()
        task = asyncio.get_running_loop().create_task(self._run(utterance, on_done))
        # A task cancelled before its first step never enters _run
        task.add_done_callback(functools.partial(_report_cancellation, on_done))
        self._task = task

    def pause(self) -> None:
        self._paused = True
        self._unpaused.clear()
        self._signal_player(signal.SIGSTOP)

    def resume(self) -> None:
        self._paused = False
        self._unpaused.set()
        self._signal_player(signal.SIGCONT)

    def cancel(self) -> None:
        task, self._task = self._task, None
        self._paused = False
        self._unpaused.set()
        self._terminate_player()
        if task is not None and not task.done():
            task.cancel()

    def prefetch(self, utterances: list[Utterance]) -> None:
        for utterance in utterances:
            self._synthesis_task(utterance)

    def dispose(self) -> None:
        self.cancel()
        for task in self._cache.values():
            if not task.done():
                task.cancel()
        self._cache.clear()

    # --- Internal: one spoken unit ---

    async def _run(self, utterance: Utterance, on_done: DoneCallback) -> None:
        error = None
        try:
            audio = await self._audio_for(utterance)
            await self._play(audio)
        except SynthesisError as e:
            error = f"synthesis-failed: {e}"
        except (PlaybackError, OSError) as e:
            error = f"playback-failed: {e}"

        if self._task is asyncio.current_task():
            self._task = None
        on_done(error)

    async def _audio_for(self, utterance: Utterance) -> AudioSegment:
        task = self._synthesis_task(utterance)
        # Cancelling playback must not cancel a synthesis other callers share
        data = await asyncio.shield(task)
        # ffmpeg runs as a blocking subprocess
        return await asyncio.to_thread(self._decode, data)

    def _decode(self, data: bytes) -> AudioSegment:
        try:
            audio = AudioSegment.from_file(io.BytesIO(data), format=self.audio_format)
        except (CouldntDecodeError, OSError) as e:
            # OSError: no ffmpeg/avconv to decode with
            raise SynthesisError(f"could not decode audio: {e}") from e
        if len(audio) == 0:
            raise SynthesisError("decoded audio is empty")
        return audio

    async def _play(self, audio: AudioSegment) -> None:
        await self._unpaused.wait()

        fd, path = tempfile.mkstemp(suffix=".wav", prefix="readaloud_")
        os.close(fd)
        try:
            await asyncio.to_thread(_write_wav, audio, path)
            self._proc = await asyncio.create_subprocess_exec(
                self.player, "-nodisp", "-autoexit", "-hide_banner", "-loglevel", "error", path,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            if self._paused:
                self._signal_player(signal.SIGSTOP)
            try:
                returncode = await self._proc.wait()
            finally:
                self._proc = None
            if returncode != 0:
                raise PlaybackError(f"{self.player} exited with status {returncode}")
        finally:
            os.remove(path)

    # --- Internal: synthesis cache ---

    def _cache_key(self, utterance: Utterance) -> tuple:
        voice = utterance.voice.name if utterance.voice else self.default_voice
        return (voice, utterance.rate, utterance.pitch, utterance.text)

    def _synthesis_task(self, utterance: Utterance) -> asyncio.Task:
        key = self._cache_key(utterance)
        task = self._cache.get(key)
        if task is not None and not _failed(task):
            self._cache.move_to_end(key)
            return task

        task = asyncio.get_running_loop().create_task(self._synthesize(utterance))
        task.add_done_callback(_log_failure)
        self._cache[key] = task
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return task

    async def _synthesize(self, utterance: Utterance) -> bytes:
        """Fetch audio for one utterance with retry logic.

        Retries on network errors, service errors, or empty audio, with
        exponential backoff between attempts.
        """
        voice = utterance.voice.name if utterance.voice else self.default_voice
        last_error = None
        for attempt in range(TTS_RETRY_COUNT):
            try:
                communicate = edge_tts.Communicate(
                    utterance.text,
                    voice,
                    rate=rate_to_edge(utterance.rate),
                    pitch=pitch_to_edge(utterance.pitch),
                )
                chunks = []
                async for chunk in communicate.stream():
                    if chunk["type"] == "audio":
                        chunks.append(chunk["data"])
                data = b"".join(chunks)
                if data:
                    return data

                # No audio chunks, treat as failure
                last_error = SynthesisError(f"TTS produced no audio for: {utterance.text[:50]}...")
            except Exception as e:
                last_error = e

            if attempt < TTS_RETRY_COUNT - 1:
                delay = TTS_RETRY_BASE_DELAY * (2 ** attempt)
                logger.debug("Synthesis attempt %d failed (%s), retrying in %.1fs", attempt + 1, last_error, delay)
                await asyncio.sleep(delay)

        raise SynthesisError(str(last_error)) from last_error

    # --- Internal: player process ---

    def _signal_player(self, signum: int) -> None:
        if self._proc is None or self._proc.returncode is not None:
            return
        try:
            self._proc.send_signal(signum)
        except ProcessLookupError:
            pass

    def _terminate_player(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        try:
            # A stopped process only acts on SIGTERM once continued
            proc.send_signal(signal.SIGCONT)
            proc.terminate()
        except ProcessLookupError:
            pass


def _report_cancellation(on_done: DoneCallback, task: asyncio.Task) -> None:
    if task.cancelled():
        on_done("interrupted")


def _write_wav(audio: AudioSegment, path: str) -> None:
    with open(path, "wb") as f:
        audio.export(f, format="wav")


def _failed(task: asyncio.Task) -> bool:
    return task.done() and (task.cancelled() or task.exception() is not None)


def _log_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Synthesis task failed: %s", task.exception())
