"""Shared fixtures and fakes for read-aloud tests."""

import pytest

from readaloud.models import PlaybackCallbacks, Voice
from readaloud.wakelock import WakeLockError


class FakeBackend:
    """Speech backend that records submissions; tests complete them by hand."""

    def __init__(self):
        self.spoken = []        # (utterance, on_done) per speak() call
        self.prefetched = []
        self.cancel_count = 0
        self.pause_count = 0
        self.resume_count = 0
        self.is_speaking = False
        self.is_paused = False

    def speak(self, utterance, on_done):
        self.spoken.append((utterance, on_done))
        self.is_speaking = True
        self.is_paused = False

    def pause(self):
        self.pause_count += 1
        self.is_paused = True

    def resume(self):
        self.resume_count += 1
        self.is_paused = False

    def cancel(self):
        self.cancel_count += 1
        self.is_speaking = False
        self.is_paused = False

    def prefetch(self, utterances):
        self.prefetched.append(list(utterances))

    @property
    def texts(self):
        return [u.text for u, _ in self.spoken]

    def complete(self, index=-1, error=None):
        """Fire the completion callback of a submission (latest by default)."""
        self.is_speaking = False
        _, on_done = self.spoken[index]
        on_done(error)


class FakeTimer:
    """Stand-in for loop.call_later; fire() runs pending callbacks."""

    def __init__(self):
        self.pending = []

    def __call__(self, delay, callback):
        handle = _FakeHandle(delay, callback)
        self.pending.append(handle)
        return handle

    def fire(self):
        due = [h for h in self.pending if not h.cancelled]
        self.pending = []
        for handle in due:
            handle.callback()
        return len(due)


class _FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLockHandle:
    def __init__(self):
        self.released = False

    def release(self):
        self.released = True


class FakeWakeLockProvider:
    def __init__(self, fail=False):
        self.fail = fail
        self.handles = []

    def acquire(self, kind):
        if self.fail:
            raise WakeLockError("power saving mode")
        handle = FakeLockHandle()
        self.handles.append(handle)
        return handle


class Recorder:
    """Collects every scheduler notification."""

    def __init__(self):
        self.states = []
        self.progress = []
        self.paragraphs = []
        self.errors = []
        self.ends = 0

    def on_end(self):
        self.ends += 1

    def callbacks(self):
        return PlaybackCallbacks(
            on_state_change=self.states.append,
            on_progress=self.progress.append,
            on_paragraph_change=self.paragraphs.append,
            on_end=self.on_end,
            on_error=self.errors.append,
        )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def sample_voices():
    return [
        Voice("Alex", "en-US"),
        Voice("Google US English", "en-US"),
        Voice("Maria", "ro-RO"),
        Voice("Google română", "ro-RO"),
        Voice("Samantha", "en-GB"),
    ]


@pytest.fixture
def wake_provider():
    return FakeWakeLockProvider()


@pytest.fixture
def failing_wake_provider():
    return FakeWakeLockProvider(fail=True)
