"""Keep the machine awake while audio is playing."""

import logging
import shutil
import subprocess
from typing import Protocol, runtime_checkable

from readaloud.constants import WAKE_LOCK_KIND

logger = logging.getLogger(__name__)


class WakeLockError(Exception):
    """The platform refused or does not support a sleep inhibitor."""


@runtime_checkable
class WakeLockHandle(Protocol):
    def release(self) -> None: ...


@runtime_checkable
class WakeLockProvider(Protocol):
    def acquire(self, kind: str) -> WakeLockHandle: ...


class _InhibitHandle:
    def __init__(self, proc: subprocess.Popen):
        self._proc = proc

    def release(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()
            # Reap if already gone; never wait on the loop thread
            self._proc.poll()


class SystemdInhibitProvider:
    """Sleep inhibitor backed by a long-running `systemd-inhibit` process."""

    def __init__(self, why: str = "Reading an article aloud"):
        self.why = why

    def acquire(self, kind: str) -> _InhibitHandle:
        exe = shutil.which("systemd-inhibit")
        if not exe:
            raise WakeLockError("systemd-inhibit not found")
        proc = subprocess.Popen(
            [exe, f"--what={kind}", "--who=readaloud", f"--why={self.why}",
             "--mode=block", "sleep", "infinity"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        return _InhibitHandle(proc)


class WakeLockManager:
    """Acquire/release wrapper whose failures never reach playback.

    Both calls are idempotent. When disabled, acquire() does nothing.
    """

    def __init__(self, provider: WakeLockProvider, enabled: bool = False, kind: str = WAKE_LOCK_KIND):
        self._provider = provider
        self._kind = kind
        self._handle = None
        self.enabled = enabled

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if not self.enabled or self._handle is not None:
            return
        try:
            self._handle = self._provider.acquire(self._kind)
        except (WakeLockError, OSError) as e:
            logger.warning("Wake lock unavailable: %s", e)
            self._handle = None

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.release()
        except (WakeLockError, OSError, subprocess.SubprocessError) as e:
            logger.warning("Wake lock release failed: %s", e)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        if not enabled:
            self.release()
