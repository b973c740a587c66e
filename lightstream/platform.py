"""Threads, sleeping, monotonic timing and bounded string copies."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable

# The longest stretch that sleep_interruptible() sleeps before it looks
# at the interrupt flag again.
INTERRUPT_PERIOD_MS = 50

_ticks_lock = threading.Lock()
_start_ns: int | None = None


def _start_time_ns() -> int:
    global _start_ns
    if _start_ns is None:
        with _ticks_lock:
            if _start_ns is None:
                _start_ns = time.monotonic_ns()
    return _start_ns


def get_microseconds() -> int:
    """Microseconds elapsed since an opaque, fixed starting point."""
    start = _start_time_ns()
    return (time.monotonic_ns() - start) // 1000


def get_millis() -> int:
    """Milliseconds elapsed since an opaque, fixed starting point."""
    return get_microseconds() // 1000


def sleep_ms(ms: int) -> None:
    """Block the calling thread for ``ms`` milliseconds."""
    if ms > 0:
        time.sleep(ms / 1000)


def safe_copy(src: str | bytes, dest_size: int) -> str | bytes:
    """Return ``src`` if it fits, with its terminator, in ``dest_size`` bytes.

    Raises ValueError when the destination size is not positive or the
    source is too long to fit.
    """
    if dest_size <= 0:
        raise ValueError("destination size must be positive")
    encoded = src.encode("utf-8") if isinstance(src, str) else bytes(src)
    if len(encoded) >= dest_size:
        raise ValueError(
            f"source of {len(encoded)} bytes does not fit in a buffer of {dest_size} bytes"
        )
    return src


class InterruptibleThread:
    """A named worker thread with a cooperative interrupt flag."""

    def __init__(self, name: str, entry: Callable[[Any], Any], context: Any = None) -> None:
        self.name = name
        self._entry = entry
        self._context = context
        self._interrupted = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self) -> None:
        self._entry(self._context)

    def start(self) -> None:
        """Start running the entry function on a new thread."""
        self._interrupted.clear()
        self._thread.start()

    def join(self) -> None:
        """Wait for the thread to finish."""
        self._thread.join()

    def interrupt(self) -> None:
        """Ask the thread to stop at its next check."""
        self._interrupted.set()

    def is_interrupted(self) -> bool:
        """Whether interrupt() has been called."""
        return self._interrupted.is_set()

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def sleep_interruptible(self, ms: int) -> None:
        """Sleep up to ``ms`` milliseconds, returning early once interrupted."""
        while ms > 0 and not self.is_interrupted():
            chunk = min(ms, INTERRUPT_PERIOD_MS)
            self._interrupted.wait(chunk / 1000)
            ms -= chunk