"""
Render Sequencing

A client that changes a setting rapidly (e.g. clicking through backgrounds)
can have several renders in flight. Each request takes a generation id from
a per-client counter; a result is only delivered if its id is still the
latest when it resolves. Superseded results are dropped instead of
overwriting a newer frame.

Uses in-memory storage (suitable for single-instance deployment).
"""

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, TypeVar

T = TypeVar("T")


@dataclass
class GenerationEntry:
    latest: int
    last_request: float


class RenderSequencer:
    """
    Monotonic generation counter per client key.

    Thread-safe: renders run in a worker pool, so begin/is_current may be
    called concurrently for the same key.
    """

    def __init__(self, idle_timeout: float = 600.0, cleanup_interval: float = 60.0):
        self._entries: Dict[str, GenerationEntry] = {}
        self._lock = threading.Lock()
        self._idle_timeout = idle_timeout
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = time.time()
        # Shared counter: ids never repeat even after a key is cleaned up
        self._counter = itertools.count(1)

    def begin(self, key: str) -> int:
        """Start a new request for key and return its generation id."""
        now = time.time()

        with self._lock:
            # Periodic cleanup
            if now - self._last_cleanup > self._cleanup_interval:
                self._cleanup(now)

            entry = self._entries.get(key)
            if entry is None:
                entry = GenerationEntry(latest=0, last_request=now)
                self._entries[key] = entry

            entry.latest = next(self._counter)
            entry.last_request = now
            return entry.latest

    def is_current(self, key: str, generation: int) -> bool:
        """True if no newer request for key has started since `generation`."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.latest == generation

    def latest(self, key: str) -> int:
        """Latest generation handed out for key (0 if none)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.latest if entry else 0

    def run(self, key: str, fn: Callable[[], T]) -> Optional[T]:
        """
        Run fn as the newest request for key.

        Returns:
            fn's result, or None if a newer request started while it ran
        """
        generation = self.begin(key)
        result = fn()
        if not self.is_current(key, generation):
            print(f"  [RENDER] Discarded stale result for {key} (generation {generation})")
            return None
        return result

    def _cleanup(self, now: float):
        """Remove idle keys."""
        stale_threshold = now - self._idle_timeout

        to_remove = [
            key for key, entry in self._entries.items()
            if entry.last_request < stale_threshold
        ]

        for key in to_remove:
            del self._entries[key]

        self._last_cleanup = now


# Global instance
_render_sequencer: Optional[RenderSequencer] = None


def get_render_sequencer() -> RenderSequencer:
    """Get the global render sequencer."""
    global _render_sequencer
    if _render_sequencer is None:
        _render_sequencer = RenderSequencer()
    return _render_sequencer
