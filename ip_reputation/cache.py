"""In-memory TTL cache for reputation lookups.

Goal: shield the upstream API from repeated lookups of the same address.

- key (IP string, exact match) -> result + stored-at timestamp
- TTL enforced at read time (expired entries are dropped on the read that
  finds them) and by a background sweeper thread
- readers share a lock; writers, lazy deletes and sweeps hold it exclusively
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from .models import ReputationResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_SWEEP_INTERVAL_SECONDS = 600


def parse_ttl(ttl: str) -> int:
    """Parse TTL strings like: 3600, 10m, 1h, 7d."""
    s = ttl.strip().lower()
    if s.isdigit():
        return int(s)

    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    unit = s[-1:] if s else ""
    if unit not in units or not s[:-1].isdigit():
        raise ValueError(f"Invalid TTL: {ttl!r}")
    return int(s[:-1]) * units[unit]


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Waiting writers block new readers so a steady stream of `get` calls
    cannot starve `set` or the sweeper.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class CacheEntry:
    result: ReputationResult
    stored_at: float


class TTLCache:
    """Thread-safe IP -> ReputationResult store with time-based expiry."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
        start_sweeper: bool = True,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: dict[str, CacheEntry] = {}
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if start_sweeper:
            self._sweeper = threading.Thread(
                target=self._sweep_loop, name="ttl-cache-sweeper", daemon=True
            )
            self._sweeper.start()

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.stored_at) > self.ttl_seconds

    def get(self, key: str) -> Optional[ReputationResult]:
        with self._lock.read_locked():
            entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._expired(entry, self._clock()):
            return entry.result

        with self._lock.write_locked():
            # Only drop the entry we saw; a concurrent set may have replaced it.
            if self._entries.get(key) is entry:
                del self._entries[key]
        return None

    def set(self, key: str, result: ReputationResult) -> None:
        entry = CacheEntry(result=result, stored_at=self._clock())
        with self._lock.write_locked():
            self._entries[key] = entry

    def sweep(self) -> int:
        """Delete every expired entry. Returns how many were removed."""
        with self._lock.write_locked():
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._expired(e, now)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            self.sweep()

    def close(self) -> None:
        """Stop the background sweeper. Safe to call more than once."""
        self._stop.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join()

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def __enter__(self) -> "TTLCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock.read_locked():
            return key in self._entries
