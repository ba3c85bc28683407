"""
In-memory caches with per-entry TTL, a byte ceiling and file snapshots.

Values are stored JSON-encoded, so an entry is never shared by reference with
its caller: `get()` always hands out a fresh copy and `set()` replaces.
When the ceiling is hit, the oldest written entries are evicted first.
"""
import json
import os
import tempfile
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple

from loguru import logger

SNAPSHOT_VERSION = 1


class _Entry(NamedTuple):
    raw: str
    expires_at: float
    size: int


class CacheStore:
    def __init__(self, name: str, max_bytes: int, clock: Callable[[], float] = time.time):
        self.name = name
        self.max_bytes = max_bytes
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._bytes = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at <= self._clock():
                self._remove(key)
                self.misses += 1
                return None
            self.hits += 1
            raw = entry.raw
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: float) -> bool:
        """
        Stores `value` (anything JSON serializable) for `ttl` seconds.
        Returns False if the entry alone is bigger than the whole store.
        """
        raw = json.dumps(value, separators=(",", ":"))
        size = len(key.encode("utf-8")) + len(raw.encode("utf-8"))
        if size > self.max_bytes:
            logger.warning(f"{self.name} cache: entry of {size} bytes exceeds the store size, not caching it")
            return False
        with self._lock:
            self._put(key, _Entry(raw, self._clock() + ttl, size))
        return True

    def delete(self, key: str) -> None:
        with self._lock:
            if key in self._entries:
                self._remove(key)

    def ttl_remaining(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            remaining = entry.expires_at - self._clock()
        return remaining if remaining > 0 else None

    def __contains__(self, key: str) -> bool:
        return self.ttl_remaining(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def size_bytes(self) -> int:
        return self._bytes

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "bytes": self._bytes,
                "max_bytes": self.max_bytes,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                self._remove(key)
        return len(expired)

    # --- Snapshots ---

    def snapshot(self) -> List[Tuple[str, float, str]]:
        """Point-in-time copy of all live entries. Only holds the lock for the copy."""
        now = self._clock()
        with self._lock:
            return [(k, e.expires_at, e.raw) for k, e in self._entries.items() if e.expires_at > now]

    def save_to_file(self, path: str) -> int:
        entries = self.snapshot()
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        payload = {"version": SNAPSHOT_VERSION, "name": self.name, "entries": entries}
        # Write to a temp file first so a crash never leaves a truncated snapshot behind
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.name}-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, separators=(",", ":"))
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return len(entries)

    @classmethod
    def load_from_file_or_new(
        cls, name: str, path: str, max_bytes: int, clock: Callable[[], float] = time.time
    ) -> "CacheStore":
        """
        Restores a store from a snapshot written by `save_to_file`.
        A missing file means an empty store; an unreadable one is logged and ignored.
        """
        store = cls(name, max_bytes, clock=clock)
        if not os.path.exists(path):
            logger.info(f"No {name} cache snapshot at {path}, starting empty")
            return store
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            if payload.get("version") != SNAPSHOT_VERSION:
                raise ValueError(f"unsupported snapshot version {payload.get('version')!r}")
            now = clock()
            with store._lock:
                for key, expires_at, raw in payload["entries"]:
                    if expires_at <= now:
                        continue
                    size = len(key.encode("utf-8")) + len(raw.encode("utf-8"))
                    if size <= max_bytes:
                        store._put(key, _Entry(raw, expires_at, size))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Couldn't load {name} cache from {path}, starting empty: {e}")
            return cls(name, max_bytes, clock=clock)
        logger.info(f"Loaded {len(store)} entries into the {name} cache")
        return store

    # --- Internals, callers hold the lock ---

    def _put(self, key: str, entry: _Entry) -> None:
        if key in self._entries:
            self._remove(key)
        self._entries[key] = entry
        self._bytes += entry.size
        while self._bytes > self.max_bytes:
            oldest = next(iter(self._entries))
            self._remove(oldest)
            self.evictions += 1

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._bytes -= entry.size


@dataclass
class CacheSet:
    """
    The four independent stores. Kept separate so that for example a high churn
    in the torrent cache doesn't push out redirect entries before they're used.
    """
    credential: CacheStore
    availability: CacheStore
    torrent: CacheStore
    redirect: CacheStore

    NAMES = ("credential", "availability", "torrent", "redirect")

    @classmethod
    def new(cls, max_bytes_each: int, clock: Callable[[], float] = time.time) -> "CacheSet":
        return cls(*(CacheStore(name, max_bytes_each, clock=clock) for name in cls.NAMES))

    @classmethod
    def load(cls, directory: str, max_bytes_each: int, clock: Callable[[], float] = time.time) -> "CacheSet":
        return cls(*(
            CacheStore.load_from_file_or_new(name, os.path.join(directory, name), max_bytes_each, clock=clock)
            for name in cls.NAMES
        ))

    def __iter__(self) -> Iterator[CacheStore]:
        return iter((self.credential, self.availability, self.torrent, self.redirect))
