"""TTL-gated caches shared by the pipeline components.

``MemoryCache`` lives for the process, ``JsonFileCache`` persists JSON
payloads under the cache directory and ``BlobFileCache`` stores raw
downloads (the static GTFS archive). Population of a key is serialized so
concurrent callers for the same missing key trigger a single upstream fetch.
"""

import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached payload and the time it was populated."""
    key: str
    payload: Any
    populated_at: float
    ttl: Optional[float] = None

    def age(self, now: float) -> float:
        return now - self.populated_at

    def is_fresh(self, now: float, ttl: Optional[float] = None) -> bool:
        ttl = self.ttl if ttl is None else ttl
        if ttl is None:
            return True
        return self.age(now) < ttl


class KeyedCache(ABC):
    """Base class implementing populate-on-miss over a storage backend."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def now(self) -> float:
        return self._clock()

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        """Hold the population lock for ``key``."""
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def get_fresh(self, key: str, ttl: float) -> Optional[CacheEntry]:
        entry = self.get_entry(key)
        if entry is not None and entry.is_fresh(self.now(), ttl):
            return entry
        return None

    def get_or_populate(self, key: str, ttl: float, populate: Callable[[], Any]) -> Any:
        entry = self.get_fresh(key, ttl)
        if entry is not None:
            logger.debug(f"Cache hit for {key}")
            return entry.payload

        with self.locked(key):
            # Another caller may have populated the key while we waited.
            entry = self.get_fresh(key, ttl)
            if entry is not None:
                return entry.payload
            logger.debug(f"Cache miss for {key}, populating")
            payload = populate()
            self.store(key, payload, ttl)
            return payload

    def discard_lock(self, key: str) -> None:
        """Forget the population lock for ``key`` unless a caller holds it."""
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]

    def evict_expired(self, prefix: str, ttl: float) -> int:
        """Drop entries under ``prefix`` older than ``ttl``.

        Backends that cannot enumerate their keys keep their entries and
        only forget idle population locks.

        Args:
            prefix: Key prefix the eviction is limited to.
            ttl: Age in seconds past which an entry is stale.

        Returns:
            Number of entries dropped.
        """
        with self._locks_guard:
            keys = [key for key in self._locks if key.startswith(prefix)]
        for key in keys:
            if self.get_fresh(key, ttl) is None:
                self.discard_lock(key)
        return 0

    @abstractmethod
    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for ``key`` regardless of age."""

    @abstractmethod
    def store(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        """Replace the stored payload for ``key``, stamped with the current time."""

    @abstractmethod
    def invalidate(self, key: str) -> None:
        """Drop ``key`` if present."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""


class MemoryCache(KeyedCache):
    """Process-scoped cache; contents are lost on restart."""

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._entries: Dict[str, CacheEntry] = {}

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def store(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(key=key, payload=payload, populated_at=self.now(), ttl=ttl)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def evict_expired(self, prefix: str, ttl: float) -> int:
        now = self.now()
        stale = [
            key for key, entry in list(self._entries.items())
            if key.startswith(prefix) and not entry.is_fresh(now, ttl)
        ]
        for key in stale:
            self._entries.pop(key, None)
        super().evict_expired(prefix, ttl)
        if stale:
            logger.debug(f"Evicted {len(stale)} expired {prefix} entries")
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


class JsonFileCache(KeyedCache):
    """Persists JSON-serializable payloads as ``<directory>/<key>.json``."""

    def __init__(self, directory, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                envelope = json.load(f)
            return CacheEntry(
                key=key,
                payload=envelope["payload"],
                populated_at=float(envelope["populated_at"]),
                ttl=envelope.get("ttl"),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cache file {path}: {e}")
            return None

    def store(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        envelope = {"key": key, "populated_at": self.now(), "ttl": ttl, "payload": payload}
        _atomic_write(self.path_for(key), json.dumps(envelope).encode("utf-8"))

    def invalidate(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()

    def clear(self) -> None:
        if not self.directory.exists():
            return
        for path in self.directory.glob("*.json"):
            path.unlink()


class BlobFileCache(KeyedCache):
    """Stores raw bytes under ``<directory>/<key>``.

    Freshness is taken from the file's modification time, and payloads are
    handed out as the file path so large archives are not held in memory.
    """

    def __init__(self, directory, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / key

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return CacheEntry(key=key, payload=path, populated_at=path.stat().st_mtime)

    def get_or_populate(self, key: str, ttl: float, populate: Callable[[], bytes]) -> Path:
        super().get_or_populate(key, ttl, populate)
        return self.path_for(key)

    def store(self, key: str, payload: bytes, ttl: Optional[float] = None) -> None:
        path = self.path_for(key)
        _atomic_write(path, payload)
        now = self.now()
        os.utime(path, (now, now))

    def invalidate(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()

    def clear(self) -> None:
        if not self.directory.exists():
            return
        for path in self.directory.iterdir():
            if path.is_file():
                path.unlink()
