"""
Per-user query cache with TTLs and a completeness flag.

An entry with ``has_more=False`` is a complete snapshot of its query and may
answer reads on its own; ``has_more=True`` marks a partial listing that must
not be trusted by anything needing every record (search, counts).

Book listings are also persisted to disk in the browser-era wire shape
``{"books": [...], "timestamp": ms, "sort": "...", "hasMore": bool}`` so a
restart (or a store outage) can still serve the last complete listing.
"""

import os
import json
import time
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Dict, Tuple, List

from ..domain.repositories import CacheInvalidator

logger = logging.getLogger(__name__)

SCOPES = ('books', 'genres', 'series', 'wishlist')

DEFAULT_TTLS = {
    'books': 3600,
    'genres': 300,
    'series': 300,
    'wishlist': 300,
}


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    items: List[Any] = field(default_factory=list)
    timestamp: Optional[int] = None  # epoch ms; None for legacy entries
    sort_key: str = ''
    has_more: bool = False

    @property
    def is_complete(self) -> bool:
        return not self.has_more

    def is_fresh(self, ttl_seconds: int, now_ms: Optional[int] = None) -> bool:
        if self.timestamp is None:
            return False
        now_ms = _now_ms() if now_ms is None else now_ms
        return now_ms - self.timestamp < ttl_seconds * 1000

    def to_wire(self) -> Dict[str, Any]:
        return {'books': self.items, 'timestamp': self.timestamp, 'sort': self.sort_key, 'hasMore': self.has_more}

    @classmethod
    def from_wire(cls, data: Any) -> Optional['CacheEntry']:
        """Parse a persisted listing.

        A bare list is the legacy format: it carries no completeness marker,
        so it is read back as partial.
        """
        if isinstance(data, list):
            return cls(items=data, timestamp=None, sort_key='', has_more=True)
        if not isinstance(data, dict) or not isinstance(data.get('books'), list):
            return None
        has_more = data.get('hasMore')
        return cls(
            items=data['books'],
            timestamp=data.get('timestamp'),
            sort_key=data.get('sort') or '',
            has_more=True if has_more is None else bool(has_more),
        )


class JsonFileStorage:
    """Tiny key/value persistence: one JSON file per key in a directory."""

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, key: str) -> str:
        safe = ''.join(c if c.isalnum() or c in '-_.' else '_' for c in key)
        return os.path.join(self.directory, f"{safe}.json")

    def load(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {path}: {e}")
            return None

    def save(self, key: str, payload: Any) -> None:
        os.makedirs(self.directory, exist_ok=True)
        path = self._path(key)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, default=str)
        os.replace(tmp_path, path)

    def remove(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


def books_storage_key(user_id: str) -> str:
    return f"bookshelf_books_cache_v7_{user_id}"


class CacheStore(CacheInvalidator):
    """Explicit cache object, passed to services instead of module globals."""

    def __init__(self, ttls: Optional[Dict[str, int]] = None, storage: Optional[JsonFileStorage] = None):
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self.storage = storage
        self.current_user: Optional[str] = None
        self._entries: Dict[Tuple[str, str, str], CacheEntry] = {}
        self._lock = threading.Lock()

    def init(self, user_id: str) -> None:
        """Bind the cache to a user; switching users drops the previous user's entries."""
        with self._lock:
            previous = self.current_user
            self.current_user = user_id
        if previous and previous != user_id:
            self.invalidate(previous)
        logger.debug(f"Cache initialised for user {user_id}")

    def get(self, user_id: str, scope: str, sort_key: str = '', allow_stale: bool = False) -> Optional[CacheEntry]:
        """Get a cached entry, or None when absent or expired.

        ``allow_stale`` returns expired entries too (offline fallback).
        """
        key = (user_id, scope, sort_key)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None and scope == 'books' and self.storage is not None:
            entry = self._load_books(user_id, sort_key)
        if entry is None:
            return None
        if allow_stale or entry.is_fresh(self.ttls.get(scope, 300)):
            return entry
        with self._lock:
            self._entries.pop(key, None)
        return None

    def set(self, user_id: str, scope: str, items: List[Any], has_more: bool = False,
            sort_key: str = '') -> CacheEntry:
        entry = CacheEntry(items=list(items), timestamp=_now_ms(), sort_key=sort_key, has_more=has_more)
        with self._lock:
            self._entries[(user_id, scope, sort_key)] = entry
        if scope == 'books' and self.storage is not None:
            try:
                self.storage.save(books_storage_key(user_id), entry.to_wire())
            except (OSError, TypeError, ValueError) as e:
                logger.warning(f"Could not persist books cache for {user_id}: {e}")
        return entry

    def invalidate(self, user_id: str, scope: Optional[str] = None) -> None:
        with self._lock:
            for key in [k for k in self._entries if k[0] == user_id and (scope is None or k[1] == scope)]:
                del self._entries[key]
        if (scope is None or scope == 'books') and self.storage is not None:
            try:
                self.storage.remove(books_storage_key(user_id))
            except OSError as e:
                logger.warning(f"Could not remove persisted books cache for {user_id}: {e}")
        logger.debug(f"Invalidated cache scope {scope or 'all'} for user {user_id}")

    def clear_all(self, user_id: str) -> None:
        """Drop every cached query for a user (logout, user switch)."""
        self.invalidate(user_id)

    def dispose(self) -> None:
        with self._lock:
            self._entries.clear()
            self.current_user = None

    def _load_books(self, user_id: str, sort_key: str) -> Optional[CacheEntry]:
        entry = CacheEntry.from_wire(self.storage.load(books_storage_key(user_id)))
        if entry is None:
            return None
        # Legacy entries have no sort; they are partial either way
        if entry.sort_key and entry.sort_key != sort_key:
            return None
        with self._lock:
            self._entries[(user_id, 'books', sort_key)] = entry
        return entry
