"""
Bookshelf services package.

- CounterSynchronizer: genre/series book counts and reconciliation
- GenreService / SeriesService: CRUD, merge, duplicate detection
- BinService: soft delete, restore, purge
- LibraryService / WishlistService: cached listings
- ServiceRegistry: builds the object graph once per process (or per app)
"""

from typing import Any, Dict, Optional

from .async_helper import run_async
from .counter_service import CounterSynchronizer
from .genre_service import GenreService
from .series_service import SeriesService
from .bin_service import BinService
from .library_service import LibraryService
from .wishlist_service import WishlistService
from .image_service import LocalImageService
from ..infrastructure.redis_store import RedisStoreConnection, DocumentStore
from ..infrastructure.redis_repositories import BookRepository, GenreRepository, SeriesRepository, WishlistRepository
from ..utils.cache import CacheStore, JsonFileStorage
from ..utils.event_bus import EventBus, wire_cache_invalidation

SETTING_NAMES = (
    'REDIS_URL', 'BOOKSHELF_KEY_PREFIX', 'COUNTER_MAX_RETRIES', 'BIN_RETENTION_DAYS',
    'GENRES_CACHE_TTL', 'SERIES_CACHE_TTL', 'WISHLIST_CACHE_TTL', 'BOOKS_CACHE_TTL',
    'BOOKS_PAGE_SIZE', 'DATA_DIR', 'BOOKS_CACHE_DIR',
)


def settings_from_object(obj: Any) -> Dict[str, Any]:
    """Pick the service settings from a Config class or a Flask config mapping."""
    if isinstance(obj, dict) or hasattr(obj, 'get'):
        return {name: obj.get(name) for name in SETTING_NAMES if obj.get(name) is not None}
    return {name: getattr(obj, name) for name in SETTING_NAMES if getattr(obj, name, None) is not None}


class ServiceRegistry:
    """Lazily builds and holds the store, cache, event bus and services."""

    def __init__(self, settings: Optional[Dict[str, Any]] = None, redis_client=None):
        from ..config import Config
        self.settings = {**settings_from_object(Config), **(settings or {})}
        self._redis_client = redis_client
        self._instances: Dict[str, Any] = {}

    def _get(self, name: str, factory):
        if name not in self._instances:
            self._instances[name] = factory()
        return self._instances[name]

    @property
    def connection(self) -> RedisStoreConnection:
        return self._get('connection', lambda: RedisStoreConnection(
            self.settings['REDIS_URL'], client=self._redis_client))

    @property
    def store(self) -> DocumentStore:
        return self._get('store', lambda: DocumentStore(
            self.connection,
            key_prefix=self.settings['BOOKSHELF_KEY_PREFIX'],
            max_counter_retries=int(self.settings['COUNTER_MAX_RETRIES']),
        ))

    @property
    def event_bus(self) -> EventBus:
        return self._get('event_bus', EventBus)

    @property
    def cache(self) -> CacheStore:
        def build():
            cache = CacheStore(
                ttls={
                    'books': int(self.settings['BOOKS_CACHE_TTL']),
                    'genres': int(self.settings['GENRES_CACHE_TTL']),
                    'series': int(self.settings['SERIES_CACHE_TTL']),
                    'wishlist': int(self.settings['WISHLIST_CACHE_TTL']),
                },
                storage=JsonFileStorage(self.settings['BOOKS_CACHE_DIR']),
            )
            wire_cache_invalidation(self.event_bus, cache)
            return cache
        return self._get('cache', build)

    @property
    def book_repository(self) -> BookRepository:
        return self._get('book_repository', lambda: BookRepository(self.store))

    @property
    def counters(self) -> CounterSynchronizer:
        return self._get('counters', lambda: CounterSynchronizer(self.store, self.cache, self.event_bus))

    @property
    def genres(self) -> GenreService:
        return self._get('genres', lambda: GenreService(
            GenreRepository(self.store), self.book_repository, self.cache, self.event_bus))

    @property
    def series(self) -> SeriesService:
        return self._get('series', lambda: SeriesService(
            SeriesRepository(self.store), self.book_repository, self.cache, self.event_bus))

    @property
    def images(self) -> LocalImageService:
        return self._get('images', lambda: LocalImageService(self.settings['DATA_DIR']))

    @property
    def bin(self) -> BinService:
        return self._get('bin', lambda: BinService(
            self.book_repository, self.cache, self.genres, self.series, self.counters, self.images,
            event_bus=self.event_bus, retention_days=int(self.settings['BIN_RETENTION_DAYS']),
        ))

    @property
    def library(self) -> LibraryService:
        return self._get('library', lambda: LibraryService(
            self.book_repository, self.cache, self.counters, self.event_bus,
            page_size=int(self.settings['BOOKS_PAGE_SIZE']),
        ))

    @property
    def wishlist(self) -> WishlistService:
        return self._get('wishlist', lambda: WishlistService(
            WishlistRepository(self.store), self.cache, self.event_bus))

    async def close(self) -> None:
        if 'connection' in self._instances:
            await self.connection.disconnect()
        if 'cache' in self._instances:
            self.cache.dispose()
        self._instances.clear()


# Service instances with lazy initialization
_registry: Optional[ServiceRegistry] = None


def get_services() -> ServiceRegistry:
    """Get the process-wide registry (scripts and the default app)."""
    global _registry
    if _registry is None:
        _registry = ServiceRegistry()
    return _registry


__all__ = [
    'run_async', 'ServiceRegistry', 'get_services', 'settings_from_object',
    'CounterSynchronizer', 'GenreService', 'SeriesService', 'BinService',
    'LibraryService', 'WishlistService', 'LocalImageService',
]
