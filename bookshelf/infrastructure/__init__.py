"""Infrastructure layer: Redis-backed document store and repositories."""

from .redis_store import RedisStoreConnection, DocumentStore, WriteBatch
from .redis_repositories import (
    BaseRepository, BookRepository, GenreRepository, SeriesRepository, WishlistRepository
)

__all__ = [
    'RedisStoreConnection', 'DocumentStore', 'WriteBatch',
    'BaseRepository', 'BookRepository', 'GenreRepository', 'SeriesRepository', 'WishlistRepository',
]
