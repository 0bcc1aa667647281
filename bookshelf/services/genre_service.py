"""
Genre service: cached listing, CRUD with duplicate checks, delete and merge.
"""

import random
import logging
from typing import List, Optional, Dict, Any

from ..domain.errors import ValidationConflictError, DocumentNotFoundError
from ..domain.models import Genre, MergeGenresResult
from ..domain.repositories import GenreLookup
from ..infrastructure.redis_repositories import GenreRepository, BookRepository
from ..utils.cache import CacheStore
from ..utils.event_bus import EventBus, Events
from ..utils.normalization import normalize_genre_name

logger = logging.getLogger(__name__)

GENRE_COLORS = [
    '#ef4444', '#f97316', '#f59e0b', '#eab308', '#84cc16', '#22c55e', '#10b981', '#14b8a6',
    '#06b6d4', '#0ea5e9', '#3b82f6', '#6366f1', '#8b5cf6', '#a855f7', '#d946ef', '#ec4899',
    '#f43f5e', '#78716c', '#64748b', '#71717a',
]


class GenreService(GenreLookup):
    def __init__(self, genres: GenreRepository, books: BookRepository, cache: CacheStore,
                 event_bus: Optional[EventBus] = None):
        self.genres = genres
        self.books = books
        self.cache = cache
        self.event_bus = event_bus

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, payload)

    async def load_genres(self, user_id: str, force_refresh: bool = False) -> List[Genre]:
        """Get all genres sorted by name, cached for the genres TTL."""
        if not force_refresh:
            entry = self.cache.get(user_id, 'genres')
            if entry is not None:
                return list(entry.items)
        genres = sorted(await self.genres.get_all(user_id), key=lambda g: g.name.lower())
        self.cache.set(user_id, 'genres', genres)
        return genres

    async def get_genre_by_id(self, user_id: str, genre_id: str) -> Optional[Genre]:
        return await self.genres.get_by_id(user_id, genre_id)

    async def _check_conflicts(self, user_id: str, name: str, color: Optional[str],
                               exclude_id: Optional[str] = None) -> None:
        normalized = normalize_genre_name(name)
        for genre in await self.load_genres(user_id, force_refresh=True):
            if genre.id == exclude_id:
                continue
            if genre.normalized_name == normalized:
                raise ValidationConflictError(f'Genre "{name}" already exists')
            if color and genre.color and genre.color.lower() == color.lower():
                raise ValidationConflictError('This colour is already used by another genre')

    async def _pick_color(self, user_id: str) -> str:
        used = {(g.color or '').lower() for g in await self.load_genres(user_id)}
        available = [c for c in GENRE_COLORS if c not in used]
        return random.choice(available or GENRE_COLORS)

    async def create_genre(self, user_id: str, name: str, color: Optional[str] = None) -> Genre:
        """Create a genre, assigning an unused palette colour when none is given.

        Raises:
            ValidationConflictError: Empty or duplicate name, or colour taken.
        """
        name = (name or '').strip()
        if not name:
            raise ValidationConflictError('Genre name is required')
        await self._check_conflicts(user_id, name, color)
        if not color:
            color = await self._pick_color(user_id)
        genre = await self.genres.create(user_id, Genre(name=name, color=color, book_count=0))
        self.cache.invalidate(user_id, 'genres')
        self._emit(Events.GENRE_CREATED, {'user_id': user_id, 'genre_id': genre.id})
        logger.info(f"Created genre {genre.id} ({name}) for {user_id}")
        return genre

    async def update_genre(self, user_id: str, genre_id: str, name: Optional[str] = None,
                           color: Optional[str] = None) -> None:
        existing = await self.genres.get_by_id(user_id, genre_id)
        if existing is None:
            raise DocumentNotFoundError('Genre not found', 'genres', genre_id)
        changes: Dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationConflictError('Genre name is required')
            changes['name'] = name
            changes['normalized_name'] = normalize_genre_name(name)
        if color is not None:
            changes['color'] = color
        if not changes:
            return
        await self._check_conflicts(user_id, name or existing.name, color, exclude_id=genre_id)
        await self.genres.update(user_id, genre_id, changes)
        self.cache.invalidate(user_id, 'genres')
        self._emit(Events.GENRE_UPDATED, {'user_id': user_id, 'genre_id': genre_id})

    async def delete_genre(self, user_id: str, genre_id: str) -> int:
        """Delete a genre and strip it from every active book, in one batch.

        Binned books keep the stale id; restoring them drops it with a warning.

        Returns:
            Number of active books that referenced the genre.
        """
        books = [book for book in await self.books.query_by_field(user_id, 'genres', 'array-contains', genre_id)
                 if not book.is_binned]
        batch = self.genres.batch(user_id)
        for book in books:
            batch.update('books', book.id, {'genres': [g for g in book.genres if g != genre_id]})
        batch.delete('genres', genre_id)
        await batch.commit()
        self.cache.invalidate(user_id, 'genres')
        self.cache.invalidate(user_id, 'books')
        self._emit(Events.GENRE_DELETED, {'user_id': user_id, 'genre_id': genre_id})
        logger.info(f"Deleted genre {genre_id} for {user_id}, unlinked from {len(books)} books")
        return len(books)

    async def merge_genres(self, user_id: str, source_id: str, target_id: str) -> MergeGenresResult:
        """Move every active book of ``source_id`` onto ``target_id`` and delete the source.

        The target count only grows by books that did not already carry it.
        """
        if source_id == target_id:
            raise ValidationConflictError('Cannot merge a genre into itself')
        source = await self.genres.get_by_id(user_id, source_id)
        if source is None:
            raise DocumentNotFoundError('Source genre not found', 'genres', source_id)
        target = await self.genres.get_by_id(user_id, target_id)
        if target is None:
            raise DocumentNotFoundError('Target genre not found', 'genres', target_id)

        books = await self.books.query_by_field(user_id, 'genres', 'array-contains', source_id)
        active = [book for book in books if not book.is_binned]
        batch = self.genres.batch(user_id)
        gained = 0
        for book in active:
            genres = [g for g in book.genres if g != source_id]
            if target_id not in genres:
                genres.append(target_id)
                gained += 1
            batch.update('books', book.id, {'genres': genres})
        batch.update('genres', target_id, {'book_count': target.book_count + gained})
        batch.delete('genres', source_id)
        await batch.commit()

        self.cache.invalidate(user_id, 'genres')
        self.cache.invalidate(user_id, 'books')
        self._emit(Events.GENRE_DELETED, {'user_id': user_id, 'genre_id': source_id})
        self._emit(Events.GENRE_UPDATED, {'user_id': user_id, 'genre_id': target_id})
        logger.info(f"Merged genre {source_id} into {target_id} for {user_id}: {len(active)} books")
        return MergeGenresResult(books_updated=len(active))
