"""
Book listing, search and save.

Listings are served from the cache only when the cached entry is a complete
snapshot. Otherwise the store is paged through until it reports no more
items; if the store is unreachable any cached entry, even a stale or partial
one, is returned instead.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple

from ..domain.errors import ValidationConflictError, StoreUnavailableError, DocumentNotFoundError
from ..domain.models import Book, format_timestamp
from ..infrastructure.redis_repositories import BookRepository
from ..utils.cache import CacheStore
from ..utils.event_bus import EventBus, Events
from ..utils.normalization import normalize_text
from .counter_service import CounterSynchronizer

logger = logging.getLogger(__name__)


def parse_sort(sort: str) -> Tuple[str, str]:
    """Split ``field:direction`` (direction defaults to ``desc``)."""
    field, _, direction = (sort or 'created_at:desc').partition(':')
    direction = direction.lower() if direction.lower() in ('asc', 'desc') else 'desc'
    return field or 'created_at', direction


def book_record(book: Book) -> Dict[str, Any]:
    """Flat record for caching, including id and server timestamps."""
    return {
        **book.to_dict(),
        'id': book.id,
        'created_at': format_timestamp(book.created_at),
        'updated_at': format_timestamp(book.updated_at),
    }


def _as_book(item: Any) -> Book:
    return item if isinstance(item, Book) else Book.from_dict(item)


class LibraryService:
    def __init__(self, books: BookRepository, cache: CacheStore, counters: CounterSynchronizer,
                 event_bus: Optional[EventBus] = None, page_size: int = 50):
        self.books = books
        self.cache = cache
        self.counters = counters
        self.event_bus = event_bus
        self.page_size = page_size

    async def load_books(self, user_id: str, sort: str = 'created_at:desc',
                         force_refresh: bool = False) -> List[Book]:
        """Get every book (binned included) in ``sort`` order.

        Raises:
            StoreUnavailableError: Store unreachable and nothing cached.
        """
        if not force_refresh:
            entry = self.cache.get(user_id, 'books', sort_key=sort)
            if entry is not None and entry.is_complete:
                return [_as_book(item) for item in entry.items]

        order_by, direction = parse_sort(sort)
        loaded: List[Book] = []
        seen = set()
        cursor = None
        has_more = True
        try:
            while has_more:
                page = await self.books.get_paginated(
                    user_id, order_by=order_by, direction=direction, limit=self.page_size,
                    cursor=cursor, force_remote=force_refresh,
                )
                fresh = [book for book in page.items if book.id not in seen]
                seen.update(book.id for book in fresh)
                loaded.extend(fresh)
                cursor = page.cursor
                has_more = page.has_more
                # Guard against a cursor that keeps returning the same items
                if has_more and not fresh:
                    has_more = False
        except StoreUnavailableError:
            entry = self.cache.get(user_id, 'books', sort_key=sort, allow_stale=True)
            if entry is None:
                raise
            logger.warning(f"Store unavailable, serving {len(entry.items)} cached books for {user_id}")
            return [_as_book(item) for item in entry.items]

        self.cache.set(user_id, 'books', [book_record(book) for book in loaded], has_more=False, sort_key=sort)
        return loaded

    async def search_books(self, user_id: str, query: str, sort: str = 'created_at:desc') -> List[Book]:
        """Search active books by title, author or ISBN over the complete dataset."""
        needle = normalize_text(query)
        books = [book for book in await self.load_books(user_id, sort) if not book.is_binned]
        if not needle:
            return books
        return [
            book for book in books
            if needle in normalize_text(book.title)
            or needle in normalize_text(book.author)
            or needle in normalize_text(book.isbn or '')
        ]

    async def get_book(self, user_id: str, book_id: str) -> Optional[Book]:
        return await self.books.get_by_id(user_id, book_id)

    async def _check_series_position(self, user_id: str, book: Book) -> None:
        if not book.series_id or book.series_position is None:
            return
        for other in await self.books.get_by_series(user_id, book.series_id):
            if other.id != book.id and not other.is_binned and other.series_position == book.series_position:
                raise ValidationConflictError(
                    f'Position {book.series_position} in this series is already taken by "{other.title}"'
                )

    async def save_book(self, user_id: str, book: Book) -> Book:
        """Create or update an active book and sync genre/series counts.

        Raises:
            ValidationConflictError: Another active book holds the same series position.
        """
        await self._check_series_position(user_id, book)
        before = None
        if book.id:
            existing = await self.books.get_by_id(user_id, book.id)
            if existing is not None:
                if existing.is_binned:
                    raise ValidationConflictError('Restore the book from the bin before editing it')
                before = existing.to_dict()
        if before is None:
            saved = await self.books.create(user_id, book, doc_id=book.id)
        else:
            await self.books.update(user_id, book.id, book.to_dict())
            saved = await self.books.get_by_id(user_id, book.id)
            if saved is None:
                raise DocumentNotFoundError('Book not found', 'books', book.id)

        await self.counters.sync_book_membership(user_id, before, None if saved.is_binned else saved.to_dict())
        self.cache.invalidate(user_id, 'books')
        if self.event_bus is not None:
            self.event_bus.emit(Events.BOOK_SAVED, {'user_id': user_id, 'book_id': saved.id})
        return saved
