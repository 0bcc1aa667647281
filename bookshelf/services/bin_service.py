"""
Bin lifecycle: soft delete, restore, permanent delete and retention purge.

A binned book keeps its genre and series references so it can be restored
as it was. Counters are decremented on soft delete and re-incremented on
restore; permanent delete never touches them.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Dict, Any

from ..domain.errors import ValidationConflictError, DocumentNotFoundError
from ..domain.models import (
    Book, Purged, SoftDeleteResult, RestoreResult, now_utc, parse_timestamp, format_timestamp, unique_ids
)
from ..domain.repositories import CountAdjuster, GenreLookup, SeriesLookup, ImageDeleter, CacheInvalidator
from ..infrastructure.redis_repositories import BookRepository
from ..utils.event_bus import EventBus, Events

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)
DEFAULT_RETENTION_DAYS = 30


def filter_active(books: Iterable[Book]) -> List[Book]:
    return [book for book in books if not book.is_binned]


def filter_binned(books: Iterable[Book]) -> List[Book]:
    return [book for book in books if book.is_binned]


def missing_genres_warning(count: int) -> str:
    if count == 1:
        return "1 genre no longer exists"
    return f"{count} genres no longer exist"


class BinService:
    """Moves books between Active, Binned and Purged."""

    def __init__(self, books: BookRepository, cache: CacheInvalidator, genres: GenreLookup,
                 series: SeriesLookup, counters: CountAdjuster, images: ImageDeleter,
                 event_bus: Optional[EventBus] = None, retention_days: int = DEFAULT_RETENTION_DAYS,
                 clock: Callable[[], datetime] = now_utc):
        self.books = books
        self.cache = cache
        self.genres = genres
        self.series = series
        self.counters = counters
        self.images = images
        self.event_bus = event_bus
        self.retention_days = retention_days
        self.clock = clock

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, payload)

    def _invalidate(self, user_id: str) -> None:
        for scope in ('books', 'genres', 'series'):
            self.cache.invalidate(user_id, scope)

    # ---------------------- Retention ----------------------

    def get_days_remaining(self, deleted_at: Any, now: Optional[datetime] = None) -> int:
        """Whole days left before a binned book is purged.

        A book that was never binned reports the full retention period.
        """
        deleted = parse_timestamp(deleted_at)
        if deleted is None:
            return self.retention_days
        now = now or self.clock()
        elapsed_days = math.floor((now - deleted) / DAY)
        return max(0, self.retention_days - elapsed_days)

    def is_expired(self, book: Book, retention_days: Optional[int] = None,
                   now: Optional[datetime] = None) -> bool:
        if book.deleted_at is None:
            return False
        retention = self.retention_days if retention_days is None else retention_days
        now = now or self.clock()
        return now - book.deleted_at > retention * DAY

    # ---------------------- Transitions ----------------------

    async def soft_delete(self, user_id: str, book: Book, delete_empty_series: bool = False) -> SoftDeleteResult:
        """Move an active book to the bin.

        Counter and series side effects are best-effort: their failures are
        logged and reported in the result, the book stays binned.

        Raises:
            ValidationConflictError: The book is already binned.
        """
        if book.is_binned:
            raise ValidationConflictError('Book is already in the bin')
        deleted_at = self.clock()
        await self.books.update(user_id, book.id, {'deleted_at': format_timestamp(deleted_at)})
        book.deleted_at = deleted_at

        result = SoftDeleteResult()
        try:
            await self.counters.update_genre_counts(user_id, [], unique_ids(book.genres))
            if book.series_id:
                await self.counters.update_series_counts(user_id, removed_series_id=book.series_id)
        except Exception as e:
            logger.error(f"Soft-deleted book {book.id} but failed to update counts: {e}")
            result.counts_updated = False

        if delete_empty_series and book.series_id:
            try:
                siblings = [b for b in await self.books.get_by_series(user_id, book.series_id)
                            if b.id != book.id and not b.is_binned]
                if not siblings:
                    await self.series.soft_delete_series(user_id, book.series_id)
                    result.series_deleted = True
            except Exception as e:
                logger.error(f"Soft-deleted book {book.id} but failed to bin series {book.series_id}: {e}")

        self._invalidate(user_id)
        self._emit(Events.BOOK_DELETED, {'user_id': user_id, 'book_id': book.id, 'soft': True})
        logger.info(f"Moved book {book.id} to bin for {user_id}")
        return result

    async def restore(self, user_id: str, book: Book) -> RestoreResult:
        """Bring a binned book back, dropping references that no longer resolve.

        Genres that were deleted meanwhile are removed from the book; a series
        that was deleted is unlinked, one that was only binned is restored
        with the book. Each drop adds a warning.

        Raises:
            ValidationConflictError: The book is not in the bin.
        """
        if not book.is_binned:
            raise ValidationConflictError('Book is not in the bin')
        warnings: List[str] = []
        series_restored = False
        series_id = book.series_id
        series_position = book.series_position

        if series_id:
            active_ids = {s.id for s in await self.series.load_series(user_id, force_refresh=True)}
            if series_id not in active_ids:
                series = await self.series.get_series_by_id(user_id, series_id)
                if series is not None and series.is_deleted:
                    await self.series.restore_series(user_id, series_id)
                    series_restored = True
                else:
                    series_id = None
                    series_position = None
                    warnings.append("Series no longer exists")

        genres = list(book.genres)
        if genres:
            existing = {g.id for g in await self.genres.load_genres(user_id, force_refresh=True)}
            surviving = [genre_id for genre_id in genres if genre_id in existing]
            dropped = len(genres) - len(surviving)
            if dropped:
                warnings.append(missing_genres_warning(dropped))
            genres = surviving

        await self.books.update(user_id, book.id, {
            'deleted_at': None,
            'genres': genres,
            'series_id': series_id,
            'series_position': series_position,
        })
        book.deleted_at = None
        book.genres = genres
        book.series_id = series_id
        book.series_position = series_position

        try:
            await self.counters.update_genre_counts(user_id, unique_ids(genres), [])
            if series_id:
                await self.counters.update_series_counts(user_id, added_series_id=series_id)
        except Exception as e:
            logger.error(f"Restored book {book.id} but failed to update counts: {e}")

        for warning in warnings:
            logger.warning(f"Restoring book {book.id}: {warning}")
        self._invalidate(user_id)
        self._emit(Events.BOOK_RESTORED, {'user_id': user_id, 'book_id': book.id})
        return RestoreResult(warnings=warnings, series_restored=series_restored, book=book)

    async def permanently_delete(self, user_id: str, book: Book) -> Purged:
        """Delete a book's images (best-effort) and then the book itself."""
        errors = await self.images.delete_images(book.images)
        if errors:
            logger.warning(f"{len(errors)} image(s) of book {book.id} could not be deleted")
        await self.books.delete(user_id, book.id)
        self.cache.invalidate(user_id, 'books')
        self._emit(Events.BOOK_DELETED, {'user_id': user_id, 'book_id': book.id, 'soft': False})
        return Purged()

    async def _purge(self, user_id: str, books: List[Book]) -> int:
        if not books:
            return 0
        for book in books:
            errors = await self.images.delete_images(book.images)
            if errors:
                logger.warning(f"{len(errors)} image(s) of book {book.id} could not be deleted")
        batch = self.books.batch(user_id)
        for book in books:
            batch.delete('books', book.id)
        await batch.commit()
        self.cache.invalidate(user_id, 'books')
        for book in books:
            self._emit(Events.BOOK_DELETED, {'user_id': user_id, 'book_id': book.id, 'soft': False})
        return len(books)

    async def empty_bin(self, user_id: str, books: List[Book]) -> int:
        """Permanently delete the given binned books in one batch."""
        purged = await self._purge(user_id, filter_binned(books))
        logger.info(f"Emptied bin for {user_id}: {purged} books deleted")
        return purged

    async def purge_expired(self, user_id: str, books: List[Book], retention_days: Optional[int] = None) -> int:
        """Permanently delete binned books older than the retention window."""
        now = self.clock()
        expired = [book for book in books if self.is_expired(book, retention_days, now)]
        purged = await self._purge(user_id, expired)
        if purged:
            logger.info(f"Purged {purged} expired books from bin for {user_id}")
        return purged

    # ---------------------- Queries ----------------------

    async def get_book(self, user_id: str, book_id: str) -> Book:
        book = await self.books.get_by_id(user_id, book_id)
        if book is None:
            raise DocumentNotFoundError('Book not found', 'books', book_id)
        return book

    async def list_bin(self, user_id: str, auto_purge: bool = True) -> List[Book]:
        """Binned books, most recently deleted first, after purging expired ones."""
        binned = await self.books.get_binned(user_id)
        if auto_purge:
            now = self.clock()
            expired = [book for book in binned if self.is_expired(book, now=now)]
            if expired:
                await self.purge_expired(user_id, expired)
                binned = [book for book in binned if book not in expired]
        return sorted(binned, key=lambda b: b.deleted_at, reverse=True)
