"""
Series service: CRUD, soft delete, expected books, duplicate detection and merge.
"""

import re
import logging
from typing import List, Optional, Dict, Any, Set

from ..domain.errors import ValidationConflictError, DocumentNotFoundError
from ..domain.models import Series, ExpectedBook, MergeSeriesResult, now_utc
from ..domain.repositories import SeriesLookup
from ..infrastructure.redis_repositories import SeriesRepository, BookRepository
from ..utils.cache import CacheStore
from ..utils.event_bus import EventBus, Events
from ..utils.normalization import normalize_series_name

logger = logging.getLogger(__name__)

SERIES_SUFFIXES = ('series', 'saga', 'trilogy', 'cycle', 'chronicles')

_UNSET = object()


def strip_series_suffixes(normalized_name: str) -> str:
    stripped = normalized_name
    for suffix in SERIES_SUFFIXES:
        stripped = re.sub(rf'\s*{suffix}\s*$', '', stripped)
    return stripped


def are_similar_names(name1: str, name2: str) -> bool:
    """Whether two normalized series names probably denote the same series.

    Equal, one containing the other, or equal once a trailing "series",
    "saga", "trilogy", "cycle" or "chronicles" is dropped. The stripped form
    must be longer than three characters so short names do not collapse.
    """
    if not name1 or not name2:
        return False
    if name1 == name2:
        return True
    if name1 in name2 or name2 in name1:
        return True
    stripped1 = strip_series_suffixes(name1)
    stripped2 = strip_series_suffixes(name2)
    return stripped1 == stripped2 and len(stripped1) > 3


def find_potential_duplicates(all_series: List[Series]) -> List[List[Series]]:
    """Group series with similar normalized names; each series joins at most one group."""
    groups: List[List[Series]] = []
    processed: Set[str] = set()
    for index, series in enumerate(all_series):
        if series.id in processed:
            continue
        group = [series]
        name = series.normalized_name or normalize_series_name(series.name)
        for other in all_series[index + 1:]:
            if other.id in processed:
                continue
            other_name = other.normalized_name or normalize_series_name(other.name)
            if are_similar_names(name, other_name):
                group.append(other)
                processed.add(other.id)
        if len(group) > 1:
            groups.append(group)
            processed.add(series.id)
    return groups


def _position_key(book: ExpectedBook):
    return (book.position is None, book.position or 0)


def _is_duplicate(candidate: ExpectedBook, existing: List[ExpectedBook]) -> bool:
    if candidate.isbn and any(book.isbn == candidate.isbn for book in existing):
        return True
    title = candidate.title.strip().lower()
    return any(book.title.strip().lower() == title for book in existing)


def merge_expected_books(target_books: List[ExpectedBook], source_books: List[ExpectedBook]) -> List[ExpectedBook]:
    """Union two expected-book lists, deduplicating by ISBN then by case-insensitive title."""
    merged = list(target_books)
    for book in source_books:
        if not _is_duplicate(book, merged):
            merged.append(book)
    return sorted(merged, key=_position_key)


def _normalize_total(total_books: Optional[int]) -> Optional[int]:
    if total_books is None:
        return None
    total_books = int(total_books)
    return total_books if total_books > 0 else None


class SeriesService(SeriesLookup):
    def __init__(self, series: SeriesRepository, books: BookRepository, cache: CacheStore,
                 event_bus: Optional[EventBus] = None):
        self.series = series
        self.books = books
        self.cache = cache
        self.event_bus = event_bus

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, payload)

    def _changed(self, user_id: str, event: str, series_id: str, books_touched: bool = False) -> None:
        self.cache.invalidate(user_id, 'series')
        if books_touched:
            self.cache.invalidate(user_id, 'books')
        self._emit(event, {'user_id': user_id, 'series_id': series_id})

    async def load_series(self, user_id: str, force_refresh: bool = False) -> List[Series]:
        """Get active series sorted by name, cached for the series TTL."""
        if not force_refresh:
            entry = self.cache.get(user_id, 'series')
            if entry is not None:
                return list(entry.items)
        series = [s for s in await self.series.get_all(user_id) if not s.is_deleted]
        series.sort(key=lambda s: s.name.lower())
        self.cache.set(user_id, 'series', series)
        return series

    async def get_series_by_id(self, user_id: str, series_id: str) -> Optional[Series]:
        return await self.series.get_by_id(user_id, series_id)

    async def _require(self, user_id: str, series_id: str, label: str = 'Series') -> Series:
        series = await self.series.get_by_id(user_id, series_id)
        if series is None:
            raise DocumentNotFoundError(f'{label} not found', 'series', series_id)
        return series

    async def _check_name(self, user_id: str, name: str, exclude_id: Optional[str] = None) -> None:
        normalized = normalize_series_name(name)
        for series in await self.load_series(user_id, force_refresh=True):
            if series.id != exclude_id and series.normalized_name == normalized:
                raise ValidationConflictError(f'Series "{name}" already exists')

    async def create_series(self, user_id: str, name: str, description: Optional[str] = None,
                            total_books: Optional[int] = None,
                            expected_books: Optional[List[ExpectedBook]] = None) -> Series:
        """Create a series.

        Raises:
            ValidationConflictError: Empty name or an active series with the same normalized name.
        """
        name = (name or '').strip()
        if not name:
            raise ValidationConflictError('Series name is required')
        await self._check_name(user_id, name)
        series = await self.series.create(user_id, Series(
            name=name,
            description=description,
            total_books=_normalize_total(total_books),
            expected_books=sorted(expected_books or [], key=_position_key),
        ))
        self._changed(user_id, Events.SERIES_CREATED, series.id)
        logger.info(f"Created series {series.id} ({name}) for {user_id}")
        return series

    async def update_series(self, user_id: str, series_id: str, name: Optional[str] = None,
                            description: Optional[str] = None,
                            total_books: Any = _UNSET) -> None:
        await self._require(user_id, series_id)
        changes: Dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationConflictError('Series name is required')
            await self._check_name(user_id, name, exclude_id=series_id)
            changes['name'] = name
            changes['normalized_name'] = normalize_series_name(name)
        if description is not None:
            changes['description'] = description
        if total_books is not _UNSET:
            changes['total_books'] = _normalize_total(total_books)
        if not changes:
            return
        await self.series.update(user_id, series_id, changes)
        self._changed(user_id, Events.SERIES_UPDATED, series_id)

    async def delete_series(self, user_id: str, series_id: str) -> int:
        """Hard-delete a series and unlink all of its books in one batch.

        Returns:
            Number of books unlinked.
        """
        books = await self.books.get_by_series(user_id, series_id)
        batch = self.series.batch(user_id)
        for book in books:
            batch.update('books', book.id, {'series_id': None, 'series_position': None})
        batch.delete('series', series_id)
        await batch.commit()
        self._changed(user_id, Events.SERIES_DELETED, series_id, books_touched=bool(books))
        logger.info(f"Deleted series {series_id} for {user_id}, unlinked {len(books)} books")
        return len(books)

    async def soft_delete_series(self, user_id: str, series_id: str) -> None:
        await self.series.update(user_id, series_id, {'deleted_at': now_utc().isoformat()})
        self._changed(user_id, Events.SERIES_DELETED, series_id)

    async def restore_series(self, user_id: str, series_id: str) -> None:
        await self.series.update(user_id, series_id, {'deleted_at': None})
        self._changed(user_id, Events.SERIES_UPDATED, series_id)

    async def add_expected_book(self, user_id: str, series_id: str, book: ExpectedBook) -> List[ExpectedBook]:
        """Append an expected book, keeping the list ordered by position (unknown last).

        Raises:
            ValidationConflictError: Same ISBN or title already listed.
        """
        series = await self._require(user_id, series_id)
        if not book.source:
            book.source = 'manual'
        if _is_duplicate(book, series.expected_books):
            raise ValidationConflictError('Book already exists in expected books')
        expected = sorted(series.expected_books + [book], key=_position_key)
        await self.series.update(user_id, series_id, {'expected_books': [b.to_dict() for b in expected]})
        self._changed(user_id, Events.SERIES_UPDATED, series_id)
        return expected

    async def remove_expected_book(self, user_id: str, series_id: str, index: int) -> List[ExpectedBook]:
        series = await self._require(user_id, series_id)
        if index < 0 or index >= len(series.expected_books):
            raise ValidationConflictError('Invalid book index')
        expected = series.expected_books[:index] + series.expected_books[index + 1:]
        await self.series.update(user_id, series_id, {'expected_books': [b.to_dict() for b in expected]})
        self._changed(user_id, Events.SERIES_UPDATED, series_id)
        return expected

    async def find_duplicates(self, user_id: str) -> List[List[Series]]:
        return find_potential_duplicates(await self.load_series(user_id, force_refresh=True))

    async def merge_series(self, user_id: str, source_id: str, target_id: str) -> MergeSeriesResult:
        """Fold ``source_id`` into ``target_id`` and delete the source.

        Every book of the source (binned ones included, so they restore into
        the target) is reassigned; the target count grows by the active ones.
        Expected books are unioned. Book reassignment, target update and
        source deletion are one batch.

        Raises:
            ValidationConflictError: Self-merge.
            DocumentNotFoundError: Either series is missing.
        """
        if source_id == target_id:
            raise ValidationConflictError('Cannot merge a series into itself')
        source = await self._require(user_id, source_id, 'Source series')
        target = await self._require(user_id, target_id, 'Target series')

        books = await self.books.get_by_series(user_id, source_id)
        active_moved = sum(1 for book in books if not book.is_binned)
        merged = merge_expected_books(target.expected_books, source.expected_books)
        new_book_count = target.book_count + active_moved
        new_total = max(target.total_books or 0, source.total_books or 0, new_book_count + len(merged)) or None

        batch = self.series.batch(user_id)
        for book in books:
            batch.update('books', book.id, {'series_id': target_id})
        batch.update('series', target_id, {
            'book_count': new_book_count,
            'total_books': new_total,
            'expected_books': [b.to_dict() for b in merged],
        })
        batch.delete('series', source_id)
        await batch.commit()

        result = MergeSeriesResult(
            books_updated=len(books),
            expected_books_merged=len(merged) - len(target.expected_books),
        )
        self.cache.invalidate(user_id, 'series')
        self.cache.invalidate(user_id, 'books')
        self._emit(Events.SERIES_MERGED, {'user_id': user_id, 'source_id': source_id, 'target_id': target_id})
        logger.info(f"Merged series {source_id} into {target_id} for {user_id}: "
                    f"{result.books_updated} books, {result.expected_books_merged} expected books")
        return result
