"""
Redis-based repository implementations.

``BaseRepository`` is the generic per-user collection contract (read, write,
filter, order, paginate); the concrete repositories bind it to a collection
name and a domain model.
"""

import logging
from datetime import datetime, date
from enum import Enum
from typing import List, Optional, Dict, Any, Callable

from ..domain.models import Book, Genre, Series, WishlistItem, Page, PageCursor
from .redis_store import DocumentStore, WriteBatch

logger = logging.getLogger(__name__)


def _serialize_for_json(obj: Any) -> Any:
    """Convert objects to JSON-serializable format."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Enum):
        return obj.value
    elif hasattr(obj, 'to_dict'):
        return _serialize_for_json(obj.to_dict())
    elif isinstance(obj, dict):
        return {k: _serialize_for_json(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [_serialize_for_json(item) for item in obj]
    else:
        return obj


def _contains_any(actual: Any, wanted: Any) -> bool:
    return isinstance(actual, list) and any(item in actual for item in (wanted or []))


FIELD_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    '==': lambda actual, wanted: actual == wanted,
    '!=': lambda actual, wanted: actual != wanted,
    '<': lambda actual, wanted: actual is not None and actual < wanted,
    '<=': lambda actual, wanted: actual is not None and actual <= wanted,
    '>': lambda actual, wanted: actual is not None and actual > wanted,
    '>=': lambda actual, wanted: actual is not None and actual >= wanted,
    'in': lambda actual, wanted: actual in (wanted or []),
    'not-in': lambda actual, wanted: actual not in (wanted or []),
    'array-contains': lambda actual, wanted: isinstance(actual, list) and wanted in actual,
    'array-contains-any': _contains_any,
}


def order_records(records: List[Dict[str, Any]], order_by: str, direction: str = 'asc') -> List[Dict[str, Any]]:
    """Sort raw records by one field, ties broken by id, missing values last."""
    reverse = direction == 'desc'
    present = [r for r in records if r.get(order_by) is not None]
    missing = [r for r in records if r.get(order_by) is None]
    present.sort(key=lambda r: (r[order_by], r.get('id') or ''), reverse=reverse)
    missing.sort(key=lambda r: r.get('id') or '', reverse=reverse)
    return present + missing


class BaseRepository:
    """Generic CRUD, filtering and pagination over one per-user collection."""

    collection: str = ''
    model: Any = None

    def __init__(self, store: DocumentStore):
        self.store = store

    def _to_model(self, record: Dict[str, Any]) -> Any:
        return self.model.from_dict(record) if self.model else record

    def _to_record(self, data: Any) -> Dict[str, Any]:
        if hasattr(data, 'to_dict'):
            data = data.to_dict()
        return _serialize_for_json(dict(data))

    async def get_all_records(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.store.get_all(user_id, self.collection)

    async def get_all(self, user_id: str) -> List[Any]:
        """Get every document in the collection."""
        return [self._to_model(r) for r in await self.get_all_records(user_id)]

    async def get_by_id(self, user_id: str, doc_id: str) -> Optional[Any]:
        record = await self.store.get(user_id, self.collection, doc_id)
        return self._to_model(record) if record else None

    async def create(self, user_id: str, data: Any, doc_id: Optional[str] = None) -> Any:
        """Create a document and return it with its id and server timestamps."""
        record = await self.store.create(user_id, self.collection, self._to_record(data), doc_id=doc_id)
        return self._to_model(record)

    async def update(self, user_id: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self.store.update(user_id, self.collection, doc_id, self._to_record(data))

    async def delete(self, user_id: str, doc_id: str) -> None:
        await self.store.delete(user_id, self.collection, doc_id)

    async def query_by_field(self, user_id: str, field: str, op: str, value: Any) -> List[Any]:
        """Filter the collection on one field.

        Raises:
            ValueError: For an unsupported operator.
        """
        matcher = FIELD_OPERATORS.get(op)
        if matcher is None:
            raise ValueError(f"Unsupported query operator: {op}")
        records = await self.get_all_records(user_id)
        return [self._to_model(r) for r in records if matcher(r.get(field), value)]

    async def get_with_options(self, user_id: str, order_by: Optional[str] = None,
                               direction: str = 'asc', limit: Optional[int] = None) -> List[Any]:
        records = await self.get_all_records(user_id)
        if order_by:
            records = order_records(records, order_by, direction)
        if limit is not None:
            records = records[:limit]
        return [self._to_model(r) for r in records]

    async def get_paginated(self, user_id: str, order_by: str = 'created_at', direction: str = 'desc',
                            limit: int = 20, cursor: Optional[PageCursor] = None,
                            force_remote: bool = False) -> Page:
        """Get one page of documents strictly after ``cursor``.

        ``has_more`` is ``len(items) == limit``: a final page that exactly
        fills the limit still reports more, and the following call returns an
        empty page. Reads always go to Redis, so ``force_remote`` only shows up
        in the debug log.
        """
        records = await self.get_all_records(user_id)
        if cursor is not None:
            marker = {order_by: cursor.value, 'id': cursor.doc_id}
            ordered = order_records(records + [marker], order_by, direction)
            start = next(i for i, r in enumerate(ordered) if r is marker) + 1
            window = [r for r in ordered[start:] if r.get('id') != cursor.doc_id]
        else:
            window = order_records(records, order_by, direction)
        page = window[:limit]
        next_cursor = PageCursor(value=page[-1].get(order_by), doc_id=page[-1]['id']) if page else None
        logger.debug(f"Paginated {self.collection} for {user_id}: {len(page)} items "
                     f"(force_remote={force_remote})")
        return Page(items=[self._to_model(r) for r in page], cursor=next_cursor, has_more=len(page) == limit)

    def batch(self, user_id: str) -> WriteBatch:
        return self.store.batch(user_id)


class BookRepository(BaseRepository):
    collection = 'books'
    model = Book

    async def get_by_series(self, user_id: str, series_id: str) -> List[Book]:
        return await self.query_by_field(user_id, 'series_id', '==', series_id)

    async def get_binned(self, user_id: str) -> List[Book]:
        return await self.query_by_field(user_id, 'deleted_at', '!=', None)


class GenreRepository(BaseRepository):
    collection = 'genres'
    model = Genre


class SeriesRepository(BaseRepository):
    collection = 'series'
    model = Series


class WishlistRepository(BaseRepository):
    collection = 'wishlist'
    model = WishlistItem
