"""
Domain models for the bookshelf core.

These models represent the catalogue entities independent of persistence concerns.
Documents are persisted as flat snake_case records; ``to_dict``/``from_dict``
convert between the two, turning datetimes into ISO-8601 strings.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Union

from ..utils.normalization import normalize_genre_name, normalize_series_name


def now_utc() -> datetime:
    """Timezone-aware UTC now for default timestamps (avoid datetime.utcnow deprecation)."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp.

    Accepts ISO-8601 strings (the store's own format), epoch milliseconds
    (legacy records written by browser clients) and datetimes. Naive values
    are assumed to be UTC.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            # fromisoformat only accepts a trailing Z from Python 3.11
            parsed = datetime.fromisoformat(value[:-1] + '+00:00' if value.endswith('Z') else value)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def unique_ids(ids: Any) -> List[str]:
    """Non-empty ids in first-seen order, without repeats."""
    seen: List[str] = []
    for item_id in ids or []:
        if item_id and item_id not in seen:
            seen.append(item_id)
    return seen


class EntityKind(Enum):
    """Entities that carry a denormalized ``book_count``."""
    GENRES = "genres"
    SERIES = "series"

    @property
    def collection(self) -> str:
        return self.value

    def memberships(self, book: Dict[str, Any]) -> List[str]:
        """Ids of this kind referenced by a raw book record (deduplicated)."""
        if self is EntityKind.GENRES:
            return unique_ids(book.get('genres'))
        series_id = book.get('series_id')
        return [series_id] if series_id else []


# ---------------------- Lifecycle ----------------------

@dataclass(frozen=True)
class Active:
    """Book is visible in the library."""


@dataclass(frozen=True)
class Binned:
    """Book was soft-deleted at ``since`` and can still be restored."""
    since: datetime


@dataclass(frozen=True)
class Purged:
    """Book document has been hard-deleted; terminal."""


BookLifecycle = Union[Active, Binned, Purged]


# ---------------------- Entities ----------------------

@dataclass
class BookImage:
    """Reference to an image file owned by a book (removed on purge)."""
    storage_path: str = ""
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'storage_path': self.storage_path, 'url': self.url}

    @classmethod
    def from_dict(cls, data: Any) -> 'BookImage':
        if isinstance(data, str):
            return cls(storage_path=data)
        return cls(storage_path=data.get('storage_path') or data.get('storagePath') or '', url=data.get('url'))


@dataclass
class Book:
    """A catalogued, owned book."""
    id: Optional[str] = None
    title: str = ""
    author: str = ""
    isbn: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    series_id: Optional[str] = None
    series_position: Optional[int] = None
    reading_status: Optional[str] = None
    rating: Optional[int] = None
    images: List[BookImage] = field(default_factory=list)
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def lifecycle(self) -> BookLifecycle:
        if self.deleted_at is None:
            return Active()
        return Binned(since=self.deleted_at)

    @property
    def is_binned(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a store record (``id`` and server timestamps excluded)."""
        return {
            'title': self.title,
            'author': self.author,
            'isbn': self.isbn,
            'genres': unique_ids(self.genres),
            'series_id': self.series_id,
            'series_position': self.series_position,
            'reading_status': self.reading_status,
            'rating': self.rating,
            'images': [image.to_dict() for image in self.images],
            'deleted_at': format_timestamp(self.deleted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Book':
        return cls(
            id=data.get('id'),
            title=data.get('title') or "",
            author=data.get('author') or "",
            isbn=data.get('isbn'),
            genres=unique_ids(data.get('genres')),
            series_id=data.get('series_id'),
            series_position=data.get('series_position'),
            reading_status=data.get('reading_status'),
            rating=data.get('rating'),
            images=[BookImage.from_dict(image) for image in data.get('images') or []],
            deleted_at=parse_timestamp(data.get('deleted_at')),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
        )


@dataclass
class Genre:
    """Genre with a denormalized count of active books referencing it."""
    id: Optional[str] = None
    name: str = ""
    normalized_name: str = ""
    color: Optional[str] = None
    book_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.normalized_name and self.name:
            self.normalized_name = normalize_genre_name(self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'normalized_name': self.normalized_name,
            'color': self.color,
            'book_count': self.book_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Genre':
        return cls(
            id=data.get('id'),
            name=data.get('name') or "",
            normalized_name=data.get('normalized_name') or "",
            color=data.get('color'),
            book_count=int(data.get('book_count') or 0),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
        )


@dataclass
class ExpectedBook:
    """Placeholder for a series entry the user does not own yet."""
    title: str = ""
    isbn: Optional[str] = None
    position: Optional[float] = None
    source: str = "manual"  # "api" or "manual"

    def to_dict(self) -> Dict[str, Any]:
        return {'title': self.title, 'isbn': self.isbn, 'position': self.position, 'source': self.source}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExpectedBook':
        return cls(
            title=data.get('title') or "",
            isbn=data.get('isbn') or None,
            position=data.get('position'),
            source=data.get('source') or "manual",
        )


@dataclass
class Series:
    """Book series domain model."""
    id: Optional[str] = None
    name: str = ""
    normalized_name: str = ""
    description: Optional[str] = None
    book_count: int = 0
    total_books: Optional[int] = None
    expected_books: List[ExpectedBook] = field(default_factory=list)
    # Soft-deleted together with its last book so both can be restored
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.normalized_name and self.name:
            self.normalized_name = normalize_series_name(self.name)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'normalized_name': self.normalized_name,
            'description': self.description,
            'book_count': self.book_count,
            'total_books': self.total_books,
            'expected_books': [book.to_dict() for book in self.expected_books],
            'deleted_at': format_timestamp(self.deleted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Series':
        return cls(
            id=data.get('id'),
            name=data.get('name') or "",
            normalized_name=data.get('normalized_name') or "",
            description=data.get('description'),
            book_count=int(data.get('book_count') or 0),
            total_books=data.get('total_books'),
            expected_books=[ExpectedBook.from_dict(b) for b in data.get('expected_books') or []],
            deleted_at=parse_timestamp(data.get('deleted_at')),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
        )


@dataclass
class WishlistItem:
    """A book the user wants to acquire."""
    id: Optional[str] = None
    title: str = ""
    author: str = ""
    isbn: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'author': self.author,
            'isbn': self.isbn,
            'priority': self.priority,
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WishlistItem':
        return cls(
            id=data.get('id'),
            title=data.get('title') or "",
            author=data.get('author') or "",
            isbn=data.get('isbn'),
            priority=data.get('priority'),
            notes=data.get('notes'),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
        )


# ---------------------- Operation results ----------------------

@dataclass
class PageCursor:
    """Position after which the next page starts (sort value plus tie-breaking id)."""
    value: Any
    doc_id: str


@dataclass
class Page:
    items: List[Any]
    cursor: Optional[PageCursor]
    has_more: bool


@dataclass
class SoftDeleteResult:
    counts_updated: bool = True
    series_deleted: bool = False


@dataclass
class RestoreResult:
    warnings: List[str] = field(default_factory=list)
    series_restored: bool = False
    book: Optional[Book] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'warnings': list(self.warnings), 'series_restored': self.series_restored}


@dataclass
class MergeSeriesResult:
    books_updated: int = 0
    expected_books_merged: int = 0


@dataclass
class MergeGenresResult:
    books_updated: int = 0


@dataclass
class ReconcileResult:
    updated: int = 0
    total_books_scanned: int = 0
