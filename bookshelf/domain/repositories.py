"""
Collaborator interfaces for the domain layer.

The bin and merge workflows depend on genre/series behaviour through these
contracts instead of importing the concrete services, which keeps the modules
free of circular imports and lets tests substitute their own implementations.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Iterable

from .models import Genre, Series, BookImage


class CountAdjuster(ABC):
    """Maintains the denormalized ``book_count`` on genres and series."""

    @abstractmethod
    async def update_genre_counts(self, user_id: str, added: Iterable[str], removed: Iterable[str]) -> None:
        """Increment every id in ``added`` and decrement every id in ``removed``."""
        pass

    @abstractmethod
    async def update_series_counts(self, user_id: str, added_series_id: Optional[str] = None,
                                   removed_series_id: Optional[str] = None) -> None:
        """Increment one series and/or decrement another."""
        pass


class GenreLookup(ABC):
    """Read access to a user's genres."""

    @abstractmethod
    async def load_genres(self, user_id: str, force_refresh: bool = False) -> List[Genre]:
        """Get all genres, from cache unless ``force_refresh``."""
        pass


class SeriesLookup(ABC):
    """Read and lifecycle access to a user's series."""

    @abstractmethod
    async def load_series(self, user_id: str, force_refresh: bool = False) -> List[Series]:
        """Get active (not soft-deleted) series."""
        pass

    @abstractmethod
    async def get_series_by_id(self, user_id: str, series_id: str) -> Optional[Series]:
        """Get a series by id, including soft-deleted ones."""
        pass

    @abstractmethod
    async def restore_series(self, user_id: str, series_id: str) -> None:
        """Clear a series' soft-delete marker."""
        pass

    @abstractmethod
    async def soft_delete_series(self, user_id: str, series_id: str) -> None:
        """Mark a series as soft-deleted."""
        pass


class ImageDeleter(ABC):
    """Removes image assets owned by books."""

    @abstractmethod
    async def delete_images(self, images: List[BookImage]) -> List[str]:
        """Delete every image, best-effort.

        Returns:
            One error message per image that could not be removed.
        """
        pass


class CacheInvalidator(ABC):
    """Anything that can drop cached query results for a user."""

    @abstractmethod
    def invalidate(self, user_id: str, scope: Optional[str] = None) -> None:
        """Drop one scope (``books``, ``genres``, ``series``, ``wishlist``) or all of them."""
        pass
