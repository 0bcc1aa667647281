"""
Error taxonomy for the bookshelf core.

Referential drift (a restored book pointing at a genre or series that no
longer exists) and counter drift are deliberately absent: the first becomes a
warning string, the second is repaired silently by reconciliation.
"""

from typing import Optional


class BookshelfError(Exception):
    """Base class for all bookshelf errors."""


class StoreUnavailableError(BookshelfError):
    """The remote document store could not be reached or refused the operation.

    Never retried automatically; the caller decides what to do.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class DocumentNotFoundError(BookshelfError):
    """A document required by the operation does not exist."""

    def __init__(self, message: str, collection: Optional[str] = None, doc_id: Optional[str] = None):
        super().__init__(message)
        self.collection = collection
        self.doc_id = doc_id


class ValidationConflictError(BookshelfError):
    """Rejected before any write: duplicate names, self-merge, position collisions."""
