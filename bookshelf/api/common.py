"""Helpers shared by the API blueprints."""

import traceback

from flask import jsonify, current_app

from ..domain.errors import BookshelfError, ValidationConflictError, DocumentNotFoundError, StoreUnavailableError
from ..domain.models import Book, Series, format_timestamp


def services():
    """The ServiceRegistry of the current app."""
    return current_app.extensions['bookshelf']


def error_response(e: Exception, action: str):
    """Map a service exception to the JSON error envelope and status code."""
    if isinstance(e, ValidationConflictError):
        status = 409
    elif isinstance(e, DocumentNotFoundError):
        status = 404
    elif isinstance(e, StoreUnavailableError):
        status = 503
    else:
        status = 500
    if status >= 500:
        current_app.logger.error(f"Error {action}: {e}")
        current_app.logger.error(traceback.format_exc())
    message = str(e) if isinstance(e, BookshelfError) else f'Failed {action}'
    return jsonify({'status': 'error', 'message': message}), status


def serialize_book(book: Book, days_remaining=None):
    data = {
        'id': book.id,
        'title': book.title,
        'author': book.author,
        'isbn': book.isbn,
        'genres': list(book.genres),
        'series_id': book.series_id,
        'series_position': book.series_position,
        'deleted_at': format_timestamp(book.deleted_at),
        'created_at': format_timestamp(book.created_at),
        'updated_at': format_timestamp(book.updated_at),
    }
    if days_remaining is not None:
        data['days_remaining'] = days_remaining
    return data


def serialize_series(series: Series):
    return {
        'id': series.id,
        'name': series.name,
        'normalized_name': series.normalized_name,
        'book_count': series.book_count,
        'total_books': series.total_books,
        'expected_books': [book.to_dict() for book in series.expected_books],
    }
