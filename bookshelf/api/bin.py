"""
Bin API Endpoints

Soft delete, restore, permanent delete and purge of books.
"""

from flask import Blueprint, request, jsonify, g

from .auth import api_user_required
from .common import services, error_response, serialize_book
from ..services.async_helper import run_async

bin_api = Blueprint('bin_api', __name__, url_prefix='/api/v1/bin')


@bin_api.route('', methods=['GET'])
@api_user_required
def list_bin():
    """Binned books, newest first, with days left before purge."""
    try:
        bin_service = services().bin
        books = run_async(bin_service.list_bin(g.user_id))
        data = [serialize_book(book, bin_service.get_days_remaining(book.deleted_at)) for book in books]
        return jsonify({'status': 'success', 'data': data, 'count': len(data)}), 200
    except Exception as e:
        return error_response(e, 'listing bin')


@bin_api.route('/<book_id>', methods=['POST'])
@api_user_required
def soft_delete_book(book_id):
    try:
        payload = request.get_json(silent=True) or {}
        bin_service = services().bin
        book = run_async(bin_service.get_book(g.user_id, book_id))
        result = run_async(bin_service.soft_delete(
            g.user_id, book, delete_empty_series=bool(payload.get('delete_empty_series'))))
        return jsonify({
            'status': 'success',
            'message': 'Book moved to bin',
            'data': {'counts_updated': result.counts_updated, 'series_deleted': result.series_deleted},
        }), 200
    except Exception as e:
        return error_response(e, 'moving book to bin')


@bin_api.route('/<book_id>/restore', methods=['POST'])
@api_user_required
def restore_book(book_id):
    try:
        bin_service = services().bin
        book = run_async(bin_service.get_book(g.user_id, book_id))
        result = run_async(bin_service.restore(g.user_id, book))
        data = result.to_dict()
        data['book'] = serialize_book(result.book)
        return jsonify({'status': 'success', 'message': 'Book restored', 'data': data}), 200
    except Exception as e:
        return error_response(e, 'restoring book')


@bin_api.route('/<book_id>', methods=['DELETE'])
@api_user_required
def delete_book_permanently(book_id):
    try:
        bin_service = services().bin
        book = run_async(bin_service.get_book(g.user_id, book_id))
        if not book.is_binned:
            return jsonify({'status': 'error', 'message': 'Only books in the bin can be deleted permanently'}), 409
        run_async(bin_service.permanently_delete(g.user_id, book))
        return jsonify({'status': 'success', 'message': 'Book deleted permanently'}), 200
    except Exception as e:
        return error_response(e, 'deleting book')


@bin_api.route('/empty', methods=['POST'])
@api_user_required
def empty_bin():
    try:
        bin_service = services().bin
        books = run_async(bin_service.list_bin(g.user_id, auto_purge=False))
        deleted = run_async(bin_service.empty_bin(g.user_id, books))
        return jsonify({'status': 'success', 'data': {'deleted': deleted}}), 200
    except Exception as e:
        return error_response(e, 'emptying bin')


@bin_api.route('/purge', methods=['POST'])
@api_user_required
def purge_bin():
    try:
        bin_service = services().bin
        books = run_async(bin_service.list_bin(g.user_id, auto_purge=False))
        deleted = run_async(bin_service.purge_expired(g.user_id, books))
        return jsonify({'status': 'success', 'data': {'deleted': deleted}}), 200
    except Exception as e:
        return error_response(e, 'purging bin')
