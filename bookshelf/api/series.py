"""
Series API Endpoints

Duplicate detection and merging.
"""

from flask import Blueprint, request, jsonify, g

from .auth import api_user_required
from .common import services, error_response, serialize_series
from ..services.async_helper import run_async

series_api = Blueprint('series_api', __name__, url_prefix='/api/v1/series')


@series_api.route('/duplicates', methods=['GET'])
@api_user_required
def get_duplicates():
    try:
        groups = run_async(services().series.find_duplicates(g.user_id))
        data = [[serialize_series(series) for series in group] for group in groups]
        return jsonify({'status': 'success', 'data': data, 'count': len(data)}), 200
    except Exception as e:
        return error_response(e, 'finding duplicate series')


@series_api.route('/merge', methods=['POST'])
@api_user_required
def merge_series():
    payload = request.get_json(silent=True) or {}
    source_id = payload.get('source_id')
    target_id = payload.get('target_id')
    if not source_id or not target_id:
        return jsonify({'status': 'error', 'message': 'source_id and target_id are required'}), 400
    try:
        result = run_async(services().series.merge_series(g.user_id, source_id, target_id))
        return jsonify({
            'status': 'success',
            'message': 'Series merged',
            'data': {
                'books_updated': result.books_updated,
                'expected_books_merged': result.expected_books_merged,
            },
        }), 200
    except Exception as e:
        return error_response(e, 'merging series')
