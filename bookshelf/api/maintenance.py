"""
Maintenance API Endpoints

Counter reconciliation on demand.
"""

from flask import Blueprint, request, jsonify, g

from .auth import api_user_required
from .common import services, error_response
from ..services.async_helper import run_async
from ..services.counter_service import kinds_from_name

maintenance_api = Blueprint('maintenance_api', __name__, url_prefix='/api/v1/maintenance')


@maintenance_api.route('/reconcile', methods=['POST'])
@api_user_required
def reconcile():
    payload = request.get_json(silent=True) or {}
    try:
        kinds = kinds_from_name(payload.get('kind') or 'all')
    except ValueError:
        return jsonify({'status': 'error', 'message': 'kind must be genres, series or all'}), 400
    try:
        counters = services().counters
        data = {}
        for kind in kinds:
            result = run_async(counters.reconcile(g.user_id, kind))
            data[kind.value] = {'updated': result.updated, 'total_books_scanned': result.total_books_scanned}
        return jsonify({'status': 'success', 'data': data}), 200
    except Exception as e:
        return error_response(e, 'reconciling counts')
