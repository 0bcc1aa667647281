"""
API authentication.

The caller identifies itself with ``X-User-Id``. When ``API_TOKEN`` is
configured, requests must also carry ``Authorization: Bearer <token>``.
"""

import secrets
import logging
from functools import wraps

from flask import request, jsonify, current_app, g

logger = logging.getLogger(__name__)


def validate_api_token(token: str) -> bool:
    expected = current_app.config.get('API_TOKEN')
    if not expected or not token:
        return False
    return secrets.compare_digest(token, expected)


def api_user_required(f):
    """Resolve ``g.user_id`` for the request or answer 401."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_app.config.get('API_TOKEN'):
            auth_header = request.headers.get('Authorization', '')
            token = auth_header[len('Bearer '):] if auth_header.startswith('Bearer ') else ''
            if not validate_api_token(token):
                logger.info(f"Rejected API request to {request.path}: invalid token")
                return jsonify({'status': 'error', 'message': 'Invalid API token'}), 401

        user_id = (request.headers.get('X-User-Id') or '').strip()
        if not user_id:
            return jsonify({'status': 'error', 'message': 'Missing X-User-Id header'}), 401
        g.user_id = user_id
        return f(*args, **kwargs)
    return decorated_function
