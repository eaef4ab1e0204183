"""
Opaque token authentication for Kodislovo.
Instructor routes (/api/teacher/) require the panel token; student routes are public.
"""
import hmac
import logging

from flask import request, jsonify, g

logger = logging.getLogger(__name__)


# Routes that require the instructor token
PROTECTED_PREFIXES = [
    '/api/teacher/',
]

PUBLIC_EXACT = [
    '/api/status',
]


def is_protected_route(path):
    if path in PUBLIC_EXACT:
        return False
    return any(path.startswith(prefix) for prefix in PROTECTED_PREFIXES)


def extract_token():
    """Token from 'Authorization: Bearer <t>' or the X-Teacher-Token header."""
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:].strip()
    return request.headers.get('X-Teacher-Token', '').strip()


def validate_token(token, expected):
    if not token or not expected:
        return False
    return hmac.compare_digest(token.encode('utf-8'), expected.encode('utf-8'))


def init_auth(app, cfg):
    """
    Register the before_request auth hook on the Flask app.
    Call this BEFORE registering blueprints.
    """
    @app.before_request
    def check_auth():
        if request.method == 'OPTIONS' or not is_protected_route(request.path):
            return None

        if not cfg.teacher_panel_token:
            logger.error("Instructor route %s called but no panel token is configured", request.path)
            return jsonify({'error': 'Instructor panel token is not configured'}), 503

        token = extract_token()
        if not token:
            return jsonify({'error': 'Authentication required'}), 401
        if not validate_token(token, cfg.teacher_panel_token):
            logger.warning("Rejected instructor request to %s: bad token", request.path)
            return jsonify({'error': 'Invalid token'}), 401

        g.instructor = True
        return None
