"""Shared API decorators and error helpers for the JSON routes."""
import logging
from functools import wraps

from flask import jsonify, request
from flask_login import current_user

logger = logging.getLogger('apflow.api')


def _error(message, status_code):
    return jsonify({'success': False, 'error': message}), status_code


# ============== Decorators ==============

def api_login_required(f):
    """@login_required for JSON endpoints: answers 401 instead of redirecting."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return _error('Authentication required', 401)
        return f(*args, **kwargs)
    return wrapper


def admin_required(f):
    """Only firm owners/admins, who maintain the approval setup directory."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return _error('Authentication required', 401)
        if not current_user.can_manage_approvals:
            return _error('Forbidden', 403)
        return f(*args, **kwargs)
    return wrapper


def handle_api_errors(f):
    """Turn approval engine errors into their status code; anything else goes
    through safe_error_response."""
    from apflow.core.approvals.errors import ApprovalEngineError

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ApprovalEngineError as e:
            logger.info(f'{request.method} {request.path} -> {e.status_code}: {e}')
            return _error(str(e), e.status_code)
        except Exception as e:
            return safe_error_response(e)
    return wrapper


# ============== Request Validation ==============

def get_json_or_error():
    """Parse a JSON object body.

    Returns (data, None), or (None, error_response) when the body is missing,
    not JSON, or not an object:

        data, error = get_json_or_error()
        if error:
            return error
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, _error('Invalid or missing JSON body', 400)
    return data, None


# ============== Error Handling ==============

def safe_error_response(e, status_code=500):
    """Error response that never exposes database details.

    ValueError/KeyError carry input validation messages and are returned as
    400; anything else is logged with its traceback and answered generically.
    """
    if isinstance(e, (ValueError, KeyError)):
        return _error(str(e), 400)

    logger.exception(f'Unhandled error in {request.method} {request.path}')
    return _error('An internal error occurred', status_code)
