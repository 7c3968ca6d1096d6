import os
import time

from flask import Flask, jsonify, request
from flask_login import LoginManager

from apflow.core.utils.logging_config import setup_logging, get_logger
from apflow.core.auth.models import User
from apflow.core.auth.repositories import UserRepository
from apflow.database import ping_db, init_db

app_logger = get_logger('apflow.app')

_USER_CACHE_TTL = 60  # seconds


def create_app(test_config=None):
    """Build the Flask application with the approvals blueprint mounted at /approvals."""
    setup_logging(level=os.environ.get('LOG_LEVEL', 'INFO'))
    app = Flask(__name__)

    if test_config:
        app.config.update(test_config)

    # Secret key: required in production, dev fallback only when FLASK_DEBUG=true
    if not app.config.get('SECRET_KEY'):
        secret_key = os.environ.get('FLASK_SECRET_KEY', os.environ.get('SECRET_KEY'))
        if not secret_key:
            if os.environ.get('FLASK_DEBUG', 'false').lower() == 'true':
                secret_key = 'dev-secret-key-for-local-only'
                app_logger.warning('Using development secret key, set FLASK_SECRET_KEY for production')
            else:
                raise RuntimeError('FLASK_SECRET_KEY environment variable is required')
        app.secret_key = secret_key

    app.config.setdefault('SESSION_COOKIE_HTTPONLY', True)
    app.config.setdefault('SESSION_COOKIE_SAMESITE', 'Lax')

    _init_login(app)

    from apflow.core.approvals import approvals_bp
    app.register_blueprint(approvals_bp, url_prefix='/approvals')

    _register_error_handlers(app)
    _register_health(app)

    if not (app.config.get('TESTING') or os.environ.get('TESTING')):
        init_db()

    app_logger.info(f'apflow startup complete: {len(app.url_map._rules)} routes registered')
    return app


# ============== Flask-Login ==============

def _init_login(app):
    login_manager = LoginManager()
    login_manager.init_app(app)
    user_repo = UserRepository()
    user_cache = {}

    @login_manager.user_loader
    def load_user(user_id):
        """Load user by ID for Flask-Login (cached per app, 60s TTL)."""
        now = time.time()
        cached = user_cache.get(user_id)
        if cached and (now - cached[1]) < _USER_CACHE_TTL:
            return cached[0]

        user_data = user_repo.get_by_id(user_id)
        if user_data:
            user = User(user_data)
            user_cache[user_id] = (user, now)
            return user
        user_cache.pop(user_id, None)
        return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'error': 'Authentication required'}), 401


# ============== Global Error Handlers ==============

def _register_error_handlers(app):

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_405(e):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def handle_500(e):
        app_logger.exception(f'Unhandled 500 error on {request.path}')
        return jsonify({'success': False, 'error': 'An internal error occurred'}), 500


# ============== Health Check ==============

def _register_health(app):

    @app.route('/health')
    def health_check():
        """Liveness probe. Only checks DB connectivity."""
        checks = {}
        try:
            checks['database'] = ping_db()
        except Exception as e:
            checks['database'] = False
            app_logger.error(f'Health check - database failed: {e}')

        status = 'healthy' if checks.get('database') else 'unhealthy'
        http_code = 200 if status == 'healthy' else 503
        response = jsonify({'status': status, 'checks': checks, 'service': 'apflow'})
        response.headers['Cache-Control'] = 'no-cache'
        return response, http_code
