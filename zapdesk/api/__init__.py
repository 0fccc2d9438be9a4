"""
Flask application factory for the attendant console API.
"""
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from zapdesk.api.errors import handle_exception
from zapdesk.utils.config_loader import config
from zapdesk.utils.database import check_db_connection

logger = logging.getLogger(__name__)


def create_app(runtime):
    """
    Create and configure the console Flask app.

    Args:
        runtime: Started ConsoleRuntime that owns the console core

    Returns:
        Flask application instance
    """
    app = Flask(__name__)
    app.json.sort_keys = False

    CORS(app, origins=config.get('console.api.cors_origins', '*'))
    app.extensions['zapdesk_runtime'] = runtime

    from zapdesk.api.routes import register_routes
    register_routes(app)

    _register_error_handlers(app)

    @app.route('/api/health')
    def health():
        """Health check endpoint for monitoring."""
        db_status = 'connected' if check_db_connection() else 'disconnected'
        return jsonify({
            'status': 'healthy' if db_status == 'connected' else 'degraded',
            'database': db_status,
            'gateway': runtime.transport.state.value,
        })

    return app


def _register_error_handlers(app):
    @app.errorhandler(Exception)
    def handle_error(e):
        return handle_exception(e)
