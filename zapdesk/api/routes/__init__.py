"""
API routes package for the attendant console.
Registers all blueprint routes with the Flask application.
"""
import logging

from flask import current_app, request

from zapdesk.errors import ValidationError
from zapdesk.models import FileAttachment

logger = logging.getLogger(__name__)


def register_routes(app):
    """
    Register all API route blueprints with the Flask application.

    Args:
        app: Flask application instance

    Note:
        - chats.py: queue, live chats, history and attendant actions
        - directory.py: attendants, clients and tags
        - gateway.py: gateway status and the inbound webhook
    """
    from zapdesk.api.routes.chats import chats_bp, console_bp
    from zapdesk.api.routes.directory import directory_bp
    from zapdesk.api.routes.gateway import gateway_bp

    app.register_blueprint(chats_bp, url_prefix='/api/chats')
    app.register_blueprint(console_bp, url_prefix='/api')
    app.register_blueprint(directory_bp, url_prefix='/api')
    app.register_blueprint(gateway_bp, url_prefix='/api')
    logger.info("✓ Registered console routes")


def get_runtime():
    """The ConsoleRuntime serving this app."""
    return current_app.extensions['zapdesk_runtime']


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def require_field(data, field):
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'{field} is required', field=field)
    return value


def parse_files(data, field='files'):
    files = data.get(field) or []
    if not isinstance(files, list):
        raise ValidationError(f'{field} must be a list', field=field)
    return [FileAttachment.from_dict(f) for f in files if isinstance(f, dict)]
