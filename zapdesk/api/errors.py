"""
JSON error bodies for the console API.

Every failure leaves the API as {"error": ..., "message": ...}, plus
"details" when a request field is to blame.
"""
import logging
from concurrent.futures import TimeoutError as FutureTimeoutError

from werkzeug.exceptions import HTTPException

from zapdesk.errors import CollaboratorUnavailableError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# status -> (error title, default message); pt-BR messages go to the attendant
STATUS_TITLES = {
    400: ('Validation Error', 'Requisição inválida.'),
    404: ('Not Found', 'Recurso não encontrado.'),
    405: ('Method Not Allowed', 'Método não permitido para esta rota.'),
    500: ('Internal Server Error', 'Erro inesperado. Tente novamente.'),
    503: ('Service Unavailable', 'Console temporariamente indisponível.'),
}


def error_body(status_code, message=None, field=None):
    """
    Build a (body, status) pair for Flask.

    Args:
        status_code: HTTP status to answer with
        message: Overrides the default message for the status
        field: Request field that failed validation, if any

    Returns:
        tuple: (response_dict, status_code)
    """
    title, default_message = STATUS_TITLES.get(status_code, ('Error', 'Falha ao processar a requisição.'))
    body = {'error': title, 'message': message or default_message}
    if field:
        body['details'] = {'field': field}
    return body, status_code


def handle_exception(exc):
    """Map any exception raised while serving a request to an error body."""
    if isinstance(exc, ValidationError):
        return error_body(400, str(exc), exc.field)

    if isinstance(exc, NotFoundError):
        return error_body(404, str(exc))

    if isinstance(exc, (CollaboratorUnavailableError, FutureTimeoutError)):
        logger.error(f"Console core unavailable: {exc}")
        return error_body(503)

    if isinstance(exc, HTTPException):
        return error_body(exc.code, exc.description)

    logger.exception(f"Unhandled exception: {exc}")
    return error_body(500)
