"""
Gateway API Routes

WhatsApp connection status for the console and the webhook the Evolution API
instance posts its events to.
"""

import logging

from flask import Blueprint, jsonify, request

from zapdesk.api.routes import get_runtime
from zapdesk.errors import ValidationError

logger = logging.getLogger(__name__)

gateway_bp = Blueprint('gateway', __name__)


@gateway_bp.route('/gateway/status', methods=['GET'])
def gateway_status():
    """
    Connection state of the WhatsApp gateway.

    Response (Success - 200):
        {"status": "QR_READY", "qrCode": "data:image/png;base64,...", "pendingOutbound": 2}
    """
    runtime = get_runtime()

    def status():
        transport = runtime.transport
        return {
            'status': transport.state.value,
            'qrCode': getattr(transport, 'qr_code', None),
            'pendingOutbound': len(runtime.outbound),
        }

    return jsonify(runtime.call(status)), 200


@gateway_bp.route('/whatsapp-webhook', methods=['POST'])
def whatsapp_webhook():
    """Receive one Evolution API event. Inbound messages are handled in the background."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Webhook body must be a JSON object')

    runtime = get_runtime()
    accepted = runtime.submit(runtime.handle_webhook(payload))
    logger.debug(f"Webhook {payload.get('event')} produced {accepted} events")
    return jsonify({'received': True, 'events': accepted}), 200


__all__ = ['gateway_bp']
