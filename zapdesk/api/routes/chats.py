"""
Chat API Routes

Queue, live chats, merged history and the attendant actions on them.
Every handler runs its work on the console loop through the runtime, so
request threads never read or mutate the pools themselves.
"""

import logging

from flask import Blueprint, jsonify

from zapdesk.api.routes import get_runtime, json_body, parse_files, require_field
from zapdesk.errors import NotFoundError, ValidationError
from zapdesk.models.session import parse_iso
from zapdesk.services.conversation_flow import AI_STATES

logger = logging.getLogger(__name__)

chats_bp = Blueprint('chats', __name__)
console_bp = Blueprint('console', __name__)


def _chat_summary(session):
    last = session.message_log[-1] if session.message_log else None
    return {
        'userId': session.user_id,
        'userName': session.user_name,
        'attendantId': session.attendant_id,
        'logLength': len(session.message_log),
        'lastMsgStatus': int(last.status) if last and last.status is not None else 0,
        'lastMessage': last.to_dict() if last else None,
    }


@console_bp.route('/requests', methods=['GET'])
def list_requests():
    """Queue entries waiting for an attendant, oldest first."""
    runtime = get_runtime()
    entries = runtime.call(lambda: [e.to_dict() for e in runtime.registry.queue_entries()])
    return jsonify(entries), 200


@chats_bp.route('/active', methods=['GET'])
def list_active():
    runtime = get_runtime()
    chats = runtime.call(lambda: [_chat_summary(s) for s in runtime.registry.active_chats()])
    return jsonify(chats), 200


@chats_bp.route('/ai-active', methods=['GET'])
def list_ai_active():
    """Bot sessions currently talking to the assistant."""
    runtime = get_runtime()

    def summaries():
        return [
            {'userId': s.user_id, 'userName': s.user_name, 'logLength': len(s.message_log)}
            for s in runtime.registry.bot_sessions(states=AI_STATES)
        ]

    return jsonify(runtime.call(summaries)), 200


@chats_bp.route('/history', methods=['GET'])
def list_history():
    runtime = get_runtime()
    return jsonify(runtime.call(runtime.history.archived_summaries)), 200


@chats_bp.route('/history/<user_id>', methods=['GET'])
def get_history(user_id):
    """
    Merged, timestamp-ordered log of every segment of a user.

    Response (Success - 200):
        {"userId": ..., "userName": ..., "attendantId": ..., "pool": ...,
         "resolvedAt": ..., "messageLog": [...]}

    Errors:
        - 404: User has no live session and no archived history
    """
    runtime = get_runtime()

    def merged():
        history = runtime.history.get_full_log(user_id)
        return history.to_dict() if history else None

    data = runtime.call(merged)
    if data is None:
        raise NotFoundError('History', user_id)
    return jsonify(data), 200


@chats_bp.route('/takeover/<user_id>', methods=['POST'])
def takeover(user_id):
    """
    Claim a queued or bot-handled conversation.

    Request Body:
        {"attendantId": "attendant_1"}
    """
    data = json_body()
    attendant_id = require_field(data, 'attendantId')
    runtime = get_runtime()
    session = runtime.call(lambda: runtime.attendants.takeover_chat(user_id, attendant_id).to_dict())
    logger.info(f"Chat {user_id} taken over by {attendant_id}")
    return jsonify(session), 200


@chats_bp.route('/attendant-reply', methods=['POST'])
def attendant_reply():
    """
    Send an attendant message into an active chat.

    Request Body:
        {
            "userId": "5511999999999@s.whatsapp.net",
            "attendantId": "attendant_1",
            "text": "optional text",
            "files": [{"name": ..., "mimeType": ..., "data": <base64>}],
            "replyTo": {"messageId": 3}
        }

    Errors:
        - 400: No text and no files
        - 404: Chat is not active (or quoted message not found)
    """
    data = json_body()
    user_id = require_field(data, 'userId')
    attendant_id = data.get('attendantId')
    files = parse_files(data)
    reply_to = data.get('replyTo') or {}
    reply_to_id = reply_to.get('messageId') if isinstance(reply_to, dict) else None

    runtime = get_runtime()
    message = runtime.call(
        lambda: runtime.attendants.reply(user_id, attendant_id, data.get('text'), files, reply_to_id).to_dict()
    )
    return jsonify({'success': True, 'message': message}), 200


@chats_bp.route('/edit-message', methods=['POST'])
def edit_message():
    """
    Edit a message of the live session.

    Request Body:
        {"userId": ..., "messageId": 4, "newText": "..."}
        or {"userId": ..., "messageTimestamp": "<iso>", "newText": "..."}
    """
    data = json_body()
    user_id = require_field(data, 'userId')
    new_text = require_field(data, 'newText')
    message_id = data.get('messageId')
    timestamp = None
    if message_id is None:
        raw_timestamp = require_field(data, 'messageTimestamp')
        try:
            timestamp = parse_iso(raw_timestamp)
        except (AttributeError, TypeError, ValueError):
            raise ValidationError('messageTimestamp must be an ISO timestamp', field='messageTimestamp')

    runtime = get_runtime()

    def edit():
        message = runtime.attendants.edit_message(user_id, new_text, message_id=message_id, timestamp=timestamp)
        return message.to_dict() if message else None

    message = runtime.call(edit)
    if message is None:
        raise NotFoundError('Message', str(message_id if message_id is not None else data.get('messageTimestamp')))
    return jsonify({'success': True, 'message': message}), 200


@chats_bp.route('/resolve/<user_id>', methods=['POST'])
def resolve(user_id):
    runtime = get_runtime()
    segment = runtime.call(lambda: runtime.attendants.resolve_chat(user_id).to_dict())
    return jsonify({'success': True, 'resolvedAt': segment['resolvedAt']}), 200


@chats_bp.route('/transfer/<user_id>', methods=['POST'])
def transfer(user_id):
    """
    Hand an active chat to another attendant.

    Request Body:
        {"newAttendantId": "attendant_2"}
    """
    data = json_body()
    new_attendant_id = require_field(data, 'newAttendantId')
    runtime = get_runtime()
    runtime.call(runtime.attendants.transfer_chat, user_id, new_attendant_id)
    return jsonify({'success': True}), 200


@chats_bp.route('/initiate', methods=['POST'])
def initiate():
    """
    Start a conversation from the console.

    Request Body:
        {
            "recipientNumber": "5511999999999",
            "clientName": "optional name",
            "attendantId": "attendant_1",
            "message": "optional opening text",
            "files": [...]
        }
    """
    data = json_body()
    recipient = require_field(data, 'recipientNumber')
    attendant_id = require_field(data, 'attendantId')
    files = parse_files(data)

    runtime = get_runtime()
    session = runtime.call(lambda: runtime.attendants.initiate_chat(
        recipient, attendant_id, data.get('clientName'), data.get('message'), files
    ).to_dict())
    return jsonify(session), 200


@chats_bp.route('/forward', methods=['POST'])
def forward():
    """
    Copy a message into another active chat.

    Request Body:
        {"targetUserId": ..., "attendantId": ..., "originalMessage": {"text": ..., "files": [...]}}
    """
    data = json_body()
    target_user_id = require_field(data, 'targetUserId')
    original = data.get('originalMessage')
    if not isinstance(original, dict):
        raise ValidationError('originalMessage is required', field='originalMessage')
    files = parse_files(original)

    runtime = get_runtime()
    message = runtime.call(lambda: runtime.attendants.forward_message(
        target_user_id, data.get('attendantId'), original.get('text'), files
    ).to_dict())
    return jsonify({'success': True, 'message': message}), 200


@console_bp.route('/broadcast', methods=['POST'])
def broadcast():
    """
    Send one message to many users.

    Request Body:
        {"recipientIds": [...], "message": "...", "files": [...], "attendantId": ...}

    Response (Success - 200):
        {"success": true, "count": 3}
    """
    data = json_body()
    recipient_ids = data.get('recipientIds')
    if not isinstance(recipient_ids, list) or not recipient_ids:
        raise ValidationError('No recipients selected', field='recipientIds')
    files = parse_files(data)

    runtime = get_runtime()
    count = runtime.call(
        runtime.attendants.broadcast, recipient_ids, data.get('message'), data.get('attendantId'), files
    )
    return jsonify({'success': True, 'count': count}), 200


__all__ = ['chats_bp', 'console_bp']
