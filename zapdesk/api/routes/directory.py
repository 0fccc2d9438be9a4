"""
Directory API Routes

Attendants, the client list used for broadcasts and contact tags.
"""

import logging

from flask import Blueprint, jsonify

from zapdesk.api.routes import get_runtime, json_body, require_field
from zapdesk.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

directory_bp = Blueprint('directory', __name__)


@directory_bp.route('/attendants', methods=['GET'])
def list_attendants():
    runtime = get_runtime()
    attendants = runtime.call(lambda: [a.to_dict() for a in runtime.directory.list_attendants()])
    return jsonify(attendants), 200


@directory_bp.route('/attendants', methods=['POST'])
def add_attendant():
    """
    Register a new attendant.

    Request Body:
        {"name": "Maria"}

    Response (Success - 200):
        {"id": "attendant_2", "name": "Maria"}
    """
    data = json_body()
    name = require_field(data, 'name').strip()
    runtime = get_runtime()
    attendant = runtime.call(lambda: runtime.directory.add_attendant(name).to_dict())
    return jsonify(attendant), 200


@directory_bp.route('/clients', methods=['GET'])
def list_clients():
    """
    Every known person with a display name and tag ids, sorted by name.

    Response (Success - 200):
        [{"userId": "5511...@s.whatsapp.net", "userName": "Ana", "tags": ["tag_1"]}, ...]
    """
    runtime = get_runtime()
    return jsonify(runtime.call(runtime.directory_service.list_clients)), 200


@directory_bp.route('/tags', methods=['GET'])
def list_tags():
    runtime = get_runtime()
    tags = runtime.call(lambda: [t.to_dict() for t in runtime.directory.list_tags()])
    return jsonify(tags), 200


@directory_bp.route('/tags', methods=['POST'])
def create_tag():
    data = json_body()
    name = require_field(data, 'name').strip()
    runtime = get_runtime()
    tag = runtime.call(lambda: runtime.directory.create_tag(name, data.get('color')).to_dict())
    return jsonify(tag), 200


@directory_bp.route('/tags/<tag_id>', methods=['DELETE'])
def delete_tag(tag_id):
    runtime = get_runtime()
    if not runtime.call(runtime.directory.delete_tag, tag_id):
        raise NotFoundError('Tag', tag_id)
    return jsonify({'success': True}), 200


@directory_bp.route('/tags/assign-bulk', methods=['POST'])
def assign_tag_bulk():
    """
    Attach one tag to many contacts.

    Request Body:
        {"tagId": "tag_1", "userIds": ["...", "..."]}

    Errors:
        - 400: Missing tagId or userIds is not a list
        - 404: Unknown tag
    """
    data = json_body()
    tag_id = require_field(data, 'tagId')
    user_ids = data.get('userIds')
    if not isinstance(user_ids, list):
        raise ValidationError('userIds must be a list', field='userIds')

    runtime = get_runtime()

    def assign():
        if tag_id not in {t.id for t in runtime.directory.list_tags()}:
            raise NotFoundError('Tag', tag_id)
        return runtime.directory.assign_tags(user_ids, [tag_id])

    changed = runtime.call(assign)
    return jsonify({'success': True, 'changed': changed}), 200


__all__ = ['directory_bp']
