from flask import Blueprint, request, jsonify, current_app

from tourney.auth import require_active_user
from tourney.errors import ValidationError

bp = Blueprint('notifications', __name__)


@bp.route('/api/v1/notifications', methods=['GET'])
def list_notifications():
    user = require_active_user()
    unread_only = request.args.get('unread') in ('1', 'true')
    limit = request.args.get('limit', 50, type=int)

    notes = current_app.notifier.list_for_user(user.id, unread_only=unread_only, limit=limit)
    return jsonify({
        'notifications': [n.to_dict() for n in notes],
        'count': len(notes),
        'unread_count': current_app.notifier.unread_count(user.id),
    })


@bp.route('/api/v1/notifications', methods=['PUT'])
def mark_notifications_read():
    user = require_active_user()
    data = request.get_json(silent=True) or {}

    mark_all = bool(data.get('mark_all_read'))
    ids = data.get('notification_ids')
    if not mark_all and not isinstance(ids, list):
        raise ValidationError("notification_ids array is required")

    updated = current_app.notifier.mark_read(user.id, ids, mark_all=mark_all)
    return jsonify({'message': 'Notifications marked as read', 'updated': updated})
