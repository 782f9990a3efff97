from flask import Blueprint, request, jsonify, current_app

from tourney.auth import require_active_user

bp = Blueprint('invites', __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# --- Direct invites ---

@bp.route('/api/v1/teams/<int:team_id>/invites', methods=['GET'])
def list_team_invites(team_id):
    user = require_active_user()
    invites = current_app.invites.list_team_invites(team_id, user, status=request.args.get('status'))
    return jsonify({'invites': [i.to_dict() for i in invites], 'count': len(invites)})


@bp.route('/api/v1/teams/<int:team_id>/invites', methods=['POST'])
def send_invite(team_id):
    user = require_active_user()
    data = _body()

    invite = current_app.invites.send_invite(
        team_id, user, to_ign=data.get('to_ign'), message=data.get('message')
    )
    return jsonify({'message': 'Invite sent successfully', 'invite': invite.to_dict()}), 201


@bp.route('/api/v1/invites/received', methods=['GET'])
def received_invites():
    user = require_active_user()
    invites = current_app.invites.list_received_invites(user, status=request.args.get('status'))
    return jsonify({'invites': [i.to_dict() for i in invites], 'count': len(invites)})


@bp.route('/api/v1/invites/<int:invite_id>/respond', methods=['POST'])
def respond_invite(invite_id):
    user = require_active_user()
    data = _body()
    action = data.get('action')

    invite, player = current_app.invites.respond_invite(
        invite_id,
        user,
        action,
        role=data.get('role'),
        secondary_role=data.get('secondary_role'),
    )

    if player is None:
        return jsonify({'message': 'Invite declined', 'invite': invite.to_dict()})

    return jsonify({
        'message': 'Invite accepted',
        'invite': invite.to_dict(),
        'player': player.to_dict(),
        'is_substitute': player.is_substitute,
    })


# --- Invite links ---

@bp.route('/api/v1/teams/<int:team_id>/invite-links', methods=['GET'])
def get_invite_link(team_id):
    user = require_active_user()
    link = current_app.invites.get_active_link(team_id, user)
    app_url = current_app.config.get('APP_URL')
    return jsonify({'link': link.to_dict(app_url) if link else None})


@bp.route('/api/v1/teams/<int:team_id>/invite-links', methods=['POST'])
def generate_invite_link(team_id):
    user = require_active_user()
    data = _body()

    link = current_app.invites.generate_invite_link(team_id, user, max_uses=data.get('max_uses'))
    return jsonify({
        'message': 'Invite link generated successfully',
        'link': link.to_dict(current_app.config.get('APP_URL')),
    }), 201


@bp.route('/api/v1/teams/<int:team_id>/invite-links', methods=['PUT'])
def deactivate_invite_link(team_id):
    user = require_active_user()
    data = _body()

    link = current_app.invites.deactivate_invite_link(team_id, user, data.get('link_id'))
    return jsonify({'message': 'Invite link deactivated', 'link': link.to_dict()})


@bp.route('/api/v1/invite-links/<code>/join', methods=['POST'])
def join_via_link(code):
    user = require_active_user()
    data = _body()

    player = current_app.invites.join_via_link(
        code, user, role=data.get('role'), secondary_role=data.get('secondary_role')
    )
    return jsonify({
        'message': 'Successfully joined team',
        'player': player.to_dict(),
        'is_substitute': player.is_substitute,
    }), 201
