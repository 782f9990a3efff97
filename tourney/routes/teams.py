from flask import Blueprint, request, jsonify, current_app

from tourney.auth import require_active_user

bp = Blueprint('teams', __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# --- Teams ---

@bp.route('/api/v1/teams', methods=['POST'])
def create_team():
    user = require_active_user()
    data = _body()

    team = current_app.roster.create_team(
        user,
        name=data.get('name'),
        tag=data.get('tag'),
        region=data.get('region'),
        color=data.get('color'),
        logo=data.get('logo'),
        banner=data.get('banner'),
    )
    return jsonify({'message': 'Team created successfully', 'team': team.to_dict()}), 201


@bp.route('/api/v1/teams/<int:team_id>')
def get_team(team_id):
    team = current_app.roster.get_team(team_id)
    return jsonify(team.to_dict(include_players=True))


@bp.route('/api/v1/teams/<int:team_id>', methods=['PUT'])
def update_team(team_id):
    user = require_active_user()
    team = current_app.roster.update_team(team_id, user, _body())
    return jsonify({'message': 'Team updated successfully', 'team': team.to_dict()})


# --- Players ---

@bp.route('/api/v1/teams/<int:team_id>/players', methods=['GET'])
def list_players(team_id):
    players = current_app.roster.list_players(team_id)
    return jsonify({'players': [p.to_dict() for p in players], 'count': len(players)})


@bp.route('/api/v1/teams/<int:team_id>/players', methods=['POST'])
def add_player(team_id):
    user = require_active_user()
    data = _body()

    player = current_app.roster.add_player(
        team_id,
        user,
        ign=data.get('ign'),
        role=data.get('role'),
        is_substitute=data.get('is_substitute', False),
        secondary_role=data.get('secondary_role'),
        user_id=data.get('user_id'),
        signature_hero=data.get('signature_hero'),
        real_name=data.get('real_name'),
        photo=data.get('photo'),
    )
    return jsonify({'message': 'Player added successfully', 'player': player.to_dict()}), 201


@bp.route('/api/v1/teams/<int:team_id>/players/<int:player_id>', methods=['PUT'])
def update_player(team_id, player_id):
    user = require_active_user()
    player = current_app.roster.update_player(team_id, player_id, user, _body())
    return jsonify({'message': 'Player updated successfully', 'player': player.to_dict()})


@bp.route('/api/v1/teams/<int:team_id>/players/<int:player_id>', methods=['DELETE'])
def remove_player(team_id, player_id):
    user = require_active_user()
    outcome = current_app.roster.remove_player(team_id, player_id, user)

    if outcome['team_deleted']:
        message = 'Player removed. Team disbanded as no starters remain'
    elif outcome['captaincy_transferred']:
        message = 'Player removed. Captaincy transferred'
    else:
        message = 'Player removed successfully'

    return jsonify({'message': message, **outcome})
