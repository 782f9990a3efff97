from flask import Blueprint, request, jsonify, current_app

from tourney.auth import require_active_user, require_admin
from tourney.models import AdminRoleType

bp = Blueprint('matches', __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


@bp.route('/api/v1/tournaments/<int:tournament_id>/matches', methods=['GET'])
def list_matches(tournament_id):
    matches = current_app.matches.list_matches(tournament_id, status=request.args.get('status'))
    return jsonify({'matches': [m.to_dict() for m in matches], 'count': len(matches)})


@bp.route('/api/v1/tournaments/<int:tournament_id>/matches', methods=['POST'])
def create_match(tournament_id):
    admin = require_admin(AdminRoleType.TOURNAMENT_ADMIN)
    data = _body()

    match = current_app.matches.create(
        tournament_id,
        admin,
        team_a_id=data.get('team_a_id'),
        team_b_id=data.get('team_b_id'),
        scheduled_time=data.get('scheduled_time'),
        stage=data.get('stage'),
        best_of=data.get('best_of', 3),
        referee_id=data.get('referee_id'),
    )
    return jsonify({'message': 'Match created successfully', 'match': match.to_dict()}), 201


@bp.route('/api/v1/matches/<int:match_id>', methods=['GET'])
def get_match(match_id):
    match = current_app.matches.get_match(match_id)
    return jsonify(match.to_dict(include_dispute=True))


@bp.route('/api/v1/matches/<int:match_id>', methods=['PUT'])
def update_match(match_id):
    user = require_active_user()
    data = _body()

    match = current_app.matches.update(
        match_id,
        user,
        status=data.get('status'),
        score_a=data.get('score_a'),
        score_b=data.get('score_b'),
        winner_id=data.get('winner_id'),
    )
    return jsonify({'message': 'Match updated successfully', 'match': match.to_dict()})


# --- Disputes ---

@bp.route('/api/v1/matches/<int:match_id>/dispute', methods=['POST'])
def raise_dispute(match_id):
    user = require_active_user()
    dispute = current_app.disputes.raise_dispute(match_id, user, _body().get('reason'))
    return jsonify({'message': 'Dispute raised successfully', 'dispute': dispute.to_dict()}), 201


@bp.route('/api/v1/matches/<int:match_id>/dispute', methods=['PUT'])
def resolve_dispute(match_id):
    admin = require_admin(AdminRoleType.TOURNAMENT_ADMIN)
    data = _body()

    dispute = current_app.disputes.resolve(
        match_id,
        admin,
        resolution=data.get('resolution'),
        result_changed=data.get('result_changed', False),
        score_a=data.get('score_a'),
        score_b=data.get('score_b'),
        winner_id=data.get('winner_id'),
    )
    return jsonify({
        'message': 'Dispute resolved successfully',
        'dispute': dispute.to_dict(),
        'match': dispute.match.to_dict(),
    })
