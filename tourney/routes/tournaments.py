from flask import Blueprint, request, jsonify, current_app

from shared.state_machine import RegistrationStatus
from tourney.auth import require_active_user, require_admin
from tourney.models import AdminRoleType

bp = Blueprint('tournaments', __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# ==================== Tournament CRUD ====================

@bp.route('/api/v1/tournaments', methods=['GET'])
def list_tournaments():
    """List tournaments with optional filtering."""
    status = request.args.get('status')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    tournaments = current_app.registry.list_tournaments(status=status, limit=limit, offset=offset)

    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments),
        'limit': limit,
        'offset': offset
    })


@bp.route('/api/v1/tournaments', methods=['POST'])
def create_tournament():
    admin = require_admin(AdminRoleType.TOURNAMENT_ADMIN)
    data = _body()

    tournament = current_app.registry.create_tournament(
        admin,
        name=data.get('name'),
        starts_at=data.get('starts_at'),
        registration_deadline=data.get('registration_deadline'),
        slots=data.get('slots'),
        format=data.get('format'),
    )
    return jsonify({'message': 'Tournament created', 'tournament': tournament.to_dict()}), 201


@bp.route('/api/v1/tournaments/<int:tournament_id>', methods=['GET'])
def get_tournament(tournament_id):
    return jsonify(current_app.registry.get_tournament(tournament_id).to_dict())


@bp.route('/api/v1/tournaments/<int:tournament_id>', methods=['PUT'])
def update_tournament(tournament_id):
    admin = require_admin(AdminRoleType.TOURNAMENT_ADMIN)
    tournament = current_app.registry.update_tournament(tournament_id, admin, _body())
    return jsonify({'message': 'Tournament updated', 'tournament': tournament.to_dict()})


@bp.route('/api/v1/tournaments/<int:tournament_id>/status', methods=['POST'])
def change_status(tournament_id):
    """Apply a lifecycle action: open, close, reopen, start, complete, cancel."""
    admin = require_admin(AdminRoleType.TOURNAMENT_ADMIN)
    tournament = current_app.registry.transition(tournament_id, admin, _body().get('action'))
    return jsonify({'message': f'Tournament is now {tournament.status.value}', 'tournament': tournament.to_dict()})


# ==================== Registration ====================

@bp.route('/api/v1/tournaments/<int:tournament_id>/register', methods=['POST'])
def register(tournament_id):
    user = require_active_user()
    registration, waitlisted = current_app.registrations.register(
        tournament_id, user, team_id=_body().get('team_id')
    )

    if waitlisted:
        return jsonify({
            'message': 'Tournament is full. Added to waitlist.',
            'registration': registration.to_dict(),
            'waitlist': waitlisted.to_dict(),
        }), 201

    return jsonify({
        'message': 'Registration submitted successfully',
        'registration': registration.to_dict(),
        'waitlist': None,
    }), 201


@bp.route('/api/v1/tournaments/<int:tournament_id>/withdraw', methods=['POST'])
def withdraw(tournament_id):
    user = require_active_user()
    registration, offer = current_app.registrations.withdraw(
        tournament_id, user, team_id=_body().get('team_id')
    )

    forfeit = registration.status == RegistrationStatus.FORFEITED
    return jsonify({
        'message': 'Withdrawal processed as forfeit' if forfeit else 'Withdrawal successful',
        'registration': registration.to_dict(),
        'offered_to': offer.to_dict() if offer else None,
    })


@bp.route('/api/v1/tournaments/<int:tournament_id>/registrations', methods=['GET'])
def list_registrations(tournament_id):
    require_admin()
    registrations = current_app.registrations.list_registrations(
        tournament_id, status=request.args.get('status')
    )
    return jsonify({'registrations': [r.to_dict() for r in registrations], 'count': len(registrations)})


@bp.route('/api/v1/tournaments/<int:tournament_id>/registrations', methods=['PUT'])
def decide_registration(tournament_id):
    admin = require_admin(AdminRoleType.TOURNAMENT_ADMIN)
    data = _body()

    registration = current_app.registrations.decide(
        tournament_id,
        data.get('registration_id'),
        admin,
        data.get('action'),
        seed=data.get('seed'),
        reason=data.get('reason'),
    )

    if registration.status == RegistrationStatus.APPROVED:
        return jsonify({
            'message': 'Registration approved',
            'seed': registration.seed,
            'registration': registration.to_dict(),
        })
    return jsonify({'message': 'Registration rejected', 'registration': registration.to_dict()})


@bp.route('/api/v1/tournaments/<int:tournament_id>/waitlist', methods=['GET'])
def get_waitlist(tournament_id):
    current_app.registry.get_tournament(tournament_id)
    entries = current_app.registrations.list_waitlist(tournament_id)
    return jsonify({'waitlist': [w.to_dict() for w in entries], 'count': len(entries)})
