import os
import logging
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from shared.pubsub import PubSubClient
from shared.state_machine import TransitionError
from .config import config
from .models import db
from .auth import login_manager
from .errors import TourneyError
from .notifier import Notifier
from .audit_log import AuditLog
from .roster_manager import RosterManager
from .invite_coordinator import InviteCoordinator
from .registration_coordinator import RegistrationCoordinator
from .match_lifecycle import MatchLifecycle
from .dispute_resolver import DisputeResolver
from .tournament_registry import TournamentRegistry

logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_name: str = None) -> Flask:
    """Application factory for the tourney API."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Initialize services
    redis_url = app.config.get('REDIS_URL')
    pubsub = PubSubClient(redis_url) if redis_url else None
    notifier = Notifier(pubsub)
    audit = AuditLog()
    roster = RosterManager(notifier)
    matches = MatchLifecycle(notifier, audit)

    # Create tables
    with app.app_context():
        db.create_all()

    # Store services on app for access in routes
    app.pubsub = pubsub
    app.notifier = notifier
    app.audit = audit
    app.roster = roster
    app.invites = InviteCoordinator(roster, notifier)
    app.registrations = RegistrationCoordinator(roster, notifier, audit)
    app.matches = matches
    app.disputes = DisputeResolver(matches, notifier, audit)
    app.registry = TournamentRegistry(pubsub, audit)

    register_error_handlers(app)
    register_health(app)

    from .routes import teams, invites, tournaments, matches as match_routes, notifications
    for module in (teams, invites, tournaments, match_routes, notifications):
        app.register_blueprint(module.bp)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(TourneyError)
    def handle_tourney_error(error: TourneyError):
        db.session.rollback()
        return jsonify({'error': error.message}), error.status_code

    @app.errorhandler(TransitionError)
    def handle_transition_error(error: TransitionError):
        db.session.rollback()
        return jsonify({'error': error.reason}), 409

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405


def register_health(app: Flask):

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            db_ok = False

        checks = {'database': 'connected' if db_ok else 'disconnected'}
        healthy = db_ok

        if app.pubsub is not None:
            redis_ok = app.pubsub.ping()
            checks['redis'] = 'connected' if redis_ok else 'disconnected'
            healthy = healthy and redis_ok

        status = 'healthy' if healthy else 'unhealthy'
        code = 200 if healthy else 503

        return jsonify({'status': status, **checks}), code
