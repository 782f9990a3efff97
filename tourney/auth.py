"""
Session plumbing for the API.

Sessions are issued elsewhere; a request identifies its session through the
``X-Session-Id`` header and Flask-Login resolves it to a ``User``.
"""
from flask_login import LoginManager, current_user

from shared import clock
from .errors import Unauthorized, Forbidden
from .models import db, User, UserStatus, AdminRoleType

SESSION_HEADER = 'X-Session-Id'

login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


@login_manager.request_loader
def load_user_from_request(request):
    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        return None
    return User.query.filter_by(session_id=session_id).first()


@login_manager.unauthorized_handler
def unauthorized():
    raise Unauthorized()


def require_user() -> User:
    if not current_user.is_authenticated:
        raise Unauthorized()
    return current_user._get_current_object()


def require_active_user() -> User:
    """Authenticated user who is neither banned nor currently suspended."""
    user = require_user()

    if user.status == UserStatus.BANNED:
        raise Forbidden("Account has been banned")

    if (
        user.status == UserStatus.SUSPENDED
        and user.suspended_until
        and user.suspended_until > clock.utcnow()
    ):
        raise Forbidden("Account is suspended")

    return user


def require_admin(required_role: AdminRoleType = None) -> User:
    user = require_active_user()

    if not user.is_admin:
        raise Forbidden("Forbidden: Admin access required")

    if not user.has_admin_role(required_role):
        raise Forbidden(f"Forbidden: {required_role.value} access required")

    return user
