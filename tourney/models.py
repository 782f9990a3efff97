from enum import Enum
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin

from shared import clock
from shared.state_machine import (
    MatchStatus, InviteStatus, RegistrationStatus, TournamentStatus
)

db = SQLAlchemy()


def _now():
    return clock.utcnow()


def _iso(value):
    return value.isoformat() if value else None


class GameRole(str, Enum):
    EXP = "EXP"
    JUNGLE = "JUNGLE"
    MAGE = "MAGE"
    MARKSMAN = "MARKSMAN"
    ROAM = "ROAM"


REQUIRED_ROLES = frozenset(GameRole)


class TeamStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class AdminRoleType(str, Enum):
    REFEREE = "REFEREE"
    TOURNAMENT_ADMIN = "TOURNAMENT_ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class NotificationType(str, Enum):
    TEAM_INVITE_RECEIVED = "TEAM_INVITE_RECEIVED"
    TEAM_INVITE_ACCEPTED = "TEAM_INVITE_ACCEPTED"
    TEAM_INVITE_DECLINED = "TEAM_INVITE_DECLINED"
    INVITE_LINK_USED = "INVITE_LINK_USED"
    CAPTAINCY_TRANSFERRED = "CAPTAINCY_TRANSFERRED"
    TOURNAMENT_REGISTRATION_APPROVED = "TOURNAMENT_REGISTRATION_APPROVED"
    TOURNAMENT_REGISTRATION_REJECTED = "TOURNAMENT_REGISTRATION_REJECTED"
    WAITLIST_SLOT_OFFERED = "WAITLIST_SLOT_OFFERED"
    MATCH_SCHEDULED = "MATCH_SCHEDULED"
    MATCH_RESULT_SUBMITTED = "MATCH_RESULT_SUBMITTED"
    MATCH_DISPUTED = "MATCH_DISPUTED"
    MATCH_DISPUTE_RESOLVED = "MATCH_DISPUTE_RESOLVED"


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    ign = db.Column(db.String(20), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    status = db.Column(db.Enum(UserStatus, name='user_status'), nullable=False, default=UserStatus.ACTIVE)
    suspended_until = db.Column(db.DateTime, nullable=True)
    admin_role = db.Column(db.Enum(AdminRoleType, name='admin_role_type'), nullable=True)
    created_at = db.Column(db.DateTime, default=_now)
    last_seen = db.Column(db.DateTime, default=_now, onupdate=_now)

    def get_id(self):
        """Return the user ID for Flask-Login session management."""
        return str(self.id)

    @property
    def is_admin(self) -> bool:
        return self.admin_role is not None

    def has_admin_role(self, required: AdminRoleType = None) -> bool:
        """SUPER_ADMIN satisfies any requirement; no requirement means any admin role."""
        if self.admin_role is None:
            return False
        if required is None or self.admin_role == AdminRoleType.SUPER_ADMIN:
            return True
        return self.admin_role == required

    def to_dict(self):
        return {
            'id': self.id,
            'ign': self.ign,
            'status': self.status.value if self.status else None,
            'admin_role': self.admin_role.value if self.admin_role else None,
            'created_at': _iso(self.created_at),
        }


class Team(db.Model):
    __tablename__ = 'teams'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    tag = db.Column(db.String(5), unique=True, nullable=False)
    region = db.Column(db.String(50), nullable=False)
    color = db.Column(db.String(7), nullable=True)
    logo = db.Column(db.String(500), nullable=True)
    banner = db.Column(db.String(500), nullable=True)
    captain_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    status = db.Column(db.Enum(TeamStatus, name='team_status'), nullable=False, default=TeamStatus.ACTIVE)
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)
    deleted_at = db.Column(db.DateTime, nullable=True)

    captain = db.relationship('User', foreign_keys=[captain_id])
    players = db.relationship('Player', back_populates='team', order_by='Player.created_at')

    __table_args__ = (
        # one live team per captain
        db.Index(
            'uq_team_live_captain', 'captain_id', unique=True,
            sqlite_where=db.text('deleted_at IS NULL'),
            postgresql_where=db.text('deleted_at IS NULL'),
        ),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self, include_players: bool = False):
        data = {
            'id': self.id,
            'name': self.name,
            'tag': self.tag,
            'region': self.region,
            'color': self.color,
            'logo': self.logo,
            'banner': self.banner,
            'captain_id': self.captain_id,
            'status': self.status.value if self.status else None,
            'created_at': _iso(self.created_at),
            'deleted_at': _iso(self.deleted_at),
        }
        if include_players:
            data['players'] = [p.to_dict() for p in self.players if p.deleted_at is None]
        return data


class TeamNameHistory(db.Model):
    """Previous name and tag of a team, written on every rename or retag."""
    __tablename__ = 'team_name_history'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    old_name = db.Column(db.String(50), nullable=False)
    old_tag = db.Column(db.String(5), nullable=False)
    changed_at = db.Column(db.DateTime, default=_now)


class Player(db.Model):
    __tablename__ = 'players'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    ign = db.Column(db.String(20), nullable=False)
    role = db.Column(db.Enum(GameRole, name='game_role'), nullable=False)
    secondary_role = db.Column(db.Enum(GameRole, name='game_role'), nullable=True)
    signature_hero = db.Column(db.String(100), nullable=True)
    real_name = db.Column(db.String(100), nullable=True)
    photo = db.Column(db.String(500), nullable=True)
    is_substitute = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)
    deleted_at = db.Column(db.DateTime, nullable=True)

    team = db.relationship('Team', back_populates='players')
    user = db.relationship('User')

    __table_args__ = (
        # at most one live starter per role
        db.Index(
            'uq_player_starter_role', 'team_id', 'role', unique=True,
            sqlite_where=db.text('deleted_at IS NULL AND is_substitute = 0'),
            postgresql_where=db.text('deleted_at IS NULL AND is_substitute = false'),
        ),
        db.Index(
            'uq_player_live_ign', 'ign', unique=True,
            sqlite_where=db.text('deleted_at IS NULL'),
            postgresql_where=db.text('deleted_at IS NULL'),
        ),
    )

    @property
    def is_starter(self) -> bool:
        return self.deleted_at is None and not self.is_substitute

    def to_dict(self):
        return {
            'id': self.id,
            'team_id': self.team_id,
            'user_id': self.user_id,
            'ign': self.ign,
            'role': self.role.value,
            'secondary_role': self.secondary_role.value if self.secondary_role else None,
            'signature_hero': self.signature_hero,
            'real_name': self.real_name,
            'photo': self.photo,
            'is_substitute': self.is_substitute,
            'created_at': _iso(self.created_at),
        }


class TeamInvite(db.Model):
    __tablename__ = 'team_invites'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    from_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    to_ign = db.Column(db.String(20), nullable=False, index=True)
    to_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    message = db.Column(db.Text, nullable=True)
    status = db.Column(db.Enum(InviteStatus, name='invite_status'), nullable=False, default=InviteStatus.PENDING)
    sent_at = db.Column(db.DateTime, default=_now)
    expires_at = db.Column(db.DateTime, nullable=False)
    responded_at = db.Column(db.DateTime, nullable=True)

    team = db.relationship('Team')

    __table_args__ = (
        db.Index(
            'uq_invite_pending_target', 'team_id', 'to_ign', unique=True,
            sqlite_where=db.text("status = 'PENDING'"),
            postgresql_where=db.text("status = 'PENDING'"),
        ),
    )

    def is_expired(self, now) -> bool:
        return self.expires_at <= now

    def to_dict(self):
        return {
            'id': self.id,
            'team_id': self.team_id,
            'team': {'id': self.team.id, 'name': self.team.name, 'tag': self.team.tag} if self.team else None,
            'from_user_id': self.from_user_id,
            'to_ign': self.to_ign,
            'to_user_id': self.to_user_id,
            'message': self.message,
            'status': self.status.value,
            'sent_at': _iso(self.sent_at),
            'expires_at': _iso(self.expires_at),
            'responded_at': _iso(self.responded_at),
        }


class TeamInviteLink(db.Model):
    __tablename__ = 'team_invite_links'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    code = db.Column(db.String(8), unique=True, nullable=False, index=True)
    max_uses = db.Column(db.Integer, nullable=False, default=5)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=_now)

    team = db.relationship('Team')
    usages = db.relationship('InviteLinkUsage', back_populates='link')

    __table_args__ = (
        db.Index(
            'uq_invite_link_active', 'team_id', unique=True,
            sqlite_where=db.text('active = 1'),
            postgresql_where=db.text('active = true'),
        ),
    )

    def to_dict(self, app_url: str = None):
        data = {
            'id': self.id,
            'team_id': self.team_id,
            'code': self.code,
            'max_uses': self.max_uses,
            'used_count': self.used_count,
            'active': self.active,
            'expires_at': _iso(self.expires_at),
            'created_at': _iso(self.created_at),
        }
        if app_url:
            data['url'] = f"{app_url}/join/{self.code}"
        return data


class InviteLinkUsage(db.Model):
    __tablename__ = 'invite_link_usages'

    id = db.Column(db.Integer, primary_key=True)
    link_id = db.Column(db.Integer, db.ForeignKey('team_invite_links.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    used_at = db.Column(db.DateTime, default=_now)

    link = db.relationship('TeamInviteLink', back_populates='usages')

    __table_args__ = (
        db.UniqueConstraint('link_id', 'user_id', name='unique_link_usage'),
    )


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    format = db.Column(db.String(50), nullable=True)
    starts_at = db.Column(db.DateTime, nullable=False)
    registration_deadline = db.Column(db.DateTime, nullable=False)
    slots = db.Column(db.Integer, nullable=False)
    filled = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.Enum(TournamentStatus, name='tournament_status'), nullable=False,
                       default=TournamentStatus.UPCOMING)
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)
    deleted_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.CheckConstraint('filled <= slots', name='ck_tournament_capacity'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'format': self.format,
            'starts_at': _iso(self.starts_at),
            'registration_deadline': _iso(self.registration_deadline),
            'slots': self.slots,
            'filled': self.filled,
            'status': self.status.value,
            'created_at': _iso(self.created_at),
        }


class TournamentRegistration(db.Model):
    __tablename__ = 'tournament_registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    status = db.Column(db.Enum(RegistrationStatus, name='registration_status'), nullable=False,
                       default=RegistrationStatus.PENDING)
    seed = db.Column(db.Integer, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    registered_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    tournament = db.relationship('Tournament')
    team = db.relationship('Team')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'team_id', name='unique_registration_per_tournament'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'team_id': self.team_id,
            'team': {'id': self.team.id, 'name': self.team.name, 'tag': self.team.tag} if self.team else None,
            'status': self.status.value,
            'seed': self.seed,
            'rejection_reason': self.rejection_reason,
            'registered_at': _iso(self.registered_at),
        }


class Waitlist(db.Model):
    __tablename__ = 'waitlist'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    offered = db.Column(db.Boolean, nullable=False, default=False)
    offer_expires_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=_now)

    team = db.relationship('Team')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'position', name='unique_waitlist_position'),
        db.UniqueConstraint('tournament_id', 'team_id', name='unique_waitlist_team'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'team_id': self.team_id,
            'position': self.position,
            'offered': self.offered,
            'offer_expires_at': _iso(self.offer_expires_at),
        }


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    team_a_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False)
    team_b_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False)
    scheduled_time = db.Column(db.DateTime, nullable=False)
    stage = db.Column(db.String(50), nullable=True)
    best_of = db.Column(db.Integer, nullable=False, default=3)
    referee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    status = db.Column(db.Enum(MatchStatus, name='match_status'), nullable=False, default=MatchStatus.UPCOMING)
    score_a = db.Column(db.Integer, nullable=False, default=0)
    score_b = db.Column(db.Integer, nullable=False, default=0)
    winner_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=_now)
    # anchors the dispute window
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    tournament = db.relationship('Tournament')
    team_a = db.relationship('Team', foreign_keys=[team_a_id])
    team_b = db.relationship('Team', foreign_keys=[team_b_id])
    dispute = db.relationship('MatchDispute', back_populates='match', uselist=False)

    __table_args__ = (
        db.CheckConstraint('team_a_id <> team_b_id', name='ck_match_distinct_teams'),
    )

    @property
    def team_ids(self) -> tuple:
        return (self.team_a_id, self.team_b_id)

    def to_dict(self, include_dispute: bool = False):
        data = {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'team_a_id': self.team_a_id,
            'team_b_id': self.team_b_id,
            'scheduled_time': _iso(self.scheduled_time),
            'stage': self.stage,
            'best_of': self.best_of,
            'referee_id': self.referee_id,
            'status': self.status.value,
            'score_a': self.score_a,
            'score_b': self.score_b,
            'winner_id': self.winner_id,
            'updated_at': _iso(self.updated_at),
        }
        if include_dispute:
            data['dispute'] = self.dispute.to_dict() if self.dispute else None
        return data


class MatchDispute(db.Model):
    __tablename__ = 'match_disputes'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), unique=True, nullable=False)
    raised_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=_now)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolved_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    resolution = db.Column(db.Text, nullable=True)
    result_changed = db.Column(db.Boolean, nullable=True)

    match = db.relationship('Match', back_populates='dispute')

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def to_dict(self):
        return {
            'id': self.id,
            'match_id': self.match_id,
            'raised_by_id': self.raised_by_id,
            'reason': self.reason,
            'created_at': _iso(self.created_at),
            'resolved_at': _iso(self.resolved_at),
            'resolved_by_id': self.resolved_by_id,
            'resolution': self.resolution,
            'result_changed': self.result_changed,
        }


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    type = db.Column(db.Enum(NotificationType, name='notification_type'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link_url = db.Column(db.String(500), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_now)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type.value,
            'title': self.title,
            'message': self.message,
            'link_url': self.link_url,
            'is_read': self.is_read,
            'created_at': _iso(self.created_at),
        }


class AdminAuditLog(db.Model):
    __tablename__ = 'admin_audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    action = db.Column(db.String(50), nullable=False)
    target_type = db.Column(db.String(50), nullable=False)
    target_id = db.Column(db.String(50), nullable=False)
    details = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=_now)
