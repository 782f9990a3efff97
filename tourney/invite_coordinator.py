import string
import secrets
import logging
from datetime import timedelta
from typing import Optional, List, Tuple
from flask import current_app
from sqlalchemy import or_

from shared import clock
from shared.state_machine import InviteStateMachine, InviteStatus, TransitionError
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .models import (
    db, Team, Player, User, TeamInvite, TeamInviteLink, InviteLinkUsage, NotificationType
)
from .roster_manager import RosterManager, parse_role
from .transactions import atomic

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
RESPONSES = ('accept', 'decline')


def generate_code(length: int = CODE_LENGTH) -> str:
    return ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class InviteCoordinator:
    """
    Direct invites and shareable invite links.

    Joining a team through either path goes through
    ``RosterManager.enroll_member`` with the team row locked, so concurrent
    accepts for the same role cannot both land as starters.
    """

    def __init__(self, roster: RosterManager, notifier=None):
        self.roster = roster
        self.notifier = notifier

    # ==================== Direct invites ====================

    def send_invite(self, team_id: int, actor: User, to_ign: str, message: str = None) -> TeamInvite:
        if not to_ign:
            raise ValidationError("Player IGN is required")

        ttl = timedelta(hours=current_app.config.get('INVITE_TTL_HOURS', 48))
        max_pending = current_app.config.get('MAX_PENDING_INVITES', 3)

        with atomic("Invite already sent to this player"):
            team = self.roster.get_team(team_id, lock=True)
            if not self.roster.can_manage(team, actor):
                raise Forbidden("Only the team captain can send invites")

            self.roster.check_capacity(self.roster.active_players(team.id))

            target = User.query.filter_by(ign=to_ign).first()
            if not target:
                raise NotFound("Player not found")

            if self.roster.is_committed_elsewhere(target.id, team.id):
                raise Conflict("Player is already on a team")

            now = clock.utcnow()
            existing = TeamInvite.query.filter_by(
                team_id=team.id, to_ign=target.ign, status=InviteStatus.PENDING
            ).first()
            if existing:
                if not existing.is_expired(now):
                    raise Conflict("Invite already sent to this player")
                self._expire(existing)
                db.session.flush()

            pending = TeamInvite.query.filter(
                TeamInvite.to_user_id == target.id,
                TeamInvite.status == InviteStatus.PENDING,
                TeamInvite.expires_at > now
            ).count()
            if pending >= max_pending:
                raise Conflict("Player has too many pending invites. Please wait for them to respond.")

            invite = TeamInvite(
                team_id=team.id,
                from_user_id=actor.id,
                to_ign=target.ign,
                to_user_id=target.id,
                message=message or None,
                status=InviteStatus.PENDING,
                sent_at=now,
                expires_at=now + ttl,
            )
            db.session.add(invite)

        if self.notifier:
            self.notifier.create(
                target.id,
                NotificationType.TEAM_INVITE_RECEIVED,
                "Team Invite",
                f"{team.name} has invited you to join their team",
                "/invites",
            )
        return invite

    def respond_invite(
        self,
        invite_id: int,
        actor: User,
        action: str,
        role=None,
        secondary_role=None
    ) -> Tuple[TeamInvite, Optional[Player]]:
        """
        Accept or decline an invite addressed to ``actor``.

        An invite found past its expiry is stored as EXPIRED before the
        request is refused, so the realized state survives the error.
        """
        if action not in RESPONSES:
            raise ValidationError("Action must be 'accept' or 'decline'")
        if action == 'accept':
            if not role:
                raise ValidationError("Role is required when accepting invite")
            role = parse_role(role)
            secondary_role = parse_role(secondary_role, "secondary role", required=False)

        invite = db.session.get(TeamInvite, invite_id)
        if not invite:
            raise NotFound("Invite not found")
        if invite.to_user_id != actor.id and invite.to_ign != actor.ign:
            raise Forbidden("This invite is not for you")

        player = None
        expired = False
        with atomic("Team changed while joining, please retry"):
            team = Team.query.filter_by(id=invite.team_id).with_for_update().first()
            invite = (
                TeamInvite.query
                .filter_by(id=invite_id)
                .with_for_update()
                .populate_existing()
                .first()
            )

            if invite.status != InviteStatus.PENDING:
                raise Conflict("Invite has already been responded to")

            now = clock.utcnow()
            if invite.is_expired(now):
                self._expire(invite)
                expired = True
            elif action == 'decline':
                self._apply(invite, 'decline', now)
            else:
                if not team or team.deleted_at is not None:
                    raise NotFound("Team not found")
                player = self.roster.enroll_member(team, actor, role, secondary_role)
                self._apply(invite, 'accept', now)
                self.cancel_other_pending(actor, keep_invite_id=invite.id)

        if expired:
            raise Conflict("Invite has expired")

        if self.notifier and team:
            if player:
                self.notifier.create(
                    team.captain_id,
                    NotificationType.TEAM_INVITE_ACCEPTED,
                    "Invite Accepted",
                    f"{actor.ign} has joined {team.name}",
                    f"/teams/{team.id}",
                )
            else:
                self.notifier.create(
                    team.captain_id,
                    NotificationType.TEAM_INVITE_DECLINED,
                    "Invite Declined",
                    f"{actor.ign} declined your invite to {team.name}",
                    f"/teams/{team.id}",
                )

        logger.info(f"Invite {invite.id} {invite.status.value.lower()} by user {actor.id}")
        return invite, player

    def cancel_other_pending(self, user: User, keep_invite_id: int = None) -> int:
        """Cancel every PENDING invite for ``user`` except ``keep_invite_id``."""
        query = TeamInvite.query.filter(
            TeamInvite.status == InviteStatus.PENDING,
            or_(TeamInvite.to_user_id == user.id, TeamInvite.to_ign == user.ign)
        )
        if keep_invite_id is not None:
            query = query.filter(TeamInvite.id != keep_invite_id)

        now = clock.utcnow()
        cancelled = 0
        for invite in query.all():
            self._apply(invite, 'cancel', now)
            cancelled += 1
        return cancelled

    def list_team_invites(self, team_id: int, actor: User, status: str = None) -> List[TeamInvite]:
        team = self.roster.get_team(team_id)
        if not self.roster.can_manage(team, actor):
            raise Forbidden("Only the team captain can view team invites")

        self.expire_stale(TeamInvite.query.filter_by(team_id=team.id))

        query = TeamInvite.query.filter_by(team_id=team.id)
        if status:
            query = query.filter_by(status=self._parse_status(status))
        return query.order_by(TeamInvite.sent_at.desc(), TeamInvite.id.desc()).all()

    def list_received_invites(self, actor: User, status: str = None) -> List[TeamInvite]:
        """Invites addressed to ``actor``; defaults to the ones still actionable."""
        received = or_(TeamInvite.to_user_id == actor.id, TeamInvite.to_ign == actor.ign)
        self.expire_stale(TeamInvite.query.filter(received))

        wanted = self._parse_status(status) if status else InviteStatus.PENDING
        return (
            TeamInvite.query
            .filter(received, TeamInvite.status == wanted)
            .order_by(TeamInvite.sent_at.desc(), TeamInvite.id.desc())
            .all()
        )

    def expire_stale(self, query) -> int:
        """Realize EXPIRED on pending invites whose deadline has passed."""
        now = clock.utcnow()
        stale = query.filter(
            TeamInvite.status == InviteStatus.PENDING,
            TeamInvite.expires_at <= now
        ).all()
        if not stale:
            return 0

        with atomic():
            for invite in stale:
                self._expire(invite)
        return len(stale)

    def _expire(self, invite: TeamInvite):
        self._apply(invite, 'expire', None)

    def _apply(self, invite: TeamInvite, action: str, when):
        machine = InviteStateMachine.for_state(invite.status)
        try:
            invite.status = machine.transition(action)
        except TransitionError as e:
            raise Conflict(e.reason)
        if when is not None:
            invite.responded_at = when

    def _parse_status(self, status: str) -> InviteStatus:
        try:
            return InviteStatus(status)
        except ValueError:
            raise ValidationError("Invalid status")

    # ==================== Invite links ====================

    def get_active_link(self, team_id: int, actor: User) -> Optional[TeamInviteLink]:
        team = self.roster.get_team(team_id)
        if not self.roster.can_manage(team, actor):
            raise Forbidden("Only the team captain can view invite links")

        return TeamInviteLink.query.filter(
            TeamInviteLink.team_id == team.id,
            TeamInviteLink.active.is_(True),
            TeamInviteLink.expires_at > clock.utcnow()
        ).first()

    def generate_invite_link(self, team_id: int, actor: User, max_uses: int = None) -> TeamInviteLink:
        """Replace the team's active link with a fresh one."""
        if max_uses is None:
            max_uses = current_app.config.get('INVITE_LINK_DEFAULT_MAX_USES', 5)
        try:
            max_uses = int(max_uses)
        except (TypeError, ValueError):
            raise ValidationError("Max uses must be a number")
        if max_uses < 1:
            raise ValidationError("Max uses must be at least 1")

        ttl = timedelta(days=current_app.config.get('INVITE_LINK_TTL_DAYS', 7))

        with atomic("Invite link was regenerated concurrently, please retry"):
            team = self.roster.get_team(team_id, lock=True)
            if not self.roster.can_manage(team, actor):
                raise Forbidden("Only the team captain can generate invite links")

            TeamInviteLink.query.filter_by(team_id=team.id, active=True).update(
                {'active': False}, synchronize_session='fetch'
            )

            code = generate_code()
            while TeamInviteLink.query.filter_by(code=code).first():
                code = generate_code()

            link = TeamInviteLink(
                team_id=team.id,
                created_by_id=actor.id,
                code=code,
                max_uses=max_uses,
                used_count=0,
                active=True,
                expires_at=clock.utcnow() + ttl,
            )
            db.session.add(link)

        logger.info(f"Invite link {link.code} generated for team {team.id}")
        return link

    def deactivate_invite_link(self, team_id: int, actor: User, link_id: int) -> TeamInviteLink:
        if not link_id:
            raise ValidationError("Link ID is required")

        with atomic():
            team = self.roster.get_team(team_id, lock=True)
            if not self.roster.can_manage(team, actor):
                raise Forbidden("Only the team captain can deactivate invite links")

            link = db.session.get(TeamInviteLink, link_id)
            if not link or link.team_id != team.id:
                raise NotFound("Invite link not found")

            if link.active:
                link.active = False

        return link

    def join_via_link(self, code: str, actor: User, role, secondary_role=None) -> Player:
        if not role:
            raise ValidationError("Role is required")
        role = parse_role(role)
        secondary_role = parse_role(secondary_role, "secondary role", required=False)

        link = TeamInviteLink.query.filter_by(code=code).first()
        if not link:
            raise NotFound("Invalid invite code")

        with atomic("Team changed while joining, please retry"):
            team = self.roster.get_team(link.team_id, lock=True)
            link = (
                TeamInviteLink.query
                .filter_by(id=link.id)
                .with_for_update()
                .populate_existing()
                .first()
            )

            if not link.active:
                raise Conflict("Invite link has been deactivated")
            if link.expires_at <= clock.utcnow():
                raise Conflict("Invite link has expired")
            if link.used_count >= link.max_uses:
                raise Conflict("Invite link has reached maximum uses")
            if InviteLinkUsage.query.filter_by(link_id=link.id, user_id=actor.id).first():
                raise Conflict("You have already used this invite link")

            player = self.roster.enroll_member(team, actor, role, secondary_role)
            db.session.add(InviteLinkUsage(link_id=link.id, user_id=actor.id))
            link.used_count += 1
            self.cancel_other_pending(actor)

        if self.notifier:
            self.notifier.create(
                team.captain_id,
                NotificationType.INVITE_LINK_USED,
                "Player Joined via Invite Link",
                f"{actor.ign} joined your team using invite link",
                f"/teams/{team.id}",
            )

        logger.info(f"User {actor.id} joined team {team.id} via link {link.code}")
        return player
