import re
import logging
from typing import Optional, List, Iterable
from flask import current_app

from shared import clock
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .models import db, Team, TeamNameHistory, Player, User, GameRole, TeamStatus, NotificationType
from .transactions import atomic

logger = logging.getLogger(__name__)

IGN_PATTERN = re.compile(r'^[A-Za-z0-9_ ]{2,20}$')
TAG_PATTERN = re.compile(r'^[A-Z0-9]{3,5}$')
COLOR_PATTERN = re.compile(r'^#[0-9A-Fa-f]{6}$')
REGIONS = ("Accra", "Kumasi", "Takoradi", "Tema", "Cape Coast")

TEAM_FIELDS = ('name', 'tag', 'region', 'color', 'logo', 'banner')
PLAYER_FIELDS = ('role', 'secondary_role', 'is_substitute', 'signature_hero', 'real_name', 'photo')
SELF_SERVICE_FIELDS = ('secondary_role', 'signature_hero', 'real_name', 'photo')


def parse_role(value, label: str = "role", required: bool = True) -> Optional[GameRole]:
    if value is None or value == '':
        if required:
            raise ValidationError(f"{label.capitalize()} is required")
        return None
    if isinstance(value, GameRole):
        return value
    try:
        return GameRole(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}")


def validate_ign(ign: str) -> str:
    if not ign or not IGN_PATTERN.match(ign):
        raise ValidationError("Invalid IGN format")
    return ign


def role_holder(players: Iterable[Player], role: GameRole, exclude_id: int = None) -> Optional[Player]:
    """The live starter occupying ``role``, ignoring ``exclude_id``."""
    for p in players:
        if p.id != exclude_id and p.role == role and p.is_starter:
            return p
    return None


class RosterManager:
    """
    Owns a team's player list.

    Every mutation locks the team row first and re-reads the roster under
    that lock, so the size bound and the one-starter-per-role rule are
    evaluated against the state that is actually written.
    """

    def __init__(self, notifier=None):
        self.notifier = notifier

    # ==================== Queries ====================

    def get_team(self, team_id: int, lock: bool = False) -> Team:
        query = Team.query.filter_by(id=team_id)
        if lock:
            query = query.with_for_update()
        team = query.first()
        if not team or team.deleted_at is not None:
            raise NotFound("Team not found")
        return team

    def active_players(self, team_id: int) -> List[Player]:
        return (
            Player.query
            .filter_by(team_id=team_id, deleted_at=None)
            .order_by(Player.created_at, Player.id)
            .all()
        )

    def list_players(self, team_id: int) -> List[Player]:
        self.get_team(team_id)
        players = self.active_players(team_id)
        return sorted(players, key=lambda p: (p.is_substitute, p.role.value, p.created_at))

    def starter_roles(self, team_id: int) -> set:
        return {p.role for p in self.active_players(team_id) if not p.is_substitute}

    def active_membership(self, user_id: int) -> Optional[Player]:
        return Player.query.filter_by(user_id=user_id, deleted_at=None).first()

    def is_committed_elsewhere(self, user_id: int, team_id: int = None) -> bool:
        """True if the user is rostered anywhere or captains a live team other than ``team_id``."""
        if self.active_membership(user_id):
            return True
        captained = Team.query.filter(Team.captain_id == user_id, Team.deleted_at.is_(None))
        if team_id is not None:
            captained = captained.filter(Team.id != team_id)
        return captained.first() is not None

    def can_manage(self, team: Team, actor: User) -> bool:
        return actor.id == team.captain_id or actor.is_admin

    # ==================== Invariant checks ====================

    def _max_roster(self) -> int:
        return current_app.config.get('MAX_ROSTER_SIZE', 7)

    def check_capacity(self, players: List[Player], message: str = "Team is full"):
        if len(players) >= self._max_roster():
            raise Conflict(message)

    def check_ign_available(self, ign: str):
        taken = Player.query.filter(Player.ign == ign, Player.deleted_at.is_(None)).first()
        if taken:
            raise Conflict("IGN already taken by another player")

    # ==================== Teams ====================

    def create_team(
        self,
        actor: User,
        name: str,
        tag: str,
        region: str,
        color: str = None,
        logo: str = None,
        banner: str = None
    ) -> Team:
        """Create a team captained by ``actor``."""
        if not name or not tag or not region:
            raise ValidationError("Name, tag, and region are required")
        if len(name) < 3 or len(name) > 50:
            raise ValidationError("Team name must be 3-50 characters")
        tag = tag.upper()
        if not TAG_PATTERN.match(tag):
            raise ValidationError("Team tag must be 3-5 uppercase alphanumeric characters")
        if region not in REGIONS:
            raise ValidationError("Invalid region")
        if color and not COLOR_PATTERN.match(color):
            raise ValidationError("Invalid color format (must be hex, e.g., #FF0000)")

        with atomic("You already have a team"):
            existing = Team.query.filter_by(captain_id=actor.id, deleted_at=None).first()
            if existing:
                raise Conflict("You already have a team")

            membership = self.active_membership(actor.id)
            if membership:
                raise Conflict(f"You are already a player on {membership.team.name}")

            if Team.query.filter_by(name=name).first():
                raise Conflict("Team name already taken")
            if Team.query.filter_by(tag=tag).first():
                raise Conflict("Team tag already taken")

            team = Team(
                name=name,
                tag=tag,
                region=region,
                color=color or None,
                logo=logo or None,
                banner=banner or None,
                captain_id=actor.id,
                status=TeamStatus.ACTIVE,
            )
            db.session.add(team)

        logger.info(f"Team {team.id} ({team.tag}) created by user {actor.id}")
        return team

    def update_team(self, team_id: int, actor: User, fields: dict) -> Team:
        """
        Edit a team's identity and branding.

        Name and tag stay unique across all teams, deleted ones included, and
        the previous pair is kept in ``TeamNameHistory`` whenever either changes.
        Empty ``color``, ``logo`` or ``banner`` clears the value.
        """
        updates = {k: v for k, v in (fields or {}).items() if k in TEAM_FIELDS}
        if not updates:
            raise ValidationError("No fields to update")

        if 'name' in updates:
            name = updates['name']
            if not name or len(name) < 3 or len(name) > 50:
                raise ValidationError("Team name must be 3-50 characters")
        if 'tag' in updates:
            updates['tag'] = (updates['tag'] or '').upper()
            if not TAG_PATTERN.match(updates['tag']):
                raise ValidationError("Team tag must be 3-5 uppercase alphanumeric characters")
        if 'region' in updates and updates['region'] not in REGIONS:
            raise ValidationError("Invalid region")
        if updates.get('color') and not COLOR_PATTERN.match(updates['color']):
            raise ValidationError("Invalid color format (must be hex, e.g., #FF0000)")
        for key in ('color', 'logo', 'banner'):
            if key in updates:
                updates[key] = updates[key] or None

        with atomic("Team name or tag was just taken, please retry"):
            team = self.get_team(team_id, lock=True)
            if not self.can_manage(team, actor):
                raise Forbidden("Only the team captain can update the team")

            renamed = 'name' in updates and updates['name'] != team.name
            retagged = 'tag' in updates and updates['tag'] != team.tag
            if renamed and Team.query.filter_by(name=updates['name']).first():
                raise Conflict("Team name already taken")
            if retagged and Team.query.filter_by(tag=updates['tag']).first():
                raise Conflict("Team tag already taken")

            if renamed or retagged:
                db.session.add(TeamNameHistory(team_id=team.id, old_name=team.name, old_tag=team.tag))

            for key, value in updates.items():
                setattr(team, key, value)

        logger.info(f"Team {team.id} updated by user {actor.id}: {sorted(updates)}")
        return team

    # ==================== Players ====================

    def add_player(
        self,
        team_id: int,
        actor: User,
        ign: str,
        role,
        is_substitute: bool = False,
        secondary_role=None,
        user_id: int = None,
        signature_hero: str = None,
        real_name: str = None,
        photo: str = None
    ) -> Player:
        if not ign or not role:
            raise ValidationError("IGN and role are required")
        validate_ign(ign)
        role = parse_role(role)
        secondary_role = parse_role(secondary_role, "secondary role", required=False)
        is_substitute = bool(is_substitute)

        with atomic(f"Role {role.value} or IGN {ign} was just taken, please retry"):
            team = self.get_team(team_id, lock=True)
            if not self.can_manage(team, actor):
                raise Forbidden("Only the team captain can add players")

            players = self.active_players(team.id)
            self.check_capacity(players, f"Team is full (maximum {self._max_roster()} players)")
            self.check_ign_available(ign)

            if user_id is not None and self.is_committed_elsewhere(user_id, team.id):
                raise Conflict("User is already on another team")

            if not is_substitute and role_holder(players, role):
                raise Conflict(
                    f"Role {role.value} is already filled by a starter. "
                    f"Add as substitute or reassign roles."
                )

            player = Player(
                team_id=team.id,
                user_id=user_id,
                ign=ign,
                role=role,
                secondary_role=secondary_role,
                signature_hero=signature_hero or None,
                real_name=real_name or None,
                photo=photo or None,
                is_substitute=is_substitute,
            )
            db.session.add(player)

        return player

    def enroll_member(self, team: Team, user: User, role: GameRole, secondary_role: GameRole = None) -> Player:
        """
        Put ``user`` on ``team`` as the result of an invite or invite link.

        The caller holds the team lock and owns the transaction. A role that
        already has a starter never fails the join; the newcomer becomes a
        substitute instead.
        """
        if self.active_membership(user.id) or self.is_committed_elsewhere(user.id, team.id):
            raise Conflict("You are already on a team")

        players = self.active_players(team.id)
        self.check_capacity(players)
        self.check_ign_available(user.ign)

        player = Player(
            team_id=team.id,
            user_id=user.id,
            ign=user.ign,
            role=role,
            secondary_role=secondary_role,
            is_substitute=role_holder(players, role) is not None,
        )
        db.session.add(player)
        return player

    def update_player(self, team_id: int, player_id: int, actor: User, fields: dict) -> Player:
        updates = {k: v for k, v in (fields or {}).items() if k in PLAYER_FIELDS}
        if not updates:
            raise ValidationError("No fields to update")

        if 'role' in updates:
            updates['role'] = parse_role(updates['role'])
        if 'secondary_role' in updates:
            updates['secondary_role'] = parse_role(updates['secondary_role'], "secondary role", required=False)
        if 'is_substitute' in updates:
            updates['is_substitute'] = bool(updates['is_substitute'])

        with atomic("Role was just taken by another starter, please retry"):
            team = self.get_team(team_id, lock=True)
            player = Player.query.filter_by(id=player_id, team_id=team.id, deleted_at=None).first()
            if not player:
                raise NotFound("Player not found")

            if not self.can_manage(team, actor):
                if player.user_id != actor.id:
                    raise Forbidden("Only the team captain can update players")
                if any(k not in SELF_SERVICE_FIELDS for k in updates):
                    raise Forbidden("Only the team captain can change roles")

            new_role = updates.get('role', player.role)
            new_substitute = updates.get('is_substitute', player.is_substitute)
            slot_changed = new_role != player.role or new_substitute != player.is_substitute

            if slot_changed and not new_substitute:
                players = self.active_players(team.id)
                if role_holder(players, new_role, exclude_id=player.id):
                    raise Conflict(f"Role {new_role.value} is already filled by another starter")

            for key, value in updates.items():
                if key in ('signature_hero', 'real_name', 'photo'):
                    value = value or None
                setattr(player, key, value)

        return player

    def remove_player(self, team_id: int, player_id: int, actor: User) -> dict:
        """
        Soft-delete a player. When the captain leaves, captaincy passes to the
        longest-serving remaining starter, or the team is retired if none is left.
        """
        with atomic():
            team = self.get_team(team_id, lock=True)
            player = Player.query.filter_by(id=player_id, team_id=team.id, deleted_at=None).first()
            if not player:
                raise NotFound("Player not found")

            if not self.can_manage(team, actor) and player.user_id != actor.id:
                raise Forbidden("Only the team captain can remove players")

            now = clock.utcnow()
            player.deleted_at = now

            outcome = {
                'player_id': player.id,
                'team_id': team.id,
                'captain_id': team.captain_id,
                'captaincy_transferred': False,
                'team_deleted': False,
            }

            if player.user_id is not None and player.user_id == team.captain_id:
                successor = self.transfer_captaincy(team, departing=player)
                if successor is None:
                    team.deleted_at = now
                    outcome['team_deleted'] = True
                    outcome['captain_id'] = None
                else:
                    outcome['captaincy_transferred'] = True
                    outcome['captain_id'] = team.captain_id

        if outcome['team_deleted']:
            logger.info(f"Team {team.id} retired: last starter left")
        elif outcome['captaincy_transferred'] and self.notifier:
            self.notifier.create(
                team.captain_id,
                NotificationType.CAPTAINCY_TRANSFERRED,
                "You Are Now Team Captain",
                f"You are now the captain of {team.name}",
                f"/teams/{team.id}",
            )

        return outcome

    def transfer_captaincy(self, team: Team, departing: Player) -> Optional[Player]:
        """
        Hand the team to the remaining starter with the earliest ``created_at``.

        Runs inside the caller's transaction with the team locked. Returns the
        successor, or None when no starter remains.
        """
        starters = [
            p for p in self.active_players(team.id)
            if p.id != departing.id and not p.is_substitute
        ]
        if not starters:
            return None

        successor = min(starters, key=lambda p: (p.created_at, p.id))
        previous = team.captain_id
        team.captain_id = successor.user_id
        logger.info(f"Team {team.id} captaincy transferred from user {previous} to user {successor.user_id}")
        return successor
