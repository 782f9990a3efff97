import logging
from typing import Optional, List

import redis

from shared import clock
from shared.events import state_changed_event
from shared.pubsub import PubSubClient
from shared.state_machine import TournamentStateMachine, TournamentStatus, TransitionError
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .models import db, Tournament, User, AdminRoleType
from .transactions import atomic

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'format', 'starts_at', 'registration_deadline', 'slots')


class TournamentRegistry:
    """
    Manages tournament records:
    - Create/update tournament records
    - Drive the tournament status through TournamentStateMachine
    - Announce status changes on the tournament's pub/sub channel
    """

    def __init__(self, pubsub: PubSubClient = None, audit=None):
        self.pubsub = pubsub
        self.audit = audit

    def _require_staff(self, actor: User):
        if not actor.has_admin_role(AdminRoleType.TOURNAMENT_ADMIN):
            raise Forbidden("Forbidden: TOURNAMENT_ADMIN access required")

    def _parse_when(self, value, label: str):
        try:
            return clock.parse_datetime(value)
        except ValueError:
            raise ValidationError(f"Invalid {label} format")

    def _parse_slots(self, value) -> int:
        try:
            slots = int(value)
        except (TypeError, ValueError):
            raise ValidationError("Slots must be a number")
        if slots < 2:
            raise ValidationError("Slots must be at least 2")
        return slots

    def create_tournament(
        self,
        actor: User,
        name: str,
        starts_at,
        registration_deadline,
        slots,
        format: str = None
    ) -> Tournament:
        """Create a new tournament in UPCOMING state."""
        self._require_staff(actor)
        if not name or not starts_at or not registration_deadline or slots is None:
            raise ValidationError("Name, start time, registration deadline and slots are required")

        starts = self._parse_when(starts_at, "start time")
        deadline = self._parse_when(registration_deadline, "registration deadline")
        if deadline >= starts:
            raise ValidationError("Registration deadline must be before the start time")

        with atomic():
            tournament = Tournament(
                name=name,
                format=format or None,
                starts_at=starts,
                registration_deadline=deadline,
                slots=self._parse_slots(slots),
                filled=0,
                status=TournamentStateMachine.INITIAL_STATE,
            )
            db.session.add(tournament)

        if self.audit:
            self.audit.record(actor.id, "CREATE_TOURNAMENT", "Tournament", tournament.id, {'name': name})
        return tournament

    def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = db.session.get(Tournament, tournament_id)
        if not tournament or tournament.deleted_at is not None:
            raise NotFound("Tournament not found")
        return tournament

    def list_tournaments(
        self,
        status: str = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Tournament]:
        """List tournaments with optional filtering."""
        query = Tournament.query.filter(Tournament.deleted_at.is_(None))

        if status:
            try:
                query = query.filter_by(status=TournamentStatus(status))
            except ValueError:
                raise ValidationError("Invalid status")

        query = query.order_by(Tournament.starts_at.asc(), Tournament.id.asc())
        return query.offset(offset).limit(limit).all()

    def update_tournament(self, tournament_id: int, actor: User, fields: dict) -> Tournament:
        self._require_staff(actor)
        updates = {k: v for k, v in (fields or {}).items() if k in EDITABLE_FIELDS}
        if not updates:
            raise ValidationError("No fields to update")

        with atomic():
            tournament = Tournament.query.filter_by(id=tournament_id).with_for_update().first()
            if not tournament or tournament.deleted_at is not None:
                raise NotFound("Tournament not found")

            if 'name' in updates:
                if not updates['name']:
                    raise ValidationError("Name cannot be empty")
                tournament.name = updates['name']
            if 'format' in updates:
                tournament.format = updates['format'] or None
            if 'starts_at' in updates:
                tournament.starts_at = self._parse_when(updates['starts_at'], "start time")
            if 'registration_deadline' in updates:
                tournament.registration_deadline = self._parse_when(
                    updates['registration_deadline'], "registration deadline"
                )
            if tournament.registration_deadline >= tournament.starts_at:
                raise ValidationError("Registration deadline must be before the start time")

            if 'slots' in updates:
                slots = self._parse_slots(updates['slots'])
                if slots < tournament.filled:
                    raise Conflict(f"Slots cannot be lower than the {tournament.filled} approved teams")
                tournament.slots = slots

        if self.audit:
            self.audit.record(actor.id, "UPDATE_TOURNAMENT", "Tournament", tournament.id, updates)
        return tournament

    def transition(self, tournament_id: int, actor: User, action: str) -> Tournament:
        """Apply a lifecycle action (open, close, reopen, start, complete, cancel)."""
        self._require_staff(actor)
        if not action:
            raise ValidationError("Action is required")

        with atomic():
            tournament = Tournament.query.filter_by(id=tournament_id).with_for_update().first()
            if not tournament or tournament.deleted_at is not None:
                raise NotFound("Tournament not found")

            sm = TournamentStateMachine.for_state(tournament.status)
            old_state = sm.state.value
            try:
                new_state = sm.transition(action, {'filled': tournament.filled})
            except TransitionError as e:
                raise Conflict(e.reason)

            tournament.status = new_state

        logger.info(f"Tournament {tournament.id}: {old_state} -> {new_state.value}")
        self._announce(tournament.id, old_state, new_state.value)

        if self.audit:
            self.audit.record(
                actor.id, "UPDATE_TOURNAMENT_STATUS", "Tournament", tournament.id,
                {'from': old_state, 'to': new_state.value}
            )
        return tournament

    def _announce(self, tournament_id: int, old_state: str, new_state: str) -> Optional[bool]:
        if not self.pubsub:
            return None
        try:
            self.pubsub.publish_tournament_event(
                tournament_id, state_changed_event(tournament_id, old_state, new_state)
            )
        except redis.RedisError as e:
            logger.warning(f"Failed to publish state change for tournament {tournament_id}: {e}")
            return False
        return True
