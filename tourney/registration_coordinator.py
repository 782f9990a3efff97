import logging
from datetime import timedelta
from typing import Optional, List, Tuple
from flask import current_app

from shared import clock
from shared.state_machine import (
    RegistrationStateMachine, RegistrationStatus, TournamentStateMachine, TransitionError
)
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .models import (
    db, Team, Tournament, TournamentRegistration, Waitlist, User,
    REQUIRED_ROLES, NotificationType, AdminRoleType, TeamStatus
)
from .roster_manager import RosterManager
from .transactions import atomic

logger = logging.getLogger(__name__)

DECISIONS = ('approve', 'reject')


class RegistrationCoordinator:
    """
    Tournament admission.

    Submissions only create PENDING rows (and a waitlist entry when the
    tournament is full). Capacity is consumed at approval, which is the
    admission-control point; both paths lock the tournament row.
    """

    def __init__(self, roster: RosterManager, notifier=None, audit=None):
        self.roster = roster
        self.notifier = notifier
        self.audit = audit

    def _lock_tournament(self, tournament_id: int) -> Tournament:
        tournament = Tournament.query.filter_by(id=tournament_id).with_for_update().first()
        if not tournament or tournament.deleted_at is not None:
            raise NotFound("Tournament not found")
        return tournament

    def _captained_team(self, actor: User, team_id: int = None, message: str = None) -> Team:
        message = message or "You must be a team captain to register"
        if team_id is not None:
            team = self.roster.get_team(team_id)
            if team.captain_id != actor.id:
                raise Forbidden(message)
            return team

        team = Team.query.filter_by(captain_id=actor.id, deleted_at=None).first()
        if not team:
            raise Forbidden(message)
        return team

    def _held_seeds(self, tournament_id: int) -> set:
        rows = (
            db.session.query(TournamentRegistration.seed)
            .filter(
                TournamentRegistration.tournament_id == tournament_id,
                TournamentRegistration.status == RegistrationStatus.APPROVED,
                TournamentRegistration.seed.isnot(None),
            )
            .all()
        )
        return {row.seed for row in rows}

    def register(
        self,
        tournament_id: int,
        actor: User,
        team_id: int = None
    ) -> Tuple[TournamentRegistration, Optional[Waitlist]]:
        """
        Submit the actor's team for a tournament.

        Returns the PENDING registration and, when the tournament is already
        full, the waitlist entry created for it.
        """
        with atomic("Team is already registered for this tournament"):
            tournament = self._lock_tournament(tournament_id)

            if not TournamentStateMachine.for_state(tournament.status).accepts_registrations:
                raise Conflict("Tournament is not accepting registrations")

            now = clock.utcnow()
            if now >= tournament.registration_deadline:
                raise Conflict("Registration deadline has passed")

            team = self._captained_team(actor, team_id)
            if team.status != TeamStatus.ACTIVE:
                raise Conflict("Only active teams can register for tournaments")

            # set containment: a second starter in one role never covers another
            if not REQUIRED_ROLES <= self.roster.starter_roles(team.id):
                raise Conflict(
                    "Team must have players covering all 5 roles (EXP, Jungle, Mage, Marksman, Roam)"
                )

            if not team.logo or not team.banner:
                raise Conflict("Team must have logo and banner uploaded before registering")

            registration = TournamentRegistration.query.filter_by(
                tournament_id=tournament.id, team_id=team.id
            ).first()

            if registration is None:
                registration = TournamentRegistration(
                    tournament_id=tournament.id,
                    team_id=team.id,
                    status=RegistrationStatus.PENDING,
                    registered_at=now,
                )
                db.session.add(registration)
            elif registration.status == RegistrationStatus.APPROVED:
                raise Conflict("Team is already registered and approved")
            elif registration.status == RegistrationStatus.PENDING:
                raise Conflict("Registration is already pending")
            else:
                machine = RegistrationStateMachine.for_state(registration.status)
                if not machine.can_transition('reapply'):
                    raise Conflict(
                        f"Team cannot re-register after a {registration.status.value.lower()} registration"
                    )
                registration.status = machine.transition('reapply')
                registration.seed = None
                registration.rejection_reason = None
                registration.registered_at = now

            waitlisted = None
            if tournament.filled >= tournament.slots:
                waitlisted = Waitlist.query.filter_by(
                    tournament_id=tournament.id, team_id=team.id
                ).first()
                if waitlisted is None:
                    position = Waitlist.query.filter_by(tournament_id=tournament.id).count() + 1
                    waitlisted = Waitlist(
                        tournament_id=tournament.id,
                        team_id=team.id,
                        position=position,
                    )
                    db.session.add(waitlisted)

        if waitlisted:
            logger.info(
                f"Team {team.id} waitlisted for tournament {tournament.id} at position {waitlisted.position}"
            )
        else:
            logger.info(f"Team {team.id} registered for tournament {tournament.id}")

        return registration, waitlisted

    def decide(
        self,
        tournament_id: int,
        registration_id: int,
        actor: User,
        action: str,
        seed: int = None,
        reason: str = None
    ) -> TournamentRegistration:
        if not actor.has_admin_role(AdminRoleType.TOURNAMENT_ADMIN):
            raise Forbidden("Forbidden: TOURNAMENT_ADMIN access required")
        if not registration_id or not action:
            raise ValidationError("Registration ID and action are required")
        if action not in DECISIONS:
            raise ValidationError("Action must be 'approve' or 'reject'")
        if seed is not None:
            try:
                seed = int(seed)
            except (TypeError, ValueError):
                raise ValidationError("Seed must be a positive integer")
            if seed < 1:
                raise ValidationError("Seed must be a positive integer")

        with atomic("Tournament is full"):
            tournament = self._lock_tournament(tournament_id)
            registration = (
                TournamentRegistration.query
                .filter_by(id=registration_id, tournament_id=tournament.id)
                .with_for_update()
                .first()
            )
            if not registration:
                raise NotFound("Registration not found")

            if registration.status != RegistrationStatus.PENDING:
                raise Conflict("Registration is not pending")

            machine = RegistrationStateMachine.for_state(registration.status)

            if action == 'reject':
                registration.status = machine.transition('reject')
                registration.rejection_reason = reason or None
            else:
                if tournament.filled >= tournament.slots:
                    raise Conflict("Tournament is full")
                held = self._held_seeds(tournament.id)
                if seed is None:
                    seed = max(held, default=0) + 1
                elif seed in held:
                    raise Conflict(f"Seed {seed} is already assigned")
                registration.status = machine.transition('approve')
                registration.seed = seed
                tournament.filled += 1

            self._leave_waitlist(tournament.id, registration.team_id)

        team = registration.team
        if action == 'reject':
            title = "Tournament Registration Rejected"
            message = f"Your registration for {tournament.name} was rejected. {reason or ''}".strip()
            note_type = NotificationType.TOURNAMENT_REGISTRATION_REJECTED
            audit_action = "REJECT_REGISTRATION"
            details = {'reason': reason}
        else:
            title = "Tournament Registration Approved"
            message = f"Your registration for {tournament.name} was approved. Seed: {seed}"
            note_type = NotificationType.TOURNAMENT_REGISTRATION_APPROVED
            audit_action = "APPROVE_REGISTRATION"
            details = {'seed': seed}

        if self.notifier and team:
            self.notifier.create(team.captain_id, note_type, title, message, f"/tournaments/{tournament.id}")
        if self.audit:
            self.audit.record(actor.id, audit_action, "TournamentRegistration", registration.id, details)

        return registration

    def withdraw(
        self,
        tournament_id: int,
        actor: User,
        team_id: int = None
    ) -> Tuple[TournamentRegistration, Optional[Waitlist]]:
        """
        Pull an approved team out of a tournament.

        Inside the cutoff before ``starts_at`` the withdrawal is recorded as a
        forfeit. The freed slot is offered to the first waitlisted team that
        has not had an offer yet.
        """
        cutoff = timedelta(hours=current_app.config.get('WITHDRAWAL_CUTOFF_HOURS', 48))
        offer_ttl = timedelta(hours=current_app.config.get('WAITLIST_OFFER_HOURS', 24))

        with atomic():
            tournament = self._lock_tournament(tournament_id)
            team = self._captained_team(actor, team_id, "You must be a team captain to withdraw")

            registration = (
                TournamentRegistration.query
                .filter_by(tournament_id=tournament.id, team_id=team.id)
                .with_for_update()
                .first()
            )
            if not registration:
                raise NotFound("Team is not registered for this tournament")
            if registration.status != RegistrationStatus.APPROVED:
                raise Conflict("Can only withdraw from approved registrations")

            now = clock.utcnow()
            action = 'forfeit' if now > tournament.starts_at - cutoff else 'withdraw'
            try:
                registration.status = RegistrationStateMachine.for_state(registration.status).transition(action)
            except TransitionError as e:
                raise Conflict(e.reason)

            tournament.filled = max(tournament.filled - 1, 0)

            offer = (
                Waitlist.query
                .filter_by(tournament_id=tournament.id, offered=False)
                .order_by(Waitlist.position.asc())
                .first()
            )
            if offer:
                offer.offered = True
                offer.offer_expires_at = now + offer_ttl

        logger.info(f"Team {team.id} {registration.status.value.lower()} from tournament {tournament.id}")

        if offer and self.notifier:
            self.notifier.create(
                offer.team.captain_id,
                NotificationType.WAITLIST_SLOT_OFFERED,
                "Tournament Slot Available",
                f"A slot has opened up for {tournament.name}. "
                f"You have {int(offer_ttl.total_seconds() // 3600)} hours to accept.",
                f"/tournaments/{tournament.id}",
            )

        return registration, offer

    def _leave_waitlist(self, tournament_id: int, team_id: int):
        """Drop a team's waitlist row and close the gap behind it."""
        entry = Waitlist.query.filter_by(tournament_id=tournament_id, team_id=team_id).first()
        if not entry:
            return

        vacated = entry.position
        db.session.delete(entry)
        db.session.flush()

        behind = (
            Waitlist.query
            .filter(Waitlist.tournament_id == tournament_id, Waitlist.position > vacated)
            .order_by(Waitlist.position.asc())
            .all()
        )
        # one row at a time, front to back, so (tournament_id, position) stays unique
        for row in behind:
            row.position -= 1
            db.session.flush()

    def list_registrations(self, tournament_id: int, status: str = None) -> List[TournamentRegistration]:
        tournament = db.session.get(Tournament, tournament_id)
        if not tournament or tournament.deleted_at is not None:
            raise NotFound("Tournament not found")

        query = TournamentRegistration.query.filter_by(tournament_id=tournament.id)
        if status:
            try:
                query = query.filter_by(status=RegistrationStatus(status))
            except ValueError:
                raise ValidationError("Invalid status")
        return query.order_by(TournamentRegistration.registered_at.asc(), TournamentRegistration.id.asc()).all()

    def list_waitlist(self, tournament_id: int) -> List[Waitlist]:
        return (
            Waitlist.query
            .filter_by(tournament_id=tournament_id)
            .order_by(Waitlist.position.asc())
            .all()
        )
