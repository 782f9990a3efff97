import logging
from typing import List
from flask import current_app

from shared import clock
from shared.state_machine import MatchStateMachine, MatchStatus, RegistrationStatus, TransitionError
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .models import db, Match, Tournament, TournamentRegistration, User, AdminRoleType, NotificationType
from .transactions import atomic

logger = logging.getLogger(__name__)

# moves that belong to DisputeResolver
DISPUTE_ACTIONS = ('dispute', 'resolve')


def parse_score(value, label: str) -> int:
    try:
        score = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a non-negative integer")
    if score < 0:
        raise ValidationError(f"{label} must be a non-negative integer")
    return score


class MatchLifecycle:
    """Scheduling and result entry for matches between approved teams."""

    def __init__(self, notifier=None, audit=None):
        self.notifier = notifier
        self.audit = audit

    def get_match(self, match_id: int, lock: bool = False) -> Match:
        query = Match.query.filter_by(id=match_id)
        if lock:
            query = query.with_for_update()
        match = query.first()
        if not match:
            raise NotFound("Match not found")
        return match

    def list_matches(self, tournament_id: int, status: str = None) -> List[Match]:
        tournament = db.session.get(Tournament, tournament_id)
        if not tournament or tournament.deleted_at is not None:
            raise NotFound("Tournament not found")

        query = Match.query.filter_by(tournament_id=tournament.id)
        if status:
            try:
                query = query.filter_by(status=MatchStatus(status))
            except ValueError:
                raise ValidationError("Invalid status")
        return query.order_by(Match.scheduled_time.asc(), Match.id.asc()).all()

    def is_captain(self, match: Match, user: User) -> bool:
        return user.id in (match.team_a.captain_id, match.team_b.captain_id)

    def create(
        self,
        tournament_id: int,
        actor: User,
        team_a_id: int,
        team_b_id: int,
        scheduled_time,
        stage: str = None,
        best_of: int = 3,
        referee_id: int = None
    ) -> Match:
        if not actor.has_admin_role(AdminRoleType.TOURNAMENT_ADMIN):
            raise Forbidden("Forbidden: TOURNAMENT_ADMIN access required")
        if not team_a_id or not team_b_id or not scheduled_time:
            raise ValidationError("Team A, Team B, and scheduled time are required")
        if team_a_id == team_b_id:
            raise ValidationError("Teams must be different")

        try:
            scheduled = clock.parse_datetime(scheduled_time)
        except ValueError:
            raise ValidationError("Invalid scheduled time format")

        try:
            best_of = int(best_of or 3)
        except (TypeError, ValueError):
            raise ValidationError("Best of must be an odd positive number")
        if best_of < 1 or best_of % 2 == 0:
            raise ValidationError("Best of must be an odd positive number")

        with atomic():
            tournament = Tournament.query.filter_by(id=tournament_id).with_for_update().first()
            if not tournament or tournament.deleted_at is not None:
                raise NotFound("Tournament not found")

            for label, team_id in (("Team A", team_a_id), ("Team B", team_b_id)):
                registration = TournamentRegistration.query.filter_by(
                    tournament_id=tournament.id, team_id=team_id
                ).first()
                if not registration or registration.status != RegistrationStatus.APPROVED:
                    raise Conflict(f"{label} is not registered or approved")

            if referee_id is not None:
                referee = db.session.get(User, referee_id)
                if not referee or not referee.is_admin:
                    raise ValidationError("Referee must be a staff user")

            match = Match(
                tournament_id=tournament.id,
                team_a_id=team_a_id,
                team_b_id=team_b_id,
                scheduled_time=scheduled,
                stage=stage or None,
                best_of=best_of,
                referee_id=referee_id,
                status=MatchStateMachine.INITIAL_STATE,
            )
            db.session.add(match)

        when = scheduled.strftime('%Y-%m-%d %H:%M UTC')
        if self.notifier:
            for team, opponent in ((match.team_a, match.team_b), (match.team_b, match.team_a)):
                self.notifier.create(
                    team.captain_id,
                    NotificationType.MATCH_SCHEDULED,
                    "Match Scheduled",
                    f"Your match against {opponent.name} is scheduled for {when}",
                    f"/matches/{match.id}",
                )
        if self.audit:
            self.audit.record(
                actor.id, "CREATE_MATCH", "Match", match.id,
                {'team_a_id': team_a_id, 'team_b_id': team_b_id, 'scheduled_time': scheduled.isoformat()}
            )

        logger.info(f"Match {match.id} scheduled in tournament {tournament.id}: {team_a_id} vs {team_b_id}")
        return match

    def update(
        self,
        match_id: int,
        actor: User,
        status: str = None,
        score_a=None,
        score_b=None,
        winner_id: int = None
    ) -> Match:
        """
        Record live progress or the result of a match.

        Referees, tournament staff and either competing captain may update.
        Status moves follow ``MatchStateMachine``; disputes have their own
        operations. Entering COMPLETED with a winner opens the dispute window.
        """
        if status is None and score_a is None and score_b is None and winner_id is None:
            raise ValidationError("No fields to update")

        target = None
        if status is not None:
            try:
                target = MatchStatus(status)
            except ValueError:
                raise ValidationError("Invalid status")
        if score_a is not None:
            score_a = parse_score(score_a, "Score A")
        if score_b is not None:
            score_b = parse_score(score_b, "Score B")

        completed = False
        with atomic():
            match = self.get_match(match_id, lock=True)

            staff = actor.is_admin
            if not staff and not self.is_captain(match, actor):
                raise Forbidden("Only referees and team captains can update matches")

            if winner_id is not None and winner_id not in match.team_ids:
                raise ValidationError("Winner must be one of the competing teams")

            machine = MatchStateMachine.for_state(match.status)
            if machine.is_terminal:
                raise Conflict("Match has been cancelled")

            if target is not None and target != match.status:
                action = machine.action_to(target)
                if action in DISPUTE_ACTIONS:
                    raise Conflict("Disputes are raised and resolved through the dispute endpoints")
                if action == 'cancel' and not staff:
                    raise Forbidden("Only referees can cancel matches")
                try:
                    match.status = machine.transition_to(target)
                except TransitionError:
                    raise Conflict(f"Cannot change match status from {match.status.value} to {target.value}")
                completed = target == MatchStatus.COMPLETED

            result_edit = score_a is not None or score_b is not None or winner_id is not None
            if result_edit and match.status == MatchStatus.DISPUTED:
                raise Conflict("Match result is under dispute")

            if score_a is not None:
                match.score_a = score_a
            if score_b is not None:
                match.score_b = score_b
            if winner_id is not None:
                match.winner_id = winner_id

        if completed and match.winner_id:
            hours = current_app.config.get('DISPUTE_WINDOW_HOURS', 2)
            if self.notifier:
                self.notifier.create_many(
                    (match.team_a.captain_id, match.team_b.captain_id),
                    NotificationType.MATCH_RESULT_SUBMITTED,
                    "Match Result Submitted",
                    f"Match result has been submitted. You have {hours} hours to dispute if needed.",
                    f"/matches/{match.id}",
                )
            logger.info(f"Match {match.id} completed, winner {match.winner_id}")

        return match
