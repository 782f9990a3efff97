import logging
from datetime import timedelta
from flask import current_app

from shared import clock
from shared.state_machine import MatchStateMachine, MatchStatus
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .match_lifecycle import MatchLifecycle, parse_score
from .models import db, MatchDispute, User, AdminRoleType, NotificationType
from .transactions import atomic

logger = logging.getLogger(__name__)


class DisputeResolver:
    """
    Contesting and settling completed match results.

    The dispute window is measured from ``match.updated_at``; there is no
    separate completion timestamp, so any later edit to the match moves it.
    """

    def __init__(self, matches: MatchLifecycle, notifier=None, audit=None):
        self.matches = matches
        self.notifier = notifier
        self.audit = audit

    def window(self) -> timedelta:
        return timedelta(hours=current_app.config.get('DISPUTE_WINDOW_HOURS', 2))

    def raise_dispute(self, match_id: int, actor: User, reason: str) -> MatchDispute:
        if not reason:
            raise ValidationError("Dispute reason is required")

        window = self.window()
        with atomic("Dispute already raised for this match"):
            match = self.matches.get_match(match_id, lock=True)

            if not self.matches.is_captain(match, actor):
                raise Forbidden("Only team captains can raise disputes")

            if match.dispute is not None:
                raise Conflict("Dispute already raised for this match")

            if match.status != MatchStatus.COMPLETED:
                raise Conflict("Can only dispute completed matches")

            if clock.utcnow() - match.updated_at > window:
                hours = int(window.total_seconds() // 3600)
                raise Conflict(f"Dispute window has expired ({hours} hours after match completion)")

            dispute = MatchDispute(match=match, raised_by_id=actor.id, reason=reason)
            db.session.add(dispute)
            match.status = MatchStateMachine.for_state(match.status).transition('dispute')

        if self.notifier:
            recipients = [match.referee_id] + self.notifier.admin_user_ids()
            self.notifier.create_many(
                recipients,
                NotificationType.MATCH_DISPUTED,
                "Match Disputed",
                f"Match {match.id} has been disputed. Reason: {reason}",
                f"/matches/{match.id}",
            )

        logger.info(f"Match {match.id} disputed by user {actor.id}")
        return dispute

    def resolve(
        self,
        match_id: int,
        actor: User,
        resolution: str,
        result_changed: bool = False,
        score_a=None,
        score_b=None,
        winner_id: int = None
    ) -> MatchDispute:
        """
        Close a dispute. When ``result_changed`` the supplied score and winner
        replace the recorded result; the match always ends up COMPLETED.
        """
        if not actor.has_admin_role(AdminRoleType.TOURNAMENT_ADMIN):
            raise Forbidden("Forbidden: TOURNAMENT_ADMIN access required")
        if not resolution:
            raise ValidationError("Resolution is required")

        result_changed = bool(result_changed)
        if result_changed:
            if score_a is not None:
                score_a = parse_score(score_a, "Score A")
            if score_b is not None:
                score_b = parse_score(score_b, "Score B")

        with atomic():
            match = self.matches.get_match(match_id, lock=True)
            dispute = match.dispute
            if dispute is None:
                raise NotFound("Dispute not found")
            if dispute.is_resolved:
                raise Conflict("Dispute already resolved")
            if match.status != MatchStatus.DISPUTED:
                raise Conflict(f"Cannot resolve a dispute on a {match.status.value.lower()} match")

            if result_changed:
                if winner_id is not None and winner_id not in match.team_ids:
                    raise ValidationError("Winner must be one of the competing teams")
                if score_a is not None:
                    match.score_a = score_a
                if score_b is not None:
                    match.score_b = score_b
                if winner_id is not None:
                    match.winner_id = winner_id

            match.status = MatchStateMachine.for_state(match.status).transition('resolve')

            dispute.resolved_at = clock.utcnow()
            dispute.resolved_by_id = actor.id
            dispute.resolution = resolution
            dispute.result_changed = result_changed

        if self.notifier:
            self.notifier.create_many(
                (match.team_a.captain_id, match.team_b.captain_id),
                NotificationType.MATCH_DISPUTE_RESOLVED,
                "Dispute Resolved",
                f"Dispute for match {match.id} has been resolved. {resolution}",
                f"/matches/{match.id}",
            )
        if self.audit:
            self.audit.record(
                actor.id, "RESOLVE_DISPUTE", "MatchDispute", dispute.id,
                {'resolution': resolution, 'result_changed': result_changed}
            )

        return dispute
