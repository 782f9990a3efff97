"""
Unit tests for RegistrationCoordinator.
Tests: register, decide, withdraw, waitlist ordering
"""
import json
from datetime import timedelta

import pytest

from shared.state_machine import RegistrationStatus, TournamentStatus
from tourney.errors import Conflict, Forbidden, NotFound, ValidationError
from tourney.models import (
    db, Waitlist, AdminAuditLog, Notification, NotificationType, GameRole, AdminRoleType,
    TeamStatus, TournamentRegistration
)
from tests.conftest import NOW


@pytest.fixture
def registrations(app):
    return app.registrations


@pytest.fixture
def ready_team(make_user, make_team, make_roster):
    """A captain with a complete five-role roster and branding."""
    def factory(ign: str):
        cap = make_user(ign)
        team = make_team(cap)
        make_roster(team, cap)
        return cap, team
    return factory


def waitlist_positions(tournament_id):
    return [(w.team_id, w.position) for w in Waitlist.query.filter_by(
        tournament_id=tournament_id).order_by(Waitlist.position).all()]


class TestRegister:
    """Tests for register."""

    def test_register_pending(self, registrations, ready_team, make_tournament, frozen_now):
        cap, team = ready_team("Cap")
        tournament = make_tournament()

        registration, waitlisted = registrations.register(tournament.id, cap)

        assert registration.status == RegistrationStatus.PENDING
        assert registration.team_id == team.id
        assert waitlisted is None
        db.session.refresh(tournament)
        assert tournament.filled == 0

    def test_upcoming_accepts_registrations(self, registrations, ready_team, make_tournament):
        cap, _ = ready_team("Cap")
        tournament = make_tournament(status=TournamentStatus.UPCOMING)
        registration, _ = registrations.register(tournament.id, cap)
        assert registration.status == RegistrationStatus.PENDING

    @pytest.mark.parametrize("status", [TournamentStatus.CLOSED, TournamentStatus.ONGOING])
    def test_not_accepting(self, registrations, ready_team, make_tournament, status):
        cap, _ = ready_team("Cap")
        tournament = make_tournament(status=status)

        with pytest.raises(Conflict) as exc:
            registrations.register(tournament.id, cap)
        assert exc.value.message == "Tournament is not accepting registrations"

    def test_deadline_passed(self, registrations, ready_team, make_tournament, frozen_now):
        cap, _ = ready_team("Cap")
        tournament = make_tournament(registration_deadline=NOW)

        with pytest.raises(Conflict) as exc:
            registrations.register(tournament.id, cap)
        assert exc.value.message == "Registration deadline has passed"

    def test_missing_role(self, registrations, make_user, make_team, make_player, make_tournament):
        """Five starters are not enough if two share a role."""
        cap = make_user("Cap")
        team = make_team(cap)
        for i, role in enumerate([GameRole.EXP, GameRole.JUNGLE, GameRole.MAGE, GameRole.MARKSMAN]):
            make_player(team, f"P{i}", role)
        make_player(team, "BenchRoam", GameRole.ROAM, is_substitute=True)

        with pytest.raises(Conflict) as exc:
            registrations.register(make_tournament().id, cap)
        assert "all 5 roles" in exc.value.message

    def test_missing_branding(self, registrations, make_user, make_team, make_roster, make_tournament):
        cap = make_user("Cap")
        team = make_team(cap, banner=None)
        make_roster(team, cap)

        with pytest.raises(Conflict) as exc:
            registrations.register(make_tournament().id, cap)
        assert "logo and banner" in exc.value.message

    @pytest.mark.parametrize("status", [TeamStatus.SUSPENDED, TeamStatus.INACTIVE])
    def test_inactive_team_rejected(self, registrations, ready_team, make_tournament, status):
        cap, team = ready_team("Cap")
        team.status = status
        db.session.commit()
        tournament = make_tournament()

        with pytest.raises(Conflict) as exc:
            registrations.register(tournament.id, cap)
        assert exc.value.message == "Only active teams can register for tournaments"
        assert TournamentRegistration.query.filter_by(tournament_id=tournament.id).count() == 0

    def test_not_a_captain(self, registrations, make_user, make_tournament):
        with pytest.raises(Forbidden):
            registrations.register(make_tournament().id, make_user("Solo"))

    def test_unknown_tournament(self, registrations, ready_team):
        cap, _ = ready_team("Cap")
        with pytest.raises(NotFound):
            registrations.register(999, cap)

    def test_duplicate_pending(self, registrations, ready_team, make_tournament):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registrations.register(tournament.id, cap)

        with pytest.raises(Conflict) as exc:
            registrations.register(tournament.id, cap)
        assert exc.value.message == "Registration is already pending"

    def test_already_approved(self, registrations, ready_team, make_tournament, approve_team):
        cap, team = ready_team("Cap")
        tournament = make_tournament()
        approve_team(tournament, team)

        with pytest.raises(Conflict) as exc:
            registrations.register(tournament.id, cap)
        assert exc.value.message == "Team is already registered and approved"

    def test_reapply_after_rejection(self, registrations, ready_team, make_tournament, admin):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        first, _ = registrations.register(tournament.id, cap)
        registrations.decide(tournament.id, first.id, admin, 'reject', reason="Missing logo")

        again, _ = registrations.register(tournament.id, cap)

        assert again.id == first.id
        assert again.status == RegistrationStatus.PENDING
        assert again.rejection_reason is None

    def test_no_reapply_after_forfeit(self, registrations, ready_team, make_tournament, approve_team):
        cap, team = ready_team("Cap")
        tournament = make_tournament()
        registration = approve_team(tournament, team)
        registration.status = RegistrationStatus.FORFEITED
        db.session.commit()

        with pytest.raises(Conflict):
            registrations.register(tournament.id, cap)

    def test_full_tournament_waitlists(self, registrations, ready_team, make_tournament, approve_team):
        """Two slots, two approved: the third team lands at waitlist position 1."""
        tournament = make_tournament(slots=2)
        for ign in ("CapA", "CapB"):
            _, team = ready_team(ign)
            approve_team(tournament, team)

        cap_c, team_c = ready_team("CapC")
        cap_d, team_d = ready_team("CapD")
        registration, waitlisted = registrations.register(tournament.id, cap_c)
        _, second = registrations.register(tournament.id, cap_d)

        assert registration.status == RegistrationStatus.PENDING
        assert waitlisted.position == 1
        assert second.position == 2
        assert waitlist_positions(tournament.id) == [(team_c.id, 1), (team_d.id, 2)]


class TestDecide:
    """Tests for decide (approve/reject)."""

    def test_approve(self, registrations, ready_team, make_tournament, admin):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registration, _ = registrations.register(tournament.id, cap)

        decided = registrations.decide(tournament.id, registration.id, admin, 'approve')

        db.session.refresh(tournament)
        assert decided.status == RegistrationStatus.APPROVED
        assert decided.seed == 1
        assert tournament.filled == 1

        note = Notification.query.filter_by(user_id=cap.id).one()
        assert note.type == NotificationType.TOURNAMENT_REGISTRATION_APPROVED

        entry = AdminAuditLog.query.filter_by(action="APPROVE_REGISTRATION").one()
        assert entry.actor_id == admin.id
        assert json.loads(entry.details) == {'seed': 1}

    def test_approve_with_seed(self, registrations, ready_team, make_tournament, admin):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registration, _ = registrations.register(tournament.id, cap)

        decided = registrations.decide(tournament.id, registration.id, admin, 'approve', seed="4")
        assert decided.seed == 4

    def test_default_seed_after_withdrawal(self, registrations, ready_team, make_tournament, approve_team,
                                           admin, frozen_now):
        """A seat freed by a withdrawal never hands out a seed still in use."""
        tournament = make_tournament(slots=4)
        cap_a, team_a = ready_team("CapA")
        _, team_b = ready_team("CapB")
        cap_c, _ = ready_team("CapC")
        approve_team(tournament, team_a)
        held = approve_team(tournament, team_b)
        registrations.withdraw(tournament.id, cap_a)

        registration, _ = registrations.register(tournament.id, cap_c)
        decided = registrations.decide(tournament.id, registration.id, admin, 'approve')

        assert held.seed == 2
        assert decided.seed == 3

    def test_explicit_seed_already_held(self, registrations, ready_team, make_tournament, approve_team, admin):
        tournament = make_tournament()
        _, team_a = ready_team("CapA")
        cap_b, _ = ready_team("CapB")
        approve_team(tournament, team_a, seed=1)
        registration, _ = registrations.register(tournament.id, cap_b)

        with pytest.raises(Conflict) as exc:
            registrations.decide(tournament.id, registration.id, admin, 'approve', seed=1)

        assert exc.value.message == "Seed 1 is already assigned"
        db.session.refresh(registration)
        db.session.refresh(tournament)
        assert registration.status == RegistrationStatus.PENDING
        assert tournament.filled == 1

    def test_reject(self, registrations, ready_team, make_tournament, admin):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registration, _ = registrations.register(tournament.id, cap)

        decided = registrations.decide(tournament.id, registration.id, admin, 'reject', reason="Roster unverified")

        db.session.refresh(tournament)
        assert decided.status == RegistrationStatus.REJECTED
        assert decided.rejection_reason == "Roster unverified"
        assert tournament.filled == 0
        entry = AdminAuditLog.query.filter_by(action="REJECT_REGISTRATION").one()
        assert json.loads(entry.details) == {'reason': "Roster unverified"}

    @pytest.mark.parametrize("role", [None, AdminRoleType.REFEREE])
    def test_requires_tournament_admin(self, registrations, ready_team, make_tournament, make_user, role):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registration, _ = registrations.register(tournament.id, cap)

        with pytest.raises(Forbidden):
            registrations.decide(tournament.id, registration.id, make_user("Judge", admin_role=role), 'approve')

    def test_super_admin_allowed(self, registrations, ready_team, make_tournament, make_user):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registration, _ = registrations.register(tournament.id, cap)
        boss = make_user("Boss", admin_role=AdminRoleType.SUPER_ADMIN)

        decided = registrations.decide(tournament.id, registration.id, boss, 'approve')
        assert decided.status == RegistrationStatus.APPROVED

    def test_not_pending(self, registrations, ready_team, make_tournament, admin):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registration, _ = registrations.register(tournament.id, cap)
        registrations.decide(tournament.id, registration.id, admin, 'approve')

        with pytest.raises(Conflict) as exc:
            registrations.decide(tournament.id, registration.id, admin, 'reject')
        assert exc.value.message == "Registration is not pending"

    @pytest.mark.parametrize("kwargs", [
        {'action': 'maybe'},
        {'action': 'approve', 'seed': 0},
        {'action': 'approve', 'seed': 'first'},
    ])
    def test_validation(self, registrations, make_tournament, admin, kwargs):
        with pytest.raises(ValidationError):
            registrations.decide(make_tournament().id, 1, admin, **kwargs)

    def test_unknown_registration(self, registrations, make_tournament, admin):
        with pytest.raises(NotFound):
            registrations.decide(make_tournament().id, 999, admin, 'approve')

    def test_capacity_checked_at_approval(self, registrations, ready_team, make_tournament, admin):
        """Three pending submissions for two slots: the third approval is refused."""
        tournament = make_tournament(slots=2)
        pending = []
        for ign in ("CapA", "CapB", "CapC"):
            cap, _ = ready_team(ign)
            registration, waitlisted = registrations.register(tournament.id, cap)
            assert waitlisted is None
            pending.append(registration)

        registrations.decide(tournament.id, pending[0].id, admin, 'approve')
        registrations.decide(tournament.id, pending[1].id, admin, 'approve')

        with pytest.raises(Conflict) as exc:
            registrations.decide(tournament.id, pending[2].id, admin, 'approve')

        db.session.refresh(tournament)
        db.session.refresh(pending[2])
        assert exc.value.message == "Tournament is full"
        assert tournament.filled == 2
        assert pending[2].status == RegistrationStatus.PENDING

    def test_reject_compacts_waitlist(self, registrations, ready_team, make_tournament, approve_team, admin):
        tournament = make_tournament(slots=1)
        _, seated = ready_team("Seated")
        approve_team(tournament, seated)

        queued = []
        for ign in ("CapB", "CapC", "CapD"):
            cap, team = ready_team(ign)
            registration, _ = registrations.register(tournament.id, cap)
            queued.append((team, registration))

        registrations.decide(tournament.id, queued[1][1].id, admin, 'reject')

        assert waitlist_positions(tournament.id) == [(queued[0][0].id, 1), (queued[2][0].id, 2)]


class TestWithdraw:
    """Tests for withdraw and waitlist offers."""

    def test_withdraw_before_cutoff(self, registrations, ready_team, make_tournament, approve_team, frozen_now):
        cap, team = ready_team("Cap")
        tournament = make_tournament()
        approve_team(tournament, team)

        registration, offer = registrations.withdraw(tournament.id, cap)

        db.session.refresh(tournament)
        assert registration.status == RegistrationStatus.WITHDRAWN
        assert offer is None
        assert tournament.filled == 0

    def test_forfeit_inside_cutoff(self, registrations, ready_team, make_tournament, approve_team, frozen_now):
        cap, team = ready_team("Cap")
        tournament = make_tournament(
            starts_at=NOW + timedelta(hours=47),
            registration_deadline=NOW - timedelta(days=1),
        )
        approve_team(tournament, team)

        registration, _ = registrations.withdraw(tournament.id, cap)
        assert registration.status == RegistrationStatus.FORFEITED

    def test_exactly_at_cutoff_is_withdrawal(self, registrations, ready_team, make_tournament, approve_team,
                                             frozen_now):
        cap, team = ready_team("Cap")
        tournament = make_tournament(
            starts_at=NOW + timedelta(hours=48),
            registration_deadline=NOW - timedelta(days=1),
        )
        approve_team(tournament, team)

        registration, _ = registrations.withdraw(tournament.id, cap)
        assert registration.status == RegistrationStatus.WITHDRAWN

    def test_slot_offered_to_waitlist_head(self, registrations, ready_team, make_tournament, approve_team,
                                           frozen_now):
        tournament = make_tournament(slots=1)
        cap_a, team_a = ready_team("CapA")
        approve_team(tournament, team_a)
        cap_b, team_b = ready_team("CapB")
        cap_c, team_c = ready_team("CapC")
        registrations.register(tournament.id, cap_b)
        registrations.register(tournament.id, cap_c)

        _, offer = registrations.withdraw(tournament.id, cap_a)

        assert offer.team_id == team_b.id
        assert offer.offered is True
        assert offer.offer_expires_at == NOW + timedelta(hours=24)
        assert Waitlist.query.filter_by(team_id=team_c.id).one().offered is False

        note = Notification.query.filter_by(user_id=cap_b.id).one()
        assert note.type == NotificationType.WAITLIST_SLOT_OFFERED

    def test_offered_team_approved_leaves_waitlist(self, registrations, ready_team, make_tournament,
                                                   approve_team, admin):
        tournament = make_tournament(slots=1)
        cap_a, team_a = ready_team("CapA")
        approve_team(tournament, team_a)
        cap_b, _ = ready_team("CapB")
        cap_c, team_c = ready_team("CapC")
        registration_b, _ = registrations.register(tournament.id, cap_b)
        registrations.register(tournament.id, cap_c)

        registrations.withdraw(tournament.id, cap_a)
        registrations.decide(tournament.id, registration_b.id, admin, 'approve')

        assert waitlist_positions(tournament.id) == [(team_c.id, 1)]

    def test_filled_never_negative(self, registrations, ready_team, make_tournament, approve_team):
        cap, team = ready_team("Cap")
        tournament = make_tournament()
        approve_team(tournament, team)
        tournament.filled = 0
        db.session.commit()

        registrations.withdraw(tournament.id, cap)

        db.session.refresh(tournament)
        assert tournament.filled == 0

    def test_not_registered(self, registrations, ready_team, make_tournament):
        cap, _ = ready_team("Cap")
        with pytest.raises(NotFound):
            registrations.withdraw(make_tournament().id, cap)

    def test_pending_cannot_withdraw(self, registrations, ready_team, make_tournament):
        cap, _ = ready_team("Cap")
        tournament = make_tournament()
        registrations.register(tournament.id, cap)

        with pytest.raises(Conflict) as exc:
            registrations.withdraw(tournament.id, cap)
        assert exc.value.message == "Can only withdraw from approved registrations"

    def test_not_a_captain(self, registrations, make_user, make_tournament):
        with pytest.raises(Forbidden):
            registrations.withdraw(make_tournament().id, make_user("Solo"))


class TestListings:

    def test_list_registrations_by_status(self, registrations, ready_team, make_tournament, approve_team):
        tournament = make_tournament()
        _, seated = ready_team("Seated")
        approve_team(tournament, seated)
        cap, _ = ready_team("Waiting")
        registrations.register(tournament.id, cap)

        assert len(registrations.list_registrations(tournament.id)) == 2
        approved = registrations.list_registrations(tournament.id, status='APPROVED')
        assert [r.team_id for r in approved] == [seated.id]

    def test_list_registrations_bad_status(self, registrations, make_tournament):
        with pytest.raises(ValidationError):
            registrations.list_registrations(make_tournament().id, status='nope')

    def test_list_registrations_unknown_tournament(self, registrations, db_session):
        with pytest.raises(NotFound):
            registrations.list_registrations(999)
