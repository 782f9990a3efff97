"""
Unit tests for the state machines in shared.state_machine.
Tests transitions, guards, terminal states and helper methods.
"""
import pytest
from shared.state_machine import (
    MatchStateMachine,
    MatchStatus,
    InviteStateMachine,
    InviteStatus,
    RegistrationStateMachine,
    RegistrationStatus,
    TournamentStateMachine,
    TournamentStatus,
    TransitionError,
    Transition,
    approved_teams_guard
)


class TestTransitionError:
    """Tests for TransitionError exception."""

    def test_error_attributes(self):
        """TransitionError should have from_state and to_state."""
        error = TransitionError("UPCOMING", "COMPLETED")
        assert error.from_state == "UPCOMING"
        assert error.to_state == "COMPLETED"

    def test_default_reason(self):
        """Default reason should name both states."""
        error = TransitionError("UPCOMING", "COMPLETED")
        assert "UPCOMING" in str(error)
        assert "COMPLETED" in str(error)

    def test_custom_reason(self):
        """Custom reason should be used if provided."""
        error = TransitionError("UPCOMING", "COMPLETED", "Custom error message")
        assert str(error) == "Custom error message"


class TestStateMachineBasics:
    """Tests for the shared StateMachine behaviour."""

    def test_default_initial_state(self):
        assert MatchStateMachine().state == MatchStatus.UPCOMING
        assert InviteStateMachine().state == InviteStatus.PENDING
        assert RegistrationStateMachine().state == RegistrationStatus.PENDING
        assert TournamentStateMachine().state == TournamentStatus.UPCOMING

    def test_for_state_accepts_string(self):
        """for_state should build a machine from a stored status string."""
        sm = MatchStateMachine.for_state("LIVE")
        assert sm.state == MatchStatus.LIVE

    def test_for_state_accepts_enum(self):
        sm = InviteStateMachine.for_state(InviteStatus.DECLINED)
        assert sm.state == InviteStatus.DECLINED

    def test_for_state_unknown_raises(self):
        """Unknown stored status should fail loudly rather than reset."""
        with pytest.raises(TransitionError):
            MatchStateMachine.for_state("bogus")

    def test_transition_to_target(self):
        sm = MatchStateMachine.for_state(MatchStatus.LIVE)
        assert sm.transition_to(MatchStatus.COMPLETED) == MatchStatus.COMPLETED
        assert sm.state == MatchStatus.COMPLETED

    def test_action_to(self):
        sm = MatchStateMachine.for_state(MatchStatus.COMPLETED)
        assert sm.action_to(MatchStatus.DISPUTED) == 'dispute'
        assert sm.action_to(MatchStatus.LIVE) is None

    def test_transition_to_invalid_target(self):
        sm = MatchStateMachine()
        with pytest.raises(TransitionError):
            sm.transition_to(MatchStatus.COMPLETED)

    def test_invalid_action_keeps_state(self):
        sm = InviteStateMachine()
        with pytest.raises(TransitionError):
            sm.transition('start')
        assert sm.state == InviteStatus.PENDING


class TestMatchStateMachine:
    """Tests for the match lifecycle."""

    def test_happy_path(self):
        sm = MatchStateMachine()
        assert sm.transition('start') == MatchStatus.LIVE
        assert sm.transition('complete') == MatchStatus.COMPLETED

    def test_dispute_and_resolve(self):
        sm = MatchStateMachine.for_state(MatchStatus.COMPLETED)
        assert sm.transition('dispute') == MatchStatus.DISPUTED
        assert sm.transition('resolve') == MatchStatus.COMPLETED

    def test_cannot_skip_live(self):
        sm = MatchStateMachine()
        with pytest.raises(TransitionError):
            sm.transition('complete')

    @pytest.mark.parametrize("state", [MatchStatus.UPCOMING, MatchStatus.LIVE, MatchStatus.DISPUTED])
    def test_cancel_from_non_terminal(self, state):
        sm = MatchStateMachine.for_state(state)
        assert sm.transition('cancel') == MatchStatus.CANCELLED

    def test_cannot_cancel_completed(self):
        sm = MatchStateMachine.for_state(MatchStatus.COMPLETED)
        assert not sm.can_transition('cancel')

    def test_cancelled_is_terminal(self):
        assert MatchStateMachine.for_state(MatchStatus.CANCELLED).is_terminal

    def test_completed_not_terminal(self):
        """A completed match can still be disputed."""
        sm = MatchStateMachine.for_state(MatchStatus.COMPLETED)
        assert not sm.is_terminal
        assert sm.allowed_actions == ['dispute']


class TestInviteStateMachine:
    """Tests for invites: PENDING is the only state that moves."""

    @pytest.mark.parametrize("action,target", [
        ('accept', InviteStatus.ACCEPTED),
        ('decline', InviteStatus.DECLINED),
        ('expire', InviteStatus.EXPIRED),
        ('cancel', InviteStatus.CANCELLED),
    ])
    def test_pending_transitions(self, action, target):
        assert InviteStateMachine().transition(action) == target

    @pytest.mark.parametrize("state", [
        InviteStatus.ACCEPTED, InviteStatus.DECLINED, InviteStatus.EXPIRED, InviteStatus.CANCELLED
    ])
    def test_responded_states_are_terminal(self, state):
        assert InviteStateMachine.for_state(state).is_terminal


class TestRegistrationStateMachine:

    def test_approve_and_reject(self):
        assert RegistrationStateMachine().transition('approve') == RegistrationStatus.APPROVED
        assert RegistrationStateMachine().transition('reject') == RegistrationStatus.REJECTED

    def test_reapply_after_rejection(self):
        sm = RegistrationStateMachine.for_state(RegistrationStatus.REJECTED)
        assert sm.transition('reapply') == RegistrationStatus.PENDING

    def test_withdraw_and_forfeit_only_from_approved(self):
        approved = RegistrationStateMachine.for_state(RegistrationStatus.APPROVED)
        assert set(approved.allowed_actions) == {'withdraw', 'forfeit'}
        assert not RegistrationStateMachine().can_transition('withdraw')

    def test_forfeit_is_terminal(self):
        assert RegistrationStateMachine.for_state(RegistrationStatus.FORFEITED).is_terminal


class TestTournamentStateMachine:

    def test_registration_states(self):
        assert TournamentStateMachine.for_state(TournamentStatus.UPCOMING).accepts_registrations
        assert TournamentStateMachine.for_state(TournamentStatus.OPEN).accepts_registrations
        assert not TournamentStateMachine.for_state(TournamentStatus.CLOSED).accepts_registrations
        assert not TournamentStateMachine.for_state(TournamentStatus.ONGOING).accepts_registrations

    def test_close_and_reopen(self):
        sm = TournamentStateMachine.for_state(TournamentStatus.OPEN)
        assert sm.transition('close') == TournamentStatus.CLOSED
        assert sm.transition('reopen') == TournamentStatus.OPEN

    def test_start_guard_blocks_with_too_few_teams(self):
        sm = TournamentStateMachine.for_state(TournamentStatus.CLOSED)
        with pytest.raises(TransitionError) as exc:
            sm.transition('start', {'filled': 1})
        assert "Guard condition failed" in str(exc.value)
        assert sm.state == TournamentStatus.CLOSED

    def test_start_guard_passes(self):
        sm = TournamentStateMachine.for_state(TournamentStatus.CLOSED)
        assert sm.transition('start', {'filled': 2}) == TournamentStatus.ONGOING

    def test_guard_skipped_without_context(self):
        sm = TournamentStateMachine.for_state(TournamentStatus.OPEN)
        assert sm.transition('start') == TournamentStatus.ONGOING

    def test_completed_and_cancelled_terminal(self):
        assert TournamentStateMachine.for_state(TournamentStatus.COMPLETED).is_terminal
        assert TournamentStateMachine.for_state(TournamentStatus.CANCELLED).is_terminal


class TestGuards:

    def test_approved_teams_guard(self):
        guard = approved_teams_guard(min_count=3)
        assert guard({'filled': 3})
        assert not guard({'filled': 2})
        assert not guard({})

    def test_transition_dataclass(self):
        t = Transition(MatchStatus.UPCOMING, MatchStatus.LIVE, 'start')
        assert t.guard is None
        assert t.action == 'start'
