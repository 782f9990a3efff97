from enum import Enum
from typing import Optional, Callable, List, Union
from dataclasses import dataclass


class MatchStatus(str, Enum):
    UPCOMING = "UPCOMING"
    LIVE = "LIVE"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"
    CANCELLED = "CANCELLED"


class InviteStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class RegistrationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    FORFEITED = "FORFEITED"


class TournamentStatus(str, Enum):
    UPCOMING = "UPCOMING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str
    guard: Optional[Callable] = None


class StateMachine:
    """
    Table-driven state machine.

    Subclasses declare STATES (the enum), INITIAL_STATE and TRANSITIONS.
    Every status change in the engine goes through ``transition`` so an
    illegal move fails loudly instead of being written to the database.
    """
    STATES = None
    INITIAL_STATE = None
    TRANSITIONS: List[Transition] = []

    def __init__(self, initial_state: Enum = None):
        self._state = initial_state if initial_state is not None else self.INITIAL_STATE

    @property
    def state(self) -> Enum:
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return [t.action for t in self.TRANSITIONS if t.from_state == self._state]

    @property
    def is_terminal(self) -> bool:
        return not self.allowed_actions

    def can_transition(self, action: str) -> bool:
        return action in self.allowed_actions

    def action_to(self, target: Enum) -> Optional[str]:
        """Name of the action that moves the current state to ``target``, if any."""
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.to_state == target:
                return t.action
        return None

    def transition(self, action: str, guard_context: dict = None) -> Enum:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and guard_context is not None:
                    if not t.guard(guard_context):
                        raise TransitionError(
                            self._state.value,
                            t.to_state.value,
                            f"Guard condition failed for action '{action}'"
                        )

                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    def transition_to(self, target: Enum, guard_context: dict = None) -> Enum:
        action = self.action_to(target)
        if action is None:
            raise TransitionError(self._state.value, target.value)
        return self.transition(action, guard_context)

    @classmethod
    def for_state(cls, state: Union[Enum, str, None]) -> "StateMachine":
        if state is None:
            return cls()
        try:
            return cls(initial_state=cls.STATES(state))
        except ValueError:
            raise TransitionError(str(state), "unknown", f"Unknown state '{state}'")


class MatchStateMachine(StateMachine):
    STATES = MatchStatus
    INITIAL_STATE = MatchStatus.UPCOMING
    TRANSITIONS = [
        Transition(MatchStatus.UPCOMING, MatchStatus.LIVE, "start"),
        Transition(MatchStatus.LIVE, MatchStatus.COMPLETED, "complete"),
        Transition(MatchStatus.COMPLETED, MatchStatus.DISPUTED, "dispute"),
        Transition(MatchStatus.DISPUTED, MatchStatus.COMPLETED, "resolve"),
        Transition(MatchStatus.UPCOMING, MatchStatus.CANCELLED, "cancel"),
        Transition(MatchStatus.LIVE, MatchStatus.CANCELLED, "cancel"),
        Transition(MatchStatus.DISPUTED, MatchStatus.CANCELLED, "cancel"),
    ]


class InviteStateMachine(StateMachine):
    STATES = InviteStatus
    INITIAL_STATE = InviteStatus.PENDING
    TRANSITIONS = [
        Transition(InviteStatus.PENDING, InviteStatus.ACCEPTED, "accept"),
        Transition(InviteStatus.PENDING, InviteStatus.DECLINED, "decline"),
        Transition(InviteStatus.PENDING, InviteStatus.EXPIRED, "expire"),
        Transition(InviteStatus.PENDING, InviteStatus.CANCELLED, "cancel"),
    ]


class RegistrationStateMachine(StateMachine):
    STATES = RegistrationStatus
    INITIAL_STATE = RegistrationStatus.PENDING
    TRANSITIONS = [
        Transition(RegistrationStatus.PENDING, RegistrationStatus.APPROVED, "approve"),
        Transition(RegistrationStatus.PENDING, RegistrationStatus.REJECTED, "reject"),
        Transition(RegistrationStatus.REJECTED, RegistrationStatus.PENDING, "reapply"),
        Transition(RegistrationStatus.WITHDRAWN, RegistrationStatus.PENDING, "reapply"),
        Transition(RegistrationStatus.APPROVED, RegistrationStatus.WITHDRAWN, "withdraw"),
        Transition(RegistrationStatus.APPROVED, RegistrationStatus.FORFEITED, "forfeit"),
    ]


def approved_teams_guard(min_count: int = 2):
    def guard(context: dict) -> bool:
        return context.get("filled", 0) >= min_count
    return guard


class TournamentStateMachine(StateMachine):
    STATES = TournamentStatus
    INITIAL_STATE = TournamentStatus.UPCOMING
    TRANSITIONS = [
        Transition(TournamentStatus.UPCOMING, TournamentStatus.OPEN, "open"),
        Transition(TournamentStatus.OPEN, TournamentStatus.CLOSED, "close"),
        Transition(TournamentStatus.CLOSED, TournamentStatus.OPEN, "reopen"),
        Transition(TournamentStatus.OPEN, TournamentStatus.ONGOING, "start", approved_teams_guard()),
        Transition(TournamentStatus.CLOSED, TournamentStatus.ONGOING, "start", approved_teams_guard()),
        Transition(TournamentStatus.ONGOING, TournamentStatus.COMPLETED, "complete"),
        Transition(TournamentStatus.UPCOMING, TournamentStatus.CANCELLED, "cancel"),
        Transition(TournamentStatus.OPEN, TournamentStatus.CANCELLED, "cancel"),
        Transition(TournamentStatus.CLOSED, TournamentStatus.CANCELLED, "cancel"),
        Transition(TournamentStatus.ONGOING, TournamentStatus.CANCELLED, "cancel"),
    ]

    REGISTRATION_STATES = (TournamentStatus.UPCOMING, TournamentStatus.OPEN)

    @property
    def accepts_registrations(self) -> bool:
        return self._state in self.REGISTRATION_STATES
