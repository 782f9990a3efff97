"""
Pytest configuration and fixtures for tourney tests.

Unit tests call the coordinators directly inside the app context opened by
``db_session``. Integration tests go through the Flask test client without
holding an app context, so every request loads its own session user.
"""
import os
import sys
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from tourney.app import create_app
from tourney.models import (
    db, User, Team, Player, Tournament, TournamentRegistration, Match,
    GameRole, AdminRoleType, UserStatus
)
from shared import clock
from shared.state_machine import TournamentStatus, RegistrationStatus, MatchStatus

NOW = datetime(2025, 3, 1, 12, 0, 0)
ALL_ROLES = [GameRole.EXP, GameRole.JUNGLE, GameRole.MAGE, GameRole.MARKSMAN, GameRole.ROAM]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()


def _wipe_tables():
    db.session.remove()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


@pytest.fixture(scope='function')
def db_session(app):
    """App context with empty tables, for tests that call services directly."""
    with app.app_context():
        _wipe_tables()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def client(app):
    """Create test client over empty tables."""
    with app.app_context():
        _wipe_tables()
    return app.test_client()


@pytest.fixture
def frozen_now(mocker):
    """Pin the engine clock to NOW; returns a setter for moving it."""
    patched = mocker.patch('shared.clock.utcnow', return_value=NOW)

    def move_to(when: datetime):
        patched.return_value = when
        return when

    return move_to


# ==================== Model factories ====================

@pytest.fixture
def make_user(db_session):
    def factory(ign: str, admin_role: AdminRoleType = None, status: UserStatus = UserStatus.ACTIVE, **kwargs):
        user = User(
            session_id=kwargs.pop('session_id', uuid.uuid4().hex),
            ign=ign,
            admin_role=admin_role,
            status=status,
            **kwargs
        )
        db.session.add(user)
        db.session.commit()
        return user
    return factory


@pytest.fixture
def make_team(db_session):
    def factory(captain: User, name: str = None, tag: str = None, logo: str = 'logo.png',
                banner: str = 'banner.png'):
        suffix = uuid.uuid4().hex[:4].upper()
        team = Team(
            name=name or f"Team {suffix}",
            tag=tag or suffix,
            region="Accra",
            logo=logo,
            banner=banner,
            captain_id=captain.id,
        )
        db.session.add(team)
        db.session.commit()
        return team
    return factory


@pytest.fixture
def make_player(db_session):
    def factory(team: Team, ign: str, role: GameRole, is_substitute: bool = False,
                user: User = None, created_at: datetime = None):
        player = Player(
            team_id=team.id,
            user_id=user.id if user else None,
            ign=ign,
            role=role,
            is_substitute=is_substitute,
        )
        if created_at is not None:
            player.created_at = created_at
        db.session.add(player)
        db.session.commit()
        return player
    return factory


@pytest.fixture
def make_roster(make_player):
    """Five starters covering every role; the first one is the captain's own player row."""
    def factory(team: Team, captain: User = None, subs: int = 0, start: datetime = None):
        start = start or clock.utcnow()
        players = []
        for i, role in enumerate(ALL_ROLES):
            players.append(make_player(
                team,
                ign=f"{team.tag}_{role.value[:3]}",
                role=role,
                user=captain if i == 0 else None,
                created_at=start + timedelta(minutes=i),
            ))
        for i in range(subs):
            players.append(make_player(
                team,
                ign=f"{team.tag}_SUB{i}",
                role=ALL_ROLES[i % len(ALL_ROLES)],
                is_substitute=True,
                created_at=start + timedelta(minutes=10 + i),
            ))
        return players
    return factory


@pytest.fixture
def make_tournament(db_session):
    def factory(slots: int = 8, status: TournamentStatus = TournamentStatus.OPEN,
                starts_at: datetime = None, registration_deadline: datetime = None, filled: int = 0):
        tournament = Tournament(
            name=f"Cup {uuid.uuid4().hex[:6]}",
            format="single_elimination",
            starts_at=starts_at or clock.utcnow() + timedelta(days=14),
            registration_deadline=registration_deadline or clock.utcnow() + timedelta(days=7),
            slots=slots,
            filled=filled,
            status=status,
        )
        db.session.add(tournament)
        db.session.commit()
        return tournament
    return factory


@pytest.fixture
def approve_team(db_session):
    """Seat a team directly as APPROVED, consuming a slot."""
    def factory(tournament: Tournament, team: Team, seed: int = None):
        tournament.filled += 1
        registration = TournamentRegistration(
            tournament_id=tournament.id,
            team_id=team.id,
            status=RegistrationStatus.APPROVED,
            seed=seed or tournament.filled,
        )
        db.session.add(registration)
        db.session.commit()
        return registration
    return factory


@pytest.fixture
def make_match(db_session):
    def factory(tournament: Tournament, team_a: Team, team_b: Team,
                status: MatchStatus = MatchStatus.UPCOMING, referee: User = None, **kwargs):
        match = Match(
            tournament_id=tournament.id,
            team_a_id=team_a.id,
            team_b_id=team_b.id,
            scheduled_time=kwargs.pop('scheduled_time', clock.utcnow() + timedelta(days=1)),
            referee_id=referee.id if referee else None,
            status=status,
            **kwargs
        )
        db.session.add(match)
        db.session.commit()
        return match
    return factory


# ==================== Common actors ====================

@pytest.fixture
def captain(make_user):
    return make_user("CaptainOne")


@pytest.fixture
def team(make_team, captain):
    return make_team(captain, name="Accra Lions", tag="ACL")


@pytest.fixture
def admin(make_user):
    return make_user("AdminUser", admin_role=AdminRoleType.TOURNAMENT_ADMIN)


@pytest.fixture
def referee(make_user):
    return make_user("RefUser", admin_role=AdminRoleType.REFEREE)


@pytest.fixture
def pairing(make_user, make_team, make_tournament, approve_team, captain, team):
    """Two approved teams in one open tournament."""
    cap_b = make_user("CaptainTwo")
    team_b = make_team(cap_b, name="Kumasi Kings", tag="KKG")
    tournament = make_tournament()
    approve_team(tournament, team)
    approve_team(tournament, team_b)
    return SimpleNamespace(tournament=tournament, team_a=team, team_b=team_b, cap_a=captain, cap_b=cap_b)


# ==================== HTTP helpers ====================

@pytest.fixture
def seed_user(app, client):
    """Create a user outside any request and return its id, ign and auth headers."""
    def factory(ign: str, admin_role: AdminRoleType = None):
        with app.app_context():
            user = User(session_id=uuid.uuid4().hex, ign=ign, admin_role=admin_role)
            db.session.add(user)
            db.session.commit()
            return SimpleNamespace(
                id=user.id,
                ign=user.ign,
                headers={'X-Session-Id': user.session_id},
            )
    return factory


@pytest.fixture
def seed_tournament(app, client):
    def factory(slots: int = 8, status: TournamentStatus = TournamentStatus.OPEN):
        with app.app_context():
            tournament = Tournament(
                name="Integration Cup",
                starts_at=clock.utcnow() + timedelta(days=14),
                registration_deadline=clock.utcnow() + timedelta(days=7),
                slots=slots,
                status=status,
            )
            db.session.add(tournament)
            db.session.commit()
            return tournament.id
    return factory
