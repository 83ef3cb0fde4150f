"""
Pytest fixtures and factories shared by all tests.
"""

import itertools

import pytest

from pickem import create_app
from pickem import db as _db
from pickem.models import AnonymousPick, AuthenticatedPick, Game, User

SEASON = 2024


@pytest.fixture
def app():
    """Flask app on a fresh in-memory database, with an app context pushed."""
    app = create_app("testing")

    with app.app_context():
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create a registered user."""
    counter = itertools.count(1)

    def _make(display_name=None, email=None):
        n = next(counter)
        user = User(
            display_name=display_name or f"Player {n}",
            email=email or f"player{n}@example.com",
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture
def make_game(app):
    """Create a scheduled game; teams are unique per game."""
    counter = itertools.count(1)

    def _make(season=SEASON, week=1, spread=-3.5, external_id=None):
        n = next(counter)
        game = Game(
            season=season,
            week=week,
            home_team=f"Home {n}",
            away_team=f"Away {n}",
            spread=spread,
            external_id=external_id or f"game-{n}",
        )
        _db.session.add(game)
        _db.session.commit()
        return game

    return _make


@pytest.fixture
def make_pick(app):
    """Create an authenticated pick."""

    def _make(user, game, side="home", is_lock=False, show_on_leaderboard=True):
        pick = AuthenticatedPick.create(
            user.id, game, side, is_lock=is_lock, show_on_leaderboard=show_on_leaderboard
        )
        _db.session.commit()
        return pick

    return _make


@pytest.fixture
def make_anonymous_pick(app):
    """Create an anonymous pick, assigned and validated unless told otherwise."""

    def _make(
        game,
        side="home",
        user=None,
        validation_state="auto_validated",
        is_lock=False,
        show_on_leaderboard=True,
    ):
        pick = AnonymousPick.create(
            game,
            side,
            submitter_email="anon@example.com",
            is_lock=is_lock,
            show_on_leaderboard=show_on_leaderboard,
            assigned_user_id=user.id if user else None,
            validation_state=validation_state,
        )
        _db.session.commit()
        return pick

    return _make


@pytest.fixture
def finish_game(app):
    """Record a final score and mark the game completed (without resolving it)."""

    def _finish(game, home_score, away_score):
        game.home_score = home_score
        game.away_score = away_score
        game.status = "completed"
        _db.session.commit()
        return game

    return _finish


@pytest.fixture
def resolve_game(finish_game):
    """Finish a game and run it through the completion gate."""
    from pickem.services.completion_gate import completion_gate

    def _resolve(game, home_score, away_score):
        finish_game(game, home_score, away_score)
        return completion_gate.complete_game(game.id, trigger="test")

    return _resolve
