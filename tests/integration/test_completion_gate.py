"""
Integration tests for the completion gate: exactly one resolution pass per game.
"""

import threading

import pytest

from pickem import create_app
from pickem import db as _db
from pickem import locks
from pickem.models import AdminAction, AuthenticatedPick, Game, Pick, User, WeeklySummary
from pickem.services.completion_gate import GameBusy, GameNotReady, completion_gate
from pickem.services.game_feed import game_feed
from pickem.utils.locks import game_lock_key


@pytest.fixture
def short_lock_wait(app, monkeypatch):
    """Waiters on a held game lock give up after a fraction of a second"""
    monkeypatch.setattr(locks, "wait_timeout", 0.2)


class TestCompleteGame:
    def test_resolves_game_and_picks(self, db, make_user, make_game, make_pick, resolve_game):
        user = make_user()
        game = make_game(spread=-3.5)
        home_pick = make_pick(user, game, "home")

        report = resolve_game(game, 31, 24)

        assert report is not None
        assert report.version == 1
        assert report.outcome == "home"
        db.session.refresh(game)
        assert game.is_resolved
        assert game.resolution_version == 1
        assert game.outcome == "home"
        assert game.margin_bonus == 0
        db.session.refresh(home_pick)
        assert home_pick.result == "win"
        assert home_pick.points_earned == 20

    def test_second_trigger_is_silent_noop(self, db, make_user, make_game, make_pick, resolve_game):
        user = make_user()
        game = make_game()
        pick = make_pick(user, game, "home", is_lock=True)
        resolve_game(game, 45, 10)

        assert completion_gate.complete_game(game.id, trigger="poller") is None

        db.session.refresh(game)
        db.session.refresh(pick)
        assert game.resolution_version == 1
        assert pick.points_earned == 20 + 3 + 3
        summary = WeeklySummary.query.filter_by(user_id=user.id).one()
        assert summary.total_points == 26

    def test_game_not_completed_is_noop(self, db, make_game):
        game = make_game()

        assert completion_gate.complete_game(game.id) is None
        db.session.refresh(game)
        assert not game.is_resolved

    def test_unknown_game_is_noop(self, app):
        assert completion_gate.complete_game(9999) is None

    def test_missing_score_is_skipped_and_logged(self, db, make_game, caplog):
        game = make_game()
        game.status = "completed"
        game.home_score = 21
        db.session.commit()

        assert completion_gate.complete_game(game.id) is None

        db.session.refresh(game)
        assert not game.is_resolved
        assert game.resolution_version == 0
        assert "invalid score data" in caplog.text
        assert f"game_id={game.id}" in caplog.text

    def test_missing_spread_is_skipped(self, db, make_game, finish_game):
        game = make_game(spread=None)
        finish_game(game, 21, 14)

        assert completion_gate.complete_game(game.id) is None
        db.session.refresh(game)
        assert not game.is_resolved

    def test_sweep_resolves_completed_games(self, db, make_user, make_game, make_pick, finish_game):
        user = make_user()
        first = make_game()
        second = make_game()
        make_pick(user, first, "home")
        make_pick(user, second, "away")
        finish_game(first, 31, 24)
        finish_game(second, 10, 30)

        assert completion_gate.sweep() == 2
        assert completion_gate.sweep() == 0

    def test_busy_game_lock_is_noop(
        self, db, make_user, make_game, make_pick, finish_game, short_lock_wait, caplog
    ):
        user = make_user()
        game = make_game()
        pick = make_pick(user, game, "home")
        finish_game(game, 31, 24)

        with locks.hold(game_lock_key(game.id)):
            assert completion_gate.complete_game(game.id, trigger="poller") is None

        db.session.refresh(game)
        db.session.refresh(pick)
        assert not game.is_resolved
        assert pick.result == "pending"
        assert "lock busy" in caplog.text
        assert f"game_id={game.id}" in caplog.text

        # The next trigger picks it up once the holder is gone
        assert completion_gate.complete_game(game.id, trigger="poller").version == 1

    def test_sweep_continues_past_busy_game(
        self, db, make_user, make_game, make_pick, finish_game, short_lock_wait
    ):
        user = make_user()
        busy = make_game()
        free = make_game()
        make_pick(user, busy, "home")
        make_pick(user, free, "home")
        finish_game(busy, 31, 24)
        finish_game(free, 31, 24)

        with locks.hold(game_lock_key(busy.id)):
            assert completion_gate.sweep() == 1

        db.session.refresh(busy)
        db.session.refresh(free)
        assert free.is_resolved
        assert not busy.is_resolved
        assert completion_gate.sweep() == 1

    def test_feed_update_survives_busy_game_lock(self, db, make_game, short_lock_wait):
        game = make_game()

        with locks.hold(game_lock_key(game.id)):
            applied = game_feed.apply_update(
                game_id=game.id, home_score=31, away_score=24, status="completed"
            )

        assert applied["resolution"] is None
        db.session.refresh(game)
        assert (game.home_score, game.away_score, game.status) == (31, 24, "completed")
        assert not game.is_resolved


class TestRecomputeGame:
    def test_recompute_applies_corrected_score(
        self, db, make_user, make_game, make_pick, resolve_game
    ):
        user = make_user()
        game = make_game(spread=-3)
        home_pick = make_pick(user, game, "home")
        away_pick = make_pick(user, game, "away")
        resolve_game(game, 27, 24)  # push

        # A late correction is stored but not re-scored until an admin asks
        game_feed.apply_update(game_id=game.id, home_score=31, away_score=24)
        db.session.refresh(home_pick)
        assert home_pick.result == "push"

        report = completion_gate.recompute_game(game.id, reason="stat correction")

        assert report.version == 2
        db.session.refresh(game)
        db.session.refresh(home_pick)
        db.session.refresh(away_pick)
        assert game.outcome == "home"
        assert game.resolution_version == 2
        assert (home_pick.result, home_pick.points_earned) == ("win", 20)
        assert (away_pick.result, away_pick.points_earned) == ("loss", 0)

        summary = WeeklySummary.query.filter_by(user_id=user.id, week=1).one()
        assert summary.total_points == 20
        assert (summary.wins, summary.losses, summary.pushes) == (1, 1, 0)

        action = AdminAction.query.filter_by(action_type="recompute_game").one()
        assert action.game_id == game.id
        assert action.action_description == "stat correction"

    def test_recompute_unchanged_game_is_idempotent(
        self, db, make_user, make_game, make_pick, resolve_game
    ):
        user = make_user()
        game = make_game(spread=-10)
        pick = make_pick(user, game, "home", is_lock=True)
        resolve_game(game, 45, 10)
        before = (pick.result, pick.points_earned)

        report = completion_gate.recompute_game(game.id)

        db.session.refresh(pick)
        assert (pick.result, pick.points_earned) == before
        assert report.resolved == 0
        assert report.unchanged == 1

    def test_recompute_requires_final_score(self, make_game):
        game = make_game()

        with pytest.raises(GameNotReady):
            completion_gate.recompute_game(game.id)

    def test_recompute_unknown_game(self, app):
        with pytest.raises(GameNotReady):
            completion_gate.recompute_game(12345)

    def test_recompute_refused_while_game_lock_held(
        self, db, make_user, make_game, make_pick, resolve_game, short_lock_wait
    ):
        game = make_game()
        make_pick(make_user(), game, "home")
        resolve_game(game, 31, 24)

        with locks.hold(game_lock_key(game.id)):
            with pytest.raises(GameBusy, match="try again"):
                completion_gate.recompute_game(game.id)

        db.session.refresh(game)
        assert game.resolution_version == 1
        assert AdminAction.query.filter_by(action_type="recompute_game").count() == 0


class TestConcurrentTriggers:
    """Many triggers racing on one game against a shared file database."""

    @pytest.fixture
    def file_app(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_DATABASE_URL", f"sqlite:///{tmp_path / 'race.db'}")
        app = create_app("testing")
        yield app
        with app.app_context():
            _db.session.remove()
            _db.drop_all()
            _db.engine.dispose()

    def test_simultaneous_triggers_resolve_once(self, file_app):
        with file_app.app_context():
            users = [User(display_name=f"Racer {n}") for n in range(3)]
            game = Game(
                season=2024, week=3, home_team="Home", away_team="Away", spread=-10.0
            )
            _db.session.add_all(users + [game])
            _db.session.commit()
            for user in users:
                AuthenticatedPick.create(user.id, game, "home", is_lock=True)
            _db.session.commit()

            game.home_score = 45
            game.away_score = 10
            game.status = "completed"
            _db.session.commit()
            game_id = game.id
            user_ids = [user.id for user in users]

        workers = 8
        barrier = threading.Barrier(workers)
        results = []
        errors = []

        def trigger(n):
            try:
                with file_app.app_context():
                    barrier.wait(5)
                    report = completion_gate.complete_game(game_id, trigger=f"worker-{n}")
                    results.append(report.version if report else None)
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [threading.Thread(target=trigger, args=(n,)) for n in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert errors == []
        assert sorted(results, key=lambda v: v is None) == [1] + [None] * (workers - 1)

        with file_app.app_context():
            game = _db.session.get(Game, game_id)
            assert game.resolution_version == 1
            picks = Pick.query.filter_by(game_id=game_id).all()
            assert [pick.points_earned for pick in picks] == [26, 26, 26]
            for user_id in user_ids:
                summary = WeeklySummary.query.filter_by(user_id=user_id, week=3).one()
                assert summary.total_points == 26
                assert summary.rank == 1
