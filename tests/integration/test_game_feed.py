"""
Integration tests for feed updates.
"""

import pytest

from pickem.models import WeeklySummary
from pickem.services.game_feed import UnknownGame, game_feed


class TestApplyUpdate:
    def test_in_progress_update_does_not_resolve(self, db, make_game):
        game = make_game()

        applied = game_feed.apply_update(game_id=game.id, home_score=7, away_score=3, status="in_progress")

        assert applied["status_changed"] and applied["scores_changed"]
        assert applied["resolution"] is None
        db.session.refresh(game)
        assert (game.status, game.home_score, game.away_score) == ("in_progress", 7, 3)
        assert not game.is_resolved

    def test_final_update_triggers_resolution(self, db, make_user, make_game, make_pick):
        user = make_user()
        game = make_game(spread=-3.5)
        make_pick(user, game, "home")

        applied = game_feed.apply_update(
            game_id=game.id, home_score=31, away_score=24, status="completed"
        )

        assert applied["resolution"]["version"] == 1
        assert applied["resolution"]["outcome"] == "home"
        summary = WeeklySummary.query.filter_by(user_id=user.id).one()
        assert summary.total_points == 20

    def test_lookup_by_external_id(self, db, make_game):
        game = make_game(external_id="espn-401547417")

        applied = game_feed.apply_update(external_id="espn-401547417", status="in_progress")

        assert applied["game_id"] == game.id

    def test_status_never_moves_backwards(self, db, make_game, finish_game, caplog):
        game = make_game(spread=None)
        finish_game(game, 21, 14)

        applied = game_feed.apply_update(game_id=game.id, status="in_progress")

        assert applied["status_changed"] is False
        db.session.refresh(game)
        assert game.status == "completed"
        assert "status regression" in caplog.text

    def test_score_change_after_resolution_is_stored_not_rescored(
        self, db, make_user, make_game, make_pick, resolve_game, caplog
    ):
        user = make_user()
        game = make_game(spread=-3.5)
        pick = make_pick(user, game, "home")
        resolve_game(game, 31, 24)

        applied = game_feed.apply_update(game_id=game.id, home_score=20, away_score=24)

        assert applied["scores_changed"] is True
        assert applied["resolution"] is None
        db.session.refresh(game)
        db.session.refresh(pick)
        assert (game.home_score, game.away_score) == (20, 24)
        assert game.resolution_version == 1
        assert (pick.result, pick.points_earned) == ("win", 20)
        assert "Score changed after resolution" in caplog.text

    def test_completed_without_scores_waits(self, db, make_game):
        game = make_game()

        applied = game_feed.apply_update(game_id=game.id, status="completed")

        assert applied["resolution"] is None
        db.session.refresh(game)
        assert not game.is_resolved

        applied = game_feed.apply_update(game_id=game.id, home_score=17, away_score=10)
        assert applied["resolution"]["version"] == 1

    def test_unknown_game(self, app):
        with pytest.raises(UnknownGame):
            game_feed.apply_update(game_id=999, status="completed")

    def test_invalid_status(self, make_game):
        game = make_game()

        with pytest.raises(ValueError):
            game_feed.apply_update(game_id=game.id, status="postponed")

    def test_requires_an_identifier(self, app):
        with pytest.raises(ValueError):
            game_feed.apply_update(status="completed")
