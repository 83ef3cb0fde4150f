"""
Integration tests for the retry queue.
"""

from datetime import timedelta

import pytest

from pickem.models import WorkItem
from pickem.services import work_queue
from pickem.services.ranking import ranking_engine


@pytest.fixture
def broken_ranking(monkeypatch):
    def fail(season, week=None):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(ranking_engine, "rank_week", fail)
    return monkeypatch


class TestEnqueue:
    def test_same_work_is_queued_once(self, app):
        first = work_queue.enqueue_work("rank_week", RuntimeError("one"), season=2024, week=3)
        second = work_queue.enqueue_work("rank_week", RuntimeError("two"), season=2024, week=3)

        assert first.id == second.id
        assert WorkItem.query.count() == 1
        assert second.dedup_key == "rank_week:2024:3"
        assert second.last_error == "RuntimeError: two"

    def test_different_scopes_are_separate(self, app):
        work_queue.enqueue_work("rank_week", season=2024, week=3)
        work_queue.enqueue_work("rank_week", season=2024, week=4)
        work_queue.enqueue_work("rank_season", season=2024)

        assert work_queue.pending_count(2024) == 3
        assert work_queue.pending_count(2023) == 0

    def test_backoff_grows_exponentially(self, app):
        app.config["RETRY_BASE_DELAY"] = 30
        app.config["RETRY_BACKOFF_FACTOR"] = 2.0

        assert work_queue.next_delay(1) == timedelta(seconds=30)
        assert work_queue.next_delay(2) == timedelta(seconds=60)
        assert work_queue.next_delay(4) == timedelta(seconds=240)


class TestProcessing:
    def test_successful_item_is_removed(self, app):
        work_queue.enqueue_work("rank_season", season=2024)

        assert work_queue.process_due() == (1, 0)
        assert WorkItem.query.count() == 0

    def test_failed_item_backs_off(self, app, broken_ranking):
        work_queue.enqueue_work("rank_week", season=2024, week=2)

        assert work_queue.process_due() == (0, 1)

        item = WorkItem.query.one()
        assert item.attempts == 1
        assert "database is locked" in item.last_error
        # Not due again until the backoff passes
        assert work_queue.due_items() == []

    def test_exhausted_item_is_kept_and_logged(self, app, broken_ranking, caplog):
        app.config["MAX_RETRY_ATTEMPTS"] = 1
        item = work_queue.enqueue_work("rank_week", season=2024, week=2)

        assert work_queue.process_item(item) is False

        assert [i.dedup_key for i in work_queue.exhausted_items()] == ["rank_week:2024:2"]
        assert "Giving up on rank_week:2024:2" in caplog.text
        assert any(record.levelname == "ERROR" for record in caplog.records)

    def test_retry_now_runs_immediately(self, app, broken_ranking):
        item = work_queue.enqueue_work("rank_week", season=2024, week=2)
        work_queue.process_due()
        assert work_queue.due_items() == []

        broken_ranking.undo()
        assert work_queue.retry_now(item.id) is True
        assert WorkItem.query.count() == 0

    def test_retry_now_unknown_item(self, app):
        with pytest.raises(ValueError):
            work_queue.retry_now(404)

    def test_failed_aggregation_is_requeued_and_recovered(
        self, db, make_user, make_game, make_pick, finish_game, monkeypatch
    ):
        from pickem.models import WeeklySummary
        from pickem.services.aggregation import aggregation_engine
        from pickem.services.completion_gate import completion_gate

        user = make_user()
        game = make_game(spread=-3.5)
        make_pick(user, game, "home")
        finish_game(game, 31, 24)

        original = aggregation_engine.recompute

        def fail(user_id, season, week):
            raise RuntimeError("aggregation down")

        monkeypatch.setattr(aggregation_engine, "recompute", fail)
        report = completion_gate.complete_game(game.id)

        assert report.dispatch.ok is False
        assert WeeklySummary.query.count() == 0
        item = WorkItem.query.filter_by(kind="aggregate").one()
        assert item.dedup_key == f"aggregate:2024:{user.id}:1"

        monkeypatch.setattr(aggregation_engine, "recompute", original)
        assert work_queue.process_due() == (1, 0)
        summary = WeeklySummary.query.filter_by(user_id=user.id).one()
        assert summary.total_points == 20
        assert summary.rank == 1
