"""
Integration tests for the read API.
"""


class TestLeaderboards:
    def test_season_board_sorted_by_rank(self, client, make_user, make_game, make_pick, resolve_game):
        low, high = make_user("Low"), make_user("High")
        game = make_game(spread=-3.5)
        make_pick(low, game, "away")
        make_pick(high, game, "home", is_lock=True)
        resolve_game(game, 45, 10)

        response = client.get("/api/leaderboard/2024")

        assert response.status_code == 200
        data = response.get_json()
        assert data["season"] == 2024
        assert data["pending_updates"] is False
        assert data["computed_at"] is not None
        assert [row["display_name"] for row in data["rows"]] == ["High", "Low"]
        assert [row["rank"] for row in data["rows"]] == [1, 2]
        assert data["rows"][0]["total_points"] == 20 + 5 + 5

    def test_weekly_board(self, client, make_user, make_game, make_pick, resolve_game):
        user = make_user()
        make_pick(user, make_game(week=1), "home")
        week2 = make_game(week=2)
        make_pick(user, week2, "home")
        resolve_game(week2, 31, 24)

        data = client.get("/api/leaderboard/2024/week/2").get_json()

        assert data["week"] == 2
        assert [row["user_id"] for row in data["rows"]] == [user.id]
        assert client.get("/api/leaderboard/2024/week/1").get_json()["rows"] == []

    def test_pending_updates_while_game_unresolved(self, client, make_game, finish_game):
        finish_game(make_game(spread=None), 21, 14)

        data = client.get("/api/leaderboard/2024").get_json()

        assert data["pending_updates"] is True

    def test_pending_updates_while_retry_queued(self, client):
        from pickem.services.work_queue import enqueue_work

        enqueue_work("rank_season", season=2024)

        assert client.get("/api/leaderboard/2024").get_json()["pending_updates"] is True

    def test_exhausted_retry_is_not_pending(self, app, db, client):
        from pickem.services.work_queue import enqueue_work

        app.config["MAX_RETRY_ATTEMPTS"] = 2
        item = enqueue_work("rank_season", season=2024)
        item.attempts = 2
        db.session.commit()

        assert client.get("/api/leaderboard/2024").get_json()["pending_updates"] is False

    def test_board_refreshes_after_new_resolution(
        self, client, make_user, make_game, make_pick, resolve_game
    ):
        user = make_user()
        first = make_game()
        make_pick(user, first, "home")
        resolve_game(first, 31, 24)
        assert client.get("/api/leaderboard/2024").get_json()["rows"][0]["total_points"] == 20

        second = make_game()
        make_pick(user, second, "home")
        resolve_game(second, 31, 24)

        assert client.get("/api/leaderboard/2024").get_json()["rows"][0]["total_points"] == 40

    def test_best_finish_window(self, client, make_user, make_game, make_pick, resolve_game):
        early, late = make_user("Early"), make_user("Late")
        for week, user in ((10, early), (10, early), (11, late), (14, late), (15, early)):
            game = make_game(week=week)
            make_pick(user, game, "home")
            resolve_game(game, 31, 24)

        data = client.get("/api/leaderboard/2024/best-finish").get_json()

        assert (data["start_week"], data["end_week"]) == (11, 14)
        assert [(row["display_name"], row["total_points"], row["rank"]) for row in data["rows"]] == [
            ("Late", 40, 1)
        ]

        data = client.get("/api/leaderboard/2024/best-finish?start=10&end=15").get_json()
        assert [row["total_points"] for row in data["rows"]] == [60, 40]

    def test_best_finish_explicit_week_zero(self, client, make_user, make_game, make_pick, resolve_game):
        user = make_user()
        preseason = make_game(week=0)
        make_pick(user, preseason, "home")
        resolve_game(preseason, 31, 24)

        data = client.get("/api/leaderboard/2024/best-finish?start=0&end=0").get_json()

        assert (data["start_week"], data["end_week"]) == (0, 0)
        assert [row["total_points"] for row in data["rows"]] == [20]

    def test_best_finish_bad_window(self, client):
        response = client.get("/api/leaderboard/2024/best-finish?start=14&end=11")

        assert response.status_code == 400
        assert "error" in response.get_json()


class TestGames:
    def test_game_detail(self, client, make_user, make_game, make_pick, make_anonymous_pick, resolve_game):
        game = make_game(spread=-3)
        make_pick(make_user(), game, "home", is_lock=True)
        make_anonymous_pick(game, "away")
        resolve_game(game, 27, 24)

        data = client.get(f"/api/games/{game.id}").get_json()

        assert data["is_resolved"] is True
        assert data["outcome"] == "push"
        assert data["picks_count"] == {"home": 1, "away": 1, "locks": 1, "total": 2}

    def test_unknown_game_is_json_404(self, client):
        response = client.get("/api/games/4040")

        assert response.status_code == 404
        assert response.get_json() == {"error": "Resource not found"}


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["database"] == "ok"
        assert data["scheduler"]["is_running"] is False
        assert data["cache"]["type"] == "SimpleCache"
