from datetime import datetime, timezone

from flask import abort, current_app, jsonify, request
from sqlalchemy import text

from pickem import db
from pickem.models import Game
from pickem.routes.api import bp
from pickem.services import leaderboard_service
from pickem.utils.cache_utils import cached_route, get_cache_stats


@bp.route("/leaderboard/<int:season>")
@cached_route(key_prefix="season_leaderboard")
def season_leaderboard(season):
    """Season standings sorted by rank"""
    return leaderboard_service.season_leaderboard(season)


@bp.route("/leaderboard/<int:season>/week/<int:week>")
@cached_route(key_prefix="weekly_leaderboard")
def weekly_leaderboard(season, week):
    """Standings for a single week"""
    return leaderboard_service.weekly_leaderboard(season, week)


@bp.route("/leaderboard/<int:season>/best-finish")
def best_finish_leaderboard(season):
    """Points over the closing window of weeks (?start=&end= to override)"""
    start_week = request.args.get("start", type=int)
    end_week = request.args.get("end", type=int)
    try:
        board = leaderboard_service.best_finish_leaderboard(season, start_week, end_week)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(board)


@bp.route("/games/<int:game_id>")
def game_detail(game_id):
    """Get game details, including resolution state and pick counts"""
    game = db.session.get(Game, game_id)
    if game is None:
        abort(404)
    return jsonify(game.to_dict(include_picks_count=True))


@bp.route("/health")
def health():
    """Health check: database reachability and scheduler state"""
    from pickem.services.scheduler_service import scheduler_service

    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        current_app.logger.error(f"Health check database error: {e}")
        database = "unavailable"

    status = "healthy" if database == "ok" else "degraded"
    return (
        jsonify(
            {
                "status": status,
                "database": database,
                "scheduler": {"is_running": scheduler_service.is_running},
                "cache": get_cache_stats(),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ),
        200 if status == "healthy" else 503,
    )
