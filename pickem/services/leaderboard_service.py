"""
Leaderboard reads

Served straight from the summary rows; nothing here waits on the scoring
pipeline. Each board says when it was last computed and whether work for the
season is still outstanding, so a reader can tell a settled board from one
that is catching up.
"""

from flask import current_app
from sqlalchemy import func, or_

from pickem import db
from pickem.models import Game, SeasonSummary, User, WeeklySummary, WorkItem
from pickem.services.aggregation import aggregation_engine
from pickem.services.ranking import assign_competition_ranks


def _isoformat(value):
    return value.isoformat() if value else None


def _percentage(wins, losses):
    decided = wins + losses
    if decided == 0:
        return 0.0
    return round(wins / decided * 100, 1)


def has_pending_updates(season):
    """True while completed games or live retries for the season are outstanding"""
    unresolved = Game.query.filter(
        Game.season == season, Game.status == "completed", Game.is_resolved.is_(False)
    ).count()
    if unresolved:
        return True
    # Exhausted items are never retried again; they only show up in `work list`
    max_attempts = current_app.config.get("MAX_RETRY_ATTEMPTS", 8)
    return (
        WorkItem.query.filter(
            or_(WorkItem.season == season, WorkItem.season.is_(None)),
            WorkItem.attempts < max_attempts,
        ).count()
        > 0
    )


def _ordered(query, model):
    # Unranked rows (written since the last ranking run) sort last
    return query.order_by(
        model.rank.is_(None), model.rank, model.total_points.desc(), model.user_id
    ).all()


def _board(rows, model, **scope):
    computed_at = (
        db.session.query(func.max(model.updated_at))
        .filter(*[getattr(model, name) == value for name, value in scope.items()])
        .scalar()
    )
    data = dict(scope)
    data.update(
        {
            "computed_at": _isoformat(computed_at),
            "pending_updates": has_pending_updates(scope["season"]),
            "rows": [row.to_dict() for row in rows],
        }
    )
    return data


def weekly_leaderboard(season, week):
    query = WeeklySummary.query.filter_by(season=season, week=week)
    return _board(_ordered(query, WeeklySummary), WeeklySummary, season=season, week=week)


def season_leaderboard(season):
    query = SeasonSummary.query.filter_by(season=season)
    return _board(_ordered(query, SeasonSummary), SeasonSummary, season=season)


def _best_finish_key(entry):
    return (entry["total_points"], entry["win_percentage"], entry["lock_win_percentage"])


def best_finish_leaderboard(season, start_week=None, end_week=None):
    """
    Points over a closing window of weeks, computed from source picks

    Ties on points are broken by win percentage, then lock win percentage.
    """
    if start_week is None:
        start_week = current_app.config.get("BEST_FINISH_START_WEEK", 11)
    if end_week is None:
        end_week = current_app.config.get("BEST_FINISH_END_WEEK", 14)
    if start_week > end_week:
        raise ValueError(f"Invalid week window {start_week}-{end_week}")

    _, totals = aggregation_engine.project_season(season, weeks=range(start_week, end_week + 1))
    users = {}
    if totals:
        users = {user.id: user for user in User.query.filter(User.id.in_(list(totals))).all()}

    entries = []
    for user_id, tally in totals.items():
        user = users.get(user_id)
        entries.append(
            {
                "user_id": user_id,
                "display_name": user.display_name if user else None,
                "total_points": tally["total_points"],
                "wins": tally["wins"],
                "losses": tally["losses"],
                "pushes": tally["pushes"],
                "lock_wins": tally["lock_wins"],
                "lock_losses": tally["lock_losses"],
                "lock_pushes": tally["lock_pushes"],
                "channel": tally["channel"],
                "win_percentage": _percentage(tally["wins"], tally["losses"]),
                "lock_win_percentage": _percentage(tally["lock_wins"], tally["lock_losses"]),
            }
        )

    rows = []
    for entry, rank in assign_competition_ranks(entries, key=_best_finish_key):
        entry["rank"] = rank
        rows.append(entry)

    return {
        "season": season,
        "start_week": start_week,
        "end_week": end_week,
        "pending_updates": has_pending_updates(season),
        "rows": rows,
    }
