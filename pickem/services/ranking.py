"""
Ranking Engine

Ranks are a property of a whole scope (one week, or one season), so every
run re-ranks the full scope. Competition ranking: equal keys share a rank and
the next distinct key gets 1 + the number of rows strictly above it.
"""

import logging

from sqlalchemy import distinct

from pickem import db, locks
from pickem.models import SeasonSummary, WeeklySummary
from pickem.utils.cache_utils import invalidate_leaderboard_cache
from pickem.utils.locks import rank_lock_key

logger = logging.getLogger(__name__)


def assign_competition_ranks(rows, key):
    """
    Rank rows by ``key`` descending using competition ranking (1, 2, 2, 4)

    Returns:
        list of (row, rank) in rank order
    """
    ordered = sorted(rows, key=key, reverse=True)
    ranked = []
    previous = None
    rank = 0

    for position, row in enumerate(ordered, start=1):
        value = key(row)
        if position == 1 or value != previous:
            rank = position
            previous = value
        ranked.append((row, rank))

    return ranked


def _points(row):
    return row.total_points


class RankingEngine:
    def _rank_rows(self, rows):
        changed = 0
        for row, rank in assign_competition_ranks(rows, key=_points):
            if row.rank != rank:
                row.rank = rank
                changed += 1
        return changed

    def rank_week(self, season, week):
        """Re-rank a weekly leaderboard; returns the number of rows whose rank changed"""
        with locks.hold(rank_lock_key(season, week)):
            try:
                rows = WeeklySummary.query.filter_by(season=season, week=week).all()
                changed = self._rank_rows(rows)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        # Totals may have moved even when no rank did
        invalidate_leaderboard_cache(season)
        logger.debug(f"Ranked season {season} week {week}: {len(rows)} rows, {changed} changed")
        return changed

    def rank_season(self, season):
        """Re-rank the season leaderboard; returns the number of rows whose rank changed"""
        with locks.hold(rank_lock_key(season)):
            try:
                rows = SeasonSummary.query.filter_by(season=season).all()
                changed = self._rank_rows(rows)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        # Totals may have moved even when no rank did
        invalidate_leaderboard_cache(season)
        logger.debug(f"Ranked season {season}: {len(rows)} rows, {changed} changed")
        return changed

    def rank_all(self, season):
        """Re-rank every week and the season board of a season"""
        weeks = [
            row[0]
            for row in db.session.query(distinct(WeeklySummary.week))
            .filter(WeeklySummary.season == season)
            .order_by(WeeklySummary.week)
            .all()
        ]
        changed = sum(self.rank_week(season, week) for week in weeks)
        changed += self.rank_season(season)
        return changed


ranking_engine = RankingEngine()
