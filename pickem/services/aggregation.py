"""
Aggregation Engine

Weekly and season summaries are projections of source picks. They are
rebuilt wholesale from the picks every time, never patched incrementally, so
a duplicate or stale signal does no harm and a drifted row is fixed by the
next recompute. Both submission channels go through the same code path.
"""

import logging
from collections import defaultdict

from sqlalchemy import distinct

from pickem import db, locks
from pickem.models import Pick, SeasonSummary, WeeklySummary
from pickem.utils.locks import aggregate_lock_key
from pickem.utils.logging_config import ContextualLogger

logger = logging.getLogger(__name__)
ctx_logger = ContextualLogger(__name__)


def tally_picks(picks):
    """
    Sum counters over eligible picks

    Returns:
        dict of summary counters plus the contributing channel, or None when
        there are no picks
    """
    picks = list(picks)
    if not picks:
        return None

    totals = {
        "picks_counted": 0,
        "wins": 0,
        "losses": 0,
        "pushes": 0,
        "lock_wins": 0,
        "lock_losses": 0,
        "lock_pushes": 0,
        "total_points": 0,
        "locks": 0,
    }
    channels = set()

    for pick in picks:
        channels.add(pick.channel)
        totals["picks_counted"] += 1
        totals["total_points"] += pick.points_earned

        if pick.result == "win":
            totals["wins"] += 1
        elif pick.result == "loss":
            totals["losses"] += 1
        elif pick.result == "push":
            totals["pushes"] += 1

        if pick.is_lock:
            totals["locks"] += 1
            if pick.result == "win":
                totals["lock_wins"] += 1
            elif pick.result == "loss":
                totals["lock_losses"] += 1
            elif pick.result == "push":
                totals["lock_pushes"] += 1

    totals["channel"] = "mixed" if len(channels) > 1 else channels.pop()
    return totals


class AggregationEngine:
    def eligible_picks(self, user_id, season, week=None):
        query = Pick.query.filter(
            Pick.owned_by(user_id), Pick.eligible(), Pick.season == season
        )
        if week is not None:
            query = query.filter(Pick.week == week)
        return query.order_by(Pick.id).all()

    def recompute(self, user_id, season, week):
        """
        Rebuild a user's summary for one week and for the whole season

        Returns:
            dict with "week" and "season" entries: created, updated,
            deleted or unchanged
        """
        log = ctx_logger.bind(user_id=user_id, season=season, week=week)

        with locks.hold(aggregate_lock_key(user_id, season)):
            try:
                weekly = tally_picks(self.eligible_picks(user_id, season, week))
                if weekly and weekly["locks"] > 1:
                    # Submission guarantees one lock per week; report it, don't repair it
                    log.warning(f"Lock anomaly: {weekly['locks']} counted locks in one week")

                season_totals = tally_picks(self.eligible_picks(user_id, season))

                week_change = self._upsert(
                    WeeklySummary,
                    weekly,
                    user_id=user_id,
                    season=season,
                    week=week,
                )
                season_change = self._upsert(
                    SeasonSummary, season_totals, user_id=user_id, season=season
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        log.debug(f"Summaries recomputed: week={week_change} season={season_change}")
        return {"week": week_change, "season": season_change}

    def _upsert(self, model, totals, **key):
        row = model.query.filter_by(**key).first()

        if totals is None:
            if row is None:
                return "unchanged"
            db.session.delete(row)
            return "deleted"

        if row is None:
            row = model(**key)
            row.apply_counters(totals)
            db.session.add(row)
            return "created"

        return "updated" if row.apply_counters(totals) else "unchanged"

    def weeks_for_user(self, user_id, season):
        """Every week the user has picks or a stored summary in"""
        pick_weeks = (
            db.session.query(distinct(Pick.week))
            .filter(Pick.owned_by(user_id), Pick.season == season)
            .all()
        )
        summary_weeks = (
            db.session.query(distinct(WeeklySummary.week))
            .filter(WeeklySummary.user_id == user_id, WeeklySummary.season == season)
            .all()
        )
        return sorted({row[0] for row in pick_weeks} | {row[0] for row in summary_weeks})

    def recompute_user(self, user_id, season):
        """Rebuild all of a user's summaries for a season; returns the weeks touched"""
        weeks = self.weeks_for_user(user_id, season)
        for week in weeks:
            self.recompute(user_id, season, week)

        if not weeks:
            # Still clear a season row left behind with no weekly rows
            with locks.hold(aggregate_lock_key(user_id, season)):
                try:
                    self._upsert(SeasonSummary, None, user_id=user_id, season=season)
                    db.session.commit()
                except Exception:
                    db.session.rollback()
                    raise

        logger.info(f"Recomputed user {user_id} season {season}: {len(weeks)} weeks")
        return weeks

    def project_season(self, season, weeks=None):
        """
        Fresh projection of every user's summaries from source picks

        Returns:
            (weekly, season_totals): {(user_id, week): totals}, {user_id: totals}
        """
        query = Pick.query.filter(Pick.eligible(), Pick.season == season)
        if weeks is not None:
            query = query.filter(Pick.week.in_(list(weeks)))

        by_week = defaultdict(list)
        by_user = defaultdict(list)
        for pick in query.order_by(Pick.id).all():
            by_week[(pick.owner_id, pick.week)].append(pick)
            by_user[pick.owner_id].append(pick)

        weekly = {key: tally_picks(picks) for key, picks in by_week.items()}
        season_totals = {user_id: tally_picks(picks) for user_id, picks in by_user.items()}
        return weekly, season_totals

    def reconcile(self, season):
        """
        Compare stored summaries with a fresh projection

        Returns:
            list of drift entries (empty when everything matches)
        """
        expected_weekly, expected_season = self.project_season(season)
        drift = []

        stored_weekly = {
            (row.user_id, row.week): row
            for row in WeeklySummary.query.filter_by(season=season).all()
        }
        stored_season = {
            row.user_id: row for row in SeasonSummary.query.filter_by(season=season).all()
        }

        for key in sorted(set(expected_weekly) | set(stored_weekly)):
            user_id, week = key
            drift.extend(
                _compare(expected_weekly.get(key), stored_weekly.get(key), user_id, week)
            )
        for user_id in sorted(set(expected_season) | set(stored_season)):
            drift.extend(
                _compare(expected_season.get(user_id), stored_season.get(user_id), user_id, None)
            )

        if drift:
            logger.warning(f"Season {season} summaries drifted: {len(drift)} differences")
        return drift


def _compare(expected, row, user_id, week):
    scope = {"user_id": user_id, "week": week}
    if expected is None and row is None:
        return []
    if expected is None:
        return [dict(scope, field="row", stored="present", expected="missing")]
    if row is None:
        return [dict(scope, field="row", stored="missing", expected="present")]

    differences = []
    for name in row.COUNTER_FIELDS + ("channel",):
        stored = getattr(row, name)
        if stored != expected[name]:
            differences.append(dict(scope, field=name, stored=stored, expected=expected[name]))
    return differences


aggregation_engine = AggregationEngine()
