"""
Typed change signals and their fan-out

Every write path that can change what a user's summaries should contain
(pick resolution, assignment, visibility, admin recomputes) reports it as a
UserWeekChanged signal. The dispatcher collapses duplicates, runs exactly one
aggregation per (user, season, week) and then ranks each touched scope once.
Failures are queued for retry and never undo earlier work.
"""

import logging
from dataclasses import dataclass, field

from pickem import db
from pickem.services.aggregation import aggregation_engine
from pickem.services.ranking import ranking_engine
from pickem.services.work_queue import enqueue_work
from pickem.utils.logging_config import ContextualLogger

logger = logging.getLogger(__name__)
ctx_logger = ContextualLogger(__name__)


@dataclass(frozen=True)
class UserWeekChanged:
    """User ``user_id``'s picks for ``season``/``week`` changed"""

    user_id: int
    season: int
    week: int


@dataclass(frozen=True)
class ScopeChanged:
    """A leaderboard scope needs re-ranking (``week=None`` is the season board)"""

    season: int
    week: int = None


@dataclass
class DispatchReport:
    aggregated: int = 0
    ranked: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    @property
    def ok(self):
        return not self.failed


def scopes_for(signal):
    return {ScopeChanged(signal.season, signal.week), ScopeChanged(signal.season)}


class SignalDispatcher:
    def dispatch(self, signals):
        """Aggregate then rank for a batch of change signals"""
        report = DispatchReport()
        pending = set(signals)
        scopes = set()

        for signal in sorted(pending, key=lambda s: (s.season, s.week, s.user_id)):
            log = ctx_logger.bind(user_id=signal.user_id, season=signal.season, week=signal.week)
            try:
                aggregation_engine.recompute(signal.user_id, signal.season, signal.week)
                report.aggregated += 1
            except Exception as e:
                db.session.rollback()
                log.error(f"Aggregation failed, queued for retry: {e}", exc_info=True)
                enqueue_work(
                    "aggregate",
                    error=e,
                    user_id=signal.user_id,
                    season=signal.season,
                    week=signal.week,
                )
                report.failed.append(signal)
            # Rank even after a failure so the rest of the scope converges
            scopes.update(scopes_for(signal))

        self.rank_scopes(scopes, report)
        return report

    def rank_scopes(self, scopes, report=None):
        """Rank each scope once; failures are queued rather than raised"""
        report = report or DispatchReport()

        for scope in sorted(scopes, key=lambda s: (s.season, s.week is None, s.week or 0)):
            try:
                if scope.week is None:
                    ranking_engine.rank_season(scope.season)
                else:
                    ranking_engine.rank_week(scope.season, scope.week)
                report.ranked.append(scope)
            except Exception as e:
                db.session.rollback()
                logger.error(
                    f"Ranking failed for season {scope.season} week {scope.week}, "
                    f"queued for retry: {e}",
                    exc_info=True,
                )
                if scope.week is None:
                    enqueue_work("rank_season", error=e, season=scope.season)
                else:
                    enqueue_work("rank_week", error=e, season=scope.season, week=scope.week)
                report.failed.append(scope)

        return report


signal_dispatcher = SignalDispatcher()
