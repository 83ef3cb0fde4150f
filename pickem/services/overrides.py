"""
Administrative overrides

Explicit, audited requests to redo work the pipeline already did.
"""

import logging

from pickem import db
from pickem.models import AdminAction
from pickem.services.aggregation import aggregation_engine
from pickem.services.completion_gate import completion_gate
from pickem.services.signals import ScopeChanged, signal_dispatcher

logger = logging.getLogger(__name__)


def recompute_game(game_id, admin_user_id=None, reason=None):
    """Re-arm a game's resolved marker and re-run its full resolution pass"""
    return completion_gate.recompute_game(game_id, admin_user_id=admin_user_id, reason=reason)


def recompute_user_summaries(user_id, season, admin_user_id=None, reason=None):
    """
    Rebuild one user's weekly and season summaries from source picks

    Returns:
        DispatchReport for the re-ranking of every touched scope
    """
    weeks = aggregation_engine.recompute_user(user_id, season)

    AdminAction.log_action(
        action_type="recompute_user",
        description=reason or f"Recomputed summaries for user {user_id}, season {season}",
        admin_user_id=admin_user_id,
        target_user_id=user_id,
        season=season,
        action_metadata={"weeks": weeks},
    )
    db.session.commit()

    scopes = {ScopeChanged(season, week) for week in weeks}
    scopes.add(ScopeChanged(season))
    report = signal_dispatcher.rank_scopes(scopes)
    report.aggregated = len(weeks)
    logger.info(f"Admin recompute of user {user_id} season {season}: weeks {weeks}")
    return report
