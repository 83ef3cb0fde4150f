"""
Retry queue for downstream pipeline steps

Pick results are durable as soon as a resolution pass commits. Anything that
fails after that point (a single pick, an aggregation, a ranking) is written
here and retried by the scheduler with exponential backoff. Items that keep
failing past MAX_RETRY_ATTEMPTS stay in the table for inspection.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from pickem import db
from pickem.models import WorkItem

logger = logging.getLogger(__name__)


def _describe(error):
    if error is None:
        return None
    return f"{type(error).__name__}: {error}"[:2000]


def enqueue_work(kind, error=None, pick_id=None, user_id=None, season=None, week=None, commit=True):
    """
    Queue (or refresh) a retry for one piece of downstream work

    Args:
        kind: resolve_pick, aggregate, rank_week or rank_season
        error: Exception that caused the retry, stored as last_error
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        WorkItem
    """
    dedup_key = WorkItem.make_key(kind, pick_id=pick_id, user_id=user_id, season=season, week=week)

    item = WorkItem.query.filter_by(dedup_key=dedup_key).first()
    if item is None:
        item = WorkItem(
            kind=kind,
            dedup_key=dedup_key,
            pick_id=pick_id,
            user_id=user_id,
            season=season,
            week=week,
            attempts=0,
            next_attempt_at=datetime.now(timezone.utc),
        )
        db.session.add(item)
    item.last_error = _describe(error)

    if commit:
        try:
            db.session.commit()
        except IntegrityError:
            # Another worker queued the same key first; its row covers this failure
            db.session.rollback()
            item = WorkItem.query.filter_by(dedup_key=dedup_key).first()

    logger.info(f"Queued retry {dedup_key}")
    return item


def due_items(limit=50):
    """Work items whose next attempt is due and that still have attempts left"""
    max_attempts = current_app.config.get("MAX_RETRY_ATTEMPTS", 8)
    return (
        WorkItem.query.filter(
            WorkItem.next_attempt_at <= datetime.now(timezone.utc),
            WorkItem.attempts < max_attempts,
        )
        .order_by(WorkItem.next_attempt_at, WorkItem.id)
        .limit(limit)
        .all()
    )


def exhausted_items():
    max_attempts = current_app.config.get("MAX_RETRY_ATTEMPTS", 8)
    return WorkItem.query.filter(WorkItem.attempts >= max_attempts).order_by(WorkItem.id).all()


def next_delay(attempts):
    """Backoff before the next attempt, given how many attempts have failed"""
    base = current_app.config.get("RETRY_BASE_DELAY", 30)
    factor = current_app.config.get("RETRY_BACKOFF_FACTOR", 2.0)
    return timedelta(seconds=base * (factor ** max(attempts - 1, 0)))


def _run(item):
    from pickem.services.aggregation import aggregation_engine
    from pickem.services.pick_resolver import pick_resolver
    from pickem.services.ranking import ranking_engine
    from pickem.services.signals import ScopeChanged, signal_dispatcher, scopes_for

    if item.kind == "resolve_pick":
        signals = pick_resolver.resolve_pick(item.pick_id)
        if signals:
            signal_dispatcher.dispatch(signals)
    elif item.kind == "aggregate":
        aggregation_engine.recompute(item.user_id, item.season, item.week)
        signal = ScopeChanged(item.season, item.week)
        signal_dispatcher.rank_scopes(scopes_for(signal))
    elif item.kind == "rank_week":
        ranking_engine.rank_week(item.season, item.week)
    elif item.kind == "rank_season":
        ranking_engine.rank_season(item.season)
    else:
        raise ValueError(f"Unknown work kind: {item.kind}")


def process_item(item):
    """Run one work item; returns True if it succeeded and was removed"""
    item_id = item.id
    dedup_key = item.dedup_key

    try:
        _run(item)
    except Exception as e:
        db.session.rollback()
        item = db.session.get(WorkItem, item_id)
        if item is None:
            return False

        item.attempts += 1
        item.last_error = _describe(e)
        item.next_attempt_at = datetime.now(timezone.utc) + next_delay(item.attempts)
        db.session.commit()

        max_attempts = current_app.config.get("MAX_RETRY_ATTEMPTS", 8)
        if item.attempts >= max_attempts:
            logger.error(
                f"Giving up on {dedup_key} after {item.attempts} attempts: {item.last_error}"
            )
        else:
            logger.warning(f"Retry {dedup_key} failed (attempt {item.attempts}): {e}")
        return False

    item = db.session.get(WorkItem, item_id)
    if item is not None:
        db.session.delete(item)
        db.session.commit()
    logger.info(f"Retry {dedup_key} succeeded")
    return True


def process_due(limit=50):
    """Run every due work item; returns (succeeded, failed)"""
    succeeded = failed = 0
    for item in due_items(limit):
        if process_item(item):
            succeeded += 1
        else:
            failed += 1
    return succeeded, failed


def retry_now(item_id):
    """Reset an item's backoff (and attempt count) and run it immediately"""
    item = db.session.get(WorkItem, item_id)
    if item is None:
        raise ValueError(f"Work item {item_id} not found")

    item.attempts = 0
    item.next_attempt_at = datetime.now(timezone.utc)
    db.session.commit()
    return process_item(item)


def pending_count(season=None):
    query = WorkItem.query
    if season is not None:
        query = query.filter(WorkItem.season == season)
    return query.count()
