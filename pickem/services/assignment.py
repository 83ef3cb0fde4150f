"""
Identity and assignment intake

The identity side of the system links anonymous picks to registered users
and decides whether they are validated. Any such change can move a pick from
one user's summaries to another's, so each operation signals both the
previous and the new owner.
"""

import logging

from pickem import db
from pickem.models import AdminAction, AnonymousPick, Pick
from pickem.models.pick import VALIDATION_STATES
from pickem.services.pick_resolver import change_signal
from pickem.services.signals import signal_dispatcher

logger = logging.getLogger(__name__)


def _load(pick_id, anonymous_only=False):
    pick = db.session.get(Pick, pick_id)
    if pick is None or (anonymous_only and not isinstance(pick, AnonymousPick)):
        kind = "anonymous pick" if anonymous_only else "pick"
        raise LookupError(f"No {kind} with id {pick_id}")
    return pick


def _apply(pick, mutate, action_type, description, admin_user_id=None, metadata=None):
    """Run ``mutate`` on the pick, commit, and refresh both owners' summaries"""
    before = change_signal(pick)

    try:
        mutate(pick)
        if admin_user_id is not None:
            AdminAction.log_action(
                action_type=action_type,
                description=description,
                admin_user_id=admin_user_id,
                target_user_id=pick.owner_id,
                pick_id=pick.id,
                game_id=pick.game_id,
                season=pick.season,
                action_metadata=metadata,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    after = change_signal(pick)
    logger.info(f"{description} (pick_id={pick.id})")

    # Pending picks aren't in any summary yet
    if not pick.is_resolved:
        return None

    signals = {signal for signal in (before, after) if signal is not None}
    return signal_dispatcher.dispatch(signals)


def assign_anonymous_pick(pick_id, user_id, validation_state=None, admin_user_id=None):
    """Link an anonymous pick to a registered user (optionally validating it)"""
    if validation_state is not None and validation_state not in VALIDATION_STATES:
        raise ValueError(f"Invalid validation state: {validation_state}")
    pick = _load(pick_id, anonymous_only=True)

    def mutate(p):
        p.assigned_user_id = user_id
        if validation_state is not None:
            p.validation_state = validation_state

    return _apply(
        pick,
        mutate,
        "assign_pick",
        f"Assigned anonymous pick to user {user_id}",
        admin_user_id=admin_user_id,
        metadata={"previous_user_id": pick.assigned_user_id, "user_id": user_id},
    )


def unassign_anonymous_pick(pick_id, admin_user_id=None):
    """Remove an anonymous pick's user link"""
    pick = _load(pick_id, anonymous_only=True)

    def mutate(p):
        p.assigned_user_id = None

    return _apply(
        pick,
        mutate,
        "unassign_pick",
        f"Unassigned anonymous pick from user {pick.assigned_user_id}",
        admin_user_id=admin_user_id,
        metadata={"previous_user_id": pick.assigned_user_id},
    )


def set_validation_state(pick_id, validation_state, admin_user_id=None):
    if validation_state not in VALIDATION_STATES:
        raise ValueError(f"Invalid validation state: {validation_state}")
    pick = _load(pick_id, anonymous_only=True)
    previous = pick.validation_state

    def mutate(p):
        p.validation_state = validation_state

    return _apply(
        pick,
        mutate,
        "validate_pick",
        f"Validation state {previous} -> {validation_state}",
        admin_user_id=admin_user_id,
        metadata={"previous": previous, "state": validation_state},
    )


def set_pick_visibility(pick_id, visible, admin_user_id=None):
    """Show or hide a pick (either channel) on the public leaderboards"""
    pick = _load(pick_id)

    def mutate(p):
        p.show_on_leaderboard = bool(visible)

    return _apply(
        pick,
        mutate,
        "set_visibility",
        f"Leaderboard visibility set to {bool(visible)}",
        admin_user_id=admin_user_id,
        metadata={"visible": bool(visible)},
    )
