"""
Pick Resolver

Applies a game's computed outcome to every pick on that game, from both
submission channels, in the transaction that claimed the game. Each pick is
written inside its own SAVEPOINT so a single bad row is isolated, queued for
retry, and does not stop its siblings.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pickem import db, locks
from pickem.models import Game, Pick
from pickem.services.signals import UserWeekChanged
from pickem.services.work_queue import enqueue_work
from pickem.utils.locks import game_lock_key
from pickem.utils.logging_config import ContextualLogger
from pickem.utils.scoring import Outcome, score_pick

logger = logging.getLogger(__name__)
ctx_logger = ContextualLogger(__name__)


class SupersededResolution(Exception):
    """The game was re-claimed by a newer pass before this one wrote its outcome"""


@dataclass
class ResolutionReport:
    game_id: int
    version: int
    outcome: str
    bonus: int
    resolved: int = 0
    unchanged: int = 0
    failed: list = field(default_factory=list)  # pick ids
    signals: set = field(default_factory=set)
    dispatch: object = None

    def to_dict(self):
        return {
            "game_id": self.game_id,
            "version": self.version,
            "outcome": self.outcome,
            "bonus": self.bonus,
            "resolved": self.resolved,
            "unchanged": self.unchanged,
            "failed": list(self.failed),
            "users_touched": len(self.signals),
        }


def stored_outcome(game):
    """Outcome recorded on a resolved game (None if it has none yet)"""
    if not game.is_resolved or game.outcome is None:
        return None
    return Outcome(
        covering_side=game.outcome, bonus=game.margin_bonus or 0, adjusted_margin=None
    )


def change_signal(pick):
    owner_id = pick.owner_id
    if owner_id is None:
        return None
    return UserWeekChanged(user_id=owner_id, season=pick.season, week=pick.week)


class PickResolver:
    def resolve(self, game, outcome, version):
        """
        Write ``outcome`` to ``game`` and score all of its picks.

        Must run inside the transaction holding the completion claim for
        ``version``; the caller commits.

        Raises:
            SupersededResolution: if the game's resolution_version moved on
        """
        log = ctx_logger.bind(game_id=game.id, version=version)
        now = datetime.now(timezone.utc)

        games = Game.__table__
        written = db.session.execute(
            games.update()
            .where(games.c.id == game.id, games.c.resolution_version == version)
            .values(
                outcome=outcome.covering_side,
                margin_bonus=outcome.bonus,
                resolved_at=now,
                updated_at=now,
            )
        )
        if written.rowcount != 1:
            raise SupersededResolution(f"Game {game.id} is past resolution version {version}")

        report = ResolutionReport(
            game_id=game.id, version=version, outcome=outcome.covering_side, bonus=outcome.bonus
        )

        picks = Pick.query.filter(Pick.game_id == game.id).order_by(Pick.id).all()
        for pick in picks:
            pick_id = pick.id
            try:
                with db.session.begin_nested():
                    changed = self._apply(pick, outcome, now)
            except Exception as e:
                log.bind(pick_id=pick_id).error(
                    f"Failed to resolve pick, queued for retry: {e}", exc_info=True
                )
                enqueue_work(
                    "resolve_pick", error=e, pick_id=pick_id, season=game.season, commit=False
                )
                report.failed.append(pick_id)
                continue

            if changed:
                report.resolved += 1
            else:
                report.unchanged += 1

            signal = change_signal(pick)
            if signal is not None:
                report.signals.add(signal)

        log.info(
            f"Resolved game: outcome={outcome.covering_side} bonus={outcome.bonus} "
            f"picks={len(picks)} changed={report.resolved} failed={len(report.failed)}"
        )
        return report

    def _apply(self, pick, outcome, now):
        result, points = score_pick(pick.selected_side, pick.is_lock, outcome)
        if pick.result == result and pick.points_earned == points:
            return False

        pick.result = result
        pick.points_earned = points
        pick.resolved_at = now
        return True

    def resolve_pick(self, pick_id):
        """
        Re-score a single pick from its game's stored outcome (retry path)

        Returns:
            set of UserWeekChanged signals (empty if nothing to do)
        """
        pick = db.session.get(Pick, pick_id)
        if pick is None:
            logger.warning(f"Pick {pick_id} no longer exists, dropping retry")
            return set()

        with locks.hold(game_lock_key(pick.game_id)):
            game = db.session.get(Game, pick.game_id)
            db.session.refresh(game)
            outcome = stored_outcome(game)
            if outcome is None:
                # Game was re-armed or never resolved; the next pass covers this pick
                logger.info(f"Game {pick.game_id} has no stored outcome, skipping pick {pick_id}")
                return set()

            try:
                self._apply(pick, outcome, datetime.now(timezone.utc))
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        signal = change_signal(pick)
        return {signal} if signal is not None else set()


pick_resolver = PickResolver()
