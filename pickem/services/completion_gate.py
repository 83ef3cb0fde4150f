"""
Completion Gate

The one entry point allowed to move a game from completed(unresolved) to
completed(resolved). The poller, the feed, admin actions and retries all come
through here. The move is a single conditional UPDATE on the game row; only
the caller whose UPDATE matched runs the resolution pass, everybody else is a
silent no-op. The claim, the outcome and all pick results share one
transaction, so a crashed pass leaves the game unresolved for the next
trigger to pick up.
"""

import logging
from datetime import datetime, timezone

from pickem import db, locks
from pickem.models import AdminAction, Game
from pickem.services.pick_resolver import SupersededResolution, pick_resolver
from pickem.services.signals import signal_dispatcher
from pickem.utils.locks import LockTimeout, game_lock_key
from pickem.utils.logging_config import ContextualLogger
from pickem.utils.scoring import InvalidGameData, outcome_for_game

logger = logging.getLogger(__name__)
ctx_logger = ContextualLogger(__name__)


class GameNotReady(Exception):
    """Raised when an admin recompute targets a game without final scores"""


class GameBusy(Exception):
    """Raised when an admin recompute cannot get the game lock in time"""


class CompletionGate:
    def _claim(self, game_id, rearm=False):
        """
        Atomically set the resolved marker and bump resolution_version

        Returns:
            the new resolution_version, or None if another caller holds the claim
            (or, with ``rearm``, if the game has no final score)
        """
        games = Game.__table__
        conditions = [
            games.c.id == game_id,
            games.c.status == "completed",
            games.c.home_score.isnot(None),
            games.c.away_score.isnot(None),
            games.c.spread.isnot(None),
        ]
        if not rearm:
            conditions.append(games.c.is_resolved.is_(False))

        now = datetime.now(timezone.utc)
        return db.session.execute(
            games.update()
            .where(*conditions)
            .values(
                is_resolved=True,
                resolution_version=games.c.resolution_version + 1,
                resolved_at=now,
                updated_at=now,
            )
            .returning(games.c.resolution_version)
        ).scalar()

    def _run_pass(self, game, version):
        # Scores may have changed between the first read and the claim
        db.session.refresh(game)
        outcome = outcome_for_game(game)
        return pick_resolver.resolve(game, outcome, version)

    def complete_game(self, game_id, trigger="feed"):
        """
        Resolve a completed game exactly once

        Returns:
            ResolutionReport for the caller that won the claim, None for
            everyone else (already resolved, not completed, malformed data, lock busy)
        """
        log = ctx_logger.bind(game_id=game_id, trigger=trigger)

        game = db.session.get(Game, game_id)
        if game is None:
            log.warning("Completion requested for unknown game")
            return None
        if not game.is_completed:
            log.debug(f"Game not completed (status={game.status}), nothing to resolve")
            return None
        if game.is_resolved:
            log.debug("Game already resolved, skipping")
            return None

        try:
            outcome_for_game(game)
        except InvalidGameData as e:
            # Left unresolved; the next feed update or poller sweep retries it
            log.warning(f"Skipping game with invalid score data: {e}")
            return None

        try:
            with locks.hold(game_lock_key(game_id)):
                try:
                    version = self._claim(game_id)
                    if version is None:
                        db.session.rollback()
                        log.debug("Lost completion race, another pass owns this game")
                        return None

                    log = log.bind(version=version)
                    report = self._run_pass(game, version)
                    db.session.commit()
                except (InvalidGameData, SupersededResolution) as e:
                    db.session.rollback()
                    log.warning(f"Resolution pass abandoned: {e}")
                    return None
                except Exception as e:
                    db.session.rollback()
                    log.error(f"Resolution pass failed, game left unresolved: {e}", exc_info=True)
                    return None
        except LockTimeout as e:
            # The holder resolves it, or the next poller sweep does
            log.warning(f"Game lock busy, leaving resolution to its holder: {e}")
            return None

        report.dispatch = signal_dispatcher.dispatch(report.signals)
        log.info(
            f"Game resolved: {report.resolved} picks changed, "
            f"{len(report.signals)} users touched"
        )
        return report

    def recompute_game(self, game_id, admin_user_id=None, reason=None):
        """
        Administrative re-resolution: re-arm the marker and re-run the pipeline

        Overwrites every pick result on the game with freshly computed values.

        Raises:
            GameNotReady: if the game does not exist or has no final score
            InvalidGameData: if the stored scores cannot be scored
            GameBusy: if another pass holds the game lock past LOCK_WAIT_TIMEOUT
        """
        log = ctx_logger.bind(game_id=game_id, trigger="admin")

        game = db.session.get(Game, game_id)
        if game is None:
            raise GameNotReady(f"Game {game_id} not found")
        if not game.is_completed:
            raise GameNotReady(f"Game {game_id} is not completed (status={game.status})")
        outcome_for_game(game)

        try:
            with locks.hold(game_lock_key(game_id)):
                try:
                    version = self._claim(game_id, rearm=True)
                    if version is None:
                        raise GameNotReady(f"Game {game_id} is not completed with final scores")

                    report = self._run_pass(game, version)
                    AdminAction.log_action(
                        action_type="recompute_game",
                        description=reason or f"Recomputed game {game_id}",
                        admin_user_id=admin_user_id,
                        game_id=game_id,
                        season=game.season,
                        action_metadata={
                            "version": version,
                            "outcome": report.outcome,
                            "bonus": report.bonus,
                            "picks_changed": report.resolved,
                        },
                    )
                    db.session.commit()
                except Exception:
                    db.session.rollback()
                    raise
        except LockTimeout as e:
            log.warning(f"Recompute refused, game lock busy: {e}")
            raise GameBusy(
                f"Game {game_id} is being resolved by another pass, try again shortly"
            ) from e

        report.dispatch = signal_dispatcher.dispatch(report.signals)
        log.info(f"Game recomputed at version {version}: {report.resolved} picks changed")
        return report

    def sweep(self, limit=100):
        """Resolve completed games that no trigger has resolved yet (poller)"""
        resolved = 0
        for game in Game.get_unresolved_completed(limit=limit):
            if self.complete_game(game.id, trigger="poller") is not None:
                resolved += 1
        return resolved


completion_gate = CompletionGate()
