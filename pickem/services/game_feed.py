"""
Game feed intake

Receives score and status updates from whatever feeds game data into the
system and hands completed games to the completion gate. Status only moves
forward. Scores that change after a game was resolved are stored but not
re-scored; that takes an explicit admin recompute.
"""

import logging

from pickem import db
from pickem.models import Game
from pickem.models.game import GAME_STATUSES
from pickem.services.completion_gate import completion_gate
from pickem.utils.logging_config import ContextualLogger

logger = logging.getLogger(__name__)
ctx_logger = ContextualLogger(__name__)

STATUS_ORDER = {status: index for index, status in enumerate(GAME_STATUSES)}


class UnknownGame(LookupError):
    pass


class GameFeed:
    def find_game(self, game_id=None, external_id=None):
        if game_id is not None:
            game = db.session.get(Game, game_id)
        elif external_id is not None:
            game = Game.query.filter_by(external_id=external_id).first()
        else:
            raise ValueError("game_id or external_id is required")

        if game is None:
            raise UnknownGame(f"No game for id={game_id} external_id={external_id}")
        return game

    def apply_update(
        self, game_id=None, external_id=None, home_score=None, away_score=None, status=None
    ):
        """
        Store a feed update and trigger completion when the game is final

        Returns:
            dict describing what was applied, including the resolution report
            when this update resolved the game
        """
        game = self.find_game(game_id=game_id, external_id=external_id)
        log = ctx_logger.bind(game_id=game.id)

        if status is not None and status not in STATUS_ORDER:
            raise ValueError(f"Invalid game status: {status}")

        applied = {"game_id": game.id, "status_changed": False, "scores_changed": False}

        if status is not None:
            if STATUS_ORDER[status] > STATUS_ORDER[game.status]:
                log.info(f"Status {game.status} -> {status}")
                game.status = status
                applied["status_changed"] = True
            elif STATUS_ORDER[status] < STATUS_ORDER[game.status]:
                log.warning(f"Ignoring status regression {game.status} -> {status}")

        new_home = game.home_score if home_score is None else home_score
        new_away = game.away_score if away_score is None else away_score
        if (new_home, new_away) != (game.home_score, game.away_score):
            if game.is_resolved:
                log.warning(
                    f"Score changed after resolution "
                    f"({game.home_score}-{game.away_score} -> {new_home}-{new_away}); "
                    f"stored only, an admin recompute is needed to re-score"
                )
            game.home_score = new_home
            game.away_score = new_away
            applied["scores_changed"] = True

        db.session.commit()

        applied["resolution"] = None
        if game.is_completed and not game.is_resolved:
            report = completion_gate.complete_game(game.id, trigger="feed")
            applied["resolution"] = report.to_dict() if report else None

        return applied


game_feed = GameFeed()
