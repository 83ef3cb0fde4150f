"""
Scoring rules for spread pick'em

This module is the only place that decides who covered a spread and what a
pick is worth. The pick resolver, the recompute paths and the reconciliation
report all import these functions rather than re-deriving the rules.
"""

import math
from dataclasses import dataclass

PUSH_TOLERANCE = 0.5
BASE_WIN_POINTS = 20
PUSH_POINTS = 10

# (minimum adjusted margin, bonus), checked from the top down
BONUS_TIERS = ((29, 5), (20, 3), (11, 1))


class InvalidGameData(ValueError):
    """Raised when a game's scores or spread cannot be scored"""

    def __init__(self, message, game_id=None):
        super().__init__(message)
        self.game_id = game_id


@dataclass(frozen=True)
class Outcome:
    covering_side: str  # 'home', 'away' or 'push'
    bonus: int
    adjusted_margin: float

    @property
    def is_push(self):
        return self.covering_side == "push"


def _require_number(value, name, game_id=None):
    if value is None:
        raise InvalidGameData(f"Missing {name}", game_id=game_id)
    if isinstance(value, bool):
        raise InvalidGameData(f"Invalid {name}: {value!r}", game_id=game_id)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidGameData(f"Invalid {name}: {value!r}", game_id=game_id)
    if not math.isfinite(number):
        raise InvalidGameData(f"Invalid {name}: {value!r}", game_id=game_id)
    return number


def margin_bonus(magnitude):
    """Bonus tier for an absolute spread-adjusted margin"""
    for threshold, bonus in BONUS_TIERS:
        if magnitude >= threshold:
            return bonus
    return 0


def calculate_outcome(home_score, away_score, spread, game_id=None):
    """
    Decide which side covered the spread.

    adjusted_margin = (home - away) + spread, with a negative spread favoring
    the home team. Anything within PUSH_TOLERANCE of zero is a push.

    Args:
        home_score: Final home score
        away_score: Final away score
        spread: Signed point spread (negative favors home)
        game_id: Only used to label errors

    Returns:
        Outcome

    Raises:
        InvalidGameData: if a score or the spread is missing or not a finite number
    """
    home = _require_number(home_score, "home score", game_id)
    away = _require_number(away_score, "away score", game_id)
    line = _require_number(spread, "spread", game_id)
    if home < 0 or away < 0:
        raise InvalidGameData(
            f"Negative score {home_score}-{away_score}", game_id=game_id
        )

    adjusted_margin = (home - away) + line
    magnitude = abs(adjusted_margin)

    if magnitude < PUSH_TOLERANCE:
        return Outcome(covering_side="push", bonus=0, adjusted_margin=adjusted_margin)

    side = "home" if adjusted_margin > 0 else "away"
    return Outcome(
        covering_side=side, bonus=margin_bonus(magnitude), adjusted_margin=adjusted_margin
    )


def score_pick(selected_side, is_lock, outcome):
    """
    Score a single pick against a game outcome.

    Returns:
        ('push', 10) on a push regardless of lock,
        ('win', 20 + bonus [+ bonus again for a lock]) when the side covered,
        ('loss', 0) otherwise
    """
    if outcome.is_push:
        return "push", PUSH_POINTS

    if selected_side == outcome.covering_side:
        bonus = outcome.bonus
        return "win", BASE_WIN_POINTS + bonus + (bonus if is_lock else 0)

    return "loss", 0


def outcome_for_game(game):
    """Outcome of a Game row from its stored scores and spread"""
    return calculate_outcome(game.home_score, game.away_score, game.spread, game_id=game.id)
