from pickem import db  # noqa: F401 - imported for model imports

from .admin_action import AdminAction
from .game import Game
from .pick import AnonymousPick, AuthenticatedPick, Pick
from .summary import SeasonSummary, WeeklySummary
from .user import User
from .work_item import WorkItem

__all__ = [
    "User",
    "Game",
    "Pick",
    "AuthenticatedPick",
    "AnonymousPick",
    "WeeklySummary",
    "SeasonSummary",
    "WorkItem",
    "AdminAction",
]
