"""XXXo package exposing the rules engine, the AI opponent, and the web service."""

from .ai import Difficulty, MoveSelector, select_move
from .game import GameState, MoveError, apply_move, score_move
from .server import app

__all__ = [
    "Difficulty",
    "GameState",
    "MoveError",
    "MoveSelector",
    "app",
    "apply_move",
    "score_move",
    "select_move",
]
