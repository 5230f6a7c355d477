"""Models package for the Hanabi table server."""

from .events import EventType, GameEvent
from .game_state import RebuiltGameState, rebuild_state, CardState, PlayerState

__all__ = [
    "EventType",
    "GameEvent",
    "RebuiltGameState",
    "rebuild_state",
    "CardState",
    "PlayerState",
]
