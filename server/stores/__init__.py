"""Stores package for Hanabi persistence."""

from .game_store import GameStore, get_game_store, close_game_store

__all__ = [
    "GameStore",
    "get_game_store",
    "close_game_store",
]
