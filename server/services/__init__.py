"""Services package for Hanabi end-of-game processing."""

from .finalizer import GameFinalizer, FinalizationResult

__all__ = [
    "GameFinalizer",
    "FinalizationResult",
]
