"""
Rule constants for Hanabi.

This module is the single source of truth for clue/strike limits, deck
composition and hand sizes. Variant-specific data (suits, clue colors)
lives in variants.py.

Deck composition per suit:
    - Rank 1: 3 copies
    - Rank 2-4: 2 copies
    - Rank 5: 1 copy
    - "One of each" suits carry a single copy of every rank
"""

MAX_CLUES: int = 8
MAX_STRIKES: int = 3
MAX_RANK: int = 5

RANK_COPIES: dict[int, int] = {1: 3, 2: 2, 3: 2, 4: 2, 5: 1}

MIN_PLAYERS: int = 2
MAX_PLAYERS: int = 5

# Hand size by number of seated players
HAND_SIZES: dict[int, int] = {2: 5, 3: 5, 4: 4, 5: 4}

# Slot marker for a card played straight off the deck
DECK_SLOT: int = -1

# Sound tokens understood by the client
SOUND_TURN_US = "turn_us"
SOUND_TURN_OTHER = "turn_other"
SOUND_FAIL = "fail"
SOUND_BLIND = "blind"

NUMBER_WORDS: list[str] = ["", "one", "two", "three", "four", "five"]

# Name of the table that gets a short clock for manual testing
TEST_TABLE_NAME = "!test"
