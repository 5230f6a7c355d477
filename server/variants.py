"""
Variant rule table for Hanabi.

Each variant is pure data: the suits in play, the clue colors a player may
name, and for every suit the set of clue colors that touch it. The single
predicate `touches()` decides whether a clue touches a card; it must agree
with the client's copy of this table.

Variants:
    0 - No Variant: five suits, each touched by its own color
    1 - Black Suit: a sixth suit with its own color
    2 - Black Suit (one of each): as above, black has one copy per rank
    3 - Rainbow: a sixth suit touched by every color clue
    4 - Mixed Suits: six two-color suits, four clue colors
    5 - Mixed and Multi-Colored Suits: five two-color suits plus rainbow
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

from constants import MAX_RANK

if TYPE_CHECKING:
    from game import Card


class ClueType(IntEnum):
    """Kind of clue, using the client's wire values."""

    NUMBER = 0
    COLOR = 1


@dataclass(frozen=True)
class Clue:
    """A clue naming either a rank (NUMBER) or a clue color index (COLOR)."""

    type: ClueType
    value: int

    def to_dict(self) -> dict:
        return {"type": int(self.type), "value": self.value}

    @classmethod
    def from_dict(cls, d: dict) -> "Clue":
        return cls(type=ClueType(d["type"]), value=d["value"])


@dataclass(frozen=True)
class Suit:
    """
    One suit of a variant.

    Attributes:
        name: Display name used in log lines.
        touched_by: Indexes of the clue colors that touch this suit.
        one_of_each: If True the suit has a single copy of every rank.
    """

    name: str
    touched_by: frozenset[int]
    one_of_each: bool = False


@dataclass(frozen=True)
class Variant:
    """
    A named ruleset.

    Attributes:
        id: Wire identifier sent by the lobby and stored with the game.
        name: Display name.
        suits: Suits in play, indexed by suit number.
        clue_colors: Names of the color clues, indexed by clue value.
    """

    id: int
    name: str
    suits: tuple[Suit, ...]
    clue_colors: tuple[str, ...]

    @property
    def num_suits(self) -> int:
        return len(self.suits)

    @property
    def max_score(self) -> int:
        return MAX_RANK * len(self.suits)

    def suit_name(self, suit: int) -> str:
        return self.suits[suit].name

    def clue_name(self, clue: Clue) -> str:
        """Human-readable value of a clue ("3", "Blue")."""
        if clue.type == ClueType.NUMBER:
            return str(clue.value)
        return self.clue_colors[clue.value]

    def is_valid_clue(self, clue: Clue) -> bool:
        if clue.type == ClueType.NUMBER:
            return 1 <= clue.value <= MAX_RANK
        return 0 <= clue.value < len(self.clue_colors)


def touches(variant: Variant, clue: Clue, card: "Card") -> bool:
    """Return True if `clue` touches `card` under `variant`."""
    if clue.type == ClueType.NUMBER:
        return card.rank == clue.value
    return clue.value in variant.suits[card.suit].touched_by


# -----------------------------------------------------------------------------
# Table data
# -----------------------------------------------------------------------------

_BASIC_COLORS = ("Blue", "Green", "Yellow", "Red", "Purple")
_ALL_FIVE = frozenset(range(5))


def _direct_suits(names: tuple[str, ...]) -> tuple[Suit, ...]:
    return tuple(Suit(name, frozenset({i})) for i, name in enumerate(names))


VARIANTS: dict[int, Variant] = {
    0: Variant(
        id=0,
        name="No Variant",
        suits=_direct_suits(_BASIC_COLORS),
        clue_colors=_BASIC_COLORS,
    ),
    1: Variant(
        id=1,
        name="Black Suit",
        suits=_direct_suits(_BASIC_COLORS + ("Black",)),
        clue_colors=_BASIC_COLORS + ("Black",),
    ),
    2: Variant(
        id=2,
        name="Black Suit (one of each)",
        suits=_direct_suits(_BASIC_COLORS) + (Suit("Black", frozenset({5}), one_of_each=True),),
        clue_colors=_BASIC_COLORS + ("Black",),
    ),
    3: Variant(
        id=3,
        name="Rainbow",
        suits=_direct_suits(_BASIC_COLORS) + (Suit("Rainbow", _ALL_FIVE),),
        clue_colors=_BASIC_COLORS,
    ),
    # Clue colors: 0 Blue, 1 Yellow, 2 Red, 3 Black
    4: Variant(
        id=4,
        name="Mixed Suits",
        suits=(
            Suit("Green", frozenset({0, 1})),
            Suit("Magenta", frozenset({0, 2})),
            Suit("Navy", frozenset({0, 3})),
            Suit("Orange", frozenset({1, 2})),
            Suit("Tan", frozenset({1, 3})),
            Suit("Burgundy", frozenset({2, 3})),
        ),
        clue_colors=("Blue", "Yellow", "Red", "Black"),
    ),
    # Clue colors: 0 Blue, 1 Green, 2 Yellow, 3 Red, 4 Purple
    5: Variant(
        id=5,
        name="Mixed and Multi-Colored Suits",
        suits=(
            Suit("Teal", frozenset({0, 1})),
            Suit("Lime", frozenset({1, 2})),
            Suit("Orange", frozenset({2, 3})),
            Suit("Burgundy", frozenset({3, 4})),
            Suit("Indigo", frozenset({4, 0})),
            Suit("Rainbow", _ALL_FIVE),
        ),
        clue_colors=_BASIC_COLORS,
    ),
}


def get_variant(variant_id: int) -> Variant:
    """
    Look up a variant by id.

    Raises:
        KeyError: If the id is not in the table.
    """
    try:
        return VARIANTS[variant_id]
    except KeyError:
        raise KeyError(f"Unknown variant: {variant_id}") from None
