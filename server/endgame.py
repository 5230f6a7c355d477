"""
End-of-game detection.

Checked once after every accepted action, before the next turn begins.
The first matching condition wins:

    1. Three strikes: the players lose.
    2. The final round is over (everyone had one turn after the deck ran out).
    3. Every stack is complete.
    4. No card that could still be played is left anywhere: the game ends
       with the score as it stands.
"""

from dataclasses import dataclass

from constants import MAX_RANK, MAX_STRIKES


@dataclass(frozen=True)
class EndState:
    ended: bool
    loss: bool = False


NOT_OVER = EndState(ended=False)


def playable_card_remains(game) -> bool:
    """
    Return True if any undiscarded card could still go on its stack.

    Looks through the whole deck, drawn or not, for the next rank of every
    unfinished suit.
    """
    for suit, height in enumerate(game.stacks):
        if height >= MAX_RANK:
            continue
        for card in game.deck.cards:
            if card.suit == suit and card.rank == height + 1 and not card.discarded:
                return True
    return False


def evaluate(game) -> EndState:
    """Decide whether the game is over, and if so whether it was lost."""
    if game.strikes >= MAX_STRIKES:
        return EndState(ended=True, loss=True)

    if game.end_turn_num is not None and game.turn_num >= game.end_turn_num:
        return EndState(ended=True)

    if game.score >= game.variant.max_score:
        return EndState(ended=True)

    if not playable_card_remains(game):
        return EndState(ended=True)

    return NOT_OVER
