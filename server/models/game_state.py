"""
Game state rebuilder for replays.

This module reconstructs a game's public state from its action log. The
RebuiltGameState class mirrors the Game class structure but is built
entirely from events rather than direct mutation.

Usage:
    events = await game_store.get_actions(game_id)
    state = rebuild_state(events)
    print(state.score, state.clue_num, state.stacks)
"""

from dataclasses import dataclass, field
from typing import Optional

from constants import MAX_CLUES, MAX_RANK, MAX_STRIKES
from models.events import GameEvent
from variants import get_variant


@dataclass
class CardState:
    """
    A card's state during replay.

    Attributes:
        order: Deck position, the card's identifier.
        suit: Suit index.
        rank: 1-5.
        touched: Whether a clue has touched the card.
    """
    order: int
    suit: int
    rank: int
    touched: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for comparison."""
        return {
            "order": self.order,
            "suit": self.suit,
            "rank": self.rank,
            "touched": self.touched,
        }


@dataclass
class PlayerState:
    """
    A player's state during replay.

    Attributes:
        name: Display name.
        hand: Cards in hand, oldest first.
    """
    name: str
    hand: list[CardState] = field(default_factory=list)

    def take(self, order: int) -> CardState:
        for i, card in enumerate(self.hand):
            if card.order == order:
                return self.hand.pop(i)
        raise ValueError(f"Card {order} is not in {self.name}'s hand")


@dataclass
class RebuiltGameState:
    """
    Game state rebuilt from events.

    Attributes:
        game_id: UUID of the game.
        variant: Variant id.
        seed: Deck seed.
        players: Seated players in seat order.
        stacks: Highest rank played per suit.
        clue_num: Clue tokens available.
        strikes: Strikes so far.
        score: Cards played successfully.
        deck_remaining: Cards left to draw.
        discard_pile: Discarded and misplayed cards, oldest first.
        turn_num: Number of turns taken.
        turn_player_index: Seat whose turn it is.
        ended: Whether a game_over event was applied.
        loss: Whether the game was lost.
        sequence_num: Last applied event sequence.
    """
    game_id: str
    variant: int = 0
    seed: Optional[int] = None
    players: list[PlayerState] = field(default_factory=list)
    stacks: list[int] = field(default_factory=list)
    clue_num: int = MAX_CLUES
    strikes: int = 0
    score: int = 0
    deck_remaining: int = 0
    discard_pile: list[CardState] = field(default_factory=list)
    turn_num: int = 0
    turn_player_index: int = 0
    ended: bool = False
    loss: bool = False
    sequence_num: int = 0

    def apply(self, event: GameEvent) -> "RebuiltGameState":
        """
        Apply an event to produce new state.

        Events must be applied in sequence order.

        Args:
            event: The event to apply.

        Returns:
            self for chaining.

        Raises:
            ValueError: If the event is out of sequence, of unknown type,
                or disagrees with the state rebuilt so far.
        """
        expected_seq = self.sequence_num + 1
        if event.sequence_num != expected_seq:
            raise ValueError(
                f"Expected sequence {expected_seq}, got {event.sequence_num}"
            )

        handler = getattr(self, f"_apply_{event.event_type.value}", None)
        if handler is None:
            raise ValueError(f"Unknown event type: {event.event_type}")

        handler(event)
        self.sequence_num = event.sequence_num
        return self

    # -------------------------------------------------------------------------
    # Lifecycle Event Handlers
    # -------------------------------------------------------------------------

    def _apply_game_started(self, event: GameEvent) -> None:
        data = event.data
        self.variant = data["variant"]
        self.seed = data["seed"]
        self.players = [PlayerState(name=name) for name in data["players"]]
        self.stacks = [0] * get_variant(self.variant).num_suits
        self.turn_player_index = data.get("first_player", 0)

    def _apply_game_over(self, event: GameEvent) -> None:
        self.ended = True
        self.loss = event.data["loss"]
        if self.loss:
            # A timeout ends the game without individual strike events
            self.strikes = MAX_STRIKES

    # -------------------------------------------------------------------------
    # Gameplay Event Handlers
    # -------------------------------------------------------------------------

    def _apply_draw(self, event: GameEvent) -> None:
        data = event.data
        self.players[data["who"]].hand.append(
            CardState(order=data["order"], suit=data["suit"], rank=data["rank"])
        )

    def _apply_draw_size(self, event: GameEvent) -> None:
        self.deck_remaining = event.data["size"]

    def _apply_clue(self, event: GameEvent) -> None:
        touched = set(event.data["list"])
        for card in self.players[event.data["target"]].hand:
            if card.order in touched:
                card.touched = True
        self.clue_num -= 1

    def _apply_played(self, event: GameEvent) -> None:
        which = event.data["which"]
        card = self.players[which["index"]].take(which["order"])
        self.stacks[card.suit] = card.rank
        self.score += 1
        if card.rank == MAX_RANK and self.clue_num < MAX_CLUES:
            self.clue_num += 1

    def _apply_discard(self, event: GameEvent) -> None:
        which = event.data["which"]
        card = self.players[which["index"]].take(which["order"])
        self.discard_pile.append(card)
        if not event.data.get("failed"):
            self.clue_num += 1

    def _apply_strike(self, event: GameEvent) -> None:
        self.strikes = event.data["num"]

    def _apply_reorder(self, event: GameEvent) -> None:
        player = self.players[event.data["who"]]
        by_order = {card.order: card for card in player.hand}
        player.hand = [by_order[order] for order in event.data["hand"]]

    def _apply_status(self, event: GameEvent) -> None:
        clues = event.data["clues"]
        score = event.data["score"]
        if clues != self.clue_num or score != self.score:
            raise ValueError(
                f"Replay diverged at sequence {event.sequence_num}: "
                f"logged clues={clues} score={score}, "
                f"rebuilt clues={self.clue_num} score={self.score}"
            )

    def _apply_turn(self, event: GameEvent) -> None:
        self.turn_num = event.data["num"]
        self.turn_player_index = event.data["who"]

    def _apply_text(self, event: GameEvent) -> None:
        pass

    # -------------------------------------------------------------------------
    # Query Properties
    # -------------------------------------------------------------------------

    @property
    def final_score(self) -> int:
        return 0 if self.loss else self.score

    @property
    def current_player(self) -> Optional[PlayerState]:
        if self.players:
            return self.players[self.turn_player_index]
        return None


def rebuild_state(events: list[GameEvent]) -> RebuiltGameState:
    """
    Rebuild game state from a list of events.

    Args:
        events: List of events in sequence order.

    Returns:
        Reconstructed game state.

    Raises:
        ValueError: If events list is empty or has invalid sequence.
    """
    if not events:
        raise ValueError("Cannot rebuild state from empty event list")

    state = RebuiltGameState(game_id=events[0].game_id)
    for event in events:
        state.apply(event)

    return state


async def rebuild_state_from_store(game_store, game_id: str) -> RebuiltGameState:
    """
    Rebuild a finished game's state by loading its action log from the store.

    Args:
        game_store: GameStore instance.
        game_id: Game UUID.

    Returns:
        Reconstructed game state.
    """
    events = await game_store.get_actions(game_id)
    return rebuild_state(events)
