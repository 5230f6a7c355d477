"""
Game state for Hanabi.

This module implements the authoritative data model for one table: cards,
the seeded deck, players' hands and clocks, and the aggregate Game that owns
every mutation and the append-only action log.

Hanabi Rules Summary:
    - 2-5 players cooperate to build one stack per suit, rank 1 up to 5
    - Players see every hand except their own
    - On your turn: give a clue (costs a clue token), play a card, or
      discard a card (earns a clue token back, not allowed at 8 clues)
    - A play that does not fit its stack is a strike; three strikes lose
    - Playing a 5 refunds a clue token
    - When the deck runs out, everyone gets one more turn

Hand Layout:
    hand[0] is the oldest card, hand[-1] the most recently drawn.
    Clients number slots from the newest card: hand[-1] is slot #1.
"""

import logging
import math
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from config import config
from constants import (
    HAND_SIZES,
    MAX_CLUES,
    MAX_PLAYERS,
    MIN_PLAYERS,
    RANK_COPIES,
    SOUND_TURN_OTHER,
    SOUND_TURN_US,
    TEST_TABLE_NAME,
)
from models.events import EventType, GameEvent
from variants import Variant, get_variant

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Card:
    """
    A Hanabi card.

    Attributes:
        suit: Suit index into the variant's suit list.
        rank: 1-5.
        order: Position in the deck, assigned when the card is drawn.
            This is the card's identifier on the wire.
        touched: Whether any clue has ever touched this card.
        discarded: Whether the card was discarded (or misplayed).
    """

    suit: int
    rank: int
    order: Optional[int] = None
    touched: bool = False
    discarded: bool = False

    def to_dict(self) -> dict:
        return {"suit": self.suit, "rank": self.rank, "order": self.order}


class Deck:
    """
    The shuffled deck for one game.

    The card order is fixed once at creation by a seeded shuffle, so a
    stored seed is enough to recreate the deck exactly. Cards are never
    removed from `cards`; `index` is the draw cursor and only moves forward.
    """

    def __init__(self, variant: Variant, seed: Optional[int] = None) -> None:
        """
        Build and shuffle the deck for a variant.

        Args:
            variant: Variant whose suits make up the deck.
            seed: Optional random seed for deterministic shuffle.
                  If None, a random seed is generated and stored.
        """
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)
        self.cards: list[Card] = []
        self.index: int = 0

        for suit_index, suit in enumerate(variant.suits):
            for rank, copies in RANK_COPIES.items():
                if suit.one_of_each:
                    copies = 1
                for _ in range(copies):
                    self.cards.append(Card(suit_index, rank))

        self.shuffle()

    def shuffle(self) -> None:
        random.Random(self.seed).shuffle(self.cards)

    def draw(self) -> Optional[Card]:
        """
        Draw the next card, stamping its deck position.

        Returns:
            The drawn Card, or None if the deck is exhausted.
        """
        if self.is_exhausted():
            return None
        card = self.cards[self.index]
        card.order = self.index
        self.index += 1
        return card

    def remaining(self) -> int:
        """Return the number of cards left to draw."""
        return len(self.cards) - self.index

    def is_exhausted(self) -> bool:
        return self.index >= len(self.cards)

    def __len__(self) -> int:
        return len(self.cards)


@dataclass
class Player:
    """
    A seated player.

    Attributes:
        user_id: Account identifier.
        username: Display name.
        hand: Cards in draw order (oldest first).
        time: Clock in milliseconds. Counts down in timed games; in untimed
            games it starts at 0 and goes negative to show thinking time.
        notes: The player's notes, keyed by card order.
        present: Whether the player is currently connected.
    """

    user_id: str
    username: str
    hand: list[Card] = field(default_factory=list)
    time: int = 0
    notes: dict[int, str] = field(default_factory=dict)
    present: bool = True

    def card_index(self, order: int) -> Optional[int]:
        """Index in `hand` of the card with this order, or None."""
        for i, card in enumerate(self.hand):
            if card.order == order:
                return i
        return None

    def remove_card(self, order: int) -> tuple[Card, int]:
        """
        Take a card out of the hand.

        Returns:
            The card and the slot number it occupied (1 = newest card).
        """
        i = self.card_index(order)
        card = self.hand.pop(i)
        slot = len(self.hand) - i + 1
        return card, slot

    def chop_index(self) -> int:
        """
        Index of the chop: the oldest card never touched by a clue.

        A hand with every card touched has its chop in slot #1.
        """
        for i, card in enumerate(self.hand):
            if not card.touched:
                return i
        return len(self.hand) - 1

    def move_chop_to_slot_one(self) -> bool:
        """Move the chop to the newest position. Returns True if it moved."""
        if not self.hand:
            return False
        i = self.chop_index()
        if i == len(self.hand) - 1:
            return False
        self.hand.append(self.hand.pop(i))
        return True

    def hand_orders(self) -> list[int]:
        return [card.order for card in self.hand]


@dataclass
class GameOptions:
    """
    Table settings fixed when the game starts.

    Attributes:
        variant: Variant id (see variants.py).
        timed: Whether players have a countdown clock.
        reorder_cards: Move a player's chop to slot #1 after a discard.
        seed: Deck seed; random when None.
        first_player: Seat index that takes the first turn.
        starting_time_ms: Clock budget per player in timed games.
        extra_turn_time_ms: Time credited after each turn in timed games.
    """

    variant: int = field(default_factory=lambda: config.game_defaults.variant)
    timed: bool = field(default_factory=lambda: config.game_defaults.timed)
    reorder_cards: bool = field(default_factory=lambda: config.game_defaults.reorder_cards)
    seed: Optional[int] = None
    first_player: int = 0
    starting_time_ms: int = field(default_factory=lambda: config.STARTING_TIME_MS)
    extra_turn_time_ms: int = field(default_factory=lambda: config.EXTRA_TURN_TIME_MS)


@dataclass
class Game:
    """
    Authoritative state of one Hanabi game.

    All mutation goes through this class (directly or from actions.py), and
    every visible change is appended to `actions`, the ordered action log.

    Attributes:
        players: Seated players; list index is the seat.
        options: Table settings.
        name: Table name.
        deck: The shuffled deck (set by start()).
        stacks: Highest rank played per suit.
        clue_num: Clue tokens available (0-8).
        strikes: Strikes so far (0-3).
        score: Cards successfully played.
        turn_num: Number of turns taken.
        turn_player_index: Seat whose turn it is.
        end_turn_num: Turn on which the game ends, set once the deck is empty.
        sound: Outcome sound of the current turn ("fail", "blind" or None).
        discard_signal_outstanding: The last card-affecting action was a discard.
        turn_begin_time: Clock reading when the current turn began.
        running: True between start() and the end of the game.
        ended: True once the game is over.
        loss: True if the game ended in a loss.
        actions: The action log.
        clock: Millisecond clock used for turn timing.
    """

    players: list[Player] = field(default_factory=list)
    options: GameOptions = field(default_factory=GameOptions)
    name: str = ""
    game_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    deck: Optional[Deck] = None
    stacks: list[int] = field(default_factory=list)
    clue_num: int = MAX_CLUES
    strikes: int = 0
    score: int = 0
    turn_num: int = 0
    turn_player_index: int = 0
    end_turn_num: Optional[int] = None
    sound: Optional[str] = None
    discard_signal_outstanding: bool = False
    turn_begin_time: int = 0
    running: bool = False
    ended: bool = False
    loss: bool = False
    actions: list[GameEvent] = field(default_factory=list)
    datetime_created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    datetime_started: Optional[datetime] = None
    clock: Callable[[], int] = field(default=now_ms, repr=False, compare=False)
    _sequence_num: int = field(default=0, repr=False, compare=False)

    @property
    def variant(self) -> Variant:
        return get_variant(self.options.variant)

    @property
    def final_score(self) -> int:
        """Score as recorded: a lost game scores 0."""
        return 0 if self.loss else self.score

    # -------------------------------------------------------------------------
    # Players
    # -------------------------------------------------------------------------

    def add_player(self, user_id: str, username: str) -> Optional[Player]:
        """
        Seat a player before the game starts.

        Returns:
            The new Player, or None if the game is running or full.
        """
        if self.running or self.ended or len(self.players) >= MAX_PLAYERS:
            return None
        player = Player(user_id=user_id, username=username)
        self.players.append(player)
        return player

    def get_player_index(self, user_id: str) -> Optional[int]:
        for i, player in enumerate(self.players):
            if player.user_id == user_id:
                return i
        return None

    def current_player(self) -> Optional[Player]:
        if self.players:
            return self.players[self.turn_player_index]
        return None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """
        Shuffle, deal opening hands and start the clocks.

        Raises:
            ValueError: If the player count or first player is out of range.
            KeyError: If the variant id is unknown.
        """
        num_players = len(self.players)
        if not MIN_PLAYERS <= num_players <= MAX_PLAYERS:
            raise ValueError(f"Hanabi needs {MIN_PLAYERS}-{MAX_PLAYERS} players, got {num_players}")
        if not 0 <= self.options.first_player < num_players:
            raise ValueError(f"Invalid first player: {self.options.first_player}")

        variant = self.variant
        self.deck = Deck(variant, seed=self.options.seed)
        self.stacks = [0] * variant.num_suits
        self.clue_num = MAX_CLUES
        self.strikes = 0
        self.score = 0
        self.turn_num = 0
        self.turn_player_index = self.options.first_player
        self.end_turn_num = None
        self.sound = None
        self.discard_signal_outstanding = False

        for player in self.players:
            player.hand = []
            player.time = self._starting_time()

        self.datetime_started = datetime.now(timezone.utc)
        self.log(
            EventType.GAME_STARTED,
            variant=variant.id,
            seed=self.deck.seed,
            players=[p.username for p in self.players],
            timed=self.options.timed,
            reorder_cards=self.options.reorder_cards,
            first_player=self.options.first_player,
        )

        hand_size = HAND_SIZES[num_players]
        for seat in range(num_players):
            for _ in range(hand_size):
                self.draw_card(seat)

        self.turn_begin_time = self.clock()
        self.running = True
        logger.info(f"[Game {self.game_id}] Started {variant.name} with {num_players} players (seed {self.deck.seed}).")

    def _starting_time(self) -> int:
        if not self.options.timed:
            return 0
        if self.name == TEST_TABLE_NAME:
            return config.TEST_TABLE_TIME_MS
        return self.options.starting_time_ms

    # -------------------------------------------------------------------------
    # Action log
    # -------------------------------------------------------------------------

    def log(self, event_type: EventType, **data) -> GameEvent:
        """Append an event to the action log."""
        self._sequence_num += 1
        event = GameEvent(
            event_type=event_type,
            game_id=self.game_id,
            sequence_num=self._sequence_num,
            data=data,
        )
        self.actions.append(event)
        return event

    def text(self, text: str) -> GameEvent:
        """Append a narrative line to the action log."""
        logger.info(f"[Game {self.game_id}] {text}")
        return self.log(EventType.TEXT, text=text)

    def client_log(self, seat: Optional[int]) -> list[dict]:
        """The action log as shown to one seat (None for spectators)."""
        return [event.to_client_message(seat) for event in self.actions]

    # -------------------------------------------------------------------------
    # Card movement
    # -------------------------------------------------------------------------

    def draw_card(self, seat: int) -> Optional[Card]:
        """
        Draw the next card into a seat's hand.

        Starts the final round once the last card is drawn.

        Returns:
            The drawn card, or None if the deck was already empty.
        """
        card = self.deck.draw()
        if card is None:
            return None

        self.players[seat].hand.append(card)
        self.log(EventType.DRAW, who=seat, rank=card.rank, suit=card.suit, order=card.order)
        self.log(EventType.DRAW_SIZE, size=self.deck.remaining())

        if self.deck.is_exhausted():
            self.end_turn_num = self.turn_num + len(self.players) + 1
        return card

    def can_blind_play_deck(self) -> bool:
        return self.deck is not None and self.deck.remaining() == 1

    # -------------------------------------------------------------------------
    # Turn flow
    # -------------------------------------------------------------------------

    def charge_clock(self, seat: int) -> None:
        """Charge the time spent this turn to a seat, adding the turn bonus."""
        now = self.clock()
        player = self.players[seat]
        player.time -= now - self.turn_begin_time
        if self.options.timed:
            player.time += self.options.extra_turn_time_ms
        self.turn_begin_time = now

    def advance_turn(self) -> None:
        self.turn_num += 1
        self.turn_player_index = (self.turn_player_index + 1) % len(self.players)

    def sound_for(self, seat: Optional[int]) -> str:
        """
        Sound a recipient should play after a turn.

        Outcome sounds win; otherwise the new turn player hears their own
        turn sound and everyone else (spectators included) the generic one.
        """
        if self.sound is not None:
            return self.sound
        if seat is not None and seat == self.turn_player_index:
            return SOUND_TURN_US
        return SOUND_TURN_OTHER

    def clock_times(self) -> list[int]:
        return [player.time for player in self.players]

    def finishing_time_text(self, player: Player) -> str:
        seconds = math.ceil(player.time / 1000)
        if not self.options.timed:
            seconds *= -1
        return f"{player.username} finished with a time of {seconds // 60}:{seconds % 60:02d}"

    # -------------------------------------------------------------------------
    # Notes
    # -------------------------------------------------------------------------

    def set_note(self, seat: int, order: int, text: str) -> Optional[list[str]]:
        """
        Store a player's note about a drawn card.

        Returns:
            Every player's note for that card (spectators see all of them),
            or None if the card has not been drawn yet.
        """
        if self.deck is None or not 0 <= order < self.deck.index:
            return None
        self.players[seat].notes[order] = text
        return [player.notes.get(order, "") for player in self.players]
