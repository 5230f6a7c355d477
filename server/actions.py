"""
Turn action processor for Hanabi.

`apply_action()` is the only way a running game changes. It validates an
action against the current state, and only once every check has passed does
it mutate the game. Every visible change is appended to the game's action
log; per-recipient messages that are not part of the log (sounds, the clock,
the next player's action prompt, end-of-game reveals) come back as
Notifications for the table to deliver.

Illegal actions are returned as a Rejection, never raised, and leave the game
untouched.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional, Union

from constants import (
    DECK_SLOT,
    MAX_CLUES,
    MAX_RANK,
    MAX_STRIKES,
    NUMBER_WORDS,
    SOUND_BLIND,
    SOUND_FAIL,
)
from endgame import evaluate
from game import Card, Game
from models.events import EventType, GameEvent
from variants import Clue, touches

logger = logging.getLogger(__name__)


class ActionType(IntEnum):
    """Action types, using the client's wire values."""

    CLUE = 0
    PLAY = 1
    DISCARD = 2
    DECK_PLAY = 3
    # Issued by the turn timer, never accepted from a client
    TIMEOUT = 4


# Notification audiences
AUDIENCE_ALL = "all"
AUDIENCE_SEAT = "seat"
AUDIENCE_SPECTATORS = "spectators"


@dataclass(frozen=True)
class Action:
    """
    An intended action.

    Attributes:
        type: What kind of action.
        target: Seat index for a clue, card order for a play or discard.
        clue: The clue given (CLUE only).
        seat: Seat that ran out of time (TIMEOUT only).
        turn_num: Turn the timer was armed for (TIMEOUT only).
    """

    type: ActionType
    target: Optional[int] = None
    clue: Optional[Clue] = None
    seat: Optional[int] = None
    turn_num: Optional[int] = None

    @classmethod
    def give_clue(cls, target: int, clue: Clue) -> "Action":
        return cls(ActionType.CLUE, target=target, clue=clue)

    @classmethod
    def play(cls, order: int) -> "Action":
        return cls(ActionType.PLAY, target=order)

    @classmethod
    def discard(cls, order: int) -> "Action":
        return cls(ActionType.DISCARD, target=order)

    @classmethod
    def deck_play(cls) -> "Action":
        return cls(ActionType.DECK_PLAY)

    @classmethod
    def timeout(cls, seat: int, turn_num: int) -> "Action":
        return cls(ActionType.TIMEOUT, seat=seat, turn_num=turn_num)


@dataclass(frozen=True)
class Rejection:
    """An action that was refused. `reason` is shown to the acting player only."""

    reason: str


@dataclass
class Notification:
    """
    A message for some recipients that is not part of the action log.

    Attributes:
        type: Outer message type ("sound", "clock", "action", "notify").
        resp: Message payload.
        audience: AUDIENCE_ALL, AUDIENCE_SEAT or AUDIENCE_SPECTATORS.
        seat: Target seat when audience is AUDIENCE_SEAT.
    """

    type: str
    resp: dict
    audience: str = AUDIENCE_ALL
    seat: Optional[int] = None

    def to_message(self) -> dict:
        return {"type": self.type, "resp": self.resp}


@dataclass
class ActionResult:
    """
    Outcome of an accepted action.

    Attributes:
        events: Action log entries appended by this action, in order.
        notifications: Extra per-recipient messages, sent after the events.
        ended: Whether this action ended the game.
        loss: Whether the game ended in a loss.
    """

    events: list[GameEvent] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)
    ended: bool = False
    loss: bool = False


def apply_action(
    game: Optional[Game], user_id: str, action: Action
) -> Union[ActionResult, Rejection]:
    """
    Validate and apply one action.

    Args:
        game: The table's game, or None if the table has no game.
        user_id: Account of the acting player.
        action: What they want to do.

    Returns:
        ActionResult if the action was applied, Rejection otherwise.
    """
    if game is None:
        return Rejection("That game does not exist.")
    if game.ended:
        return Rejection("The game is over.")
    if not game.running:
        return Rejection("The game has not started yet.")

    seat = game.get_player_index(user_id)
    if seat is None:
        logger.warning(f"[Game {game.game_id}] User {user_id} tried to act but is not seated.")
        return Rejection("You are not a player at this table.")

    if action.type == ActionType.TIMEOUT:
        if action.seat != seat or action.turn_num != game.turn_num:
            return Rejection("That turn is already over.")
    if seat != game.turn_player_index:
        return Rejection("You cannot perform an action when it is not your turn.")

    reason = _validate(game, seat, action)
    if reason is not None:
        return Rejection(reason)

    first_event = len(game.actions)
    game.sound = None

    if (
        game.options.reorder_cards
        and game.discard_signal_outstanding
        and action.type in (ActionType.CLUE, ActionType.DISCARD)
    ):
        _reorder_chop(game, seat)

    if action.type == ActionType.CLUE:
        _apply_clue(game, seat, action)
    elif action.type == ActionType.PLAY:
        _apply_play(game, seat, action.target)
    elif action.type == ActionType.DISCARD:
        _apply_discard(game, seat, action.target)
    elif action.type == ActionType.DECK_PLAY:
        _apply_deck_play(game, seat)
    else:
        _apply_timeout(game, seat)

    game.log(EventType.STATUS, clues=game.clue_num, score=game.score)

    if action.type != ActionType.TIMEOUT:
        game.charge_clock(seat)

    game.advance_turn()
    end = evaluate(game)

    if end.ended:
        game.text("Players lose!" if end.loss else f"Players score {game.score} points")
        game.log(EventType.TURN, num=game.turn_num, who=game.turn_player_index)
        notifications = _finish(game, end.loss)
    else:
        game.log(EventType.TURN, num=game.turn_num, who=game.turn_player_index)
        logger.info(
            f"[Game {game.game_id}] It is now {game.current_player().username}'s turn."
        )
        notifications = _next_turn_notifications(game)

    return ActionResult(
        events=game.actions[first_event:],
        notifications=notifications,
        ended=end.ended,
        loss=end.loss,
    )


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


def _validate(game: Game, seat: int, action: Action) -> Optional[str]:
    """Return a rejection reason, or None if the action is legal."""
    player = game.players[seat]

    if action.type == ActionType.CLUE:
        if action.clue is None:
            return "That is not a valid clue."
        if not isinstance(action.target, int) or not 0 <= action.target < len(game.players):
            return "That is not a valid clue target."
        if action.target == seat:
            return "You cannot give a clue to yourself."
        if game.clue_num == 0:
            return "You cannot give a clue when the team has 0 clues."
        if not game.variant.is_valid_clue(action.clue):
            return "That clue does not exist in this variant."
        target_hand = game.players[action.target].hand
        if not any(touches(game.variant, action.clue, card) for card in target_hand):
            logger.error(
                f"[Game {game.game_id}] Clue {action.clue.to_dict()} from seat {seat} "
                f"to seat {action.target} touches no cards.",
                extra={"game_id": game.game_id, "seat": seat},
            )
            return "That clue does not touch any cards."
        return None

    if action.type == ActionType.PLAY:
        if action.target is None or player.card_index(action.target) is None:
            return "That card is not in your hand."
        return None

    if action.type == ActionType.DISCARD:
        if game.clue_num >= MAX_CLUES:
            return "You cannot discard when the team has 8 clues."
        if action.target is None or player.card_index(action.target) is None:
            return "That card is not in your hand."
        return None

    if action.type == ActionType.DECK_PLAY:
        if not game.can_blind_play_deck():
            return "You can only blind play the deck when there is one card left."
        return None

    if action.type == ActionType.TIMEOUT:
        return None

    return "Unknown action type."


# -----------------------------------------------------------------------------
# Effects
# -----------------------------------------------------------------------------


def _reorder_chop(game: Game, seat: int) -> None:
    player = game.players[seat]
    if player.move_chop_to_slot_one():
        game.log(EventType.REORDER, who=seat, hand=player.hand_orders())


def _apply_clue(game: Game, seat: int, action: Action) -> None:
    clue = action.clue
    target = game.players[action.target]
    touched = [card for card in target.hand if touches(game.variant, clue, card)]

    game.clue_num -= 1
    game.discard_signal_outstanding = False
    for card in touched:
        card.touched = True

    game.log(
        EventType.CLUE,
        clue=clue.to_dict(),
        giver=seat,
        list=[card.order for card in touched],
        target=action.target,
    )

    count = len(touched)
    value = game.variant.clue_name(clue)
    game.text(
        f"{game.players[seat].username} tells {target.username} about "
        f"{NUMBER_WORDS[count]} {value}{'s' if count != 1 else ''}"
    )


def _apply_play(game: Game, seat: int, order: int) -> None:
    card, slot = game.players[seat].remove_card(order)
    _play_card(game, seat, card, slot)
    game.draw_card(seat)


def _apply_discard(game: Game, seat: int, order: int) -> None:
    game.clue_num += 1
    card, slot = game.players[seat].remove_card(order)
    _discard_card(game, seat, card, slot)
    game.draw_card(seat)


def _apply_deck_play(game: Game, seat: int) -> None:
    card = game.draw_card(seat)
    game.players[seat].remove_card(card.order)
    _play_card(game, seat, card, DECK_SLOT)


def _apply_timeout(game: Game, seat: int) -> None:
    game.strikes = MAX_STRIKES
    game.text(f"{game.players[seat].username} ran out of time!")


def _play_card(game: Game, seat: int, card: Card, slot: int) -> None:
    if card.rank != game.stacks[card.suit] + 1:
        game.strikes += 1
        game.log(EventType.STRIKE, num=game.strikes)
        game.sound = SOUND_FAIL
        _discard_card(game, seat, card, slot, failed=True)
        return

    game.stacks[card.suit] = card.rank
    game.score += 1
    if card.rank == MAX_RANK and game.clue_num < MAX_CLUES:
        game.clue_num += 1

    game.log(EventType.PLAYED, which=_which(seat, card))

    text = (
        f"{game.players[seat].username} plays "
        f"{game.variant.suit_name(card.suit)} {card.rank} {_slot_text(slot)}"
    )
    if not card.touched:
        text += " (blind)"
        game.sound = SOUND_BLIND
    game.text(text)


def _discard_card(game: Game, seat: int, card: Card, slot: int, failed: bool = False) -> None:
    card.discarded = True
    game.discard_signal_outstanding = True

    game.log(EventType.DISCARD, which=_which(seat, card), failed=failed)

    verb = "fails to play" if failed else "discards"
    text = (
        f"{game.players[seat].username} {verb} "
        f"{game.variant.suit_name(card.suit)} {card.rank} {_slot_text(slot)}"
    )
    if not failed and card.touched:
        text += " (clued)"
    if failed and slot != DECK_SLOT and not card.touched:
        text += " (blind)"
    game.text(text)


def _which(seat: int, card: Card) -> dict:
    return {"index": seat, "rank": card.rank, "suit": card.suit, "order": card.order}


def _slot_text(slot: int) -> str:
    if slot == DECK_SLOT:
        return "from the deck"
    return f"from slot #{slot}"


# -----------------------------------------------------------------------------
# Turn transitions
# -----------------------------------------------------------------------------


def _clock_notification(game: Game, active: Optional[int]) -> Notification:
    return Notification("clock", {"times": game.clock_times(), "active": active})


def _next_turn_notifications(game: Game) -> list[Notification]:
    notifications = [
        Notification("sound", {"file": game.sound_for(seat)}, AUDIENCE_SEAT, seat)
        for seat in range(len(game.players))
    ]
    notifications.append(
        Notification("sound", {"file": game.sound_for(None)}, AUDIENCE_SPECTATORS)
    )
    notifications.append(
        Notification(
            "action",
            {
                "can_clue": game.clue_num > 0,
                "can_discard": game.clue_num < MAX_CLUES,
                "can_blind_play_deck": game.can_blind_play_deck(),
            },
            AUDIENCE_SEAT,
            game.turn_player_index,
        )
    )
    notifications.append(_clock_notification(game, game.turn_player_index))
    return notifications


def _finish(game: Game, loss: bool) -> list[Notification]:
    game.running = False
    game.loss = loss

    for player in game.players:
        game.text(game.finishing_time_text(player))

    game.log(EventType.GAME_OVER, score=game.final_score, loss=loss)
    game.ended = True
    logger.info(
        f"[Game {game.game_id}] Game over: score {game.final_score}, loss={loss}.",
        extra={"game_id": game.game_id},
    )

    notifications = [_clock_notification(game, None)]
    for seat, player in enumerate(game.players):
        for card in player.hand:
            notifications.append(
                Notification(
                    "notify",
                    {"type": "reveal", "which": _which(seat, card)},
                    AUDIENCE_SEAT,
                    seat,
                )
            )
    return notifications
