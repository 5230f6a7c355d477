"""
Live table management for Hanabi.

A Table wraps one Game with everything the engine itself does not know
about: player and spectator connections, the per-table lock that serializes
every mutation, and the turn timer. The TableManager is the registry of live
tables, injected into the transport layer.

A Table contains:
    - A numeric table id and a display name
    - The Game with the authoritative state
    - WebSocket connections for seated players and spectators
    - An asyncio.Lock held for the duration of every action
    - A TurnTimer that is armed only in timed games
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from fastapi import WebSocket

from actions import (
    AUDIENCE_ALL,
    AUDIENCE_SEAT,
    AUDIENCE_SPECTATORS,
    Action,
    ActionResult,
    Notification,
    Rejection,
    apply_action,
)
from config import config
from constants import MAX_CLUES, MAX_PLAYERS
from game import Game, GameOptions, Player
from logging_config import get_logger
from turn_timer import TurnTimer

logger = get_logger(__name__)


@dataclass
class Spectator:
    """
    Someone watching a table.

    Attributes:
        user_id: Account identifier.
        username: Display name.
        websocket: Connection, or None while detached.
    """

    user_id: str
    username: str
    websocket: Optional[WebSocket] = None


@dataclass
class Table:
    """
    A table hosting one Hanabi game.

    Attributes:
        table_id: Registry key.
        name: Display name; "!test" gets a short clock.
        owner_id: User who created the table.
        game: The Game instance containing actual game state.
        max_players: Seats available.
        allow_spec: Whether spectators may join.
        connections: user_id -> WebSocket for seated players.
        spectators: user_id -> Spectator.
        game_lock: asyncio.Lock serializing every game mutation.
        on_game_end: Called once, under the lock, when the game ends.
    """

    table_id: str
    name: str
    owner_id: str
    game: Game
    max_players: int = MAX_PLAYERS
    allow_spec: bool = True
    connections: dict[str, WebSocket] = field(default_factory=dict)
    spectators: dict[str, Spectator] = field(default_factory=dict)
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    on_game_end: Optional[Callable[["Table"], None]] = None
    _end_handled: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        self.timer = TurnTimer(self.handle_timeout)
        self.log = logger.with_context(table_id=self.table_id, game_id=self.game.game_id)

    # -------------------------------------------------------------------------
    # Seating
    # -------------------------------------------------------------------------

    def add_player(
        self,
        user_id: str,
        username: str,
        websocket: Optional[WebSocket] = None,
    ) -> Optional[Player]:
        """
        Seat a player before the game starts.

        Returns:
            The seated Player, or None if the table is full or running.
        """
        if len(self.game.players) >= self.max_players:
            return None
        player = self.game.add_player(user_id, username)
        if player is None:
            return None
        if websocket is not None:
            self.connections[user_id] = websocket
        self.log.info(f"{username} sat down (seat {len(self.game.players) - 1}).")
        return player

    async def start(self) -> None:
        """
        Start the game and send everyone the opening state.

        Raises:
            ValueError: If the number of seated players is not playable.
        """
        async with self.game_lock:
            self.game.start()

            for seat in range(len(self.game.players)):
                for message in self.game.client_log(seat):
                    await self.send_to_seat(seat, message)
            for message in self.game.client_log(None):
                await self.send_to_spectators(message)

            seat = self.game.turn_player_index
            await self.send_to_seat(seat, {
                "type": "action",
                "resp": {
                    "can_clue": True,
                    "can_discard": self.game.clue_num < MAX_CLUES,
                    "can_blind_play_deck": False,
                },
            })
            await self.broadcast({
                "type": "clock",
                "resp": {"times": self.game.clock_times(), "active": seat},
            })
            if self.game.options.timed:
                self._arm_timer()

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def submit(
        self,
        user_id: str,
        action: Action,
        websocket: Optional[WebSocket] = None,
    ) -> Union[ActionResult, Rejection]:
        """
        Apply an action under the table lock and deliver the result.

        A rejection is sent to the acting connection only (`websocket`, or
        the user's registered connection when not given).
        """
        async with self.game_lock:
            return await self._submit_locked(user_id, action, websocket)

    async def _submit_locked(
        self,
        user_id: str,
        action: Action,
        websocket: Optional[WebSocket] = None,
    ) -> Union[ActionResult, Rejection]:
        result = apply_action(self.game, user_id, action)

        if isinstance(result, Rejection):
            self.log.warning(f"Rejected {action.type.name} from {user_id}: {result.reason}", extra={"user_id": user_id})
            denied = {"type": "denied", "resp": {"reason": result.reason}}
            if websocket is not None:
                await self._send(websocket, denied, user_id)
            else:
                await self.send_to_user(user_id, denied)
            return result

        await self._deliver(result)

        if result.ended:
            self.timer.cancel()
            self._handle_game_end()
        elif self.game.options.timed:
            self._arm_timer()

        return result

    async def handle_timeout(self, seat: int, turn_num: int) -> None:
        """
        Turn timer callback.

        Does nothing if the game is over or the player already moved on.
        Otherwise the player's clock is zeroed and the game is lost.
        """
        async with self.game_lock:
            game = self.game
            if game.ended or not game.running or game.turn_num != turn_num:
                return
            if seat != game.turn_player_index:
                return

            player = game.players[seat]
            player.time = 0
            self.log.info(f"{player.username} ran out of time on turn {turn_num}.", extra={"seat": seat})
            await self._submit_locked(player.user_id, Action.timeout(seat, turn_num))

    async def set_note(self, user_id: str, order: int, text: str) -> bool:
        """
        Store a player's note and show every player's notes to spectators.

        Returns:
            False if the user is not seated or the card has not been drawn.
        """
        async with self.game_lock:
            seat = self.game.get_player_index(user_id)
            if seat is None:
                return False
            notes = self.game.set_note(seat, order, text)
            if notes is None:
                return False
            await self.send_to_spectators({"type": "note", "resp": {"order": order, "notes": notes}})
            return True

    def _arm_timer(self) -> None:
        seat = self.game.turn_player_index
        self.timer.arm(seat, self.game.turn_num, self.game.players[seat].time)

    def _handle_game_end(self) -> None:
        if self._end_handled:
            return
        self._end_handled = True
        if self.on_game_end is not None:
            self.on_game_end(self)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def _deliver(self, result: ActionResult) -> None:
        for event in result.events:
            for seat in range(len(self.game.players)):
                await self.send_to_seat(seat, event.to_client_message(seat))
            await self.send_to_spectators(event.to_client_message(None))

        for notification in result.notifications:
            await self._route(notification)

    async def _route(self, notification: Notification) -> None:
        message = notification.to_message()
        if notification.audience == AUDIENCE_SEAT:
            await self.send_to_seat(notification.seat, message)
        elif notification.audience == AUDIENCE_SPECTATORS:
            await self.send_to_spectators(message)
        elif notification.audience == AUDIENCE_ALL:
            await self.broadcast(message)

    async def _send(self, websocket: Optional[WebSocket], message: dict, recipient: str) -> None:
        if websocket is None:
            return
        try:
            await websocket.send_json(message)
        except Exception as e:
            self.log.warning(f"Failed to send {message.get('type')} to {recipient}: {e}")

    async def send_to_user(self, user_id: str, message: dict) -> None:
        websocket = self.connections.get(user_id)
        if websocket is None and user_id in self.spectators:
            websocket = self.spectators[user_id].websocket
        await self._send(websocket, message, user_id)

    async def send_to_seat(self, seat: int, message: dict) -> None:
        user_id = self.game.players[seat].user_id
        await self._send(self.connections.get(user_id), message, user_id)

    async def send_to_spectators(self, message: dict) -> None:
        for spectator in list(self.spectators.values()):
            await self._send(spectator.websocket, message, spectator.user_id)

    async def broadcast(self, message: dict) -> None:
        """Send a message to every connected player and spectator."""
        for user_id, websocket in list(self.connections.items()):
            await self._send(websocket, message, user_id)
        await self.send_to_spectators(message)

    # -------------------------------------------------------------------------
    # Presence
    # -------------------------------------------------------------------------

    def connected_list(self) -> list[bool]:
        return [player.present for player in self.game.players]

    async def connect_player(self, user_id: str, websocket: WebSocket) -> bool:
        """
        Attach a seated player's connection and resend their view of the log.

        Returns:
            False if the user is not seated at this table.
        """
        async with self.game_lock:
            seat = self.game.get_player_index(user_id)
            if seat is None:
                return False
            self.connections[user_id] = websocket
            self.game.players[seat].present = True

            for message in self.game.client_log(seat):
                await self.send_to_seat(seat, message)
            if self.game.running:
                await self.send_to_seat(seat, {
                    "type": "clock",
                    "resp": {"times": self.game.clock_times(), "active": self.game.turn_player_index},
                })
            await self.broadcast({"type": "connected", "resp": {"list": self.connected_list()}})
            self.log.info(f"Seat {seat} connected.", extra={"user_id": user_id, "seat": seat})
            return True

    async def disconnect_player(self, user_id: str) -> None:
        async with self.game_lock:
            seat = self.game.get_player_index(user_id)
            if seat is None:
                return
            self.connections.pop(user_id, None)
            self.game.players[seat].present = False
            await self.broadcast({"type": "connected", "resp": {"list": self.connected_list()}})
            self.log.info(f"Seat {seat} disconnected.", extra={"user_id": user_id, "seat": seat})

    def spectator_names(self) -> list[str]:
        return [spectator.username for spectator in self.spectators.values()]

    async def add_spectator(self, user_id: str, username: str, websocket: WebSocket) -> bool:
        """
        Let someone watch the game.

        Returns:
            False if spectating is disabled or the table has too many watchers.
        """
        if not self.allow_spec:
            return False

        async with self.game_lock:
            if len(self.spectators) >= config.MAX_SPECTATORS_PER_TABLE:
                return False
            self.spectators[user_id] = Spectator(user_id, username, websocket)
            for message in self.game.client_log(None):
                await self._send(websocket, message, user_id)
            await self.broadcast({"type": "spectators", "resp": {"names": self.spectator_names()}})
        return True

    async def remove_spectator(self, user_id: str) -> None:
        async with self.game_lock:
            if self.spectators.pop(user_id, None) is None:
                return
            await self.broadcast({"type": "spectators", "resp": {"names": self.spectator_names()}})

    def has_user(self, user_id: str) -> bool:
        return self.game.get_player_index(user_id) is not None or user_id in self.spectators

    async def close(self) -> None:
        """Tell everyone the table is gone and drop all connections."""
        self.timer.cancel()
        await self.broadcast({"type": "table_gone", "resp": {"id": self.table_id}})
        self.connections.clear()
        self.spectators.clear()


class TableManager:
    """
    Registry of live tables.

    A finished table is removed from the registry immediately, then handed
    to the finalizer as a background task. Without a finalizer (no database
    configured) the table is simply closed.
    """

    def __init__(self, finalizer=None) -> None:
        self.tables: dict[str, Table] = {}
        self.finalizer = finalizer
        self._ids = itertools.count(1)
        self._finalize_tasks: set[asyncio.Task] = set()

    def create_table(
        self,
        name: str,
        owner_id: str,
        options: Optional[GameOptions] = None,
        max_players: int = MAX_PLAYERS,
        allow_spec: bool = True,
    ) -> Table:
        """
        Create and register a new table.

        Returns:
            The newly created Table.
        """
        table_id = str(next(self._ids))
        game = Game(name=name, options=options or GameOptions())
        table = Table(
            table_id=table_id,
            name=name,
            owner_id=owner_id,
            game=game,
            max_players=max_players,
            allow_spec=allow_spec,
            on_game_end=self._on_game_end,
        )
        self.tables[table_id] = table
        logger.info(f"Created table #{table_id} ({name})", extra={"table_id": table_id})
        return table

    def get_table(self, table_id: str) -> Optional[Table]:
        return self.tables.get(table_id)

    def remove_table(self, table_id: str) -> Optional[Table]:
        return self.tables.pop(table_id, None)

    def find_user_table(self, user_id: str) -> Optional[Table]:
        """
        Find the table a user is seated at or watching.

        Returns:
            The Table, or None.
        """
        for table in self.tables.values():
            if table.has_user(user_id):
                return table
        return None

    async def submit_action(
        self,
        table_id: str,
        user_id: str,
        action: Action,
        websocket: Optional[WebSocket] = None,
    ) -> Union[ActionResult, Rejection]:
        """Route an action to its table. Unknown tables are rejected."""
        table = self.get_table(table_id)
        if table is None:
            rejection = Rejection(f"Game #{table_id} does not exist.")
            logger.warning(rejection.reason, extra={"table_id": table_id, "user_id": user_id})
            if websocket is not None:
                await websocket.send_json({"type": "denied", "resp": {"reason": rejection.reason}})
            return rejection
        return await table.submit(user_id, action, websocket)

    def _on_game_end(self, table: Table) -> None:
        self.remove_table(table.table_id)
        if self.finalizer is not None:
            coro = self._finalize(table)
        else:
            logger.info(f"No game store configured; not recording table #{table.table_id}")
            coro = table.close()
        task = asyncio.create_task(coro)
        self._finalize_tasks.add(task)
        task.add_done_callback(self._finalize_tasks.discard)

    async def _finalize(self, table: Table) -> None:
        try:
            await self.finalizer.finalize(table)
        except Exception as e:
            logger.error(f"Finalization crashed for table #{table.table_id}: {e}", exc_info=True)

    async def wait_for_finalizers(self) -> None:
        """Wait for every scheduled finalization to finish."""
        if self._finalize_tasks:
            await asyncio.gather(*list(self._finalize_tasks))
