"""
Test suite for live tables and the table registry.

Covers:
- Opening messages when a game starts
- Delivery of accepted actions and rejections
- Turn timer arming and timeouts
- Presence, spectators and notes
- Game end: removal from the registry and finalization scheduling

Run with: pytest test_table.py -v
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from actions import Action, Rejection
from config import config
from game import GameOptions
from table import Table, TableManager
from variants import Clue, ClueType


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]

    def notifies(self, resp_type: str) -> list[dict]:
        return [
            m["resp"] for m in self.messages
            if m.get("type") == "notify" and m["resp"].get("type") == resp_type
        ]


class BrokenWebSocket(MockWebSocket):
    async def send_json(self, data: dict):
        raise ConnectionError("socket closed")


def make_manager(finalizer=None) -> TableManager:
    return TableManager(finalizer=finalizer)


def make_table(manager=None, num_players: int = 3, **options) -> tuple[Table, list[MockWebSocket]]:
    """Create a registered table with seated, connected players."""
    manager = manager or make_manager()
    table = manager.create_table("test table", "user0", options=GameOptions(seed=42, **options))
    sockets = []
    for i in range(num_players):
        ws = MockWebSocket()
        table.add_player(f"user{i}", f"Player{i}", ws)
        sockets.append(ws)
    return table, sockets


def clue_for(table: Table, target: int) -> Action:
    rank = table.game.players[target].hand[0].rank
    return Action.give_clue(target, Clue(ClueType.NUMBER, rank))


# =============================================================================
# Starting
# =============================================================================

class TestStart:

    @pytest.mark.asyncio
    async def test_each_seat_gets_scrubbed_log(self):
        table, sockets = make_table()
        await table.start()

        own_draws = [d for d in sockets[1].notifies("draw") if d["who"] == 1]
        assert len(own_draws) == 5
        assert all("suit" not in d for d in own_draws)
        other_draws = [d for d in sockets[1].notifies("draw") if d["who"] == 0]
        assert all("suit" in d for d in other_draws)

    @pytest.mark.asyncio
    async def test_seats_never_receive_seed(self):
        table, sockets = make_table()
        await table.start()
        fresh = MockWebSocket()
        await table.connect_player("user1", fresh)

        for ws in sockets + [fresh]:
            started = ws.notifies("game_started")
            assert len(started) == 1
            assert "seed" not in started[0]

    @pytest.mark.asyncio
    async def test_first_player_gets_action_prompt(self):
        table, sockets = make_table()
        await table.start()
        assert len(sockets[0].messages_of_type("action")) == 1
        assert sockets[1].messages_of_type("action") == []

    @pytest.mark.asyncio
    async def test_clock_sent_to_everyone(self):
        table, sockets = make_table()
        await table.start()
        for ws in sockets:
            assert ws.last_message() == {"type": "clock", "resp": {"times": [0, 0, 0], "active": 0}}

    @pytest.mark.asyncio
    async def test_start_with_one_player_fails(self):
        table, _ = make_table(num_players=1)
        with pytest.raises(ValueError):
            await table.start()

    @pytest.mark.asyncio
    async def test_untimed_game_has_no_timer(self):
        table, _ = make_table(timed=False)
        await table.start()
        assert not table.timer.pending

    @pytest.mark.asyncio
    async def test_timed_game_arms_timer(self):
        table, _ = make_table(timed=True)
        await table.start()
        assert table.timer.pending
        table.timer.cancel()


# =============================================================================
# Seating
# =============================================================================

class TestSeating:

    def test_max_players_respected(self):
        manager = make_manager()
        table = manager.create_table("small", "user0", max_players=2)
        assert table.add_player("a", "A") is not None
        assert table.add_player("b", "B") is not None
        assert table.add_player("c", "C") is None

    @pytest.mark.asyncio
    async def test_cannot_sit_after_start(self):
        table, _ = make_table()
        await table.start()
        assert table.add_player("late", "Late") is None


# =============================================================================
# Actions
# =============================================================================

class TestSubmit:

    @pytest.mark.asyncio
    async def test_accepted_action_reaches_everyone(self):
        table, sockets = make_table()
        spectator = MockWebSocket()
        await table.add_spectator("watcher", "Watcher", spectator)
        await table.start()

        result = await table.submit("user0", clue_for(table, 1))

        assert not isinstance(result, Rejection)
        for ws in sockets + [spectator]:
            assert len(ws.notifies("clue")) == 1
            assert ws.notifies("turn")[-1] == {"type": "turn", "num": 1, "who": 1}

    @pytest.mark.asyncio
    async def test_rejection_goes_to_actor_only(self):
        table, sockets = make_table()
        await table.start()
        for ws in sockets:
            ws.messages.clear()

        order = table.game.players[1].hand_orders()[0]
        result = await table.submit("user1", Action.play(order))

        assert isinstance(result, Rejection)
        assert sockets[1].messages == [{"type": "denied", "resp": {"reason": result.reason}}]
        assert sockets[0].messages == []
        assert sockets[2].messages == []

    @pytest.mark.asyncio
    async def test_rejection_to_given_websocket(self):
        table, _ = make_table()
        await table.start()
        stranger = MockWebSocket()
        result = await table.submit("stranger", Action.play(0), websocket=stranger)
        assert isinstance(result, Rejection)
        assert stranger.messages_of_type("denied")

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_actions(self):
        table, _ = make_table()
        await table.start()
        order = table.game.players[0].hand_orders()[-1]

        results = await asyncio.gather(
            table.submit("user0", Action.play(order)),
            table.submit("user0", Action.play(order)),
        )

        rejections = [r for r in results if isinstance(r, Rejection)]
        assert len(rejections) == 1
        assert table.game.turn_num == 1

    @pytest.mark.asyncio
    async def test_broken_socket_does_not_stop_delivery(self):
        table, sockets = make_table()
        table.connections["user2"] = BrokenWebSocket()
        await table.start()
        await table.submit("user0", clue_for(table, 1))
        assert sockets[1].notifies("clue")

    @pytest.mark.asyncio
    async def test_timer_rearmed_after_action(self):
        table, _ = make_table(timed=True)
        await table.start()
        first_task = table.timer._task
        await table.submit("user0", clue_for(table, 1))
        assert table.timer.pending
        assert table.timer._task is not first_task
        table.timer.cancel()


class TestManagerRouting:

    @pytest.mark.asyncio
    async def test_unknown_table(self):
        manager = make_manager()
        ws = MockWebSocket()
        result = await manager.submit_action("99", "user0", Action.play(0), websocket=ws)
        assert result == Rejection("Game #99 does not exist.")
        assert ws.last_message() == {"type": "denied", "resp": {"reason": "Game #99 does not exist."}}

    @pytest.mark.asyncio
    async def test_routes_to_table(self):
        manager = make_manager()
        table, _ = make_table(manager)
        await table.start()
        result = await manager.submit_action(table.table_id, "user0", clue_for(table, 1))
        assert not isinstance(result, Rejection)
        assert table.game.turn_num == 1

    def test_table_ids_are_sequential(self):
        manager = make_manager()
        first = manager.create_table("a", "u")
        second = manager.create_table("b", "u")
        assert (first.table_id, second.table_id) == ("1", "2")

    def test_find_user_table(self):
        manager = make_manager()
        table, _ = make_table(manager)
        assert manager.find_user_table("user1") is table
        assert manager.find_user_table("nobody") is None


# =============================================================================
# Timeouts
# =============================================================================

class TestTimeout:

    @pytest.mark.asyncio
    async def test_stale_timeout_ignored(self):
        table, _ = make_table()
        await table.start()
        await table.submit("user0", clue_for(table, 1))

        await table.handle_timeout(0, 0)

        assert not table.game.ended
        assert table.game.turn_num == 1

    @pytest.mark.asyncio
    async def test_timeout_for_current_turn_ends_game(self):
        finalizer = MagicMock()
        finalizer.finalize = AsyncMock()
        manager = make_manager(finalizer)
        table, sockets = make_table(manager)
        await table.start()

        await table.handle_timeout(0, 0)
        await manager.wait_for_finalizers()

        assert table.game.ended
        assert table.game.loss
        assert table.game.players[0].time == 0
        assert manager.get_table(table.table_id) is None
        finalizer.finalize.assert_awaited_once_with(table)
        assert any(
            m["resp"]["text"] == "Player0 ran out of time!"
            for m in sockets[1].messages_of_type("message")
        )

    @pytest.mark.asyncio
    async def test_timer_expiry_triggers_timeout(self):
        finalizer = MagicMock()
        finalizer.finalize = AsyncMock()
        manager = make_manager(finalizer)
        table, _ = make_table(manager, timed=True, starting_time_ms=10)
        await table.start()

        for _ in range(100):
            if table.game.ended:
                break
            await asyncio.sleep(0.01)
        await manager.wait_for_finalizers()

        assert table.game.ended and table.game.loss
        finalizer.finalize.assert_awaited_once_with(table)


# =============================================================================
# Game end
# =============================================================================

class TestGameEnd:

    async def lose(self, table: Table) -> None:
        await table.submit("user0", Action.timeout(0, 0))

    @pytest.mark.asyncio
    async def test_game_end_removes_table_and_finalizes(self):
        finalizer = MagicMock()
        finalizer.finalize = AsyncMock()
        manager = make_manager(finalizer)
        table, _ = make_table(manager)
        await table.start()

        await table.handle_timeout(0, 0)

        assert table.table_id not in manager.tables
        await manager.wait_for_finalizers()
        finalizer.finalize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_game_end_handled_once(self):
        on_end = MagicMock()
        table, _ = make_table()
        table.on_game_end = on_end
        await table.start()
        await table.handle_timeout(0, 0)
        table._handle_game_end()
        on_end.assert_called_once_with(table)

    @pytest.mark.asyncio
    async def test_without_finalizer_table_is_closed(self):
        manager = make_manager()
        table, sockets = make_table(manager)
        await table.start()

        await table.handle_timeout(0, 0)
        await manager.wait_for_finalizers()

        assert sockets[0].last_message() == {"type": "table_gone", "resp": {"id": table.table_id}}
        assert table.connections == {}

    @pytest.mark.asyncio
    async def test_finalizer_crash_is_contained(self, caplog):
        finalizer = MagicMock()
        finalizer.finalize = AsyncMock(side_effect=RuntimeError("db down"))
        manager = make_manager(finalizer)
        table, _ = make_table(manager)
        await table.start()

        await table.handle_timeout(0, 0)
        await manager.wait_for_finalizers()

        assert any("db down" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_reveals_sent_per_seat(self):
        table, sockets = make_table()
        await table.start()
        await table.handle_timeout(0, 0)
        for seat, ws in enumerate(sockets):
            reveals = ws.notifies("reveal")
            assert len(reveals) == 5
            assert all(r["which"]["index"] == seat for r in reveals)

    @pytest.mark.asyncio
    async def test_timer_cancelled_at_end(self):
        table, _ = make_table(timed=True)
        await table.start()
        await table.submit("user0", Action.timeout(0, 0))
        assert not table.timer.pending


# =============================================================================
# Presence and spectators
# =============================================================================

class TestPresence:

    @pytest.mark.asyncio
    async def test_reconnect_resends_log(self):
        table, _ = make_table()
        await table.start()
        fresh = MockWebSocket()

        assert await table.connect_player("user1", fresh)

        assert len(fresh.notifies("draw")) == 15
        assert fresh.messages_of_type("clock")
        assert fresh.last_message() == {"type": "connected", "resp": {"list": [True, True, True]}}

    @pytest.mark.asyncio
    async def test_connect_unknown_user(self):
        table, _ = make_table()
        assert not await table.connect_player("nobody", MockWebSocket())

    @pytest.mark.asyncio
    async def test_disconnect_marks_absent(self):
        table, sockets = make_table()
        await table.disconnect_player("user2")
        assert not table.game.players[2].present
        assert "user2" not in table.connections
        assert sockets[0].last_message() == {"type": "connected", "resp": {"list": [True, True, False]}}


class TestSpectators:

    @pytest.mark.asyncio
    async def test_spectator_sees_full_log(self):
        table, _ = make_table()
        await table.start()
        ws = MockWebSocket()
        assert await table.add_spectator("watcher", "Watcher", ws)
        draws = ws.notifies("draw")
        assert len(draws) == 15
        assert all("suit" in d for d in draws)

    @pytest.mark.asyncio
    async def test_spectators_disabled(self):
        manager = make_manager()
        table = manager.create_table("private", "user0", allow_spec=False)
        assert not await table.add_spectator("watcher", "Watcher", MockWebSocket())

    @pytest.mark.asyncio
    async def test_spectator_limit_holds_under_concurrent_joins(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_SPECTATORS_PER_TABLE", 1)
        table, _ = make_table()
        await table.start()

        joined = await asyncio.gather(
            table.add_spectator("watcher1", "Watcher1", MockWebSocket()),
            table.add_spectator("watcher2", "Watcher2", MockWebSocket()),
        )

        assert sorted(joined) == [False, True]
        assert len(table.spectators) == 1

    @pytest.mark.asyncio
    async def test_spectator_list_broadcast(self):
        table, sockets = make_table()
        await table.add_spectator("watcher", "Watcher", MockWebSocket())
        assert sockets[0].last_message() == {"type": "spectators", "resp": {"names": ["Watcher"]}}
        await table.remove_spectator("watcher")
        assert sockets[0].last_message() == {"type": "spectators", "resp": {"names": []}}

    @pytest.mark.asyncio
    async def test_notes_shown_to_spectators(self):
        table, sockets = make_table()
        await table.start()
        ws = MockWebSocket()
        await table.add_spectator("watcher", "Watcher", ws)

        assert await table.set_note("user1", 2, "saved")

        assert ws.last_message() == {"type": "note", "resp": {"order": 2, "notes": ["", "saved", ""]}}
        assert sockets[0].messages_of_type("note") == []

    @pytest.mark.asyncio
    async def test_note_from_spectator_refused(self):
        table, _ = make_table()
        await table.start()
        await table.add_spectator("watcher", "Watcher", MockWebSocket())
        assert not await table.set_note("watcher", 2, "hi")
