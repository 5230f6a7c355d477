"""
Test suite for WebSocket message handlers.

Tests payload validation and routing using a mock WebSocket and a real
TableManager.

Run with: pytest test_handlers.py -v
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from actions import ActionType
from game import GameOptions
from handlers import HANDLERS, ActionMessage, ConnectionContext, handle_action, handle_note
from table import TableManager


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


def make_ctx(websocket=None, user_id="user0", table=None, table_id=None):
    """Create a ConnectionContext with sensible defaults."""
    ws = websocket or MockWebSocket()
    return ConnectionContext(
        websocket=ws,
        user_id=user_id,
        table_id=table_id or (table.table_id if table else "1"),
        current_table=table,
    )


async def make_running_table(num_players=3):
    """Create a TableManager with one started table."""
    manager = TableManager()
    table = manager.create_table("test table", "user0", options=GameOptions(seed=42))
    sockets = []
    for i in range(num_players):
        ws = MockWebSocket()
        table.add_player(f"user{i}", f"Player{i}", ws)
        sockets.append(ws)
    await table.start()
    return manager, table, sockets


# =============================================================================
# Action messages
# =============================================================================

class TestActionMessage:

    def test_parses_clue(self):
        message = ActionMessage.model_validate(
            {"type": "action", "action_type": 0, "target": 1, "clue": {"type": 0, "value": 3}}
        )
        action = message.to_action()
        assert action.type == ActionType.CLUE
        assert action.target == 1
        assert action.clue.value == 3

    def test_timeout_not_accepted(self):
        with pytest.raises(ValueError):
            ActionMessage.model_validate({"action_type": 4})

    def test_unknown_action_type(self):
        with pytest.raises(ValueError):
            ActionMessage.model_validate({"action_type": 9})


class TestHandleAction:

    @pytest.mark.asyncio
    async def test_valid_play(self):
        manager, table, sockets = await make_running_table()
        order = table.game.players[0].hand_orders()[-1]
        ctx = make_ctx(websocket=sockets[0], table=table)

        await handle_action({"type": "action", "action_type": 1, "target": order}, ctx, table_manager=manager)

        assert table.game.turn_num == 1
        assert sockets[1].messages_of_type("notify")[-1]["resp"]["type"] == "turn"

    @pytest.mark.asyncio
    async def test_malformed_payload_denied(self):
        manager, table, sockets = await make_running_table()
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws, table=table)

        await handle_action({"type": "action", "action_type": "nope"}, ctx, table_manager=manager)

        assert ws.last_message()["type"] == "denied"
        assert table.game.turn_num == 0

    @pytest.mark.asyncio
    async def test_client_timeout_denied(self):
        manager, table, _ = await make_running_table()
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws, table=table)

        await handle_action({"type": "action", "action_type": 4}, ctx, table_manager=manager)

        assert ws.last_message()["type"] == "denied"
        assert not table.game.ended

    @pytest.mark.asyncio
    async def test_illegal_action_denied_to_sender(self):
        manager, table, sockets = await make_running_table()
        ctx = make_ctx(websocket=sockets[0], table=table)

        await handle_action(
            {"type": "action", "action_type": 0, "target": 0, "clue": {"type": 0, "value": 1}},
            ctx,
            table_manager=manager,
        )

        assert sockets[0].last_message() == {
            "type": "denied",
            "resp": {"reason": "You cannot give a clue to yourself."},
        }

    @pytest.mark.asyncio
    async def test_unknown_table_denied(self):
        manager, _, _ = await make_running_table()
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws, table_id="42")

        await handle_action({"type": "action", "action_type": 1, "target": 0}, ctx, table_manager=manager)

        assert ws.last_message() == {"type": "denied", "resp": {"reason": "Game #42 does not exist."}}

    @pytest.mark.asyncio
    async def test_routes_through_manager(self):
        manager = MagicMock()
        manager.submit_action = AsyncMock()
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws, user_id="user3", table_id="7")

        await handle_action({"type": "action", "action_type": 2, "target": 5}, ctx, table_manager=manager)

        manager.submit_action.assert_awaited_once()
        args, kwargs = manager.submit_action.call_args
        assert args[0] == "7"
        assert args[1] == "user3"
        assert args[2].type == ActionType.DISCARD
        assert kwargs["websocket"] is ws


# =============================================================================
# Notes
# =============================================================================

class TestHandleNote:

    @pytest.mark.asyncio
    async def test_note_saved(self):
        manager, table, sockets = await make_running_table()
        ctx = make_ctx(websocket=sockets[1], user_id="user1", table=table)

        await handle_note({"type": "note", "order": 0, "note": "five?"}, ctx, table_manager=manager)

        assert table.game.players[1].notes == {0: "five?"}
        assert sockets[1].messages_of_type("denied") == []

    @pytest.mark.asyncio
    async def test_note_on_undrawn_card_denied(self):
        manager, table, sockets = await make_running_table()
        ctx = make_ctx(websocket=sockets[1], user_id="user1", table=table)

        await handle_note({"type": "note", "order": 45, "note": "later"}, ctx, table_manager=manager)

        assert sockets[1].last_message()["type"] == "denied"

    @pytest.mark.asyncio
    async def test_negative_order_denied(self):
        manager, table, sockets = await make_running_table()
        ctx = make_ctx(websocket=sockets[1], user_id="user1", table=table)

        await handle_note({"type": "note", "order": -1, "note": "x"}, ctx, table_manager=manager)

        assert sockets[1].last_message()["type"] == "denied"

    @pytest.mark.asyncio
    async def test_note_without_table_denied(self):
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws, table_id="3")

        await handle_note({"type": "note", "order": 0, "note": "x"}, ctx)

        assert ws.last_message() == {"type": "denied", "resp": {"reason": "Game #3 does not exist."}}


class TestDispatch:

    def test_handlers_table(self):
        assert set(HANDLERS) == {"action", "note"}
        assert HANDLERS["action"] is handle_action
        assert HANDLERS["note"] is handle_note
