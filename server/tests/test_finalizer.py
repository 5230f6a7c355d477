"""
Tests for the end-of-game pipeline.

Uses a mocked GameStore so no database is needed.
"""

import pytest
from unittest.mock import AsyncMock

from actions import Action
from game import GameOptions
from services.finalizer import FinalizationResult, GameFinalizer
from table import TableManager


class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def make_store(num_similar: int = 1) -> AsyncMock:
    store = AsyncMock()
    store.count_similar.return_value = num_similar
    store.get_stats.return_value = {"num_games": 1, "average_score": 0.0, "strikeout_rate": 1.0}
    return store


async def make_finished_table(num_players: int = 2):
    """A table whose game was lost by timeout on the first turn."""
    manager = TableManager()
    table = manager.create_table("finished", "user0", options=GameOptions(seed=3, variant=1))
    sockets = []
    for i in range(num_players):
        ws = MockWebSocket()
        table.add_player(f"user{i}", f"Player{i}", ws)
        sockets.append(ws)
    await table.start()
    table.on_game_end = None
    table.game.set_note(1, 0, "chop")
    await table.submit("user0", Action.timeout(0, 0))
    return table, sockets


def call_names(store: AsyncMock) -> list[str]:
    return [name for name, _, _ in store.mock_calls]


class TestFinalize:

    @pytest.mark.asyncio
    async def test_all_steps_complete(self):
        table, _ = await make_finished_table()
        store = make_store(num_similar=4)

        result = await GameFinalizer(store).finalize(table)

        assert result.completed
        assert result.failed_step is None
        assert result.num_similar == 4
        assert set(result.stats) == {"user0", "user1"}

    @pytest.mark.asyncio
    async def test_step_order(self):
        table, _ = await make_finished_table()
        store = make_store()

        await GameFinalizer(store).finalize(table)

        names = call_names(store)
        first_seen = [n for i, n in enumerate(names) if n not in names[:i]]
        assert first_seen == [
            "record_game",
            "ensure_user",
            "add_participant",
            "add_actions",
            "count_similar",
            "update_stats",
            "get_stats",
        ]

    @pytest.mark.asyncio
    async def test_lost_game_recorded_as_zero(self):
        table, _ = await make_finished_table()
        store = make_store()

        await GameFinalizer(store).finalize(table)

        kwargs = store.record_game.call_args.kwargs
        assert kwargs["score"] == 0
        assert kwargs["variant"] == 1
        assert kwargs["seed"] == 3
        assert kwargs["game_id"] == table.game.game_id

    @pytest.mark.asyncio
    async def test_participants_with_notes(self):
        table, _ = await make_finished_table()
        store = make_store()

        await GameFinalizer(store).finalize(table)

        store.ensure_user.assert_any_await("user1", "Player1")
        store.add_participant.assert_any_await(table.game.game_id, "user1", 1, {0: "chop"})
        store.add_actions.assert_awaited_once_with(table.game.game_id, table.game.actions)

    @pytest.mark.asyncio
    async def test_history_sent_to_every_seat(self):
        table, sockets = await make_finished_table()
        store = make_store(num_similar=2)

        await GameFinalizer(store).finalize(table)

        for ws in sockets:
            history = ws.messages_of_type("game_history")
            assert history == [{
                "type": "game_history",
                "resp": {
                    "id": table.game.game_id,
                    "num_players": 2,
                    "num_similar": 2,
                    "score": 0,
                    "variant": 1,
                },
            }]

    @pytest.mark.asyncio
    async def test_teardown_closes_table(self):
        table, sockets = await make_finished_table()

        await GameFinalizer(make_store()).finalize(table)

        assert sockets[0].messages[-1] == {"type": "table_gone", "resp": {"id": table.table_id}}
        assert table.connections == {}


class TestFinalizeFailure:

    @pytest.mark.asyncio
    async def test_failure_stops_pipeline(self):
        table, sockets = await make_finished_table()
        store = make_store()
        store.add_actions.side_effect = RuntimeError("disk full")

        result = await GameFinalizer(store).finalize(table)

        assert not result.completed
        assert result.failed_step == "record_actions"
        store.count_similar.assert_not_awaited()
        store.update_stats.assert_not_awaited()
        assert sockets[0].messages_of_type("game_history") == []
        assert table.connections

    @pytest.mark.asyncio
    async def test_failure_is_logged_with_step(self, caplog):
        table, _ = await make_finished_table()
        store = make_store()
        store.record_game.side_effect = RuntimeError("no connection")

        await GameFinalizer(store).finalize(table)

        messages = [r.message for r in caplog.records if r.levelname == "ERROR"]
        assert any("record_game" in m and "no connection" in m for m in messages)

    @pytest.mark.asyncio
    async def test_missing_stats_skipped(self):
        table, _ = await make_finished_table()
        store = make_store()
        store.get_stats.return_value = None

        result = await GameFinalizer(store).finalize(table)

        assert result.completed
        assert result.stats == {}


def test_result_defaults():
    result = FinalizationResult()
    assert not result.completed
    assert result.failed_step is None
    assert result.stats == {}
