"""
End-of-game pipeline.

Runs once per finished table, as a background task, after the table has
left the live registry. Steps run in order; the first one that fails is
logged and stops the pipeline. Nothing is retried.

Steps:
    record_game          games row (score is 0 for a lost game)
    record_participants  users and game_participants rows, with notes
    record_actions       the full action log, in one transaction
    count_similar        finished games dealt the same deck
    send_history         game_history message to every seat
    update_stats         recompute each participant's statistics
    get_stats            read the fresh statistics back
    teardown             table_gone to everyone, drop connections
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from stores.game_store import GameStore
    from table import Table

logger = logging.getLogger(__name__)


@dataclass
class FinalizationResult:
    """
    Outcome of finalizing one table.

    Attributes:
        completed: True if every step succeeded.
        failed_step: Name of the step that failed, if any.
        num_similar: Finished games (this one included) with the same deck.
        stats: user_id -> refreshed statistics.
    """
    completed: bool = False
    failed_step: Optional[str] = None
    num_similar: int = 0
    stats: dict[str, dict] = field(default_factory=dict)


class GameFinalizer:
    """Records a finished game and refreshes its players' statistics."""

    STEPS = (
        "record_game",
        "record_participants",
        "record_actions",
        "count_similar",
        "send_history",
        "update_stats",
        "get_stats",
        "teardown",
    )

    def __init__(self, store: "GameStore") -> None:
        self.store = store

    async def finalize(self, table: "Table") -> FinalizationResult:
        """
        Run every step for a finished table.

        Returns:
            FinalizationResult describing how far the pipeline got.
        """
        result = FinalizationResult()
        game_id = table.game.game_id

        for step in self.STEPS:
            try:
                await getattr(self, f"_{step}")(table, result)
            except Exception as e:
                result.failed_step = step
                logger.error(
                    f"Finalizing game {game_id} (table #{table.table_id}) failed at {step}: {e}",
                    exc_info=True,
                    extra={"table_id": table.table_id, "game_id": game_id},
                )
                return result

        result.completed = True
        logger.info(
            f"Recorded game {game_id} with score {table.game.final_score} "
            f"({result.num_similar} games on this deck)",
            extra={"table_id": table.table_id, "game_id": game_id},
        )
        return result

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def _record_game(self, table: "Table", result: FinalizationResult) -> None:
        game = table.game
        await self.store.record_game(
            game_id=game.game_id,
            name=table.name,
            owner=table.owner_id,
            variant=game.options.variant,
            timed=game.options.timed,
            seed=game.deck.seed,
            score=game.final_score,
            datetime_created=game.datetime_created,
            datetime_started=game.datetime_started,
        )

    async def _record_participants(self, table: "Table", result: FinalizationResult) -> None:
        game = table.game
        for seat, player in enumerate(game.players):
            await self.store.ensure_user(player.user_id, player.username)
            await self.store.add_participant(game.game_id, player.user_id, seat, player.notes)

    async def _record_actions(self, table: "Table", result: FinalizationResult) -> None:
        await self.store.add_actions(table.game.game_id, table.game.actions)

    async def _count_similar(self, table: "Table", result: FinalizationResult) -> None:
        game = table.game
        result.num_similar = await self.store.count_similar(game.options.variant, game.deck.seed)

    async def _send_history(self, table: "Table", result: FinalizationResult) -> None:
        game = table.game
        message = {
            "type": "game_history",
            "resp": {
                "id": game.game_id,
                "num_players": len(game.players),
                "num_similar": result.num_similar,
                "score": game.final_score,
                "variant": game.options.variant,
            },
        }
        for seat in range(len(game.players)):
            await table.send_to_seat(seat, message)

    async def _update_stats(self, table: "Table", result: FinalizationResult) -> None:
        for player in table.game.players:
            await self.store.update_stats(player.user_id)

    async def _get_stats(self, table: "Table", result: FinalizationResult) -> None:
        for player in table.game.players:
            stats = await self.store.get_stats(player.user_id)
            if stats is not None:
                result.stats[player.user_id] = stats

    async def _teardown(self, table: "Table", result: FinalizationResult) -> None:
        await table.close()
