"""
PostgreSQL-backed store for finished Hanabi games.

Nothing is written while a game is in progress. When a game ends the
finalizer records, in order: the game row, one participant row per seat,
the full action log, and then refreshes each participant's statistics.

Statistics per user:
- num_played: games the user has finished
- average_score: mean score over games that did not end in a loss
- strikeout_rate: share of games that ended with a score of 0
"""

import json
import logging
from datetime import timezone
from typing import Optional

import asyncpg

from models.events import EventType, GameEvent

logger = logging.getLogger(__name__)


# SQL schema for the game store
SCHEMA_SQL = """
-- Players and their longitudinal statistics
CREATE TABLE IF NOT EXISTS users (
    id VARCHAR(50) PRIMARY KEY,
    username VARCHAR(50) NOT NULL,
    num_played INT DEFAULT 0,
    average_score REAL DEFAULT 0,
    strikeout_rate REAL DEFAULT 0,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- One row per finished game
CREATE TABLE IF NOT EXISTS games (
    id UUID PRIMARY KEY,
    name VARCHAR(50) NOT NULL,
    owner VARCHAR(50),
    variant INT NOT NULL,
    timed BOOLEAN DEFAULT FALSE,
    seed BIGINT NOT NULL,
    score INT NOT NULL,
    datetime_created TIMESTAMPTZ,
    datetime_started TIMESTAMPTZ,
    datetime_finished TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS game_participants (
    game_id UUID NOT NULL REFERENCES games(id) ON DELETE CASCADE,
    user_id VARCHAR(50) NOT NULL,
    seat INT NOT NULL,
    notes JSONB DEFAULT '{}',
    PRIMARY KEY (game_id, user_id)
);

-- Full action log, enough to replay the game
CREATE TABLE IF NOT EXISTS game_actions (
    id BIGSERIAL PRIMARY KEY,
    game_id UUID NOT NULL REFERENCES games(id) ON DELETE CASCADE,
    sequence_num INT NOT NULL,
    event_type VARCHAR(50) NOT NULL,
    event_data JSONB NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),

    UNIQUE(game_id, sequence_num)
);

CREATE INDEX IF NOT EXISTS idx_games_seed ON games(variant, seed);
CREATE INDEX IF NOT EXISTS idx_participants_user ON game_participants(user_id);
CREATE INDEX IF NOT EXISTS idx_actions_game_seq ON game_actions(game_id, sequence_num);
"""


class GameStore:
    """
    PostgreSQL-backed store for finished games and player statistics.

    Uses asyncpg for async database access.
    """

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize the store with a connection pool.

        Args:
            pool: asyncpg connection pool.
        """
        self.pool = pool

    @classmethod
    async def create(cls, postgres_url: str) -> "GameStore":
        """
        Create a GameStore with a new connection pool.

        Args:
            postgres_url: PostgreSQL connection URL.

        Returns:
            Configured GameStore instance.
        """
        pool = await asyncpg.create_pool(postgres_url, min_size=2, max_size=10)
        store = cls(pool)
        await store.initialize_schema()
        return store

    async def initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Game store schema initialized")

    async def close(self) -> None:
        """Close the connection pool."""
        await self.pool.close()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def ensure_user(self, user_id: str, username: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO users (id, username) VALUES ($1, $2)
                ON CONFLICT (id) DO UPDATE SET username = EXCLUDED.username
                """,
                user_id,
                username,
            )

    async def record_game(
        self,
        game_id: str,
        name: str,
        owner: str,
        variant: int,
        timed: bool,
        seed: int,
        score: int,
        datetime_created=None,
        datetime_started=None,
    ) -> None:
        """
        Insert the row for a finished game.

        Args:
            game_id: Game UUID.
            name: Table name.
            owner: User id of the table owner.
            variant: Variant id.
            timed: Whether the game was timed.
            seed: Deck seed, used to find games dealt the same deck.
            score: Final score (0 for a lost game).
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO games (id, name, owner, variant, timed, seed, score,
                                   datetime_created, datetime_started)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                game_id,
                name,
                owner,
                variant,
                timed,
                seed,
                score,
                datetime_created,
                datetime_started,
            )

    async def add_participant(
        self,
        game_id: str,
        user_id: str,
        seat: int,
        notes: Optional[dict[int, str]] = None,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO game_participants (game_id, user_id, seat, notes)
                VALUES ($1, $2, $3, $4)
                """,
                game_id,
                user_id,
                seat,
                json.dumps({str(k): v for k, v in (notes or {}).items()}),
            )

    async def add_actions(self, game_id: str, events: list[GameEvent]) -> int:
        """
        Store a game's full action log atomically.

        All events are inserted in a single transaction.

        Args:
            game_id: Game UUID.
            events: The action log in sequence order.

        Returns:
            Number of events written.
        """
        if not events:
            return 0

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    """
                    INSERT INTO game_actions (game_id, sequence_num, event_type, event_data, created_at)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    [
                        (
                            game_id,
                            event.sequence_num,
                            event.event_type.value,
                            json.dumps(event.data),
                            event.timestamp,
                        )
                        for event in events
                    ],
                )
        return len(events)

    async def update_stats(self, user_id: str) -> None:
        """Recompute a user's statistics from their finished games."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE users SET
                    num_played = s.num_played,
                    average_score = s.average_score,
                    strikeout_rate = s.strikeout_rate
                FROM (
                    SELECT
                        COUNT(*) AS num_played,
                        COALESCE(AVG(g.score) FILTER (WHERE g.score != 0), 0) AS average_score,
                        COALESCE(
                            COUNT(*) FILTER (WHERE g.score = 0)::REAL / NULLIF(COUNT(*), 0),
                            0
                        ) AS strikeout_rate
                    FROM game_participants p
                    JOIN games g ON g.id = p.game_id
                    WHERE p.user_id = $1
                ) AS s
                WHERE users.id = $1
                """,
                user_id,
            )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def count_similar(self, variant: int, seed: int) -> int:
        """Count finished games dealt the same deck."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT COUNT(*) AS num FROM games WHERE variant = $1 AND seed = $2",
                variant,
                seed,
            )
            return row["num"] if row else 0

    async def get_stats(self, user_id: str) -> Optional[dict]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, username, num_played, average_score, strikeout_rate
                FROM users WHERE id = $1
                """,
                user_id,
            )
            return dict(row) if row else None

    async def get_actions(self, game_id: str) -> list[GameEvent]:
        """
        Load a finished game's action log.

        Returns:
            List of events in sequence order.
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT game_id, sequence_num, event_type, event_data, created_at
                FROM game_actions
                WHERE game_id = $1
                ORDER BY sequence_num
                """,
                game_id,
            )
            return [self._row_to_event(row) for row in rows]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _row_to_event(self, row: asyncpg.Record) -> GameEvent:
        """Convert a database row to a GameEvent."""
        return GameEvent(
            event_type=EventType(row["event_type"]),
            game_id=str(row["game_id"]),
            sequence_num=row["sequence_num"],
            data=json.loads(row["event_data"]) if row["event_data"] else {},
            timestamp=row["created_at"].replace(tzinfo=timezone.utc),
        )


# Global game store instance (initialized on first use)
_game_store: Optional[GameStore] = None


async def get_game_store(postgres_url: str) -> GameStore:
    """
    Get or create the global game store instance.

    Args:
        postgres_url: PostgreSQL connection URL.

    Returns:
        GameStore instance.
    """
    global _game_store
    if _game_store is None:
        _game_store = await GameStore.create(postgres_url)
    return _game_store


async def close_game_store() -> None:
    """Close the global game store connection pool."""
    global _game_store
    if _game_store is not None:
        await _game_store.close()
        _game_store = None
