"""
Table API router for Hanabi.

Provides endpoints for:
- Creating a table
- Seating players before the game starts
- Starting the game
- Replaying a finished game from its stored action log
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from game import GameOptions
from models.game_state import rebuild_state_from_store
from variants import VARIANTS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tables"])

# Service instances (set during app startup)
_table_manager = None
_game_store = None


def set_table_manager(manager) -> None:
    """Set the table manager instance."""
    global _table_manager
    _table_manager = manager


def set_game_store(store) -> None:
    """Set the game store instance."""
    global _game_store
    _game_store = store


# -------------------------------------------------------------------------
# Request Models
# -------------------------------------------------------------------------

class CreateTableRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    owner_id: str
    max_players: int = Field(default=5, ge=2, le=5)
    allow_spec: bool = True
    variant: Optional[int] = None
    timed: Optional[bool] = None
    reorder_cards: Optional[bool] = None
    seed: Optional[int] = None


class SitRequest(BaseModel):
    user_id: str
    username: str = Field(min_length=1, max_length=50)


def _require_table(table_id: str):
    if _table_manager is None:
        raise HTTPException(status_code=503, detail="Table manager unavailable")
    table = _table_manager.get_table(table_id)
    if table is None:
        raise HTTPException(status_code=404, detail=f"Game #{table_id} does not exist.")
    return table


# -------------------------------------------------------------------------
# Table Endpoints
# -------------------------------------------------------------------------

@router.post("/tables")
async def create_table(request: CreateTableRequest):
    """Create a table. Unset options fall back to the server defaults."""
    if _table_manager is None:
        raise HTTPException(status_code=503, detail="Table manager unavailable")
    if request.variant is not None and request.variant not in VARIANTS:
        raise HTTPException(status_code=400, detail=f"Unknown variant: {request.variant}")

    options = GameOptions(seed=request.seed)
    if request.variant is not None:
        options.variant = request.variant
    if request.timed is not None:
        options.timed = request.timed
    if request.reorder_cards is not None:
        options.reorder_cards = request.reorder_cards

    table = _table_manager.create_table(
        name=request.name,
        owner_id=request.owner_id,
        options=options,
        max_players=request.max_players,
        allow_spec=request.allow_spec,
    )
    return {"table_id": table.table_id, "game_id": table.game.game_id}


@router.post("/tables/{table_id}/players")
async def sit_down(table_id: str, request: SitRequest):
    """Seat a player at a table that has not started."""
    table = _require_table(table_id)
    if table.game.get_player_index(request.user_id) is not None:
        raise HTTPException(status_code=409, detail="Already seated")
    if table.add_player(request.user_id, request.username) is None:
        raise HTTPException(status_code=409, detail="This table is full or already running")
    return {"seat": len(table.game.players) - 1}


@router.post("/tables/{table_id}/start")
async def start_table(table_id: str):
    """Deal and start the game."""
    table = _require_table(table_id)
    if table.game.running or table.game.ended:
        raise HTTPException(status_code=409, detail="The game has already started")
    try:
        await table.start()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"first_player": table.game.turn_player_index}


# -------------------------------------------------------------------------
# Replay Endpoints
# -------------------------------------------------------------------------

@router.get("/replay/{game_id}")
async def get_replay(game_id: str):
    """
    Rebuild a finished game from its action log.

    Returns the final public state.
    """
    if _game_store is None:
        raise HTTPException(status_code=503, detail="Game store unavailable")

    try:
        uuid.UUID(game_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"No game with id {game_id}")

    try:
        state = await rebuild_state_from_store(_game_store, game_id)
    except (ValueError, KeyError) as e:
        logger.warning(f"Could not replay game {game_id}: {e!r}")
        raise HTTPException(status_code=404, detail=f"Game {game_id} cannot be replayed")

    return {
        "game_id": state.game_id,
        "variant": state.variant,
        "seed": state.seed,
        "players": [p.name for p in state.players],
        "score": state.final_score,
        "strikes": state.strikes,
        "stacks": state.stacks,
        "loss": state.loss,
        "turns": state.turn_num,
    }
