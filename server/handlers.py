"""WebSocket message handlers for the Hanabi table server.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.

Inbound messages are flat JSON objects:
    {"type": "action", "action_type": 0, "target": 1, "clue": {"type": 0, "value": 3}}
    {"type": "note", "order": 12, "note": "chop"}

A malformed message or a refused action produces one
{"type": "denied", "resp": {"reason": ...}} message to the sender only.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket
from pydantic import BaseModel, Field, ValidationError, field_validator

from actions import Action, ActionType
from table import Table
from variants import Clue, ClueType

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    user_id: str
    table_id: str
    current_table: Optional[Table] = None


# ---------------------------------------------------------------------------
# Inbound message models
# ---------------------------------------------------------------------------

class ClueModel(BaseModel):
    type: ClueType
    value: int


class ActionMessage(BaseModel):
    """A player's action. Clients can never send a timeout."""

    action_type: ActionType
    target: Optional[int] = None
    clue: Optional[ClueModel] = None

    @field_validator("action_type")
    @classmethod
    def not_timeout(cls, v: ActionType) -> ActionType:
        if v == ActionType.TIMEOUT:
            raise ValueError("timeout cannot be sent by a client")
        return v

    def to_action(self) -> Action:
        clue = Clue(self.clue.type, self.clue.value) if self.clue else None
        return Action(self.action_type, target=self.target, clue=clue)


class NoteMessage(BaseModel):
    order: int = Field(ge=0)
    note: str = Field(max_length=1000)


async def send_denied(websocket: WebSocket, reason: str) -> None:
    await websocket.send_json({"type": "denied", "resp": {"reason": reason}})


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"Invalid message: {location} {error.get('msg', '')}".strip()


# ---------------------------------------------------------------------------
# Game handlers
# ---------------------------------------------------------------------------

async def handle_action(data: dict, ctx: ConnectionContext, *, table_manager, **kw) -> None:
    try:
        message = ActionMessage.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Bad action payload from {ctx.user_id}: {e.errors()}")
        await send_denied(ctx.websocket, _first_error(e))
        return

    # Rejections are delivered to the sender by the table (or the manager)
    await table_manager.submit_action(
        ctx.table_id,
        ctx.user_id,
        message.to_action(),
        websocket=ctx.websocket,
    )


async def handle_note(data: dict, ctx: ConnectionContext, **kw) -> None:
    try:
        message = NoteMessage.model_validate(data)
    except ValidationError as e:
        await send_denied(ctx.websocket, _first_error(e))
        return

    if not ctx.current_table:
        await send_denied(ctx.websocket, f"Game #{ctx.table_id} does not exist.")
        return

    if not await ctx.current_table.set_note(ctx.user_id, message.order, message.note):
        await send_denied(ctx.websocket, "You cannot write a note on that card.")


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "action": handle_action,
    "note": handle_note,
}
