"""
Event definitions for the Hanabi action log.

Every accepted action appends immutable events to the game's action log.
The log is:
- Broadcast to players and spectators as it grows
- Stored with the finished game for replays
- Enough on its own to rebuild clue count, strikes, score and stacks

Events are the single source of truth for what happened in a game.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """All event types that can appear in a game's action log."""

    # Lifecycle
    GAME_STARTED = "game_started"
    GAME_OVER = "game_over"

    # Gameplay
    DRAW = "draw"
    DRAW_SIZE = "draw_size"
    CLUE = "clue"
    PLAYED = "played"
    DISCARD = "discard"
    STRIKE = "strike"
    REORDER = "reorder"
    STATUS = "status"
    TURN = "turn"

    # Narrative line shown in the chat log
    TEXT = "text"


@dataclass
class GameEvent:
    """
    One entry in a game's action log.

    Attributes:
        event_type: The type of event (from EventType enum).
        game_id: UUID of the game this event belongs to.
        sequence_num: Monotonically increasing sequence number within game.
        timestamp: When the event occurred (UTC).
        data: Event-specific payload, in the shape clients expect.
    """

    event_type: EventType
    game_id: str
    sequence_num: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict = field(default_factory=dict)

    @property
    def is_text(self) -> bool:
        return self.event_type == EventType.TEXT

    def to_dict(self) -> dict:
        """Serialize event to dictionary for JSON storage."""
        return {
            "event_type": self.event_type.value,
            "game_id": self.game_id,
            "sequence_num": self.sequence_num,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> "GameEvent":
        """Deserialize event from dictionary."""
        timestamp = d["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)

        return cls(
            event_type=EventType(d["event_type"]),
            game_id=d["game_id"],
            sequence_num=d["sequence_num"],
            timestamp=timestamp,
            data=d.get("data", {}),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "GameEvent":
        """Deserialize event from JSON string."""
        return cls.from_dict(json.loads(json_str))

    def to_client_message(self, for_seat: Optional[int] = None) -> dict:
        """
        Build the message sent to one recipient.

        Narrative lines go out as "message", everything else as "notify".
        A player never learns the identity of a card they draw: when
        `for_seat` is the drawing seat, suit and rank are removed. Seated
        players never see the deck seed either, since it fixes the deal.

        Args:
            for_seat: Seat index of the recipient, or None for spectators.
        """
        if self.is_text:
            return {"type": "message", "resp": {"text": self.data["text"]}}

        resp = {"type": self.event_type.value, **self.data}
        if (
            self.event_type == EventType.DRAW
            and for_seat is not None
            and self.data.get("who") == for_seat
        ):
            resp.pop("suit", None)
            resp.pop("rank", None)
        if self.event_type == EventType.GAME_STARTED and for_seat is not None:
            resp.pop("seed", None)
        return {"type": "notify", "resp": resp}
