from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

EventType = Literal[
    "ACTION_INSERTED",
    "ACTION_DELETED",
    "BATCHES_CONFIRMED",
    "BATCH_ADVANCED",
    "SUBSTITUTION",
    "CARD_STAGED",
    "CLOCK_STARTED",
    "CLOCK_PAUSED",
    "CLOCK_RESET",
    "TURN_ENDED",
    "BREAK_STARTED",
    "TURN_STARTED",
    "MATCH_FINALIZED",
]


@dataclass(frozen=True, slots=True)
class MatchEvent:
    type: EventType
    inning: int
    turn: int
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, inning: int, turn: int, payload: dict[str, Any] | None = None) -> "MatchEvent":
        return MatchEvent(type=type, inning=inning, turn=turn, payload=payload or {}, ts=datetime.now(timezone.utc))
