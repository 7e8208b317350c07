from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import redis

from khokho.api.models import (
    ClockInstantRequest,
    ConfirmBatchesRequest,
    RecordActionRequest,
    ResetClockRequest,
    SessionState,
    StageCardRequest,
    SubstituteRequest,
    SyncEvent,
    ToggleClockRequest,
)
from khokho.config import settings_from_env
from khokho.core.events import MatchEvent
from khokho.errors import ValidationError
from khokho.lock import match_lock
from khokho.match_store import RedisSessionStore
from khokho.session import MatchSession
from khokho.streams import gateway

logger = logging.getLogger(__name__)

OperationName = Literal[
    "record",
    "undo",
    "stage_card",
    "confirm_card",
    "cancel_card",
    "confirm_batches",
    "reuse_batches",
    "substitute",
    "toggle_clock",
    "reset_clock",
    "tick",
    "end_turn",
    "skip_break",
    "end_match",
    "sync",
]

OPERATIONS: frozenset[str] = frozenset(OperationName.__args__)  # type: ignore[attr-defined]


@dataclass(frozen=True, slots=True)
class OperationResult:
    state: SessionState
    events: list[MatchEvent]
    stream_ids: list[str]


def _instant(now: float | None) -> float:
    return time.time() if now is None else now


def _apply(session: MatchSession, operation: str, payload: dict[str, Any]) -> list[MatchEvent]:
    handlers: dict[str, Callable[[], list[MatchEvent]]] = {
        "record": lambda: session.record_action(**RecordActionRequest.model_validate(payload).model_dump()),
        "undo": session.undo_last,
        "stage_card": lambda: session.stage_card(**StageCardRequest.model_validate(payload).model_dump()),
        "confirm_card": session.confirm_card,
        "cancel_card": session.cancel_card,
        "confirm_batches": lambda: session.confirm_batches(ConfirmBatchesRequest.model_validate(payload).batches),
        "reuse_batches": session.reuse_previous_batches,
        "substitute": lambda: _substitute(session, SubstituteRequest.model_validate(payload)),
        "toggle_clock": lambda: _toggle(session, ToggleClockRequest.model_validate(payload)),
        "reset_clock": lambda: session.reset_clock(confirmed=ResetClockRequest.model_validate(payload).confirmed),
        "tick": lambda: session.tick(now=_instant(ClockInstantRequest.model_validate(payload).now)),
        "end_turn": lambda: session.end_turn(now=_instant(ClockInstantRequest.model_validate(payload).now)),
        "skip_break": lambda: session.skip_break(now=_instant(ClockInstantRequest.model_validate(payload).now)),
        "end_match": lambda: session.end_match(now=_instant(ClockInstantRequest.model_validate(payload).now)),
        "sync": lambda: session.merge(SyncEvent.model_validate(payload)),
    }
    handler = handlers.get(operation)
    if handler is None:
        raise ValidationError(f"Unknown operation: {operation}")
    return handler()


def _substitute(session: MatchSession, req: SubstituteRequest) -> list[MatchEvent]:
    return session.substitute(team=req.team, out_player_id=req.out_player_id, in_player_id=req.in_player_id, kind=req.kind)


def _toggle(session: MatchSession, req: ToggleClockRequest) -> list[MatchEvent]:
    return session.toggle_clock(run=req.run, now=_instant(req.now))


def dispatch_operation(
    *,
    r: redis.Redis,
    match_id: str,
    operation: OperationName | str,
    payload: dict[str, Any] | None = None,
) -> OperationResult:
    """Entry point for operator UI, runners and remote sync.

    Applies an operation by:
    - acquiring a per-match lock (operations are serialized)
    - loading session state
    - running the session operation (validation happens before any mutation)
    - persisting state
    - publishing events through the sync gateway (fire-and-forget)
    """

    if operation not in OPERATIONS:
        raise ValidationError(f"Unknown operation: {operation}")

    store = RedisSessionStore(r)
    with match_lock(r=r, match_id=match_id, ttl_ms=settings_from_env().lock_ttl_ms):
        state = store.load(match_id)
        if state is None:
            raise LookupError("Match not found")

        session = MatchSession(state)
        events = _apply(session, operation, payload or {})

        # A duplicate sync insert changes nothing.
        if not events and operation == "sync":
            return OperationResult(state=state, events=[], stream_ids=[])

        store.save(state)
        if not events:
            # State such as elapsed time is persisted; observers only hear about changes that emit events.
            return OperationResult(state=state, events=[], stream_ids=[])

        logger.debug("match %s %s -> %s", match_id, operation, ",".join(e.type for e in events))

        ids = gateway.publish(r=r, state=state, events=events)
        return OperationResult(state=state, events=events, stream_ids=ids)
