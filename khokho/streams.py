from __future__ import annotations

import json
import logging
from collections import defaultdict, deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import cast

import redis

from khokho.api.models import ScoringAction, SessionState, SyncEvent, SyncEventKind
from khokho.core import projections
from khokho.core.events import MatchEvent
from khokho.core.rows import action_to_row
from khokho.errors import PersistenceFailure

logger = logging.getLogger(__name__)

STREAM_PREFIX = "khokho:match:"


@dataclass(frozen=True, slots=True)
class MatchStreams:
    match_id: str

    @property
    def actions_key(self) -> str:
        """Insert/delete feed every observer of the match reads and merges."""
        return f"{STREAM_PREFIX}{self.match_id}:actions"

    @property
    def snapshots_key(self) -> str:
        return f"{STREAM_PREFIX}{self.match_id}:snapshots"


def publish_many(*, r: redis.Redis, entries: Sequence[tuple[str, Mapping[str, str]]]) -> list[str]:
    ids: list[str] = []
    for key, fields in entries:
        stream_id = r.xadd(key, {str(k): str(v) for k, v in fields.items()})
        ids.append(cast(str, stream_id))
    return ids


def sync_entries_for_events(*, match_id: str, events: Sequence[MatchEvent]) -> list[tuple[str, dict[str, str]]]:
    """Translate locally produced events into action-feed entries (remote echoes are skipped)."""

    streams = MatchStreams(match_id=match_id)
    out: list[tuple[str, dict[str, str]]] = []
    for ev in events:
        if ev.payload.get("source") == "remote":
            continue
        if ev.type == "ACTION_INSERTED":
            action = ScoringAction.model_validate(ev.payload["action"])
            row = action_to_row(action)
            out.append(
                (
                    streams.actions_key,
                    {"kind": SyncEventKind.insert.value, "action_id": action.id, "row": row.model_dump_json()},
                )
            )
        elif ev.type == "ACTION_DELETED":
            out.append((streams.actions_key, {"kind": SyncEventKind.delete.value, "action_id": str(ev.payload["action_id"])}))
    return out


def snapshot_entry(*, state: SessionState, events: Sequence[MatchEvent]) -> tuple[str, dict[str, str]]:
    scores = projections.current_scores(state)
    fields = {
        "type": "final_scores" if state.final_scores is not None else "snapshot",
        "match_id": state.match.id,
        "phase": state.phase.value,
        "inning": str(state.inning),
        "turn": str(state.turn),
        "elapsed": str(state.clock.elapsed),
        "running": "1" if state.clock.running else "0",
        "break_remaining": str(state.break_state.remaining),
        "score_a": str(scores.team_a.score),
        "score_b": str(scores.team_b.score),
        "events": ",".join(ev.type for ev in events),
    }
    return MatchStreams(match_id=state.match.id).snapshots_key, fields


def sync_event_from_fields(fields: Mapping[str, str]) -> SyncEvent:
    """Parse an action-feed entry back into the canonical sync event."""

    raw_row = fields.get("row")
    payload: dict[str, object] = {"kind": fields.get("kind"), "action_id": fields.get("action_id")}
    if raw_row:
        payload["row"] = json.loads(raw_row)
    return SyncEvent.model_validate(payload)


def read_sync_events(*, r: redis.Redis, match_id: str, after: str = "-", count: int = 100) -> list[tuple[str, SyncEvent]]:
    key = MatchStreams(match_id=match_id).actions_key
    # Inclusive range; the entry at `after` was already consumed.
    entries = r.xrange(key, min=after, max="+", count=count + 1)
    out = [(entry_id, sync_event_from_fields(fields)) for entry_id, fields in entries if entry_id != after]
    return out[:count]


class SyncGateway:
    """Fire-and-forget publisher for the persistence/sync collaborator.

    A failed write is logged and queued per match; the queue is flushed ahead of the next publish
    for that match. Callers never see the failure and local state is never rolled back.
    """

    def __init__(self) -> None:
        self._pending: dict[str, deque[tuple[str, dict[str, str]]]] = defaultdict(deque)

    def pending_count(self, match_id: str) -> int:
        return len(self._pending.get(match_id, ()))

    def publish(self, *, r: redis.Redis, state: SessionState, events: Sequence[MatchEvent]) -> list[str]:
        match_id = state.match.id
        queue = self._pending[match_id]
        queue.extend(sync_entries_for_events(match_id=match_id, events=events))
        queue.append(snapshot_entry(state=state, events=events))

        ids: list[str] = []
        while queue:
            key, fields = queue[0]
            try:
                ids.extend(publish_many(r=r, entries=[(key, fields)]))
            except redis.RedisError as e:
                failure = PersistenceFailure(f"sync write to {key} failed: {e}")
                logger.warning("match %s: %s (%d queued for retry)", match_id, failure, len(queue))
                break
            queue.popleft()

        if not queue:
            self._pending.pop(match_id, None)
        return ids


gateway = SyncGateway()
