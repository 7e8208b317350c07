from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol

import redis

from khokho.api.models import MatchSetup, SessionState
from khokho.errors import ValidationError
from khokho.match_setup import build_initial_session

MATCHES_SET_KEY = "khokho:matches"
SESSION_KEY_PREFIX = "khokho:session:"  # + {match id}


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _session_key(match_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{match_id}"


class SessionStore(Protocol):
    """Persistence port for session state: load on init, save after every mutation."""

    def load(self, match_id: str) -> SessionState | None: ...

    def save(self, state: SessionState) -> None: ...


class RedisSessionStore:
    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    def load(self, match_id: str) -> SessionState | None:
        return get_session(r=self.r, match_id=match_id)

    def save(self, state: SessionState) -> None:
        save_session(r=self.r, state=state)


def save_session(*, r: redis.Redis, state: SessionState) -> None:
    state.last_updated_at = _now()
    r.set(_session_key(state.match.id), state.model_dump_json())


def get_session(*, r: redis.Redis, match_id: str) -> SessionState | None:
    raw = r.get(_session_key(match_id))
    if not raw:
        return None
    return SessionState.model_validate_json(raw)


def require_session(*, r: redis.Redis, match_id: str) -> SessionState:
    state = get_session(r=r, match_id=match_id)
    if state is None:
        raise LookupError("Match not found")
    return state


def create_session(*, r: redis.Redis, setup: MatchSetup) -> SessionState:
    state = build_initial_session(setup)
    if r.exists(_session_key(state.match.id)):
        raise ValidationError(f"Match {state.match.id} already has a live session")

    r.set(_session_key(state.match.id), state.model_dump_json())
    r.sadd(MATCHES_SET_KEY, state.match.id)
    return state


def list_sessions(*, r: redis.Redis) -> list[SessionState]:
    out: list[SessionState] = []
    for match_id in sorted(r.smembers(MATCHES_SET_KEY)):
        state = get_session(r=r, match_id=match_id)
        if state is not None:
            out.append(state)
    out.sort(key=lambda s: s.created_at, reverse=True)
    return out
