from __future__ import annotations

from collections.abc import Callable, Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from khokho.api.models import MatchSetup, ScoringAction, SessionState, SyncEvent, SyncEventKind
from khokho.core.rows import action_to_row
from khokho.match_setup import build_initial_session
from khokho.session import MatchSession
from khokho.streams import gateway

T0 = 1_700_000_000.0


def team_payload(prefix: str, name: str, *, playing: int = 9, bench: int = 3) -> dict:
    players = [{"id": f"{prefix}{i}", "jersey_number": i, "name": f"{name} {i}"} for i in range(1, playing + bench + 1)]
    return {"id": prefix, "name": name, "playing": players[:playing], "bench": players[playing:]}


def setup_payload(**overrides: object) -> dict:
    n = int(overrides.pop("players_per_team", 9))  # type: ignore[arg-type]
    payload: dict = {
        "match_id": "m1",
        "team_a": team_payload("a", "Sharks", playing=n),
        "team_b": team_payload("b", "Tigers", playing=n),
        "innings": 2,
        "turn_duration": 540,
        "players_per_team": n,
        "toss_winner": "A",
        "toss_decision": "defend",
    }
    payload.update(overrides)
    return payload


def batches_for(prefix: str) -> list[list[str]]:
    return [[f"{prefix}1", f"{prefix}2", f"{prefix}3"], [f"{prefix}4", f"{prefix}5", f"{prefix}6"], [f"{prefix}7", f"{prefix}8", f"{prefix}9"]]


@pytest.fixture()
def make_setup() -> Callable[..., MatchSetup]:
    def _make(**overrides: object) -> MatchSetup:
        return MatchSetup.model_validate(setup_payload(**overrides))

    return _make


@pytest.fixture()
def state(make_setup: Callable[..., MatchSetup]) -> SessionState:
    return build_initial_session(make_setup())


@pytest.fixture()
def session(state: SessionState) -> MatchSession:
    return MatchSession(state)


@pytest.fixture()
def live_session(session: MatchSession) -> MatchSession:
    """Turn 1 with team A defending in batches of three and the clock running from T0."""

    session.confirm_batches(batches_for("a"))
    session.toggle_clock(run=True, now=T0)
    return session


@pytest.fixture()
def remote_insert(make_setup: Callable[..., MatchSetup]) -> Callable[..., SyncEvent]:
    """Record an action on a second scoring device and return the insert it would sync."""

    def _make(*, defender: str = "a1", attacker: str = "b1", at: int = 10) -> SyncEvent:
        remote = MatchSession(build_initial_session(make_setup()))
        remote.confirm_batches(batches_for("a"))
        remote.toggle_clock(run=True, now=T0)
        remote.tick(now=T0 + at)
        events = remote.record_action(symbol="simple-touch", defender_id=defender, attacker_id=attacker)
        action = ScoringAction.model_validate(events[0].payload["action"])
        return SyncEvent(kind=SyncEventKind.insert, action_id=action.id, row=action_to_row(action))

    return _make


@pytest.fixture(autouse=True)
def _reset_sync_gateway() -> Generator[None, None, None]:
    gateway._pending.clear()
    yield
    gateway._pending.clear()


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_redis():
    """FastAPI TestClient wired to a fresh fakeredis."""

    from khokho.api.deps import get_redis, get_redis_connector
    from khokho.main import app

    server = fakeredis.FakeServer()
    r = fakeredis.FakeRedis(server=server, decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    def _connector() -> Callable[[], fakeredis.FakeRedis]:
        return lambda: fakeredis.FakeRedis(server=server, decode_responses=True)

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_redis_connector] = _connector
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
