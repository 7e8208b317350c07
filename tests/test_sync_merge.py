from __future__ import annotations

from collections.abc import Callable

import fakeredis
import pytest
import redis

from conftest import T0, batches_for

from khokho.actions import dispatch_operation
from khokho.api.models import MatchSetup, SessionPhase, SyncEvent, SyncEventKind
from khokho.clock_runner import pull_sync_events, run_clock_once
from khokho.errors import ConcurrencyConflict, ValidationError
from khokho.match_setup import build_initial_session
from khokho.match_store import create_session, get_session
from khokho.session import MatchSession
from khokho.streams import MatchStreams, gateway, read_sync_events, sync_entries_for_events


@pytest.fixture()
def live_match(redis_client: fakeredis.FakeRedis, make_setup: Callable[..., MatchSetup]) -> fakeredis.FakeRedis:
    r = redis_client
    create_session(r=r, setup=make_setup())
    dispatch_operation(r=r, match_id="m1", operation="confirm_batches", payload={"batches": batches_for("a")})
    dispatch_operation(r=r, match_id="m1", operation="toggle_clock", payload={"run": True, "now": T0})
    return r


def test_merge_is_idempotent(live_session: MatchSession, remote_insert: Callable[..., SyncEvent]) -> None:
    event = remote_insert()

    first = live_session.merge(event)
    assert [e.type for e in first] == ["ACTION_INSERTED"]
    assert first[0].payload["source"] == "remote"

    assert live_session.merge(event) == []
    assert len(live_session.state.actions) == 1
    assert live_session.current_scores().team_b.score == 1
    assert live_session.current_turn_info().out_in_active_batch == ["a1"]


def test_merge_delete(live_session: MatchSession) -> None:
    live_session.record_action(symbol="tap", defender_id="a1", attacker_id="b1", action_id="x1")

    delete = SyncEvent(kind=SyncEventKind.delete, action_id="x1")
    assert [e.type for e in live_session.merge(delete)] == ["ACTION_DELETED"]
    assert live_session.merge(delete) == []
    assert live_session.current_scores().team_b.score == 0


def test_merge_rejects_rows_from_another_match(live_session: MatchSession, remote_insert: Callable[..., SyncEvent]) -> None:
    event = remote_insert()
    event.row = event.row.model_copy(update={"match_id": "elsewhere"})
    with pytest.raises(ValidationError, match="another match"):
        live_session.merge(event)


def test_merge_ignored_after_match_end(session: MatchSession, remote_insert: Callable[..., SyncEvent]) -> None:
    session.fsm.end_match()
    assert session.merge(remote_insert()) == []
    assert session.state.actions == []


def test_remote_events_are_not_echoed(live_session: MatchSession, remote_insert: Callable[..., SyncEvent]) -> None:
    events = live_session.merge(remote_insert())
    assert sync_entries_for_events(match_id="m1", events=events) == []

    local = live_session.record_action(symbol="tap", defender_id="a2", attacker_id="b1")
    entries = sync_entries_for_events(match_id="m1", events=local)
    assert len(entries) == 1
    assert entries[0][1]["kind"] == "insert"


def test_dispatch_persists_and_publishes_canonical_rows(live_match: fakeredis.FakeRedis, make_setup: Callable[..., MatchSetup]) -> None:
    r = live_match
    dispatch_operation(r=r, match_id="m1", operation="tick", payload={"now": T0 + 10})
    result = dispatch_operation(
        r=r, match_id="m1", operation="record", payload={"symbol": "pole-dive", "defender_id": "a1", "attacker_id": "b7"}
    )
    assert [e.type for e in result.events] == ["ACTION_INSERTED"]
    assert get_session(r=r, match_id="m1").actions[0].symbol == "pole-dive"

    (entry_id, event), = read_sync_events(r=r, match_id="m1")
    assert event.kind == SyncEventKind.insert
    assert (event.row.defender_jersey, event.row.attacker_name, event.row.run_time) == (1, "Tigers 7", 10)
    assert read_sync_events(r=r, match_id="m1", after=entry_id) == []

    # A second device folds the feed into its own ledger.
    other = MatchSession(build_initial_session(make_setup()))
    other.merge(event)
    assert other.current_scores().team_b.score == 1

    _, snapshot = r.xrange(MatchStreams(match_id="m1").snapshots_key)[-1]
    assert snapshot["type"] == "snapshot"
    assert snapshot["score_b"] == "1"


def test_failed_sync_write_is_queued_and_retried(live_match: fakeredis.FakeRedis, monkeypatch: pytest.MonkeyPatch) -> None:
    r = live_match
    real_xadd = r.xadd

    def _down(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise redis.ConnectionError("sync store unreachable")

    monkeypatch.setattr(r, "xadd", _down)
    result = dispatch_operation(r=r, match_id="m1", operation="record", payload={"symbol": "tap", "defender_id": "a1", "attacker_id": "b1"})

    # Local state is kept even though nothing reached the feed.
    assert result.stream_ids == []
    assert len(get_session(r=r, match_id="m1").actions) == 1
    assert gateway.pending_count("m1") == 2

    monkeypatch.setattr(r, "xadd", real_xadd)
    dispatch_operation(r=r, match_id="m1", operation="undo")

    assert gateway.pending_count("m1") == 0
    kinds = [event.kind for _, event in read_sync_events(r=r, match_id="m1")]
    assert kinds == [SyncEventKind.insert, SyncEventKind.delete]


def test_busy_match_is_rejected(live_match: fakeredis.FakeRedis) -> None:
    live_match.set("lock:match:m1", "1")
    with pytest.raises(ConcurrencyConflict, match="busy"):
        dispatch_operation(r=live_match, match_id="m1", operation="undo")


def test_unknown_match(redis_client: fakeredis.FakeRedis) -> None:
    with pytest.raises(LookupError):
        dispatch_operation(r=redis_client, match_id="nope", operation="undo")


def test_pull_merges_only_foreign_entries(live_match: fakeredis.FakeRedis, remote_insert: Callable[..., SyncEvent]) -> None:
    r = live_match
    dispatch_operation(r=r, match_id="m1", operation="record", payload={"symbol": "tap", "defender_id": "a1", "attacker_id": "b1"})
    assert pull_sync_events(r=r, match_id="m1") == 0

    foreign = remote_insert(defender="a2", attacker="b2")
    r.xadd(
        MatchStreams(match_id="m1").actions_key,
        {"kind": "insert", "action_id": foreign.action_id, "row": foreign.row.model_dump_json()},
    )
    assert pull_sync_events(r=r, match_id="m1") == 1
    assert pull_sync_events(r=r, match_id="m1") == 0

    state = get_session(r=r, match_id="m1")
    assert {a.id for a in state.actions} >= {foreign.action_id}
    assert len(state.actions) == 2


def test_clock_runner_ends_turn_on_expiry(live_match: fakeredis.FakeRedis) -> None:
    r = live_match
    assert run_clock_once(r=r, match_id="m1", now=T0 + 5).events == []

    result = run_clock_once(r=r, match_id="m1", now=T0 + 545)
    assert [e.type for e in result.events] == ["TURN_ENDED", "BREAK_STARTED"]
    assert get_session(r=r, match_id="m1").phase == SessionPhase.turn_break

    assert run_clock_once(r=r, match_id="nope") is None


def test_operation_without_events_publishes_nothing(live_match: fakeredis.FakeRedis) -> None:
    r = live_match
    dispatch_operation(r=r, match_id="m1", operation="toggle_clock", payload={"run": False, "now": T0 + 30})
    published = r.xlen(MatchStreams(match_id="m1").snapshots_key)

    result = dispatch_operation(r=r, match_id="m1", operation="toggle_clock", payload={"run": False, "now": T0 + 60})

    assert (result.events, result.stream_ids) == ([], [])
    assert r.xlen(MatchStreams(match_id="m1").snapshots_key) == published
    assert get_session(r=r, match_id="m1").clock.elapsed == 30
