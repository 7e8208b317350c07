from __future__ import annotations

from datetime import UTC, datetime

import pytest

from khokho.api.models import PlayerRef, ScoringAction, SyncEvent, SyncEventKind
from khokho.core.ledger import ScoringLedger
from khokho.core.rows import action_to_row
from khokho.errors import IllegalTransition, ValidationError


def _action(action_id: str, *, symbol: str = "simple-touch", points: int = 1, team: str = "b", run_time: int = 0) -> ScoringAction:
    return ScoringAction(
        id=action_id,
        match_id="m1",
        inning=1,
        turn=1,
        scoring_team_id=team,
        symbol=symbol,
        points=points,
        defender=PlayerRef(jersey_number=1, name="Sharks 1"),
        attacker=PlayerRef(jersey_number=4, name="Tigers 4"),
        run_time=run_time,
        recorded_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


def _insert(action: ScoringAction) -> SyncEvent:
    return SyncEvent(kind=SyncEventKind.insert, action_id=action.id, row=action_to_row(action))


def test_record_rejects_duplicate_ids() -> None:
    ledger = ScoringLedger([])
    ledger.record(_action("x1"))
    with pytest.raises(ValidationError):
        ledger.record(_action("x1"))
    assert len(ledger) == 1


def test_scores_are_sum_of_points_per_team() -> None:
    ledger = ScoringLedger([])
    ledger.record(_action("x1"))
    ledger.record(_action("x2", symbol="retired", points=0))
    ledger.record(_action("x3", team="a"))

    assert ledger.scores(["a", "b"]) == {"a": 1, "b": 1}


def test_undo_removes_most_recent_scoring_entry_and_skips_substitutions() -> None:
    ledger = ScoringLedger([])
    ledger.record(_action("x1"))
    ledger.record(_action("sub", symbol="substitution", points=0))

    removed = ledger.undo_last()
    assert removed.id == "x1"
    assert ledger.ids() == {"sub"}


def test_undo_on_empty_ledger_is_illegal() -> None:
    with pytest.raises(IllegalTransition):
        ScoringLedger([]).undo_last()


def test_previous_run_time_counts_substitutions_and_defaults_to_turn_start() -> None:
    ledger = ScoringLedger([])
    assert ledger.previous_run_time(inning=1, turn=1) == 0

    ledger.record(_action("x1", run_time=42))
    ledger.record(_action("sub", symbol="substitution", points=0, run_time=60))
    assert ledger.previous_run_time(inning=1, turn=1) == 60
    assert ledger.previous_run_time(inning=1, turn=2) == 0


def test_merge_insert_is_idempotent() -> None:
    entries: list[ScoringAction] = []
    ledger = ScoringLedger(entries)
    action = _action("x1")

    assert ledger.merge(_insert(action), action) is True
    assert ledger.merge(_insert(action), action) is False
    assert [a.id for a in entries] == ["x1"]


def test_merge_delete_of_unknown_id_is_a_noop() -> None:
    ledger = ScoringLedger([_action("x1")])
    assert ledger.merge(SyncEvent(kind=SyncEventKind.delete, action_id="nope")) is False
    assert ledger.merge(SyncEvent(kind=SyncEventKind.delete, action_id="x1")) is True
    assert len(ledger) == 0
