from __future__ import annotations

import pytest

from khokho.api.models import BreakKind, SessionPhase, SessionState
from khokho.errors import IllegalTransition
from khokho.fsm import MatchFSM


def test_fsm_starts_from_persisted_phase(state: SessionState) -> None:
    state.phase = SessionPhase.inning_break
    fsm = MatchFSM(state)
    assert fsm.phase == SessionPhase.inning_break


def test_break_and_resume_update_the_model(state: SessionState) -> None:
    fsm = MatchFSM(state)

    fsm.enter_break(BreakKind.turn)
    assert state.phase == SessionPhase.turn_break

    fsm.start_next_turn()
    assert state.phase == SessionPhase.active_turn

    fsm.enter_break(BreakKind.inning)
    assert state.phase == SessionPhase.inning_break


def test_cannot_break_twice(state: SessionState) -> None:
    fsm = MatchFSM(state)
    fsm.enter_break(BreakKind.turn)
    with pytest.raises(IllegalTransition):
        fsm.enter_break(BreakKind.turn)


def test_match_ended_is_terminal(state: SessionState) -> None:
    fsm = MatchFSM(state)
    fsm.end_match()
    assert state.phase == SessionPhase.match_ended

    with pytest.raises(IllegalTransition):
        fsm.start_next_turn()
    with pytest.raises(IllegalTransition):
        fsm.end_match()
