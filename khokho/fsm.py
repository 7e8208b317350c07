from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from khokho.api.models import BreakKind, SessionPhase, SessionState
from khokho.errors import IllegalTransition


class MatchFSM(StateMachine):
    """FSM wrapper around SessionState.

    - phases: active turn -> (turn break | inning break) -> active turn ... -> match ended
    - the session mutates state; the FSM only guards which transitions exist.
    """

    active_turn = State(SessionPhase.active_turn.value, value=SessionPhase.active_turn.value, initial=True)
    turn_break = State(SessionPhase.turn_break.value, value=SessionPhase.turn_break.value)
    inning_break = State(SessionPhase.inning_break.value, value=SessionPhase.inning_break.value)
    match_ended = State(SessionPhase.match_ended.value, value=SessionPhase.match_ended.value, final=True)

    break_for_turn = active_turn.to(turn_break)
    break_for_inning = active_turn.to(inning_break)
    resume = turn_break.to(active_turn) | inning_break.to(active_turn)
    finish = active_turn.to(match_ended) | turn_break.to(match_ended) | inning_break.to(match_ended)

    def __init__(self, session: SessionState):
        self.session = session
        super().__init__(start_value=session.phase.value)

    @property
    def phase(self) -> SessionPhase:
        return SessionPhase(str(self.current_state.value))

    def _fire(self, event: str) -> None:
        try:
            self.send(event)
        except TransitionNotAllowed as e:
            raise IllegalTransition(f"Cannot {event.replace('_', ' ')} while {self.phase.value}") from e
        self.sync_phase_to_model()

    def enter_break(self, kind: BreakKind) -> None:
        self._fire("break_for_inning" if kind == BreakKind.inning else "break_for_turn")

    def start_next_turn(self) -> None:
        self._fire("resume")

    def end_match(self) -> None:
        self._fire("finish")

    def sync_phase_to_model(self) -> None:
        self.session.phase = self.phase
