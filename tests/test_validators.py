from __future__ import annotations

import pytest

from khokho.api.models import SessionPhase, SessionState
from khokho.errors import IllegalTransition, ValidationError
from khokho.turn_processing.validators import (
    ClockValidator,
    PhaseValidator,
    ValidationContext,
    ValidatorPipeline,
    pipeline_for_operation,
)


def _ctx(operation: str) -> ValidationContext:
    return ValidationContext(match_id="m1", operation=operation)


def test_record_requires_running_clock(state: SessionState) -> None:
    with pytest.raises(IllegalTransition, match="Timer must be running"):
        pipeline_for_operation("record").validate(ctx=_ctx("record"), state=state)

    state.clock.running = True
    pipeline_for_operation("record").validate(ctx=_ctx("record"), state=state)


def test_defensive_substitution_requires_stopped_clock(state: SessionState) -> None:
    pipeline_for_operation("defensive_substitution").validate(ctx=_ctx("defensive_substitution"), state=state)

    state.clock.running = True
    with pytest.raises(IllegalTransition, match="before the turn starts"):
        pipeline_for_operation("defensive_substitution").validate(ctx=_ctx("defensive_substitution"), state=state)


@pytest.mark.parametrize("operation", ["record", "undo", "toggle_clock", "reset_clock", "end_turn", "confirm_batches"])
def test_break_blocks_live_operations(state: SessionState, operation: str) -> None:
    state.phase = SessionPhase.turn_break
    state.clock.running = True
    with pytest.raises(IllegalTransition):
        pipeline_for_operation(operation).validate(ctx=_ctx(operation), state=state)


@pytest.mark.parametrize("operation", ["record", "undo", "skip_break", "end_match", "end_turn"])
def test_match_ended_blocks_everything(state: SessionState, operation: str) -> None:
    state.phase = SessionPhase.match_ended
    with pytest.raises(IllegalTransition):
        pipeline_for_operation(operation).validate(ctx=_ctx(operation), state=state)


def test_skip_break_only_during_breaks(state: SessionState) -> None:
    with pytest.raises(IllegalTransition, match="not allowed in phase"):
        pipeline_for_operation("skip_break").validate(ctx=_ctx("skip_break"), state=state)


def test_pipeline_stops_at_first_failure(state: SessionState) -> None:
    pipe = ValidatorPipeline(
        validators=(
            PhaseValidator(allowed_phases=frozenset({SessionPhase.turn_break})),
            ClockValidator(running=True, message="never reached"),
        )
    )
    with pytest.raises(IllegalTransition, match="active_turn"):
        pipe.validate(ctx=_ctx("custom"), state=state)


def test_unknown_operation() -> None:
    with pytest.raises(ValidationError):
        pipeline_for_operation("teleport")


def test_defensive_substitution_requires_unstarted_turn(state: SessionState) -> None:
    pipeline = pipeline_for_operation("defensive_substitution")

    state.clock.elapsed = 45
    with pytest.raises(IllegalTransition, match="before the turn starts"):
        pipeline.validate(ctx=_ctx("defensive_substitution"), state=state)
