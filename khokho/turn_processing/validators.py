from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from khokho.api.models import SessionPhase, SessionState
from khokho.core.ledger import is_substitution, turn_actions
from khokho.errors import IllegalTransition, ValidationError

BREAK_PHASES = frozenset({SessionPhase.turn_break, SessionPhase.inning_break})


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to validators.

    Keep this tight and serializable-ish so we can safely log it.
    """

    match_id: str
    operation: str


class OperationValidator(ABC):
    """A small, composable gate for an incoming operation."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, state: SessionState) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class MatchEndedValidator(OperationValidator):
    """Deny every mutating operation once the ledger is final."""

    def validate(self, *, ctx: ValidationContext, state: SessionState) -> None:
        if state.phase == SessionPhase.match_ended:
            raise IllegalTransition("Match has ended")


@dataclass(frozen=True, slots=True)
class NotOnBreakValidator(OperationValidator):
    message: str = "Not allowed during a break"

    def validate(self, *, ctx: ValidationContext, state: SessionState) -> None:
        if state.phase in BREAK_PHASES or state.break_state.active:
            raise IllegalTransition(self.message)


@dataclass(frozen=True, slots=True)
class PhaseValidator(OperationValidator):
    allowed_phases: frozenset[SessionPhase]

    def validate(self, *, ctx: ValidationContext, state: SessionState) -> None:
        if state.phase not in self.allowed_phases:
            allowed = ",".join(sorted(p.value for p in self.allowed_phases))
            raise IllegalTransition(
                f"Operation '{ctx.operation}' not allowed in phase '{state.phase.value}' (allowed: {allowed})"
            )


@dataclass(frozen=True, slots=True)
class ClockValidator(OperationValidator):
    """Require the turn clock to be running (or stopped)."""

    running: bool
    message: str

    def validate(self, *, ctx: ValidationContext, state: SessionState) -> None:
        if state.clock.running != self.running:
            raise IllegalTransition(self.message)


@dataclass(frozen=True, slots=True)
class TurnNotStartedValidator(OperationValidator):
    """Allow an operation only while the current turn has no elapsed time and no scoring entries."""

    message: str

    def validate(self, *, ctx: ValidationContext, state: SessionState) -> None:
        if state.clock.elapsed > 0:
            raise IllegalTransition(self.message)
        played = turn_actions(state.actions, inning=state.inning, turn=state.turn)
        if any(not is_substitution(a) for a in played):
            raise IllegalTransition(self.message)


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    validators: tuple[OperationValidator, ...]

    def validate(self, *, ctx: ValidationContext, state: SessionState) -> None:
        for v in self.validators:
            v.validate(ctx=ctx, state=state)


_LIVE = frozenset({SessionPhase.active_turn})
_BREAKS = frozenset(BREAK_PHASES)

_RECORDING = ValidatorPipeline(
    validators=(
        MatchEndedValidator(),
        NotOnBreakValidator("Cannot record actions during a break"),
        PhaseValidator(allowed_phases=_LIVE),
        ClockValidator(running=True, message="Timer must be running to record an action"),
    )
)

DEFAULT_OPERATION_PIPELINES: dict[str, ValidatorPipeline] = {
    "record": _RECORDING,
    "stage_card": _RECORDING,
    "confirm_card": _RECORDING,
    "undo": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            NotOnBreakValidator("Cannot undo actions during a break"),
        )
    ),
    "confirm_batches": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            NotOnBreakValidator("Batches are set once the next turn starts"),
            PhaseValidator(allowed_phases=_LIVE),
            ClockValidator(running=False, message="Batches cannot change while the timer is running"),
        )
    ),
    "attacking_substitution": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            NotOnBreakValidator("Timer must be running and not in a break to substitute"),
            PhaseValidator(allowed_phases=_LIVE),
            ClockValidator(running=True, message="Timer must be running and not in a break to substitute"),
        )
    ),
    "defensive_substitution": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            NotOnBreakValidator("Can only substitute defenders before the turn starts"),
            PhaseValidator(allowed_phases=_LIVE),
            ClockValidator(running=False, message="Can only substitute defenders before the turn starts"),
            TurnNotStartedValidator("Can only substitute defenders before the turn starts"),
        )
    ),
    "toggle_clock": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            NotOnBreakValidator("Cannot control match timer during a break"),
        )
    ),
    "reset_clock": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            NotOnBreakValidator("Cannot reset match timer during a break"),
        )
    ),
    "end_turn": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            NotOnBreakValidator("Already in a break"),
            PhaseValidator(allowed_phases=_LIVE),
        )
    ),
    "skip_break": ValidatorPipeline(
        validators=(
            MatchEndedValidator(),
            PhaseValidator(allowed_phases=_BREAKS),
        )
    ),
    "end_match": ValidatorPipeline(validators=(MatchEndedValidator(),)),
}


def pipeline_for_operation(operation: str) -> ValidatorPipeline:
    pipe = DEFAULT_OPERATION_PIPELINES.get(operation)
    if pipe is None:
        raise ValidationError(f"Unknown operation: {operation}")
    return pipe
