from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from khokho.api.models import (
    MatchReport,
    Membership,
    PendingCard,
    Player,
    ScoresResponse,
    Scoresheet,
    ScoringAction,
    SessionPhase,
    SessionState,
    SubstitutionKind,
    SyncEvent,
    SyncEventKind,
    TeamSide,
    TurnInfo,
)
from khokho.core import batches, clock, projections, substitutions
from khokho.core.events import EventType, MatchEvent
from khokho.core.ledger import ScoringLedger
from khokho.core.rows import action_from_row
from khokho.errors import IllegalTransition, ValidationError
from khokho.fsm import MatchFSM
from khokho.symbols import Symbol, SymbolSpec, scoring_spec
from khokho.turn_processing.validators import ValidationContext, pipeline_for_operation

logger = logging.getLogger(__name__)

MIN_COMPLETED_TURNS_TO_END = 2


def _now() -> datetime:
    return datetime.now(tz=UTC)


class MatchSession:
    """Turn/inning sequencer for one live match.

    Owns no I/O: every operation validates, mutates `state` in place, and returns the
    `MatchEvent`s it produced. Adapters persist the state and publish the events.
    Every check runs before the first mutation, so a rejected operation leaves `state` untouched.
    """

    def __init__(self, state: SessionState) -> None:
        self.state = state
        self.fsm = MatchFSM(state)
        self.ledger = ScoringLedger(state.actions)

    # --- helpers -------------------------------------------------------------------------

    def _gate(self, operation: str) -> None:
        ctx = ValidationContext(match_id=self.state.match.id, operation=operation)
        pipeline_for_operation(operation).validate(ctx=ctx, state=self.state)

    def _event(self, type: EventType, **payload: Any) -> MatchEvent:
        return MatchEvent.now(type=type, inning=self.state.inning, turn=self.state.turn, payload=payload)

    def _progress(self) -> batches.RotationProgress:
        s = self.state
        return batches.rotation_progress(
            rotation=s.rotation, actions=s.actions, roster=s.defending_team.players, inning=s.inning, turn=s.turn
        )

    def _refresh_rotation(self) -> list[MatchEvent]:
        s = self.state
        before = (s.rotation.active_index, s.rotation.cycle)
        batches.advance_if_cleared(
            rotation=s.rotation, actions=s.actions, roster=s.defending_team.players, inning=s.inning, turn=s.turn
        )
        after = (s.rotation.active_index, s.rotation.cycle)
        if before == after:
            return []
        return [
            self._event(
                "BATCH_ADVANCED",
                from_batch=before[0],
                to_batch=after[0],
                cycle=after[1],
            )
        ]

    def _active_defender(self, player_id: str) -> Player:
        player = self.state.defending_team.find(player_id)
        if player is None or player.membership != Membership.playing:
            raise ValidationError(f"Player {player_id} is not a playing defender")
        if player_id not in batches.active_batch(self.state.rotation):
            raise ValidationError(f"{player.name} is not in the active batch")
        if player_id in self._progress().out_ids:
            raise ValidationError(f"{player.name} is already out in this batch")
        return player

    def _playing_attacker(self, player_id: str) -> Player:
        player = self.state.attacking_team.find(player_id)
        if player is None or player.membership != Membership.playing:
            raise ValidationError(f"Player {player_id} is not a playing attacker")
        return player

    def _build_action(
        self,
        spec: SymbolSpec,
        *,
        defender_id: str | None,
        attacker_id: str | None,
        action_id: str | None = None,
    ) -> ScoringAction:
        defender = self._active_defender(defender_id) if defender_id else None
        attacker = self._playing_attacker(attacker_id) if attacker_id else None

        if spec.single_player:
            if defender is None and attacker is None:
                raise ValidationError(f"Select either a defender or an attacker for {spec.name}")
            if defender is not None and attacker is not None:
                logger.info("%s applies to one player; keeping defender %s", spec.name, defender.name)
                attacker = None
        else:
            if defender is None:
                raise ValidationError(f"{spec.name} needs a defender")
            if attacker is None:
                raise ValidationError(f"{spec.name} needs an attacker")

        if action_id is not None and self.ledger.contains(action_id):
            raise ValidationError(f"Duplicate action id: {action_id}")

        s = self.state
        run_time = s.clock.elapsed
        per_time = run_time - self.ledger.previous_run_time(inning=s.inning, turn=s.turn) if defender else 0

        return ScoringAction(
            id=action_id or str(uuid4()),
            match_id=s.match.id,
            inning=s.inning,
            turn=s.turn,
            scoring_team_id=s.attacking_team.id,
            symbol=spec.symbol.value,
            points=spec.points,
            defender=defender.ref if defender else None,
            attacker=attacker.ref if attacker else None,
            run_time=run_time,
            per_time=per_time,
            recorded_at=_now(),
        )

    def _append(self, action: ScoringAction) -> list[MatchEvent]:
        self.ledger.record(action)
        events = [self._event("ACTION_INSERTED", action=action.model_dump(mode="json"))]
        events.extend(self._refresh_rotation())
        return events

    # --- ledger ----------------------------------------------------------------------------

    def record_action(
        self,
        *,
        symbol: Symbol | str,
        defender_id: str | None = None,
        attacker_id: str | None = None,
        action_id: str | None = None,
    ) -> list[MatchEvent]:
        self._gate("record")
        spec = scoring_spec(symbol)
        if spec.requires_confirmation:
            raise ValidationError(f"{spec.name} must be staged and confirmed")
        action = self._build_action(spec, defender_id=defender_id, attacker_id=attacker_id, action_id=action_id)
        return self._append(action)

    def undo_last(self) -> list[MatchEvent]:
        self._gate("undo")
        removed = self.ledger.undo_last()
        logger.info("match %s: undid %s (%s)", self.state.match.id, removed.id, removed.symbol)
        events = [self._event("ACTION_DELETED", action_id=removed.id)]
        events.extend(self._refresh_rotation())
        return events

    def merge(self, event: SyncEvent) -> list[MatchEvent]:
        """Fold a remote insert/delete into the ledger; duplicates are absorbed silently."""

        if self.state.phase == SessionPhase.match_ended:
            logger.warning("match %s: ledger is final, ignoring remote %s %s", self.state.match.id, event.kind, event.action_id)
            return []

        action: ScoringAction | None = None
        if event.kind == SyncEventKind.insert:
            if event.row is None:
                raise ValidationError("Insert event without a row")
            if event.row.id != event.action_id:
                raise ValidationError("Insert event id does not match its row")
            if event.row.match_id != self.state.match.id:
                raise ValidationError("Insert event belongs to another match")
            action = action_from_row(event.row)

        if not self.ledger.merge(event, action):
            return []

        if action is not None:
            events = [self._event("ACTION_INSERTED", action=action.model_dump(mode="json"), source="remote")]
        else:
            events = [self._event("ACTION_DELETED", action_id=event.action_id, source="remote")]
        events.extend(self._refresh_rotation())
        return events

    # --- cards -----------------------------------------------------------------------------

    def stage_card(self, *, symbol: Symbol | str, defender_id: str | None = None, attacker_id: str | None = None) -> list[MatchEvent]:
        self._gate("stage_card")
        spec = scoring_spec(symbol)
        if not spec.requires_confirmation:
            raise ValidationError(f"{spec.name} is not a card")
        if self.state.pending_card is not None:
            raise IllegalTransition("A card is already awaiting confirmation")

        # Dry run: the card must be recordable as it stands.
        action = self._build_action(spec, defender_id=defender_id, attacker_id=attacker_id)
        self.state.pending_card = PendingCard(
            symbol=spec.symbol.value,
            defender_id=defender_id if action.defender is not None else None,
            attacker_id=attacker_id if action.attacker is not None else None,
        )
        return [self._event("CARD_STAGED", symbol=spec.symbol.value)]

    def confirm_card(self) -> list[MatchEvent]:
        pending = self.state.pending_card
        if pending is None:
            raise IllegalTransition("No card awaiting confirmation")
        self._gate("confirm_card")
        spec = scoring_spec(pending.symbol)
        action = self._build_action(spec, defender_id=pending.defender_id, attacker_id=pending.attacker_id)
        self.state.pending_card = None
        return self._append(action)

    def cancel_card(self) -> list[MatchEvent]:
        # No trace: nothing recorded, nothing emitted.
        self.state.pending_card = None
        return []

    # --- batches ---------------------------------------------------------------------------

    def confirm_batches(self, partition: list[list[str]]) -> list[MatchEvent]:
        self._gate("confirm_batches")
        roster_ids = [p.id for p in self.state.defending_team.playing]
        batches.confirm_batches(rotation=self.state.rotation, partition=partition, roster_ids=roster_ids)
        logger.info("match %s turn %d: defender batches confirmed", self.state.match.id, self.state.turn)
        events = [self._event("BATCHES_CONFIRMED", batches=[list(b) for b in self.state.rotation.batches])]
        events.extend(self._refresh_rotation())
        return events

    def reuse_previous_batches(self) -> list[MatchEvent]:
        self._gate("confirm_batches")
        previous = self.state.previous_batches.get(self.state.defending)
        if not previous:
            raise ValidationError(f"{self.state.defending_team.name} has no previous batches to reuse")
        return self.confirm_batches([list(b) for b in previous])

    # --- substitutions ---------------------------------------------------------------------

    def substitute(self, *, team: TeamSide, out_player_id: str, in_player_id: str, kind: SubstitutionKind) -> list[MatchEvent]:
        s = self.state
        if kind == SubstitutionKind.attacking:
            self._gate("attacking_substitution")
            if team != s.attacking:
                raise ValidationError("Attacking substitutions are made by the attacking team")
            outgoing, incoming = substitutions.attacking_substitution(
                team=s.match.team(team), out_id=out_player_id, in_id=in_player_id
            )
        else:
            self._gate("defensive_substitution")
            if team != s.defending:
                raise ValidationError("Defensive substitutions are made by the defending team")
            outgoing, incoming = substitutions.defensive_substitution(
                team=s.match.team(team),
                side=team,
                out_id=out_player_id,
                in_id=in_player_id,
                inning=s.inning,
                used=s.defender_subs_used,
                rotation=s.rotation,
            )

        audit = ScoringAction(
            id=str(uuid4()),
            match_id=s.match.id,
            inning=s.inning,
            turn=s.turn,
            scoring_team_id=s.match.team(team).id,
            symbol=Symbol.substitution.value,
            points=0,
            player_out=outgoing.ref,
            player_in=incoming.ref,
            run_time=s.clock.elapsed,
            per_time=0,
            recorded_at=_now(),
        )
        logger.info("match %s: %s substitution %s -> %s", s.match.id, kind.value, outgoing.name, incoming.name)
        events = [self._event("SUBSTITUTION", team=team.value, kind=kind.value, out=outgoing.id, into=incoming.id)]
        events.extend(self._append(audit))
        return events

    # --- clock -----------------------------------------------------------------------------

    def toggle_clock(self, *, run: bool, now: float) -> list[MatchEvent]:
        self._gate("toggle_clock")
        s = self.state
        if run:
            started = clock.start(clock=s.clock, brk=s.break_state, batches_confirmed=s.rotation.confirmed, now=now)
            return [self._event("CLOCK_STARTED", elapsed=s.clock.elapsed)] if started else []

        if not s.clock.running:
            return []
        expired = clock.pause(clock=s.clock, brk=s.break_state, now=now)
        events = [self._event("CLOCK_PAUSED", elapsed=s.clock.elapsed)]
        if expired:
            events.extend(self._end_turn(now=now, auto=True))
        return events

    def reset_clock(self, *, confirmed: bool) -> list[MatchEvent]:
        self._gate("reset_clock")
        clock.reset(clock=self.state.clock, brk=self.state.break_state, confirmed=confirmed)
        return [self._event("CLOCK_RESET")]

    def tick(self, *, now: float) -> list[MatchEvent]:
        """Advance whichever timer is live to `now`; fires turn end or next turn on expiry."""

        s = self.state
        if s.phase == SessionPhase.active_turn:
            if clock.tick(clock=s.clock, now=now):
                logger.info("match %s turn %d: time limit reached", s.match.id, s.turn)
                return self._end_turn(now=now, auto=True)
            return []
        if s.phase in (SessionPhase.turn_break, SessionPhase.inning_break):
            if clock.tick_break(brk=s.break_state, now=now):
                return self._start_next_turn(now=now)
        return []

    # --- sequencing ------------------------------------------------------------------------

    def end_turn(self, *, now: float) -> list[MatchEvent]:
        self._gate("end_turn")
        return self._end_turn(now=now, auto=False)

    def skip_break(self, *, now: float) -> list[MatchEvent]:
        self._gate("skip_break")
        return self._start_next_turn(now=now)

    def end_match(self, *, now: float) -> list[MatchEvent]:
        self._gate("end_match")
        if self.state.completed_turns < MIN_COMPLETED_TURNS_TO_END:
            raise IllegalTransition("At least one full inning (2 turns) must be completed before ending the match")
        return self._finalize(now=now, reason="manual")

    def _end_turn(self, *, now: float, auto: bool) -> list[MatchEvent]:
        s = self.state
        finished = s.turn
        clock.stop(clock=s.clock, now=now)
        events = [self._event("TURN_ENDED", auto=auto, elapsed=s.clock.elapsed)]

        if s.rotation.confirmed:
            s.previous_batches[s.defending] = [list(b) for b in s.rotation.batches]
        s.pending_card = None
        s.completed_turns += 1

        if finished >= s.match.total_turns:
            # Last turn: no break, straight to the final report.
            events.extend(self._finalize(now=now, reason="innings_complete"))
            return events

        kind = clock.break_kind_after_turn(finished)
        self.fsm.enter_break(kind)
        clock.begin_break(brk=s.break_state, kind=kind, now=now)
        batches.clear(rotation=s.rotation)
        logger.info("match %s: turn %d over, %s break (%ds)", s.match.id, finished, kind.value, s.break_state.remaining)
        events.append(self._event("BREAK_STARTED", kind=kind.value, duration=s.break_state.remaining))
        return events

    def _start_next_turn(self, *, now: float) -> list[MatchEvent]:
        s = self.state
        finished = s.turn
        if finished + 1 > s.match.total_turns:
            return self._finalize(now=now, reason="innings_complete")

        self.fsm.start_next_turn()
        clock.clear_break(brk=s.break_state)
        if finished % 2 == 0:
            s.inning += 1
        s.turn = finished + 1
        s.defending = s.defending.other
        clock.restart_for_new_turn(clock=s.clock)
        batches.clear(rotation=s.rotation)

        logger.info("match %s: inning %d turn %d started, %s defending", s.match.id, s.inning, s.turn, s.defending_team.name)
        return [self._event("TURN_STARTED", defending_team_id=s.defending_team.id)]

    def _finalize(self, *, now: float, reason: str) -> list[MatchEvent]:
        s = self.state
        self.fsm.end_match()
        clock.stop(clock=s.clock, now=now)
        clock.clear_break(brk=s.break_state)
        s.pending_card = None
        s.final_scores = self.ledger.scores([s.match.team_a.id, s.match.team_b.id])
        logger.info("match %s finalized (%s): %s", s.match.id, reason, projections.report_summary(self.match_report()))
        return [self._event("MATCH_FINALIZED", reason=reason, scores=dict(s.final_scores))]

    # --- projections -----------------------------------------------------------------------

    def current_scores(self) -> ScoresResponse:
        return projections.current_scores(self.state)

    def current_turn_info(self) -> TurnInfo:
        return projections.current_turn_info(self.state)

    def scoresheet(self, *, inning: int, turn: int) -> Scoresheet:
        return projections.scoresheet(self.state, inning=inning, turn=turn)

    def match_report(self) -> MatchReport:
        return projections.match_report(self.state)
