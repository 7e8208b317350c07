from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class TeamSide(StrEnum):
    A = "A"
    B = "B"

    @property
    def other(self) -> "TeamSide":
        return TeamSide.B if self is TeamSide.A else TeamSide.A


class TossDecision(StrEnum):
    attack = "attack"
    defend = "defend"


class Membership(StrEnum):
    playing = "playing"
    bench = "bench"


class SessionPhase(StrEnum):
    active_turn = "active_turn"
    turn_break = "turn_break"
    inning_break = "inning_break"
    match_ended = "match_ended"


class BreakKind(StrEnum):
    turn = "turn"
    inning = "inning"


class SubstitutionKind(StrEnum):
    attacking = "attacking"
    defensive = "defensive"


class Player(BaseModel):
    id: str
    jersey_number: int = Field(..., ge=0)
    name: str
    team_id: str
    membership: Membership = Membership.bench

    @property
    def ref(self) -> "PlayerRef":
        return PlayerRef(jersey_number=self.jersey_number, name=self.name)


class Team(BaseModel):
    id: str
    name: str

    # Ordered roster; membership flags decide playing vs bench.
    players: list[Player] = Field(default_factory=list)

    @property
    def playing(self) -> list[Player]:
        return [p for p in self.players if p.membership == Membership.playing]

    @property
    def bench(self) -> list[Player]:
        return [p for p in self.players if p.membership == Membership.bench]

    def find(self, player_id: str) -> Player | None:
        return next((p for p in self.players if p.id == player_id), None)


class Match(BaseModel):
    id: str
    team_a: Team
    team_b: Team
    innings: int = Field(2, ge=1)
    turn_duration: int = Field(540, gt=0)
    players_per_team: int = 9
    toss_winner: TeamSide = TeamSide.A
    toss_decision: TossDecision = TossDecision.defend

    def team(self, side: TeamSide) -> Team:
        return self.team_a if side == TeamSide.A else self.team_b

    def side_of(self, team_id: str) -> TeamSide | None:
        if team_id == self.team_a.id:
            return TeamSide.A
        if team_id == self.team_b.id:
            return TeamSide.B
        return None

    @property
    def total_turns(self) -> int:
        return self.innings * 2

    @property
    def first_defending_side(self) -> TeamSide:
        if self.toss_decision == TossDecision.defend:
            return self.toss_winner
        return self.toss_winner.other


class PlayerRef(BaseModel):
    jersey_number: int
    name: str


class ScoringAction(BaseModel):
    id: str
    match_id: str
    inning: int
    turn: int
    scoring_team_id: str
    symbol: str
    points: int = 0

    defender: PlayerRef | None = None
    attacker: PlayerRef | None = None

    # Substitution audit entries only.
    player_out: PlayerRef | None = None
    player_in: PlayerRef | None = None

    # Clock value when recorded, and seconds since the previous action of the turn.
    run_time: int = 0
    per_time: int = 0

    recorded_at: datetime


class ClockState(BaseModel):
    elapsed: int = 0
    max_duration: int
    running: bool = False

    # Wall-clock instant (epoch seconds) the elapsed value was last advanced to.
    last_instant: float | None = None


class BreakState(BaseModel):
    kind: BreakKind | None = None
    remaining: int = 0
    last_instant: float | None = None

    @property
    def active(self) -> bool:
        return self.kind is not None


class BatchRotation(BaseModel):
    # Exactly three batches of player ids once confirmed.
    batches: list[list[str]] = Field(default_factory=list)
    confirmed: bool = False
    active_index: int = 0
    cycle: int = 0


class PendingCard(BaseModel):
    symbol: str
    defender_id: str | None = None
    attacker_id: str | None = None


class SessionState(BaseModel):
    match: Match
    created_at: datetime
    last_updated_at: datetime

    phase: SessionPhase = SessionPhase.active_turn
    inning: int = 1
    turn: int = 1
    completed_turns: int = 0
    defending: TeamSide

    clock: ClockState
    break_state: BreakState = Field(default_factory=BreakState)
    rotation: BatchRotation = Field(default_factory=BatchRotation)

    # Last confirmed partition per defending side, for reuse in its next turn.
    previous_batches: dict[TeamSide, list[list[str]]] = Field(default_factory=dict)

    # Append-only ledger.
    actions: list[ScoringAction] = Field(default_factory=list)

    # Innings in which each side already used its defender substitution.
    defender_subs_used: dict[TeamSide, list[int]] = Field(default_factory=dict)

    pending_card: PendingCard | None = None

    # Set when the match ends.
    final_scores: dict[str, int] | None = None

    @property
    def attacking(self) -> TeamSide:
        return self.defending.other

    @property
    def defending_team(self) -> Team:
        return self.match.team(self.defending)

    @property
    def attacking_team(self) -> Team:
        return self.match.team(self.attacking)


class PlayerSetup(BaseModel):
    id: str
    jersey_number: int = Field(..., ge=0)
    name: str


class TeamSetup(BaseModel):
    id: str
    name: str
    playing: list[PlayerSetup]
    bench: list[PlayerSetup] = Field(default_factory=list)


class MatchSetup(BaseModel):
    """Everything the setup collaborator hands over before the session starts."""

    match_id: str | None = None
    team_a: TeamSetup
    team_b: TeamSetup
    innings: int = Field(2, ge=1, le=10)
    turn_duration: int = Field(540, gt=0, le=3600)
    players_per_team: int = 9
    toss_winner: TeamSide = TeamSide.A
    toss_decision: TossDecision = TossDecision.defend


class RecordActionRequest(BaseModel):
    symbol: str
    defender_id: str | None = None
    attacker_id: str | None = None
    action_id: str | None = None


class StageCardRequest(BaseModel):
    symbol: str
    defender_id: str | None = None
    attacker_id: str | None = None


class ConfirmBatchesRequest(BaseModel):
    batches: list[list[str]]


class SubstituteRequest(BaseModel):
    team: TeamSide
    out_player_id: str
    in_player_id: str
    kind: SubstitutionKind


class ToggleClockRequest(BaseModel):
    run: bool
    now: float | None = None


class ResetClockRequest(BaseModel):
    confirmed: bool = False


class ClockInstantRequest(BaseModel):
    """Operations that only need the wall-clock instant (tick, end turn, skip break, end match)."""

    now: float | None = None


class SyncEventKind(StrEnum):
    insert = "insert"
    delete = "delete"


class ScoringActionRow(BaseModel):
    """Canonical persisted row for a scoring action (flat, snake_case)."""

    id: str
    match_id: str
    inning: int
    turn: int
    scoring_team_id: str
    symbol: str
    points: int = 0
    defender_jersey: int | None = None
    defender_name: str | None = None
    attacker_jersey: int | None = None
    attacker_name: str | None = None
    out_jersey: int | None = None
    out_name: str | None = None
    in_jersey: int | None = None
    in_name: str | None = None
    run_time: int = 0
    per_time: int = 0
    created_at: datetime


class SyncEvent(BaseModel):
    kind: SyncEventKind
    action_id: str
    row: ScoringActionRow | None = None


class TeamScore(BaseModel):
    team_id: str
    team_name: str
    score: int


class ScoresResponse(BaseModel):
    match_id: str
    team_a: TeamScore
    team_b: TeamScore


class BatchView(BaseModel):
    index: int
    player_ids: list[str]


class TurnInfo(BaseModel):
    match_id: str
    phase: SessionPhase
    inning: int
    turn: int
    total_turns: int
    defending_team_id: str
    attacking_team_id: str

    elapsed: int
    max_duration: int
    remaining: int
    clock_running: bool

    break_kind: BreakKind | None = None
    break_remaining: int = 0

    batches_confirmed: bool
    batches: list[BatchView] = Field(default_factory=list)
    active_batch_index: int = 0
    active_batch: list[str] = Field(default_factory=list)
    out_in_active_batch: list[str] = Field(default_factory=list)
    cycle: int = 0

    pending_card: PendingCard | None = None


class DefenderSheetRow(BaseModel):
    jersey_number: int
    name: str
    per_time: int
    run_time: int
    out_by: str | None = None
    symbol: str


class AttackerSheetRow(BaseModel):
    jersey_number: int
    name: str
    points: int = 0
    defenders_out: list[str] = Field(default_factory=list)


class Scoresheet(BaseModel):
    inning: int
    turn: int
    defenders: list[DefenderSheetRow] = Field(default_factory=list)
    attackers: list[AttackerSheetRow] = Field(default_factory=list)


class InningScore(BaseModel):
    inning: int
    team_a: int = 0
    team_b: int = 0


class AttackerStat(BaseModel):
    name: str
    points: int = 0
    actions: int = 0


class DefenderStat(BaseModel):
    name: str
    count: int = 0
    total_per_time: int = 0
    avg_per_time: float = 0.0


class MatchReport(BaseModel):
    match_id: str
    final: bool
    team_a: TeamScore
    team_b: TeamScore

    # Team id of the winner, or None on a draw.
    winner_team_id: str | None = None
    winner_name: str

    innings: list[InningScore] = Field(default_factory=list)
    total_actions: int = 0
    total_time: int = 0
    avg_time_per_out: int = 0
    top_attackers: list[AttackerStat] = Field(default_factory=list)
    top_defenders: list[DefenderStat] = Field(default_factory=list)


class MatchListResponse(BaseModel):
    matches: list[SessionState]


class OperationResponse(BaseModel):
    state: SessionState
    events: list[str] = Field(default_factory=list)


class MatchEventView(BaseModel):
    type: str
    inning: int
    turn: int
    payload: dict[str, Any] = Field(default_factory=dict)
    ts: datetime


class MatchUpdate(BaseModel):
    """WebSocket message pushed to match observers.

    `match_snapshot` is sent once when an observer connects, `match_updated` after every change.
    """

    type: Literal["match_snapshot", "match_updated"]
    match_id: str
    events: list[MatchEventView] = Field(default_factory=list)
    scores: ScoresResponse
    turn: TurnInfo
