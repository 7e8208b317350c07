from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from khokho.api.models import (
    ClockState,
    Match,
    MatchSetup,
    Membership,
    Player,
    SessionState,
    Team,
    TeamSetup,
)
from khokho.errors import ValidationError

ALLOWED_PLAYERS_PER_TEAM = (7, 9)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def validate_setup(setup: MatchSetup) -> None:
    """Reject setups the session could never honour.

    Rules:
    - The two teams must differ.
    - 7 or 9 players per side, exactly that many listed as playing.
    - Player ids and jersey numbers are unique within a team; ids are unique across the match.
    """

    if setup.team_a.id == setup.team_b.id:
        raise ValidationError("Team A and Team B must be different teams")

    n = setup.players_per_team
    if n not in ALLOWED_PLAYERS_PER_TEAM:
        allowed = " or ".join(str(x) for x in ALLOWED_PLAYERS_PER_TEAM)
        raise ValidationError(f"players_per_team must be {allowed}")

    all_ids: set[str] = set()
    for team in (setup.team_a, setup.team_b):
        if len(team.playing) != n:
            raise ValidationError(f"{team.name} must field exactly {n} playing players (got {len(team.playing)})")

        roster = [*team.playing, *team.bench]
        ids = [p.id for p in roster]
        if len(set(ids)) != len(ids):
            raise ValidationError(f"{team.name} lists the same player more than once")
        jerseys = [p.jersey_number for p in roster]
        if len(set(jerseys)) != len(jerseys):
            raise ValidationError(f"{team.name} has duplicate jersey numbers")

        overlap = all_ids & set(ids)
        if overlap:
            raise ValidationError(f"Players on both teams: {', '.join(sorted(overlap))}")
        all_ids.update(ids)


def build_team(setup: TeamSetup) -> Team:
    players = [
        Player(id=p.id, jersey_number=p.jersey_number, name=p.name, team_id=setup.id, membership=Membership.playing)
        for p in setup.playing
    ]
    players.extend(
        Player(id=p.id, jersey_number=p.jersey_number, name=p.name, team_id=setup.id, membership=Membership.bench)
        for p in setup.bench
    )
    return Team(id=setup.id, name=setup.name, players=players)


def build_initial_session(setup: MatchSetup) -> SessionState:
    validate_setup(setup)

    match = Match(
        id=setup.match_id or str(uuid4()),
        team_a=build_team(setup.team_a),
        team_b=build_team(setup.team_b),
        innings=setup.innings,
        turn_duration=setup.turn_duration,
        players_per_team=setup.players_per_team,
        toss_winner=setup.toss_winner,
        toss_decision=setup.toss_decision,
    )
    now = _now()
    return SessionState(
        match=match,
        created_at=now,
        last_updated_at=now,
        defending=match.first_defending_side,
        clock=ClockState(max_duration=match.turn_duration),
    )
