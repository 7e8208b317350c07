from __future__ import annotations

from khokho.api.models import PlayerRef, ScoringAction, ScoringActionRow


def _ref(jersey: int | None, name: str | None) -> PlayerRef | None:
    if jersey is None or not name:
        return None
    return PlayerRef(jersey_number=jersey, name=name)


def action_to_row(action: ScoringAction) -> ScoringActionRow:
    return ScoringActionRow(
        id=action.id,
        match_id=action.match_id,
        inning=action.inning,
        turn=action.turn,
        scoring_team_id=action.scoring_team_id,
        symbol=action.symbol,
        points=action.points,
        defender_jersey=action.defender.jersey_number if action.defender else None,
        defender_name=action.defender.name if action.defender else None,
        attacker_jersey=action.attacker.jersey_number if action.attacker else None,
        attacker_name=action.attacker.name if action.attacker else None,
        out_jersey=action.player_out.jersey_number if action.player_out else None,
        out_name=action.player_out.name if action.player_out else None,
        in_jersey=action.player_in.jersey_number if action.player_in else None,
        in_name=action.player_in.name if action.player_in else None,
        run_time=action.run_time,
        per_time=action.per_time,
        created_at=action.recorded_at,
    )


def action_from_row(row: ScoringActionRow) -> ScoringAction:
    return ScoringAction(
        id=row.id,
        match_id=row.match_id,
        inning=row.inning,
        turn=row.turn,
        scoring_team_id=row.scoring_team_id,
        symbol=row.symbol,
        points=row.points,
        defender=_ref(row.defender_jersey, row.defender_name),
        attacker=_ref(row.attacker_jersey, row.attacker_name),
        player_out=_ref(row.out_jersey, row.out_name),
        player_in=_ref(row.in_jersey, row.in_name),
        run_time=row.run_time,
        per_time=row.per_time,
        recorded_at=row.created_at,
    )
