from __future__ import annotations

from khokho.api.models import (
    AttackerSheetRow,
    AttackerStat,
    BatchView,
    DefenderSheetRow,
    DefenderStat,
    InningScore,
    MatchReport,
    Scoresheet,
    ScoresResponse,
    SessionPhase,
    SessionState,
    TeamScore,
    TurnInfo,
)
from khokho.core import batches, clock
from khokho.core.ledger import is_substitution, team_score, turn_actions

TOP_PERFORMERS = 5


def current_scores(state: SessionState) -> ScoresResponse:
    m = state.match
    return ScoresResponse(
        match_id=m.id,
        team_a=TeamScore(team_id=m.team_a.id, team_name=m.team_a.name, score=team_score(state.actions, m.team_a.id)),
        team_b=TeamScore(team_id=m.team_b.id, team_name=m.team_b.name, score=team_score(state.actions, m.team_b.id)),
    )


def current_turn_info(state: SessionState) -> TurnInfo:
    progress = batches.rotation_progress(
        rotation=state.rotation,
        actions=state.actions,
        roster=state.defending_team.players,
        inning=state.inning,
        turn=state.turn,
    )
    rot = state.rotation
    return TurnInfo(
        match_id=state.match.id,
        phase=state.phase,
        inning=state.inning,
        turn=state.turn,
        total_turns=state.match.total_turns,
        defending_team_id=state.defending_team.id,
        attacking_team_id=state.attacking_team.id,
        elapsed=state.clock.elapsed,
        max_duration=state.clock.max_duration,
        remaining=clock.remaining(state.clock),
        clock_running=state.clock.running,
        break_kind=state.break_state.kind,
        break_remaining=state.break_state.remaining,
        batches_confirmed=rot.confirmed,
        batches=[BatchView(index=i, player_ids=list(b)) for i, b in enumerate(rot.batches)],
        active_batch_index=rot.active_index,
        active_batch=batches.active_batch(rot),
        out_in_active_batch=sorted(progress.out_ids),
        cycle=rot.cycle,
        pending_card=state.pending_card,
    )


def scoresheet(state: SessionState, *, inning: int, turn: int) -> Scoresheet:
    """Defender and attacker sheets for one turn."""

    sheet = Scoresheet(inning=inning, turn=turn)
    attackers: dict[int, AttackerSheetRow] = {}

    for a in turn_actions(state.actions, inning=inning, turn=turn):
        if is_substitution(a):
            continue

        if a.defender is not None:
            sheet.defenders.append(
                DefenderSheetRow(
                    jersey_number=a.defender.jersey_number,
                    name=a.defender.name,
                    per_time=a.per_time,
                    run_time=a.run_time,
                    out_by=a.attacker.name if a.attacker is not None else None,
                    symbol=a.symbol,
                )
            )

        if a.attacker is None:
            continue
        row = attackers.get(a.attacker.jersey_number)
        if row is None:
            row = AttackerSheetRow(jersey_number=a.attacker.jersey_number, name=a.attacker.name)
            attackers[a.attacker.jersey_number] = row
        row.points += a.points
        if a.defender is not None:
            row.defenders_out.append(a.defender.name)

    sheet.attackers = sorted(attackers.values(), key=lambda r: r.jersey_number)
    return sheet


def _format_mmss(seconds: int) -> str:
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def match_report(state: SessionState) -> MatchReport:
    """Consolidated match report for the report consumer.

    Scores always come from the ledger; `final` is only set once the match has ended.
    """

    scores = current_scores(state)
    a, b = scores.team_a, scores.team_b
    if a.score > b.score:
        winner_id, winner_name = a.team_id, a.team_name
    elif b.score > a.score:
        winner_id, winner_name = b.team_id, b.team_name
    else:
        winner_id, winner_name = None, "Draw"

    scoring = [x for x in state.actions if not is_substitution(x)]

    innings: dict[int, InningScore] = {}
    for x in scoring:
        row = innings.setdefault(x.inning, InningScore(inning=x.inning))
        if x.scoring_team_id == a.team_id:
            row.team_a += x.points
        elif x.scoring_team_id == b.team_id:
            row.team_b += x.points

    attackers: dict[str, AttackerStat] = {}
    defenders: dict[str, DefenderStat] = {}
    for x in scoring:
        if x.attacker is not None:
            st = attackers.setdefault(x.attacker.name, AttackerStat(name=x.attacker.name))
            st.points += x.points
            st.actions += 1
        if x.defender is not None:
            ds = defenders.setdefault(x.defender.name, DefenderStat(name=x.defender.name))
            ds.count += 1
            ds.total_per_time += x.per_time
    for ds in defenders.values():
        ds.avg_per_time = ds.total_per_time / ds.count

    total_actions = len(scoring)
    total_time = max((x.run_time for x in scoring), default=0)

    return MatchReport(
        match_id=state.match.id,
        final=state.phase == SessionPhase.match_ended,
        team_a=a,
        team_b=b,
        winner_team_id=winner_id,
        winner_name=winner_name,
        innings=[innings[k] for k in sorted(innings)],
        total_actions=total_actions,
        total_time=total_time,
        avg_time_per_out=total_time // total_actions if total_actions else 0,
        top_attackers=sorted(attackers.values(), key=lambda s: s.points, reverse=True)[:TOP_PERFORMERS],
        top_defenders=sorted(defenders.values(), key=lambda s: s.count, reverse=True)[:TOP_PERFORMERS],
    )


def report_summary(report: MatchReport) -> str:
    """One-line human summary, used in logs when a match is finalized."""

    result = "Draw" if report.winner_team_id is None else f"{report.winner_name} won"
    return (
        f"{report.team_a.team_name} {report.team_a.score} - {report.team_b.score} {report.team_b.team_name} "
        f"({result}; {report.total_actions} actions, {_format_mmss(report.total_time)} longest turn time)"
    )
