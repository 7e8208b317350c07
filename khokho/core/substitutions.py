from __future__ import annotations

from khokho.api.models import BatchRotation, Membership, Player, Team, TeamSide
from khokho.core import batches
from khokho.errors import IllegalTransition, ValidationError


def _require_swap(team: Team, *, out_id: str, in_id: str) -> tuple[Player, Player]:
    outgoing = team.find(out_id)
    incoming = team.find(in_id)
    if outgoing is None:
        raise ValidationError(f"Player {out_id} is not on {team.name}")
    if incoming is None:
        raise ValidationError(f"Player {in_id} is not on {team.name}")
    if outgoing.membership != Membership.playing:
        raise ValidationError(f"{outgoing.name} is not currently playing")
    if incoming.membership != Membership.bench:
        raise ValidationError(f"{incoming.name} is not on the bench")
    return outgoing, incoming


def swap(team: Team, *, out_id: str, in_id: str) -> tuple[Player, Player]:
    """Move one player bench -> playing and another playing -> bench.

    Both players are validated before either flag flips, so the roster never holds a player in
    both sets or in neither.
    """

    outgoing, incoming = _require_swap(team, out_id=out_id, in_id=in_id)
    outgoing.membership = Membership.bench
    incoming.membership = Membership.playing
    return outgoing, incoming


def attacking_substitution(*, team: Team, out_id: str, in_id: str) -> tuple[Player, Player]:
    return swap(team, out_id=out_id, in_id=in_id)


def defensive_substitution(
    *,
    team: Team,
    side: TeamSide,
    out_id: str,
    in_id: str,
    inning: int,
    used: dict[TeamSide, list[int]],
    rotation: BatchRotation,
) -> tuple[Player, Player]:
    if inning in used.get(side, []):
        raise IllegalTransition(f"Defender substitution already used for inning {inning}")

    outgoing, incoming = swap(team, out_id=out_id, in_id=in_id)
    used.setdefault(side, []).append(inning)
    if rotation.confirmed:
        batches.replace_member(rotation=rotation, out_id=out_id, in_id=in_id)
    return outgoing, incoming
