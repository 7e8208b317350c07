from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from khokho.api.models import BatchRotation, Player, ScoringAction
from khokho.core.ledger import is_substitution, turn_actions
from khokho.errors import ValidationError

logger = logging.getLogger(__name__)

BATCH_SIZE = 3
TOTAL_BATCHES = 3


@dataclass(slots=True)
class RotationProgress:
    active_index: int = 0
    cycle: int = 0
    out_ids: set[str] = field(default_factory=set)


def validate_partition(partition: Sequence[Sequence[str]], roster_ids: Sequence[str]) -> list[list[str]]:
    """Check a proposed split of the defending roster into batches and return a normalized copy."""

    if len(partition) != TOTAL_BATCHES:
        raise ValidationError(f"Exactly {TOTAL_BATCHES} batches are required (got {len(partition)})")

    seen: set[str] = set()
    for idx, batch in enumerate(partition, start=1):
        if not batch:
            raise ValidationError(f"Batch {idx} is empty")
        if len(batch) > BATCH_SIZE:
            raise ValidationError(f"Batch {idx} has {len(batch)} players (max {BATCH_SIZE})")
        for pid in batch:
            if pid in seen:
                raise ValidationError(f"Player {pid} appears in more than one batch")
            seen.add(pid)

    roster = set(roster_ids)
    unknown = seen - roster
    if unknown:
        raise ValidationError(f"Not playing defenders: {', '.join(sorted(unknown))}")
    missing = roster - seen
    if missing:
        raise ValidationError(f"Playing defenders missing from batches: {', '.join(sorted(missing))}")

    return [list(b) for b in partition]


def confirm_batches(*, rotation: BatchRotation, partition: Sequence[Sequence[str]], roster_ids: Sequence[str]) -> None:
    batches = validate_partition(partition, roster_ids)
    rotation.batches = batches
    rotation.confirmed = True
    rotation.active_index = 0
    rotation.cycle = 0


def clear(*, rotation: BatchRotation) -> None:
    rotation.batches = []
    rotation.confirmed = False
    rotation.active_index = 0
    rotation.cycle = 0


def replace_member(*, rotation: BatchRotation, out_id: str, in_id: str) -> bool:
    """Swap a player in place, keeping batch index and slot. Returns False if not in any batch."""

    for batch in rotation.batches:
        for slot, pid in enumerate(batch):
            if pid == out_id:
                batch[slot] = in_id
                return True
    return False


def active_batch(rotation: BatchRotation) -> list[str]:
    if not rotation.confirmed or not rotation.batches:
        return []
    return list(rotation.batches[rotation.active_index])


def _defender_ids(actions: Iterable[ScoringAction], roster: Sequence[Player]) -> Iterable[str]:
    by_ref = {(p.jersey_number, p.name): p.id for p in roster}
    for a in actions:
        if a.defender is None or is_substitution(a):
            continue
        pid = by_ref.get((a.defender.jersey_number, a.defender.name))
        if pid is not None:
            yield pid


def rotation_progress(
    *,
    rotation: BatchRotation,
    actions: Iterable[ScoringAction],
    roster: Sequence[Player],
    inning: int,
    turn: int,
) -> RotationProgress:
    """Replay the turn's defender outs through the batch cycle.

    A defender only counts against the active batch if they were named after that batch most
    recently became active, so later cycles through the same batches start fresh.
    """

    progress = RotationProgress()
    if not rotation.confirmed or not rotation.batches:
        return progress

    for pid in _defender_ids(turn_actions(actions, inning=inning, turn=turn), roster):
        batch = rotation.batches[progress.active_index]
        if pid not in batch:
            continue
        progress.out_ids.add(pid)
        if all(m in progress.out_ids for m in batch):
            progress.active_index = (progress.active_index + 1) % TOTAL_BATCHES
            if progress.active_index == 0:
                progress.cycle += 1
            progress.out_ids = set()

    return progress


def advance_if_cleared(
    *,
    rotation: BatchRotation,
    actions: Iterable[ScoringAction],
    roster: Sequence[Player],
    inning: int,
    turn: int,
) -> RotationProgress:
    """Bring the stored active batch and cycle in line with the ledger."""

    progress = rotation_progress(rotation=rotation, actions=actions, roster=roster, inning=inning, turn=turn)
    if (progress.active_index, progress.cycle) != (rotation.active_index, rotation.cycle):
        logger.info(
            "batch rotation: batch %d (cycle %d) -> batch %d (cycle %d)",
            rotation.active_index + 1,
            rotation.cycle,
            progress.active_index + 1,
            progress.cycle,
        )
        rotation.active_index = progress.active_index
        rotation.cycle = progress.cycle
    return progress
