from __future__ import annotations

import logging
from collections.abc import Iterable

from khokho.api.models import ScoringAction, SyncEvent, SyncEventKind
from khokho.errors import ConcurrencyConflict, IllegalTransition, ValidationError
from khokho.symbols import Symbol

logger = logging.getLogger(__name__)


def is_substitution(action: ScoringAction) -> bool:
    return action.symbol == Symbol.substitution.value


def turn_actions(actions: Iterable[ScoringAction], *, inning: int, turn: int) -> list[ScoringAction]:
    return [a for a in actions if a.inning == inning and a.turn == turn]


def team_score(actions: Iterable[ScoringAction], team_id: str) -> int:
    return sum(a.points for a in actions if a.scoring_team_id == team_id)


class ScoringLedger:
    """Append-only view over a session's scoring actions.

    Wraps the session's own list, so every change is visible in the serialized state.
    Entries are never edited; they are appended, undone (most recent scoring entry only),
    or inserted/deleted by id through `merge`.
    """

    def __init__(self, entries: list[ScoringAction]) -> None:
        self._entries = entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[ScoringAction]:
        return list(self._entries)

    def ids(self) -> set[str]:
        return {a.id for a in self._entries}

    def contains(self, action_id: str) -> bool:
        return any(a.id == action_id for a in self._entries)

    def previous_run_time(self, *, inning: int, turn: int) -> int:
        """Run time of the latest entry of the turn, substitutions included; 0 at turn start."""

        for a in reversed(self._entries):
            if a.inning == inning and a.turn == turn:
                return a.run_time
        return 0

    def record(self, action: ScoringAction) -> ScoringAction:
        if self.contains(action.id):
            raise ValidationError(f"Duplicate action id: {action.id}")
        self._entries.append(action)
        return action

    def last_scoring_entry(self) -> ScoringAction | None:
        return next((a for a in reversed(self._entries) if not is_substitution(a)), None)

    def undo_last(self) -> ScoringAction:
        """Remove the most recent scoring entry.

        Substitution audit entries stay in place; the roster swap they describe cannot be undone here.
        """

        last = self.last_scoring_entry()
        if last is None:
            raise IllegalTransition("No actions to undo")
        self._entries.remove(last)
        return last

    def insert(self, action: ScoringAction) -> None:
        if self.contains(action.id):
            raise ConcurrencyConflict(f"Action {action.id} already in ledger")
        self._entries.append(action)

    def delete(self, action_id: str) -> ScoringAction | None:
        for idx, a in enumerate(self._entries):
            if a.id == action_id:
                return self._entries.pop(idx)
        return None

    def merge(self, event: SyncEvent, action: ScoringAction | None = None) -> bool:
        """Apply a remote insert/delete. Returns True if the ledger changed.

        Reapplying a known insert (or deleting an unknown id) is a no-op.
        """

        if event.kind == SyncEventKind.insert:
            if action is None:
                raise ValidationError("Insert event without an action")
            try:
                self.insert(action)
            except ConcurrencyConflict:
                logger.debug("duplicate sync insert absorbed: %s", action.id)
                return False
            return True

        removed = self.delete(event.action_id)
        if removed is None:
            logger.debug("sync delete for unknown action ignored: %s", event.action_id)
            return False
        return True

    def team_score(self, team_id: str) -> int:
        return team_score(self._entries, team_id)

    def scores(self, team_ids: Iterable[str]) -> dict[str, int]:
        return {tid: team_score(self._entries, tid) for tid in team_ids}
