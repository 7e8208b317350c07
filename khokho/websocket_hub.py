from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import asdict

from fastapi import WebSocket

from khokho.api.models import MatchEventView, MatchUpdate, SessionState
from khokho.core import projections
from khokho.core.events import MatchEvent

logger = logging.getLogger(__name__)


def match_update(state: SessionState, events: Sequence[MatchEvent], *, snapshot: bool = False) -> MatchUpdate:
    """Typed events plus the scoreboard and turn projections they produced."""

    return MatchUpdate(
        type="match_snapshot" if snapshot else "match_updated",
        match_id=state.match.id,
        events=[MatchEventView.model_validate(asdict(e)) for e in events],
        scores=projections.current_scores(state),
        turn=projections.current_turn_info(state),
    )


class MatchWebSocketHub:
    """Pushes live scoreboards to the observers of each match.

    An observer gets a `match_snapshot` when it attaches, then one `match_updated` per
    change, so a scoreboard screen never has to poll the REST projections.
    """

    def __init__(self) -> None:
        self._observers: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def attach(self, match_id: str, websocket: WebSocket, state: SessionState | None) -> None:
        await websocket.accept()
        if state is not None:
            await websocket.send_json(match_update(state, [], snapshot=True).model_dump(mode="json"))
        async with self._lock:
            self._observers[match_id].add(websocket)

    async def detach(self, match_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            observers = self._observers.get(match_id)
            if observers is None:
                return
            observers.discard(websocket)
            if not observers:
                del self._observers[match_id]

    async def publish(self, state: SessionState, events: Sequence[MatchEvent]) -> None:
        match_id = state.match.id
        async with self._lock:
            observers = list(self._observers.get(match_id, ()))
        if not observers:
            return

        message = match_update(state, events).model_dump(mode="json")
        gone: list[WebSocket] = []
        for ws in observers:
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug("match %s: dropping observer: %s", match_id, e)
                gone.append(ws)

        if gone:
            for ws in gone:
                await self.detach(match_id, ws)


hub = MatchWebSocketHub()
