from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import redis

from khokho.actions import OperationResult, dispatch_operation
from khokho.api.models import SessionPhase
from khokho.config import settings_from_env
from khokho.errors import ConcurrencyConflict
from khokho.match_store import get_session
from khokho.streams import MatchStreams, read_sync_events
from khokho.websocket_hub import hub

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClockRunnerConfig:
    # Seconds between ticks of a live match.
    interval_s: float = field(default_factory=lambda: settings_from_env().clock_interval_s)
    # Max sync entries merged per poll.
    count: int = 100


def _cursor_key(*, match_id: str, consumer: str) -> str:
    return f"{MatchStreams(match_id=match_id).actions_key}:cursor:{consumer}"


def run_clock_once(*, r: redis.Redis, match_id: str, now: float | None = None) -> OperationResult | None:
    """Tick the live timer of one match.

    Returns None if the match is gone or another operation holds the lock; the next tick
    catches up because the clock advances by whole elapsed seconds since its last instant.
    """

    state = get_session(r=r, match_id=match_id)
    if state is None or state.phase == SessionPhase.match_ended:
        return None

    try:
        return dispatch_operation(r=r, match_id=match_id, operation="tick", payload={"now": time.time() if now is None else now})
    except ConcurrencyConflict:
        logger.debug("match %s busy, skipping tick", match_id)
        return None


def pull_sync_events(
    *,
    r: redis.Redis,
    match_id: str,
    consumer: str = "scorer",
    config: ClockRunnerConfig | None = None,
) -> int:
    """Merge action-feed entries written since this consumer's last poll.

    The cursor is persisted per consumer. Entries this process published itself are
    absorbed by the ledger's idempotent merge. Returns how many entries changed the ledger.
    """

    cfg = config or ClockRunnerConfig()
    key = _cursor_key(match_id=match_id, consumer=consumer)
    after = r.get(key) or "-"

    applied = 0
    for entry_id, event in read_sync_events(r=r, match_id=match_id, after=after, count=cfg.count):
        try:
            result = dispatch_operation(r=r, match_id=match_id, operation="sync", payload=event.model_dump(mode="json"))
        except ConcurrencyConflict:
            # Busy: resume from the same entry on the next poll.
            break
        except ValueError as e:
            logger.warning("match %s: dropping sync entry %s: %s", match_id, entry_id, e)
        else:
            if result.events:
                applied += 1
        r.set(key, entry_id)
    return applied


async def run_clock_loop(*, r: redis.Redis, match_id: str, config: ClockRunnerConfig | None = None) -> None:
    """Background loop: tick the match and merge remote edits until the match ends."""

    cfg = config or ClockRunnerConfig()
    logger.info("clock runner started for match %s (every %.2fs)", match_id, cfg.interval_s)
    while True:
        result = run_clock_once(r=r, match_id=match_id)
        pulled = pull_sync_events(r=r, match_id=match_id, config=cfg)

        state = get_session(r=r, match_id=match_id)
        if state is not None and ((result is not None and result.events) or pulled):
            await hub.publish(state, result.events if result is not None else [])

        if state is None or state.phase == SessionPhase.match_ended:
            logger.info("clock runner stopped for match %s", match_id)
            return
        await asyncio.sleep(cfg.interval_s)


class ClockRunners:
    """At most one background clock loop per match, on the running event loop."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def is_running(self, match_id: str) -> bool:
        task = self._tasks.get(match_id)
        return task is not None and not task.done()

    def start(
        self,
        *,
        connect: Callable[[], redis.Redis],
        match_id: str,
        config: ClockRunnerConfig | None = None,
    ) -> bool:
        """Start ticking `match_id` in the background on a client of its own; no-op if already running."""

        if self.is_running(match_id):
            return False

        task = asyncio.create_task(self._run(r=connect(), match_id=match_id, config=config), name=f"clock:{match_id}")
        self._tasks[match_id] = task
        task.add_done_callback(lambda t: self._finished(match_id, t))
        return True

    @staticmethod
    async def _run(*, r: redis.Redis, match_id: str, config: ClockRunnerConfig | None) -> None:
        try:
            await run_clock_loop(r=r, match_id=match_id, config=config)
        finally:
            r.close()

    def _finished(self, match_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(match_id) is task:
            del self._tasks[match_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("clock runner for match %s crashed", match_id, exc_info=task.exception())

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


runners = ClockRunners()
