from __future__ import annotations

import math

from khokho.api.models import BreakKind, BreakState, ClockState
from khokho.errors import IllegalTransition

TURN_BREAK_DURATION = 180
INNING_BREAK_DURATION = 300


def break_duration(kind: BreakKind) -> int:
    return INNING_BREAK_DURATION if kind == BreakKind.inning else TURN_BREAK_DURATION


def break_kind_after_turn(turn: int) -> BreakKind:
    # Even turns close an inning.
    return BreakKind.inning if turn % 2 == 0 else BreakKind.turn


def _whole_seconds_since(last_instant: float, now: float) -> int:
    return math.floor(now - last_instant)


def remaining(clock: ClockState) -> int:
    return max(clock.max_duration - clock.elapsed, 0)


def start(*, clock: ClockState, brk: BreakState, batches_confirmed: bool, now: float) -> bool:
    """Start the turn clock. Returns False if it was already running."""

    if brk.active:
        raise IllegalTransition("Cannot control match timer during a break")
    if not batches_confirmed:
        raise IllegalTransition("Set defender batches before starting the timer")
    if clock.elapsed >= clock.max_duration:
        raise IllegalTransition("Turn time is exhausted; end the turn")
    if clock.running:
        return False
    clock.running = True
    clock.last_instant = now
    return True


def tick(*, clock: ClockState, now: float) -> bool:
    """Advance a running clock to `now`.

    Advances by whole elapsed wall-clock seconds since the last observed instant, so late or
    coarse wake-ups neither lose nor duplicate time. Returns True exactly once: on the call that
    drives elapsed time to the configured maximum (the clock stops there).
    """

    if not clock.running or clock.last_instant is None:
        return False

    delta = _whole_seconds_since(clock.last_instant, now)
    if delta < 0:
        # Wall clock moved backwards; re-anchor without advancing.
        clock.last_instant = now
        return False
    if delta == 0:
        return False

    clock.last_instant += delta
    clock.elapsed = min(clock.elapsed + delta, clock.max_duration)

    if clock.elapsed >= clock.max_duration:
        clock.running = False
        clock.last_instant = None
        return True
    return False


def pause(*, clock: ClockState, brk: BreakState, now: float) -> bool:
    """Stop the clock after catching up to `now`. Returns True if that catch-up expired the turn."""

    if brk.active:
        raise IllegalTransition("Cannot control match timer during a break")
    expired = tick(clock=clock, now=now)
    clock.running = False
    clock.last_instant = None
    return expired


def reset(*, clock: ClockState, brk: BreakState, confirmed: bool) -> None:
    if brk.active:
        raise IllegalTransition("Cannot reset match timer during a break")
    if not confirmed:
        raise IllegalTransition("Timer reset requires confirmation")
    clock.elapsed = 0
    clock.running = False
    clock.last_instant = None


def stop(*, clock: ClockState, now: float | None = None) -> None:
    """Halt the clock unconditionally (turn end, match end)."""

    if now is not None:
        tick(clock=clock, now=now)
    clock.running = False
    clock.last_instant = None


def restart_for_new_turn(*, clock: ClockState) -> None:
    clock.elapsed = 0
    clock.running = False
    clock.last_instant = None


def begin_break(*, brk: BreakState, kind: BreakKind, now: float) -> None:
    brk.kind = kind
    brk.remaining = break_duration(kind)
    brk.last_instant = now


def tick_break(*, brk: BreakState, now: float) -> bool:
    """Count a break down to `now`. Returns True once the break has run out."""

    if not brk.active or brk.last_instant is None:
        return False

    delta = _whole_seconds_since(brk.last_instant, now)
    if delta < 0:
        brk.last_instant = now
        return False
    if delta == 0:
        return brk.remaining <= 0

    brk.last_instant += delta
    brk.remaining = max(brk.remaining - delta, 0)
    return brk.remaining <= 0


def clear_break(*, brk: BreakState) -> None:
    brk.kind = None
    brk.remaining = 0
    brk.last_instant = None
