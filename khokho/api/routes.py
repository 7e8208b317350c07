from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import redis
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from khokho.actions import OPERATIONS, OperationResult, dispatch_operation
from khokho.api.deps import get_redis, get_redis_connector
from khokho.api.models import (
    MatchListResponse,
    MatchReport,
    MatchSetup,
    OperationResponse,
    ScoresResponse,
    Scoresheet,
    SessionState,
    SyncEvent,
    TurnInfo,
)
from khokho.clock_runner import pull_sync_events, run_clock_once, runners
from khokho.core import projections
from khokho.errors import ConcurrencyConflict, IllegalTransition
from khokho.match_store import create_session, get_session, list_sessions, require_session
from khokho.websocket_hub import hub

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, LookupError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (IllegalTransition, ConcurrencyConflict)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


def _load(r: redis.Redis, match_id: str) -> SessionState:
    try:
        return require_session(r=r, match_id=match_id)
    except LookupError as e:
        raise _http_error(e) from e


async def _respond(result: OperationResult) -> OperationResponse:
    if result.events:
        await hub.publish(result.state, result.events)
    return OperationResponse(state=result.state, events=[e.type for e in result.events])


@router.websocket("/ws/match/{match_id}")
async def match_updates_ws(websocket: WebSocket, match_id: str, r: redis.Redis = Depends(get_redis)) -> None:
    await hub.attach(match_id, websocket, get_session(r=r, match_id=match_id))

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.detach(match_id, websocket)
    except Exception:
        await hub.detach(match_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/matches", response_model=SessionState, status_code=status.HTTP_201_CREATED)
async def create_match_route(payload: MatchSetup, r: redis.Redis = Depends(get_redis)) -> SessionState:
    try:
        state = create_session(r=r, setup=payload)
    except ValueError as e:
        raise _http_error(e) from e

    await hub.publish(state, [])
    return state


@router.get("/matches", response_model=MatchListResponse)
async def list_matches_route(r: redis.Redis = Depends(get_redis)) -> MatchListResponse:
    return MatchListResponse(matches=list_sessions(r=r))


@router.get("/matches/{match_id}", response_model=SessionState)
async def get_match_route(match_id: str, r: redis.Redis = Depends(get_redis)) -> SessionState:
    return _load(r, match_id)


@router.get("/matches/{match_id}/scores", response_model=ScoresResponse)
async def scores_route(match_id: str, r: redis.Redis = Depends(get_redis)) -> ScoresResponse:
    return projections.current_scores(_load(r, match_id))


@router.get("/matches/{match_id}/turn", response_model=TurnInfo)
async def turn_route(match_id: str, r: redis.Redis = Depends(get_redis)) -> TurnInfo:
    return projections.current_turn_info(_load(r, match_id))


@router.get("/matches/{match_id}/report", response_model=MatchReport)
async def report_route(match_id: str, r: redis.Redis = Depends(get_redis)) -> MatchReport:
    return projections.match_report(_load(r, match_id))


@router.get("/matches/{match_id}/scoresheet/{inning}/{turn}", response_model=Scoresheet)
async def scoresheet_route(match_id: str, inning: int, turn: int, r: redis.Redis = Depends(get_redis)) -> Scoresheet:
    state = _load(r, match_id)
    try:
        return projections.scoresheet(state, inning=inning, turn=turn)
    except ValueError as e:
        raise _http_error(e) from e


@router.post("/matches/{match_id}/operations/{operation}", response_model=OperationResponse)
async def operation_route(
    match_id: str,
    operation: str,
    body: dict[str, Any] | None = None,
    r: redis.Redis = Depends(get_redis),
    connect: Callable[[], redis.Redis] = Depends(get_redis_connector),
) -> OperationResponse:
    if operation not in OPERATIONS:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown operation: {operation}")
    payload = body or {}
    try:
        result = dispatch_operation(r=r, match_id=match_id, operation=operation, payload=payload)
    except (ValueError, LookupError) as e:
        raise _http_error(e) from e

    # A clock started on server time keeps ticking in the background; callers passing `now` drive it.
    started = any(e.type == "CLOCK_STARTED" for e in result.events)
    if started and payload.get("now") is None and runners.start(connect=connect, match_id=match_id):
        logger.info("match %s: background clock started", match_id)

    return await _respond(result)


@router.post("/matches/{match_id}/sync", response_model=OperationResponse)
async def sync_route(match_id: str, payload: SyncEvent, r: redis.Redis = Depends(get_redis)) -> OperationResponse:
    """Merge one remote insert/delete. Replaying an already-applied event is a no-op."""

    try:
        result = dispatch_operation(r=r, match_id=match_id, operation="sync", payload=payload.model_dump(mode="json"))
    except (ValueError, LookupError) as e:
        raise _http_error(e) from e

    return await _respond(result)


@router.post("/matches/{match_id}/clock/run_once")
async def run_clock_once_route(match_id: str, r: redis.Redis = Depends(get_redis)) -> dict[str, object]:
    """Dev endpoint: tick the match clock and merge pending sync entries once.

    Useful for manual testing without running the background clock loop.
    """

    _load(r, match_id)
    try:
        result = run_clock_once(r=r, match_id=match_id)
        merged = pull_sync_events(r=r, match_id=match_id)
    except (ValueError, LookupError) as e:
        raise _http_error(e) from e

    events = result.events if result is not None else []
    if events or merged:
        await hub.publish(_load(r, match_id), events)
    return {"match_id": match_id, "events": [e.type for e in events], "merged": merged}
