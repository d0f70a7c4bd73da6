"""
Jackpot Crank - Round Status API

READ-ONLY view of scheduler state between ticks. Nothing here mutates
the scheduler.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from jackpot_crank.dependencies import get_engine
from jackpot_crank.models.cleanup import CleanupStats
from jackpot_crank.services.lifecycle_engine import RoundLifecycleEngine

router = APIRouter(prefix="/rounds", tags=["rounds"])


class BackgroundRoundView(BaseModel):
    round_id: int
    status: Optional[str] = None
    status_age_sec: Optional[int] = None
    archived: bool
    retry_count: int
    next_attempt_in_sec: int
    delay_sec: int
    last_reason: Optional[str] = None
    last_stats: Optional[CleanupStats] = None


class CurrentRoundView(BaseModel):
    round_id: int
    status: Optional[str] = None
    last_created_round: int
    last_locked_round: int
    tick_count: int
    last_tick_error: Optional[str] = None


@router.get("/current", response_model=CurrentRoundView)
async def current_round(engine: RoundLifecycleEngine = Depends(get_engine)):
    obs = engine.cleanup.observed.get(engine.current_round_id)
    return CurrentRoundView(
        round_id=engine.current_round_id,
        status=obs.status.label if obs else None,
        last_created_round=engine.last_created_round,
        last_locked_round=engine.last_locked_round,
        tick_count=engine.tick_count,
        last_tick_error=engine.last_tick_error,
    )


def _view(engine: RoundLifecycleEngine, round_id: int) -> BackgroundRoundView:
    now = engine.clock()
    entry = engine.cleanup.entries[round_id]
    obs = engine.cleanup.observed.get(round_id)
    return BackgroundRoundView(
        round_id=round_id,
        status=obs.status.label if obs else None,
        status_age_sec=obs.age(now) if obs else None,
        archived=entry.archived,
        retry_count=entry.retry_count,
        next_attempt_in_sec=max(0, entry.next_attempt_at - now),
        delay_sec=entry.delay_sec,
        last_reason=entry.last_reason,
        last_stats=entry.last_stats,
    )


@router.get("/background", response_model=List[BackgroundRoundView])
async def background_rounds(engine: RoundLifecycleEngine = Depends(get_engine)):
    """Every round awaiting archive/close, oldest first."""
    return [_view(engine, round_id) for round_id in sorted(engine.cleanup.entries)]


@router.get("/background/{round_id}", response_model=BackgroundRoundView)
async def background_round(round_id: int, engine: RoundLifecycleEngine = Depends(get_engine)):
    if round_id not in engine.cleanup.entries:
        raise HTTPException(status_code=404, detail=f"Round {round_id} is not tracked")
    return _view(engine, round_id)
