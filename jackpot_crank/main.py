"""Jackpot Crank - FastAPI status application.

Runs the round lifecycle loop as a background task and exposes its
state read-only.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI

from jackpot_crank.core.config import get_settings
from jackpot_crank.core.logging import configure_logging
from jackpot_crank.dependencies import build_engine, close_engine, get_engine
from jackpot_crank.routers import rounds
from jackpot_crank.services.health import HealthSnapshot
from jackpot_crank.services.lifecycle_engine import RoundLifecycleEngine

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(engine: Optional[RoundLifecycleEngine] = None, run_loop: bool = True) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        crank = engine or build_engine(settings)
        app.state.engine = crank
        loop_task = None
        if run_loop:
            loop_task = asyncio.create_task(crank.run_forever())
        try:
            yield
        finally:
            if loop_task is not None:
                crank.stop()
                loop_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await loop_task
            await close_engine(crank)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Round lifecycle crank for the jackpot program",
        version=VERSION,
        lifespan=lifespan,
    )
    app.include_router(rounds.router)

    @app.get("/")
    async def root():
        """Service info."""
        return {
            "service": settings.APP_NAME,
            "version": VERSION,
            "network": settings.NETWORK,
            "program_id": settings.program_id,
            "mock_ledger": settings.MOCK_LEDGER,
        }

    @app.get("/health", response_model=HealthSnapshot)
    async def health(crank: RoundLifecycleEngine = Depends(get_engine)):
        """Aggregate scheduler health."""
        return crank.health_snapshot()

    return app


def app() -> FastAPI:
    """App factory for an ASGI server."""
    configure_logging(get_settings().LOG_LEVEL)
    return create_app()
