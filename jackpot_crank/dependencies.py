"""Wiring of the crank's collaborators, plus FastAPI dependency helpers."""

import logging
from typing import Optional

from fastapi import HTTPException, Request, status

from jackpot_crank.bridges.archive import ArchiveClient, FirebaseArchiveClient
from jackpot_crank.bridges.ledger import LedgerGateway
from jackpot_crank.bridges.notifications import NotificationPublisher, NullPublisher, TapestryPublisher
from jackpot_crank.core.config import Settings
from jackpot_crank.core.wallet import CrankConfigError, load_service_wallet
from jackpot_crank.services.cleanup_engine import BackgroundCleanupEngine
from jackpot_crank.services.lifecycle_engine import RoundLifecycleEngine
from jackpot_crank.services.mocks import InMemoryArchive, InMemoryLedger

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> LedgerGateway:
    if settings.MOCK_LEDGER:
        logger.warning("[LEDGER] MOCK_LEDGER enabled, using in-memory ledger")
        return InMemoryLedger()

    # Imported here so the mock path runs without an RPC stack configured.
    from jackpot_crank.bridges.solana_gateway import SolanaLedgerGateway

    if not settings.program_id:
        raise CrankConfigError("PROGRAM_ID is not configured")

    payer = load_service_wallet(
        settings.CRANK_KEYPAIR_PATH,
        settings.ADMIN_KEYPAIR_PATH,
        settings.ALLOW_CRANK_KEYPAIR_REUSE,
    )
    logger.info(f"[LEDGER] Wallet {payer.pubkey()} rpc={settings.rpc_url} program={settings.program_id}")
    return SolanaLedgerGateway(settings, payer)


def build_archive(settings: Settings) -> ArchiveClient:
    if settings.MOCK_LEDGER and not settings.FIREBASE_DATABASE_URL:
        return InMemoryArchive()
    return FirebaseArchiveClient(settings.FIREBASE_DATABASE_URL, timeout=settings.ARCHIVE_TIMEOUT_SEC)


def build_notifier(settings: Settings) -> NotificationPublisher:
    if not settings.TAPESTRY_API_KEY:
        logger.info("[NOTIFY] Tapestry disabled (no TAPESTRY_API_KEY)")
        return NullPublisher()
    logger.info("[NOTIFY] Tapestry enabled")
    return TapestryPublisher(
        api_key=settings.TAPESTRY_API_KEY,
        api_url=settings.TAPESTRY_API_URL,
        namespace=settings.TAPESTRY_NAMESPACE,
        timeout=settings.NOTIFY_TIMEOUT_SEC,
    )


def build_engine(
    settings: Settings,
    gateway: Optional[LedgerGateway] = None,
    archive: Optional[ArchiveClient] = None,
    notifier: Optional[NotificationPublisher] = None,
) -> RoundLifecycleEngine:
    gateway = gateway or build_gateway(settings)
    archive = archive or build_archive(settings)
    cleanup = BackgroundCleanupEngine(gateway, archive, settings)
    return RoundLifecycleEngine(
        gateway,
        cleanup,
        settings,
        notifier=notifier or build_notifier(settings),
    )


async def close_engine(engine: RoundLifecycleEngine) -> None:
    engine.stop()
    await engine.notifier.aclose()
    await engine.cleanup.archive.aclose()
    await engine.gateway.aclose()


def get_engine(request: Request) -> RoundLifecycleEngine:
    """The running scheduler, attached to app state by the lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Crank not started",
        )
    return engine
