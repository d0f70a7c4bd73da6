"""
Jackpot Crank - Round Lifecycle Engine

The scheduler. Owns the current-round pointer and, once per tick:

1. Processes every background round (BackgroundCleanupEngine)
2. Fetches the current round, creating it if absent
3. Dispatches on status:
    Open (timer running)     -> nothing
    Open (expired, empty)    -> skip lock, track for cleanup, advance
    Open (expired, filled)   -> lock + request randomness in one transaction
    Locked                   -> request randomness
    VrfRequested             -> nothing (oracle delivers)
    Settled                  -> notify, track, advance
    Claimed / Cancelled      -> track, advance
4. Records observed status, stuck warnings, periodic health line

A tick runs to completion before the next is scheduled. All state is
volatile; ledger "already done" responses count as success so restarts
are harmless.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from jackpot_crank.bridges.ledger import (
    LedgerError,
    LedgerErrorCode,
    LedgerGateway,
    LockRound,
    LookupKind,
    RequestRandomness,
    StartRound,
)
from jackpot_crank.bridges.notifications import NotificationPublisher, NullPublisher, RoundSettledEvent
from jackpot_crank.models.round import RoundSnapshot, RoundStatus, to_usdc
from jackpot_crank.services.cleanup_engine import BackgroundCleanupEngine
from jackpot_crank.services.health import HealthSnapshot, build_health_snapshot
from jackpot_crank.services.round_scanner import find_start_round, recover_background_rounds

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
LOW_BALANCE_LAMPORTS = LAMPORTS_PER_SOL // 100


def _wall_clock() -> int:
    return int(time.time())


class RoundLifecycleEngine:
    """Single scheduler object; constructed once per process."""

    def __init__(
        self,
        gateway: LedgerGateway,
        cleanup: BackgroundCleanupEngine,
        settings,
        notifier: Optional[NotificationPublisher] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.gateway = gateway
        self.cleanup = cleanup
        self.settings = settings
        self.notifier = notifier or NullPublisher()
        self.clock = clock or _wall_clock

        self.current_round_id = 0
        self.last_created_round = 0
        self.last_locked_round = 0
        self.last_health_log_at = 0
        self.tick_count = 0
        self.last_tick_at: Optional[int] = None
        self.last_tick_error: Optional[str] = None
        self.started = False

        self._stopping = False
        self._notify_tasks: set[asyncio.Task] = set()

    # =========================================================================
    # STARTUP
    # =========================================================================

    async def start(self) -> int:
        """Derive the pointer from the ledger and rebuild the cleanup backlog."""
        try:
            config = await self.gateway.get_config()
            if config is not None:
                logger.info(
                    f"[LIFECYCLE] Program config: duration={config.round_duration_sec}s "
                    f"min_participants={config.min_participants} "
                    f"min_total_tickets={config.min_total_tickets} paused={config.paused}"
                )
        except LedgerError as e:
            logger.warning(f"[LIFECYCLE] Config read failed: {e}")

        await self.check_service_balance()

        try:
            archived_max = await self.cleanup.archive.max_known_id()
        except Exception as e:
            logger.warning(f"[ARCHIVE] Max archived id unavailable: {e}")
            archived_max = None

        self.current_round_id = await find_start_round(self.gateway, archived_max, self.settings)
        await recover_background_rounds(
            self.gateway,
            self.cleanup,
            self.current_round_id,
            window=self.settings.STARTUP_BACKFILL_SCAN_ROUNDS,
            batch_size=self.settings.STARTUP_BACKFILL_BATCH,
        )
        self.started = True
        logger.info(f"[LIFECYCLE] Starting at round #{self.current_round_id}")
        return self.current_round_id

    async def check_service_balance(self) -> Optional[int]:
        """Warn when the operator wallet is close to running out of fees."""
        try:
            lamports = await self.gateway.get_service_balance()
        except LedgerError as e:
            logger.warning(f"[LEDGER] Wallet balance unavailable: {e}")
            return None
        if lamports < LOW_BALANCE_LAMPORTS:
            logger.warning(
                f"[LEDGER] Low wallet balance: {lamports / LAMPORTS_PER_SOL:.4f} SOL, "
                f"transactions may start failing"
            )
        return lamports

    async def run_forever(self) -> None:
        while not self.started and not self._stopping:
            try:
                await self.start()
            except (LedgerError, httpx.HTTPError) as e:
                logger.error(
                    f"[LIFECYCLE] Startup scan failed: {e}, retrying in {self.settings.poll_interval_sec}s"
                )
                await asyncio.sleep(self.settings.poll_interval_sec)
        while not self._stopping:
            await self.tick()
            await asyncio.sleep(self.settings.poll_interval_sec)

    def stop(self) -> None:
        self._stopping = True

    # =========================================================================
    # TICK
    # =========================================================================

    async def tick(self) -> None:
        self.tick_count += 1
        self.last_tick_at = self.clock()
        try:
            if self.cleanup.entries:
                await self.cleanup.process_all()
            await self._evaluate_current_round()
            self.last_tick_error = None
        except Exception as e:
            self.last_tick_error = str(e)
            logger.error(f"[LIFECYCLE] Tick error: {e}")
        finally:
            self.maybe_log_health()

    async def _evaluate_current_round(self) -> None:
        round_id = self.current_round_id
        lookup = (await self.gateway.get_rounds_batch([round_id]))[0]

        if lookup.kind == LookupKind.MISSING:
            await self._handle_start_round(round_id)
            return
        if lookup.kind == LookupKind.INVALID:
            logger.warning(f"[LIFECYCLE] Round #{round_id} account undecodable, waiting")
            return

        rd = lookup.round
        self.cleanup.observe(round_id, rd.status)
        self.cleanup.maybe_warn_stuck(round_id, rd.status)

        if rd.status == RoundStatus.OPEN:
            await self._handle_open_round(rd)
        elif rd.status == RoundStatus.LOCKED:
            await self._handle_request_randomness(round_id)
        elif rd.status == RoundStatus.VRF_REQUESTED:
            return
        elif rd.status == RoundStatus.SETTLED:
            self._publish_settled(rd)
            self.cleanup.track(round_id)
            self._advance("settled, claim/cleanup in background")
        else:
            self.cleanup.track(round_id)
            self._advance("done, cleanup in background")

    def _advance(self, reason: str) -> None:
        prev = self.current_round_id
        self.current_round_id += 1
        self.last_locked_round = 0
        logger.info(f"[LIFECYCLE] Round #{prev} {reason}, advanced to #{self.current_round_id}")

    def _skip_and_advance(self, round_id: int, reason: str) -> None:
        # The account still exists and has to be swept.
        self.cleanup.track(round_id)
        self._advance(f"{reason}, lock skipped")

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def _handle_start_round(self, round_id: int) -> bool:
        if self.last_created_round >= round_id:
            return False

        try:
            sig = await self.gateway.submit([StartRound(round_id=round_id)])
        except LedgerError as e:
            if e.code == LedgerErrorCode.ALREADY_EXISTS:
                self.last_created_round = round_id
                logger.info(f"[LIFECYCLE] Round #{round_id} already exists (created externally)")
                return False
            try:
                check = await self.gateway.get_rounds_batch([round_id])
            except LedgerError:
                check = []
            if check and check[0].kind != LookupKind.MISSING:
                self.last_created_round = round_id
                logger.info(f"[LIFECYCLE] Round #{round_id} already exists (created externally)")
                return False
            logger.error(f"[LIFECYCLE] Create round #{round_id} failed: {e}")
            return False

        self.last_created_round = round_id
        logger.info(f"[LIFECYCLE] Round #{round_id} created sig={sig[:16]}")
        return True

    async def _handle_open_round(self, rd: RoundSnapshot) -> bool:
        round_id = rd.round_id
        if self.last_locked_round == round_id:
            return False
        if not rd.timer_expired(self.clock(), self.settings.LOCK_BUFFER_SEC):
            return False

        fresh = await self.gateway.get_round(round_id)
        if fresh is None or fresh.status != RoundStatus.OPEN:
            return False

        if not fresh.has_minimum_fill():
            logger.warning(f"[LIFECYCLE] Round #{round_id} timer expired with no deposits")
            self._skip_and_advance(round_id, "empty")
            return True

        try:
            sig = await self.gateway.submit([
                LockRound(round_id=round_id),
                RequestRandomness(round_id=round_id),
            ])
        except LedgerError as e:
            logger.error(f"[LIFECYCLE] Lock+VRF round #{round_id} failed: {e}")
            if e.is_min_requirements:
                logger.warning(f"[LIFECYCLE] Round #{round_id} below minimum fill")
                self._skip_and_advance(round_id, "insufficient")
                return True
            if e.code == LedgerErrorCode.ALREADY_LOCKED:
                self.last_locked_round = round_id
                return False
            try:
                retry = await self.gateway.get_round(round_id)
            except LedgerError:
                return False
            if retry is not None and retry.status != RoundStatus.OPEN:
                self.last_locked_round = round_id
            return False

        self.last_locked_round = round_id
        logger.info(f"[LIFECYCLE] Round #{round_id} locked + VRF requested sig={sig[:16]}")
        return True

    async def _handle_request_randomness(self, round_id: int) -> bool:
        fresh = await self.gateway.get_round(round_id)
        if fresh is None or fresh.status != RoundStatus.LOCKED:
            return False
        try:
            sig = await self.gateway.submit([RequestRandomness(round_id=round_id)])
        except LedgerError as e:
            logger.error(f"[LIFECYCLE] Request VRF round #{round_id} failed: {e}")
            return False
        logger.info(f"[LIFECYCLE] VRF requested for round #{round_id} sig={sig[:16]}")
        return True

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _publish_settled(self, rd: RoundSnapshot) -> None:
        if not self.notifier.enabled or rd.winner is None:
            return
        event = RoundSettledEvent(
            round_id=rd.round_id,
            winner_wallet=rd.winner,
            total_usdc=to_usdc(rd.total_usdc),
            participant_wallets=list(rd.participants),
        )
        # Detached; errors are discarded and never reach the tick.
        task = asyncio.create_task(self._publish_quietly(event))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _publish_quietly(self, event: RoundSettledEvent) -> None:
        try:
            await self.notifier.publish_round_settled(event)
        except Exception as e:
            logger.debug(f"[NOTIFY] Dropped round #{event.round_id} notification: {e}")

    # =========================================================================
    # HEALTH
    # =========================================================================

    def health_snapshot(self) -> HealthSnapshot:
        return build_health_snapshot(
            now=self.clock(),
            current_round_id=self.current_round_id,
            entries=self.cleanup.entries,
            observed=self.cleanup.observed,
        )

    def maybe_log_health(self) -> bool:
        interval = self.settings.HEALTH_LOG_INTERVAL_SEC
        if interval <= 0:
            return False
        now = self.clock()
        if now - self.last_health_log_at < interval:
            return False
        self.last_health_log_at = now
        logger.info(f"[HEALTH] {self.health_snapshot().log_line()}")
        return True
