"""
Jackpot Crank - Background Cleanup Engine

Drives every finished round through archive -> participant close -> round
close, independently of the live round.

RULES:
- Settled rounds are tracked but left alone until the winner claims
- The round account is never closed while participant accounts remain
- A cancelled round's participant with a balance is never closed; the
  user has to refund first
- Each pass re-enumerates from the ledger, so work already done is
  never redone
- One round's failure never blocks another's
"""

import logging
import time
from typing import Callable, Optional

from jackpot_crank.bridges.archive import ArchiveClient, build_archive_record
from jackpot_crank.bridges.ledger import (
    CloseParticipant,
    CloseRound,
    LedgerError,
    LedgerErrorCode,
    LedgerGateway,
    LookupKind,
    ParticipantLookup,
)
from jackpot_crank.models.cleanup import BackgroundRoundEntry, CleanupStats, ObservedState
from jackpot_crank.models.round import RoundSnapshot, RoundStatus, is_terminal, status_name
from jackpot_crank.services.retry_planner import (
    BackgroundError,
    CloseFailed,
    LeftTerminalState,
    ParticipantsPending,
    RetryOutcome,
    plan_retry,
)
from jackpot_crank.services.stuck_detector import (
    StuckThresholds,
    should_emit_stuck_warning,
    threshold_for,
)

logger = logging.getLogger(__name__)


def _wall_clock() -> int:
    return int(time.time())


class BackgroundCleanupEngine:
    """
    Background cleanup set plus the observed-state records used for stuck
    detection (shared with the lifecycle engine for the current round).
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        archive: ArchiveClient,
        settings,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.gateway = gateway
        self.archive = archive
        self.settings = settings
        self.clock = clock or _wall_clock
        self.thresholds = StuckThresholds.from_settings(settings)

        self.entries: dict[int, BackgroundRoundEntry] = {}
        self.observed: dict[int, ObservedState] = {}
        self._warned_at: dict[tuple[int, int], int] = {}

    # =========================================================================
    # TRACKING
    # =========================================================================

    def track(self, round_id: int) -> bool:
        """Add a round to the background set. True only when newly added."""
        if round_id in self.entries:
            return False
        self.entries[round_id] = BackgroundRoundEntry(
            round_id=round_id,
            next_attempt_at=self.clock() + self.settings.CLOSE_DELAY_SEC,
            delay_sec=self.settings.CLEANUP_BACKOFF_MIN_SEC,
        )
        return True

    def forget(self, round_id: int) -> None:
        self.entries.pop(round_id, None)
        prev = self.observed.pop(round_id, None)
        if prev is not None:
            self._warned_at.pop((round_id, int(prev.status)), None)

    def is_tracked(self, round_id: int) -> bool:
        return round_id in self.entries

    def is_due(self, round_id: int) -> bool:
        entry = self.entries.get(round_id)
        return entry is None or entry.is_due(self.clock())

    # =========================================================================
    # OBSERVATION / STUCK WARNINGS
    # =========================================================================

    def observe(self, round_id: int, status: RoundStatus) -> ObservedState:
        now = self.clock()
        prev = self.observed.get(round_id)
        if prev is None or prev.status != status:
            if prev is not None:
                self._warned_at.pop((round_id, int(prev.status)), None)
            state = ObservedState(status=status, since=now, last_seen=now)
            self.observed[round_id] = state
            return state
        prev.last_seen = now
        return prev

    def maybe_warn_stuck(self, round_id: int, status: RoundStatus) -> bool:
        threshold = threshold_for(status, self.thresholds)
        obs = self.observed.get(round_id)
        if obs is None:
            return False

        now = self.clock()
        key = (round_id, int(status))
        if not should_emit_stuck_warning(
            now=now,
            observed_status=obs.status,
            target_status=status,
            observed_since=obs.since,
            threshold=threshold,
            last_warned_at=self._warned_at.get(key),
            repeat=self.settings.STUCK_WARN_REPEAT_SEC,
        ):
            return False

        self._warned_at[key] = now
        extra = ""
        entry = self.entries.get(round_id)
        if entry is not None:
            extra = (
                f" | bg_cleanup retry={entry.retry_count}"
                f" next_in={max(0, entry.next_attempt_at - now)}s"
            )
            if entry.last_reason:
                extra += f" reason={entry.last_reason}"
            if entry.last_stats is not None:
                s = entry.last_stats
                extra += f" participants={s.existing} closable={s.closable} blocked_refund={s.blocked_by_refund}"

        logger.warning(
            f"[CLEANUP] Stuck round #{round_id}: status={status_name(status)} "
            f"age={obs.age(now)}s (threshold={threshold}s){extra}"
        )
        return True

    # =========================================================================
    # RETRY SCHEDULING
    # =========================================================================

    def schedule_retry(self, round_id: int, outcome: RetryOutcome) -> bool:
        """Apply the planner's next backoff step. False when nothing to retry."""
        entry = self.entries.get(round_id)
        if entry is None:
            return False
        plan = plan_retry(
            now=self.clock(),
            outcome=outcome,
            min_delay=self.settings.CLEANUP_BACKOFF_MIN_SEC,
            max_delay=self.settings.CLEANUP_BACKOFF_MAX_SEC,
            current_delay=entry.delay_sec,
            retry_count=entry.retry_count,
        )
        if plan is None:
            return False

        entry.delay_sec = plan.delay_sec
        entry.next_attempt_at = plan.next_attempt_at
        entry.retry_count = plan.retry_count
        entry.last_reason = plan.reason
        logger.info(f"[CLEANUP] Round #{round_id} retry in {plan.delay_sec}s ({plan.reason})")
        return True

    # =========================================================================
    # PROCESSING
    # =========================================================================

    async def process_all(self) -> None:
        for round_id in list(self.entries):
            try:
                await self.process_round(round_id)
            except Exception as e:
                logger.error(f"[CLEANUP] Background processing round #{round_id} failed: {e}")
                self.schedule_retry(round_id, BackgroundError(str(e)))

    async def process_round(self, round_id: int) -> None:
        lookup = (await self.gateway.get_rounds_batch([round_id]))[0]
        if lookup.kind == LookupKind.MISSING:
            logger.info(f"[CLEANUP] Round #{round_id} account gone, dropping")
            self.forget(round_id)
            return
        if lookup.kind == LookupKind.INVALID:
            logger.warning(f"[CLEANUP] Round #{round_id} account undecodable, skipping this pass")
            return

        rd = lookup.round
        self.observe(round_id, rd.status)
        self.maybe_warn_stuck(round_id, rd.status)

        # Settled waits for the winner's claim.
        if not is_terminal(rd.status):
            return
        if not self.is_due(round_id):
            return

        await self._cleanup_terminal_round(rd)

    async def _fetch_participants(self, rd: RoundSnapshot) -> list[ParticipantLookup]:
        users = rd.participants
        chunk = self.settings.PARTICIPANT_FETCH_CHUNK
        lookups: list[ParticipantLookup] = []
        for i in range(0, len(users), chunk):
            lookups.extend(await self.gateway.get_participants(rd.round_id, users[i:i + chunk]))
        return lookups

    async def _archive_once(self, entry: BackgroundRoundEntry, rd: RoundSnapshot, lookups: list[ParticipantLookup]) -> None:
        if entry.archived or not self.archive.enabled:
            return
        try:
            record = build_archive_record(rd, {l.user: l.participant for l in lookups})
            if await self.archive.put(rd.round_id, record):
                entry.archived = True
                logger.info(f"[ARCHIVE] Round #{rd.round_id} archived")
        except Exception as e:
            logger.warning(f"[ARCHIVE] Archive round #{rd.round_id} failed: {e}")

    async def _close_participants(self, rd: RoundSnapshot, lookups: list[ParticipantLookup]) -> CleanupStats:
        stats = CleanupStats()
        closable: list[str] = []

        for lookup in lookups:
            if not lookup.exists:
                continue
            stats.existing += 1
            if lookup.participant is None:
                # Undecodable: never close blindly.
                stats.errors += 1
                continue
            if rd.status == RoundStatus.CANCELLED and lookup.participant.has_refundable_balance():
                stats.blocked_by_refund += 1
                continue
            stats.closable += 1
            closable.append(lookup.user)

        for user in closable[:self.settings.PARTICIPANT_CLEANUP_BATCH]:
            try:
                sig = await self.gateway.submit([CloseParticipant(round_id=rd.round_id, user=user)])
                stats.closed += 1
                logger.info(f"[CLEANUP] Participant closed round=#{rd.round_id} user={user[:6]} sig={sig[:16]}")
            except LedgerError as e:
                if e.code == LedgerErrorCode.ALREADY_CLOSED:
                    stats.closed += 1
                    continue
                stats.errors += 1
                logger.error(f"[CLEANUP] Close participant failed round=#{rd.round_id} user={user[:6]}: {e}")

        stats.updated_at = self.clock()
        return stats

    async def _cleanup_terminal_round(self, rd: RoundSnapshot) -> None:
        round_id = rd.round_id
        entry = self.entries[round_id]

        lookups = await self._fetch_participants(rd)
        await self._archive_once(entry, rd, lookups)

        stats = await self._close_participants(rd, lookups)
        entry.last_stats = stats
        pending = ParticipantsPending(
            existing=stats.existing,
            closed=stats.closed,
            blocked_by_refund=stats.blocked_by_refund,
        )
        if self.schedule_retry(round_id, pending):
            return

        # Re-check right before the destructive close.
        fresh = (await self.gateway.get_rounds_batch([round_id]))[0]
        if fresh.kind == LookupKind.MISSING:
            self.forget(round_id)
            return
        if fresh.kind == LookupKind.INVALID:
            self.schedule_retry(round_id, BackgroundError("round account undecodable"))
            return
        if not is_terminal(fresh.round.status):
            self.schedule_retry(round_id, LeftTerminalState(int(fresh.round.status)))
            return

        try:
            sig = await self.gateway.submit([CloseRound(round_id=round_id)])
            logger.info(f"[CLEANUP] Round #{round_id} closed sig={sig[:16]}")
        except LedgerError as e:
            if e.code != LedgerErrorCode.ALREADY_CLOSED:
                self.schedule_retry(round_id, CloseFailed(e.message))
                return
            logger.info(f"[CLEANUP] Round #{round_id} already closed")
        self.forget(round_id)
