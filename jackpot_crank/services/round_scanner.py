"""
Jackpot Crank - Active Round Scanner & Startup Recovery

The crank persists nothing. After a restart it re-derives:
- the current round pointer, by batch-scanning round ids from near the
  highest archived id (a hint, not ground truth)
- the background cleanup backlog, by scanning a trailing window of ids
  behind the pointer

Closed rounds leave gaps in the id space, so the scanner tolerates a run of
missing accounts before deciding it has passed the frontier.
"""

import logging
from typing import Awaitable, Callable, Optional, Sequence

from pydantic import BaseModel

from jackpot_crank.bridges.ledger import LedgerGateway, LookupKind, RoundLookup
from jackpot_crank.models.round import RoundStatus, TRACKED_STATUSES, is_active, is_joinable

logger = logging.getLogger(__name__)

FetchBatch = Callable[[Sequence[int]], Awaitable[list[RoundLookup]]]

# Archive hint is moved back this far in case the newest rounds were not archived yet.
ARCHIVE_HINT_REWIND = 2


class ScanResult(BaseModel):
    active_round_id: Optional[int] = None
    joinable_round_id: Optional[int] = None
    max_existing: int = 0


class RecoverySummary(BaseModel):
    scan_start: int
    scan_end: int
    settled: int = 0
    claimed: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.settled + self.claimed + self.cancelled


def scan_start_from_hint(archived_max: Optional[int]) -> int:
    if not archived_max:
        return 1
    return max(1, archived_max - ARCHIVE_HINT_REWIND)


async def scan_for_round(
    fetch_batch: FetchBatch,
    scan_start: int,
    archived_max: int = 0,
    max_scan: int = 200,
    batch_size: int = 20,
    null_streak_limit: int = 20,
) -> ScanResult:
    """
    Scan round ids upward from `scan_start`.

    Missing accounts extend the null streak. Once any round has been seen,
    a streak longer than `null_streak_limit` ends the scan; a gap of
    exactly the limit is still crossed. Undecodable accounts reset the
    streak but are not counted as rounds.
    """
    result = ScanResult()
    null_streak = 0

    base = scan_start
    while base <= scan_start + max_scan:
        ids = list(range(base, base + batch_size))
        entries = await fetch_batch(ids)

        for i, round_id in enumerate(ids):
            entry = entries[i] if i < len(entries) else None

            if entry is None or entry.kind == LookupKind.MISSING:
                null_streak += 1
                if result.max_existing > 0 and null_streak > null_streak_limit:
                    break
                continue

            null_streak = 0
            if entry.kind == LookupKind.INVALID:
                continue

            status = entry.round.status
            result.max_existing = round_id
            if is_active(status):
                result.active_round_id = round_id
            if is_joinable(status):
                result.joinable_round_id = round_id

        if result.max_existing > 0 and null_streak > null_streak_limit:
            break
        base += batch_size

    return result


def resolve_start_round(result: ScanResult, archived_max: Optional[int] = None) -> int:
    """Latest active round, else one past the highest id known anywhere."""
    if result.active_round_id:
        return result.active_round_id
    return max(result.max_existing, archived_max or 0) + 1


async def find_start_round(gateway: LedgerGateway, archived_max: Optional[int], settings) -> int:
    scan_start = scan_start_from_hint(archived_max)
    result = await scan_for_round(
        gateway.get_rounds_batch,
        scan_start=scan_start,
        archived_max=archived_max or 0,
        max_scan=settings.SCAN_MAX_ROUNDS,
        batch_size=settings.SCAN_BATCH_SIZE,
        null_streak_limit=settings.SCAN_NULL_STREAK_LIMIT,
    )
    start = resolve_start_round(result, archived_max)
    logger.info(
        f"[SCAN] start={scan_start} archived_max={archived_max} max_existing={result.max_existing} "
        f"active={result.active_round_id} joinable={result.joinable_round_id} -> round={start}"
    )
    return start


async def recover_background_rounds(
    gateway: LedgerGateway,
    cleanup,
    current_round_id: int,
    window: int = 50,
    batch_size: int = 25,
) -> RecoverySummary:
    """
    Re-register Settled/Claimed/Cancelled rounds behind the pointer.

    `cleanup` is the BackgroundCleanupEngine; only rounds it newly tracks
    are counted.
    """
    start = max(1, current_round_id - window)
    end = current_round_id
    summary = RecoverySummary(scan_start=start, scan_end=end)
    if current_round_id <= 1:
        return summary

    for base in range(start, end + 1, batch_size):
        ids = list(range(base, min(base + batch_size, end + 1)))
        lookups = await gateway.get_rounds_batch(ids)

        for lookup in lookups:
            if lookup.kind != LookupKind.PRESENT:
                continue
            status = lookup.round.status
            cleanup.observe(lookup.round_id, status)
            if status not in TRACKED_STATUSES:
                continue
            if not cleanup.track(lookup.round_id):
                continue

            if status == RoundStatus.SETTLED:
                summary.settled += 1
            elif status == RoundStatus.CLAIMED:
                summary.claimed += 1
            else:
                summary.cancelled += 1

    if summary.total > 0:
        logger.info(
            f"[SCAN] Startup backfill recovered {summary.total} round(s) into background cleanup "
            f"settled={summary.settled} claimed={summary.claimed} cancelled={summary.cancelled} "
            f"scan={start}-{end}"
        )
    return summary
