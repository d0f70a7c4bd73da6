"""
Jackpot Crank - Crank-local Tracking State

Volatile bookkeeping for background rounds. Nothing here is persisted:
after a restart the ledger is scanned again and these records rebuilt.
"""

from typing import Optional

from pydantic import BaseModel

from jackpot_crank.models.round import RoundStatus


class CleanupStats(BaseModel):
    """Participant accounts seen during the last cleanup pass."""
    existing: int = 0
    closable: int = 0
    closed: int = 0
    blocked_by_refund: int = 0
    errors: int = 0
    updated_at: int = 0


class ObservedState(BaseModel):
    """First/last time a round was seen in its current status."""
    status: RoundStatus
    since: int
    last_seen: int

    def age(self, now: int) -> int:
        return now - self.since


class BackgroundRoundEntry(BaseModel):
    """One round in the background cleanup set."""
    round_id: int
    next_attempt_at: int
    delay_sec: int
    retry_count: int = 0
    last_reason: Optional[str] = None
    archived: bool = False
    last_stats: Optional[CleanupStats] = None

    def is_due(self, now: int) -> bool:
        return now >= self.next_attempt_at
