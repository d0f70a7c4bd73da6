"""
Jackpot Crank - Health Snapshot

Aggregate view of the scheduler: the current round and the background
cleanup backlog. Logged periodically and served by the status API.
"""

from typing import Mapping, Optional

from pydantic import BaseModel

from jackpot_crank.models.cleanup import BackgroundRoundEntry, ObservedState
from jackpot_crank.models.round import RoundStatus


class HealthSnapshot(BaseModel):
    current_round_id: int
    current_status: Optional[str] = None
    current_age_sec: Optional[int] = None
    background: int = 0
    due_cleanup: int = 0
    settled: int = 0
    claimed: int = 0
    cancelled: int = 0
    waiting_refund_rounds: int = 0
    blocked_refund_participants: int = 0
    max_cleanup_retry: int = 0

    def log_line(self) -> str:
        if self.current_status is None:
            current = f"#{self.current_round_id}:unknown"
        else:
            current = f"#{self.current_round_id}:{self.current_status} age={self.current_age_sec}s"
        return (
            f"HEALTH current={current} bg={self.background} due_cleanup={self.due_cleanup} "
            f"settled={self.settled} claimed={self.claimed} cancelled={self.cancelled} "
            f"waiting_refund_rounds={self.waiting_refund_rounds} "
            f"blocked_refund_participants={self.blocked_refund_participants} "
            f"max_cleanup_retry={self.max_cleanup_retry}"
        )


def build_health_snapshot(
    now: int,
    current_round_id: int,
    entries: Mapping[int, BackgroundRoundEntry],
    observed: Mapping[int, ObservedState],
) -> HealthSnapshot:
    snapshot = HealthSnapshot(current_round_id=current_round_id, background=len(entries))

    for round_id, entry in entries.items():
        obs = observed.get(round_id)
        if obs is not None:
            if obs.status == RoundStatus.SETTLED:
                snapshot.settled += 1
            elif obs.status == RoundStatus.CLAIMED:
                snapshot.claimed += 1
            elif obs.status == RoundStatus.CANCELLED:
                snapshot.cancelled += 1

        if entry.is_due(now):
            snapshot.due_cleanup += 1
        snapshot.max_cleanup_retry = max(snapshot.max_cleanup_retry, entry.retry_count)

        stats = entry.last_stats
        if stats is not None and stats.blocked_by_refund > 0:
            snapshot.waiting_refund_rounds += 1
            snapshot.blocked_refund_participants += stats.blocked_by_refund

    current = observed.get(current_round_id)
    if current is not None:
        snapshot.current_status = current.status.label
        snapshot.current_age_sec = current.age(now)

    return snapshot
