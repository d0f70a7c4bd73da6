"""
Jackpot Crank - Stuck Round Detector

Decides when a round has sat in one status long enough to warn about.
Only statuses that wait on someone else (oracle, winner, refunding users)
have thresholds. Warnings repeat at most once per repeat window.
"""

from typing import Optional

from pydantic import BaseModel

from jackpot_crank.models.round import RoundStatus


class StuckThresholds(BaseModel):
    """Seconds before a status counts as stuck. 0 disables the status."""
    locked: int = 90
    vrf_requested: int = 180
    settled: int = 300
    cancelled: int = 180

    @classmethod
    def from_settings(cls, settings) -> "StuckThresholds":
        return cls(
            locked=settings.STUCK_LOCKED_SEC,
            vrf_requested=settings.STUCK_VRF_REQUESTED_SEC,
            settled=settings.STUCK_SETTLED_SEC,
            cancelled=settings.STUCK_CANCELLED_SEC,
        )


def threshold_for(status: int, thresholds: StuckThresholds) -> Optional[int]:
    """Threshold for `status`; None for Open, Claimed and unknown values."""
    if status == RoundStatus.LOCKED:
        return thresholds.locked
    if status == RoundStatus.VRF_REQUESTED:
        return thresholds.vrf_requested
    if status == RoundStatus.SETTLED:
        return thresholds.settled
    if status == RoundStatus.CANCELLED:
        return thresholds.cancelled
    return None


def should_emit_stuck_warning(
    now: int,
    observed_status: int,
    target_status: int,
    observed_since: int,
    threshold: Optional[int],
    last_warned_at: Optional[int],
    repeat: int,
) -> bool:
    if threshold is None or threshold <= 0:
        return False
    if observed_status != target_status:
        return False
    if now - observed_since < threshold:
        return False
    if last_warned_at is None:
        return True
    return now - last_warned_at >= repeat
