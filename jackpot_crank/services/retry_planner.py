"""
Jackpot Crank - Cleanup Retry Planner

Pure backoff policy for background cleanup.

RULES:
- Delay doubles from the current delay, clamped to [min, max]
- A pass that made forward progress (closed at least one participant)
  retries fast: min(min_delay, 2) seconds
- Every plan increments the retry count by exactly one
- Nothing to retry (no participants left) yields no plan
"""

from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel

from jackpot_crank.models.round import status_name

FAST_RETRY_CAP_SEC = 2


# ============================================
# Outcomes
# ============================================

@dataclass(frozen=True)
class ParticipantsPending:
    existing: int
    closed: int
    blocked_by_refund: int

    @property
    def remaining(self) -> int:
        return self.existing - self.closed


@dataclass(frozen=True)
class LeftTerminalState:
    status: int


@dataclass(frozen=True)
class CloseFailed:
    message: str


@dataclass(frozen=True)
class BackgroundError:
    message: str


RetryOutcome = Union[ParticipantsPending, LeftTerminalState, CloseFailed, BackgroundError]


class RetryDescription(BaseModel):
    reason: str
    fast: bool = False


class RetryPlan(BaseModel):
    """Next backoff state for a background round."""
    delay_sec: int
    next_attempt_at: int
    retry_count: int
    reason: str


# ============================================
# Policy
# ============================================

def compute_retry_delay(
    min_delay: int,
    max_delay: int,
    current_delay: Optional[int] = None,
    fast: bool = False,
) -> int:
    if fast:
        return min(min_delay, FAST_RETRY_CAP_SEC)
    current = min_delay if current_delay is None else current_delay
    return min(max_delay, max(min_delay, current * 2))


def describe_participant_retry(outcome: ParticipantsPending) -> Optional[RetryDescription]:
    remaining = outcome.remaining
    if remaining <= 0:
        return None

    if outcome.blocked_by_refund > 0:
        reason = f"waiting user refunds ({outcome.blocked_by_refund} participant accounts still funded)"
    elif outcome.closed > 0:
        reason = f"participant cleanup in progress ({remaining} remaining)"
    else:
        reason = f"participant cleanup pending ({remaining} remaining)"

    return RetryDescription(reason=reason, fast=outcome.closed > 0)


def describe_outcome(outcome: RetryOutcome) -> Optional[RetryDescription]:
    if isinstance(outcome, ParticipantsPending):
        return describe_participant_retry(outcome)
    if isinstance(outcome, LeftTerminalState):
        return RetryDescription(reason=f"round left terminal state ({status_name(outcome.status)})")
    if isinstance(outcome, CloseFailed):
        return RetryDescription(reason=f"close_round failed: {outcome.message}")
    if isinstance(outcome, BackgroundError):
        return RetryDescription(reason=f"background error: {outcome.message}")
    return None


def plan_retry(
    now: int,
    outcome: RetryOutcome,
    min_delay: int,
    max_delay: int,
    current_delay: Optional[int] = None,
    retry_count: int = 0,
) -> Optional[RetryPlan]:
    """Plan the next attempt for `outcome`, or None if nothing is left to retry."""
    desc = describe_outcome(outcome)
    if desc is None:
        return None

    delay = compute_retry_delay(min_delay, max_delay, current_delay, fast=desc.fast)
    return RetryPlan(
        delay_sec=delay,
        next_attempt_at=now + delay,
        retry_count=retry_count + 1,
        reason=desc.reason,
    )
