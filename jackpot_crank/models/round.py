"""
Jackpot Crank - Round Snapshots

Typed views of the program's round, participant and config accounts.
The ledger owns these records; the crank only ever holds a best-effort
cached copy read during the current tick.

Amounts are raw integer units (USDC has 6 decimals). No floats until the
archive/notification boundary.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


USDC_DECIMALS = 6


class RoundStatus(int, Enum):
    """On-ledger round status (u8 wire value)."""
    OPEN = 0
    LOCKED = 1
    VRF_REQUESTED = 2
    SETTLED = 3
    CLAIMED = 4
    CANCELLED = 5

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_LABELS = {
    RoundStatus.OPEN: "Open",
    RoundStatus.LOCKED: "Locked",
    RoundStatus.VRF_REQUESTED: "VrfRequested",
    RoundStatus.SETTLED: "Settled",
    RoundStatus.CLAIMED: "Claimed",
    RoundStatus.CANCELLED: "Cancelled",
}

TERMINAL_STATUSES = frozenset({RoundStatus.CLAIMED, RoundStatus.CANCELLED})

# Statuses the crank keeps in background tracking. Settled is pre-terminal:
# tracked, but nothing destructive happens until the winner claims.
TRACKED_STATUSES = frozenset({RoundStatus.SETTLED, *TERMINAL_STATUSES})

ACTIVE_STATUSES = frozenset({
    RoundStatus.OPEN,
    RoundStatus.LOCKED,
    RoundStatus.VRF_REQUESTED,
    RoundStatus.SETTLED,
})


def is_terminal(status: RoundStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_active(status: RoundStatus) -> bool:
    return status in ACTIVE_STATUSES


def is_joinable(status: RoundStatus) -> bool:
    return status == RoundStatus.OPEN


def status_name(status: int) -> str:
    """Human label, tolerant of values the program may add later."""
    try:
        return RoundStatus(status).label
    except ValueError:
        return f"Unknown({status})"


def to_usdc(raw: int) -> float:
    return raw / 10 ** USDC_DECIMALS


class RoundSnapshot(BaseModel):
    """Decoded round account."""
    round_id: int
    status: RoundStatus
    bump: int = 0
    start_ts: int = 0
    end_ts: int = 0
    first_deposit_ts: int = 0
    vault_usdc_ata: Optional[str] = None
    total_usdc: int = 0
    total_tickets: int = 0
    participants_count: int = 0
    randomness: bytes = b""
    winning_ticket: int = 0
    winner: Optional[str] = None  # None until settled
    participants: list[str] = Field(default_factory=list)
    vrf_payer: Optional[str] = None
    vrf_reimbursed: bool = False

    def timer_expired(self, now: int, buffer_sec: int) -> bool:
        """An end_ts of 0 means the countdown has not started (no deposits yet)."""
        return self.end_ts != 0 and now >= self.end_ts + buffer_sec

    def has_minimum_fill(self) -> bool:
        return self.participants_count >= 1 and self.total_tickets > 0


class ParticipantSnapshot(BaseModel):
    """Decoded participant account: one depositor in one round."""
    round: str
    user: str
    index: int = 0
    bump: int = 0
    tickets_total: int = 0
    usdc_total: int = 0
    deposits_count: int = 0

    def has_refundable_balance(self) -> bool:
        return self.usdc_total > 0 or self.tickets_total > 0


class ProtocolConfigSnapshot(BaseModel):
    """Decoded global config account."""
    admin: str
    usdc_mint: str
    treasury_usdc_ata: str
    fee_bps: int
    ticket_unit: int
    round_duration_sec: int
    min_participants: int
    min_total_tickets: int
    paused: bool
    bump: int
    max_deposit_per_user: int
