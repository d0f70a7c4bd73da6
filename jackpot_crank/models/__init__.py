"""
Jackpot Crank - Models
"""

from .cleanup import BackgroundRoundEntry, CleanupStats, ObservedState
from .round import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TRACKED_STATUSES,
    USDC_DECIMALS,
    ParticipantSnapshot,
    ProtocolConfigSnapshot,
    RoundSnapshot,
    RoundStatus,
    is_active,
    is_joinable,
    is_terminal,
    status_name,
    to_usdc,
)

__all__ = [
    # Ledger snapshots
    "RoundStatus",
    "RoundSnapshot",
    "ParticipantSnapshot",
    "ProtocolConfigSnapshot",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "TRACKED_STATUSES",
    "USDC_DECIMALS",
    "is_active",
    "is_joinable",
    "is_terminal",
    "status_name",
    "to_usdc",
    # Crank-local state
    "BackgroundRoundEntry",
    "CleanupStats",
    "ObservedState",
]
