"""
Jackpot Crank - External Bridges

Integration layer for:
- the jackpot program (LedgerGateway)
- the round history archive (ArchiveClient)
- social feed notifications (NotificationPublisher)

The Solana gateway is imported from its own module so the abstract
interfaces load without an RPC stack.
"""

from .archive import ArchiveClient, ArchiveRecord, FirebaseArchiveClient, build_archive_record
from .ledger import (
    CloseParticipant,
    CloseRound,
    LedgerError,
    LedgerErrorCode,
    LedgerGateway,
    LockRound,
    LookupKind,
    ParticipantLookup,
    RequestRandomness,
    RoundLookup,
    StartRound,
)
from .notifications import NotificationPublisher, NullPublisher, RoundSettledEvent, TapestryPublisher

__all__ = [
    # Ledger
    "LedgerGateway",
    "LedgerError",
    "LedgerErrorCode",
    "LookupKind",
    "RoundLookup",
    "ParticipantLookup",
    "StartRound",
    "LockRound",
    "RequestRandomness",
    "CloseParticipant",
    "CloseRound",
    # Archive
    "ArchiveClient",
    "ArchiveRecord",
    "FirebaseArchiveClient",
    "build_archive_record",
    # Notifications
    "NotificationPublisher",
    "NullPublisher",
    "TapestryPublisher",
    "RoundSettledEvent",
]
