"""
Jackpot Crank - Ledger Gateway

Narrow interface between the scheduler and the jackpot program:
- batched account reads (rounds, participants, config)
- atomic submission of crank instructions

Contract:
    - Reads never raise on malformed account data. A round that fails to
      decode is reported as INVALID for that pass.
    - submit() is all-or-nothing. Failures raise LedgerError carrying a
      LedgerErrorCode; the scheduler dispatches on the code, never on the
      message text.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union

from jackpot_crank.models.round import ParticipantSnapshot, ProtocolConfigSnapshot, RoundSnapshot


# ============================================
# Errors
# ============================================

class LedgerErrorCode(str, Enum):
    """Business and transport conditions the scheduler distinguishes."""
    INSUFFICIENT_PARTICIPANTS = "insufficient_participants"
    INSUFFICIENT_STAKE = "insufficient_stake"
    ALREADY_LOCKED = "already_locked"
    NOT_EXPIRED = "not_expired"
    ALREADY_EXISTS = "already_exists"
    NOT_CLOSEABLE = "not_closeable"
    PARTICIPANT_NOT_EMPTY = "participant_not_empty"
    ALREADY_CLOSED = "already_closed"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


# Lock rejections that are a terminal business outcome, not a fault.
MIN_REQUIREMENT_CODES = frozenset({
    LedgerErrorCode.INSUFFICIENT_PARTICIPANTS,
    LedgerErrorCode.INSUFFICIENT_STAKE,
})


class LedgerError(Exception):
    """A ledger read or submission failed."""

    def __init__(self, code: LedgerErrorCode, message: str = "", program_code: Optional[int] = None):
        super().__init__(message or code.value)
        self.code = code
        self.message = message or code.value
        self.program_code = program_code

    @property
    def is_min_requirements(self) -> bool:
        return self.code in MIN_REQUIREMENT_CODES

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


# ============================================
# Instructions
# ============================================

@dataclass(frozen=True)
class StartRound:
    round_id: int


@dataclass(frozen=True)
class LockRound:
    round_id: int


@dataclass(frozen=True)
class RequestRandomness:
    round_id: int


@dataclass(frozen=True)
class CloseParticipant:
    round_id: int
    user: str


@dataclass(frozen=True)
class CloseRound:
    round_id: int
    recipient: Optional[str] = None  # defaults to the operator wallet


CrankInstruction = Union[StartRound, LockRound, RequestRandomness, CloseParticipant, CloseRound]


# ============================================
# Read results
# ============================================

class LookupKind(str, Enum):
    MISSING = "missing"
    INVALID = "invalid"
    PRESENT = "present"


@dataclass(frozen=True)
class RoundLookup:
    """One slot of a batched round read."""
    round_id: int
    kind: LookupKind
    round: Optional[RoundSnapshot] = None

    @classmethod
    def missing(cls, round_id: int) -> "RoundLookup":
        return cls(round_id, LookupKind.MISSING)

    @classmethod
    def invalid(cls, round_id: int) -> "RoundLookup":
        return cls(round_id, LookupKind.INVALID)

    @classmethod
    def present(cls, snapshot: RoundSnapshot) -> "RoundLookup":
        return cls(snapshot.round_id, LookupKind.PRESENT, snapshot)


@dataclass(frozen=True)
class ParticipantLookup:
    """One slot of a batched participant read. `error` is set when decode failed."""
    user: str
    participant: Optional[ParticipantSnapshot] = None
    error: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.participant is not None or self.error is not None


# ============================================
# Gateway Interface
# ============================================

class LedgerGateway(ABC):
    """
    Abstract gateway to the jackpot program.

    Implementations:
    - SolanaLedgerGateway: JSON-RPC against a cluster
    - InMemoryLedger: development and tests
    """

    @abstractmethod
    async def get_rounds_batch(self, round_ids: Sequence[int]) -> list[RoundLookup]:
        """Fetch rounds in one batched read. Result order matches `round_ids`."""
        pass

    @abstractmethod
    async def get_participants(self, round_id: int, users: Sequence[str]) -> list[ParticipantLookup]:
        """Fetch participant accounts of a round. Result order matches `users`."""
        pass

    @abstractmethod
    async def get_config(self) -> Optional[ProtocolConfigSnapshot]:
        """Fetch the global config account, or None if absent/undecodable."""
        pass

    @abstractmethod
    async def submit(self, instructions: Sequence[CrankInstruction]) -> str:
        """
        Submit instructions in one atomic transaction.

        Returns the transaction signature once confirmed.
        Raises LedgerError on rejection or transport failure.
        """
        pass

    @abstractmethod
    async def get_service_balance(self) -> int:
        """Lamports held by the operator wallet that pays for transactions."""
        pass

    async def get_round(self, round_id: int) -> Optional[RoundSnapshot]:
        """Fetch a single round. Missing and undecodable both return None."""
        lookups = await self.get_rounds_batch([round_id])
        return lookups[0].round if lookups else None

    async def aclose(self) -> None:
        pass
