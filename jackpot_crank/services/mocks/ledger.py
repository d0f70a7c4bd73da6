"""
Jackpot Crank - In-Memory Ledger
Local stand-in for the jackpot program

This is a MOCK implementation.
In production, the crank talks to the program through SolanaLedgerGateway.

Contract:
    - Enforces the same status transitions and close rules as the program
    - Transactions are atomic: every instruction applies or none does
    - Rejections raise LedgerError with the same codes the Solana gateway
      produces, so engine behaviour is identical against either backend
"""

import time
from typing import Callable, Optional, Sequence

from jackpot_crank.bridges.ledger import (
    CloseParticipant,
    CloseRound,
    CrankInstruction,
    LedgerError,
    LedgerErrorCode,
    LedgerGateway,
    LockRound,
    ParticipantLookup,
    RequestRandomness,
    RoundLookup,
    StartRound,
)
from jackpot_crank.models.round import (
    ParticipantSnapshot,
    ProtocolConfigSnapshot,
    RoundSnapshot,
    RoundStatus,
    is_terminal,
)


class InMemoryLedger(LedgerGateway):
    """
    Mock ledger.

    Test helpers (add_round, deposit, set_status, fail_next, ...) stand in
    for the actions of users, the oracle and other cranks.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        round_duration_sec: int = 60,
        min_participants: int = 1,
        min_total_tickets: int = 1,
    ) -> None:
        self._clock = clock
        self.round_duration_sec = round_duration_sec
        self.min_participants = min_participants
        self.min_total_tickets = min_total_tickets
        self.rounds: dict[int, RoundSnapshot] = {}
        self.participants: dict[tuple[int, str], ParticipantSnapshot] = {}
        self.invalid_rounds: set[int] = set()
        self.read_failures = 0
        self.service_balance = 1_000_000_000
        self._pending_failures: list[tuple[type, LedgerError]] = []
        self._submission_log: list[list[CrankInstruction]] = []
        self._signature_seq = 0

    # =========================================================================
    # SCENARIO HELPERS
    # =========================================================================

    def add_round(
        self,
        round_id: int,
        status: RoundStatus = RoundStatus.OPEN,
        end_ts: int = 0,
        winner: Optional[str] = None,
    ) -> RoundSnapshot:
        snapshot = RoundSnapshot(
            round_id=round_id,
            status=status,
            start_ts=int(self._clock()),
            end_ts=end_ts,
            winner=winner,
        )
        self.rounds[round_id] = snapshot
        return snapshot

    def deposit(self, round_id: int, user: str, usdc: int, tickets: int) -> None:
        """Record a deposit; the first one starts the countdown."""
        rd = self.rounds[round_id]
        key = (round_id, user)
        existing = self.participants.get(key)
        if existing is None:
            existing = ParticipantSnapshot(
                round=str(round_id),
                user=user,
                index=rd.participants_count,
            )
            rd.participants.append(user)
            rd.participants_count += 1
        existing.usdc_total += usdc
        existing.tickets_total += tickets
        existing.deposits_count += 1
        self.participants[key] = existing

        rd.total_usdc += usdc
        rd.total_tickets += tickets
        if rd.end_ts == 0:
            now = int(self._clock())
            rd.first_deposit_ts = now
            rd.end_ts = now + self.round_duration_sec

    def set_status(self, round_id: int, status: RoundStatus, winner: Optional[str] = None) -> None:
        rd = self.rounds[round_id]
        rd.status = status
        if winner is not None:
            rd.winner = winner

    def refund(self, round_id: int, user: str) -> None:
        """User reclaims a cancelled-round deposit; the account stays until closed."""
        p = self.participants[(round_id, user)]
        p.usdc_total = 0
        p.tickets_total = 0

    def fail_next(self, instruction_type: type, error: LedgerError) -> None:
        """Reject the next transaction containing `instruction_type`."""
        self._pending_failures.append((instruction_type, error))

    def get_submission_log(self) -> list[list[CrankInstruction]]:
        return [list(tx) for tx in self._submission_log]

    def submitted(self, instruction_type: type) -> list[CrankInstruction]:
        return [ix for tx in self._submission_log for ix in tx if isinstance(ix, instruction_type)]

    # =========================================================================
    # GATEWAY
    # =========================================================================

    def _maybe_fail_read(self) -> None:
        if self.read_failures > 0:
            self.read_failures -= 1
            raise LedgerError(LedgerErrorCode.TRANSPORT, "mock RPC unavailable")

    async def get_rounds_batch(self, round_ids: Sequence[int]) -> list[RoundLookup]:
        self._maybe_fail_read()
        out = []
        for rid in round_ids:
            if rid in self.invalid_rounds:
                out.append(RoundLookup.invalid(rid))
            elif rid in self.rounds:
                out.append(RoundLookup.present(self.rounds[rid].model_copy(deep=True)))
            else:
                out.append(RoundLookup.missing(rid))
        return out

    async def get_participants(self, round_id: int, users: Sequence[str]) -> list[ParticipantLookup]:
        self._maybe_fail_read()
        out = []
        for user in users:
            p = self.participants.get((round_id, user))
            out.append(ParticipantLookup(user=user, participant=p.model_copy() if p else None))
        return out

    async def get_config(self) -> Optional[ProtocolConfigSnapshot]:
        return ProtocolConfigSnapshot(
            admin="mock-admin",
            usdc_mint="mock-usdc",
            treasury_usdc_ata="mock-treasury",
            fee_bps=500,
            ticket_unit=10_000,
            round_duration_sec=self.round_duration_sec,
            min_participants=self.min_participants,
            min_total_tickets=self.min_total_tickets,
            paused=False,
            bump=255,
            max_deposit_per_user=0,
        )

    async def get_service_balance(self) -> int:
        return self.service_balance

    async def submit(self, instructions: Sequence[CrankInstruction]) -> str:
        instructions = list(instructions)
        for i, (ix_type, error) in enumerate(self._pending_failures):
            if any(isinstance(ix, ix_type) for ix in instructions):
                del self._pending_failures[i]
                raise error

        rounds = {rid: rd.model_copy(deep=True) for rid, rd in self.rounds.items()}
        participants = dict(self.participants)
        for ix in instructions:
            self._apply(ix, rounds, participants)

        self.rounds = rounds
        self.participants = participants
        self._submission_log.append(instructions)
        self._signature_seq += 1
        return f"mocksig{self._signature_seq:08d}"

    def _apply(
        self,
        ix: CrankInstruction,
        rounds: dict[int, RoundSnapshot],
        participants: dict[tuple[int, str], ParticipantSnapshot],
    ) -> None:
        rd = rounds.get(ix.round_id)

        if isinstance(ix, StartRound):
            if rd is not None:
                raise LedgerError(LedgerErrorCode.ALREADY_EXISTS, f"round {ix.round_id} already in use")
            rounds[ix.round_id] = RoundSnapshot(
                round_id=ix.round_id,
                status=RoundStatus.OPEN,
                start_ts=int(self._clock()),
            )
            return

        if rd is None:
            raise LedgerError(LedgerErrorCode.ALREADY_CLOSED, f"round {ix.round_id} not initialized")

        if isinstance(ix, LockRound):
            if rd.status != RoundStatus.OPEN:
                raise LedgerError(LedgerErrorCode.ALREADY_LOCKED, "RoundNotOpen")
            if rd.end_ts == 0 or self._clock() < rd.end_ts:
                raise LedgerError(LedgerErrorCode.NOT_EXPIRED, "RoundNotEnded")
            if rd.participants_count < self.min_participants:
                raise LedgerError(LedgerErrorCode.INSUFFICIENT_PARTICIPANTS, "NotEnoughParticipants")
            if rd.total_tickets < self.min_total_tickets:
                raise LedgerError(LedgerErrorCode.INSUFFICIENT_STAKE, "NotEnoughTickets")
            rd.status = RoundStatus.LOCKED

        elif isinstance(ix, RequestRandomness):
            if rd.status != RoundStatus.LOCKED:
                raise LedgerError(LedgerErrorCode.UNKNOWN, "RoundNotLocked")
            rd.status = RoundStatus.VRF_REQUESTED

        elif isinstance(ix, CloseParticipant):
            if not is_terminal(rd.status):
                raise LedgerError(LedgerErrorCode.NOT_CLOSEABLE, "RoundNotCloseable")
            p = participants.get((ix.round_id, ix.user))
            if p is None:
                raise LedgerError(LedgerErrorCode.ALREADY_CLOSED, "participant not initialized")
            if rd.status == RoundStatus.CANCELLED and p.has_refundable_balance():
                raise LedgerError(LedgerErrorCode.PARTICIPANT_NOT_EMPTY, "ParticipantNotEmpty")
            del participants[(ix.round_id, ix.user)]

        elif isinstance(ix, CloseRound):
            if not is_terminal(rd.status):
                raise LedgerError(LedgerErrorCode.NOT_CLOSEABLE, "RoundNotCloseable")
            del rounds[ix.round_id]
