"""
Jackpot Crank - Round Archive

Write-once history store for finished rounds (Firebase Realtime Database,
REST API). The web frontend reads round history from here after the
on-ledger account has been closed.

Contract:
    - put() is idempotent. Database rules make rounds/<id> write-once, so a
      401/403 (or 409) on a repeat write means the record is already there.
    - max_known_id() is a startup hint only. None means "no hint".
    - Archive failures never raise into the scheduler.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Mapping, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from jackpot_crank.models.round import ParticipantSnapshot, RoundSnapshot, to_usdc

logger = logging.getLogger(__name__)

# Base58 of the all-zero key, used where the round has no winner/vault yet.
DEFAULT_KEY = "11111111111111111111111111111111"

ACCEPTED_REJECTIONS = frozenset({401, 403, 409})


# ============================================
# Record Models
# ============================================

class ParticipantDeposit(BaseModel):
    address: str
    usdc: float
    tickets: int


class ArchiveRecord(BaseModel):
    """Archived round, serialized with the frontend's camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)

    round_id: int = Field(alias="roundId")
    status: int
    total_usdc: float = Field(alias="totalUsdc")
    total_tickets: int = Field(alias="totalTickets")
    participants_count: int = Field(alias="participantsCount")
    winner: str
    winning_ticket: str = Field(alias="winningTicket")
    randomness: str
    start_ts: int = Field(alias="startTs")
    end_ts: int = Field(alias="endTs")
    vault_usdc_ata: str = Field(alias="vaultUsdcAta")
    participants: list[str]
    participant_deposits: list[ParticipantDeposit] = Field(alias="participantDeposits")
    archived_at: int = Field(alias="archivedAt")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


def build_archive_record(
    rd: RoundSnapshot,
    deposits: Mapping[str, Optional[ParticipantSnapshot]],
    archived_at_ms: Optional[int] = None,
) -> ArchiveRecord:
    """
    Build the archive record for a round.

    `deposits` maps participant address to its decoded account. Addresses
    whose account is already closed (missing or None) are given an even
    share of the round totals.
    """
    count = rd.participants_count
    rows = []
    for address in rd.participants[:count]:
        p = deposits.get(address)
        if p is not None:
            rows.append(ParticipantDeposit(
                address=address,
                usdc=to_usdc(p.usdc_total),
                tickets=p.tickets_total,
            ))
        else:
            rows.append(ParticipantDeposit(
                address=address,
                usdc=to_usdc(rd.total_usdc) / count,
                tickets=rd.total_tickets // count,
            ))

    if archived_at_ms is None:
        archived_at_ms = int(time.time() * 1000)

    return ArchiveRecord(
        round_id=rd.round_id,
        status=int(rd.status),
        total_usdc=to_usdc(rd.total_usdc),
        total_tickets=rd.total_tickets,
        participants_count=count,
        winner=rd.winner or DEFAULT_KEY,
        winning_ticket=str(rd.winning_ticket),
        randomness=rd.randomness.hex(),
        start_ts=rd.start_ts,
        end_ts=rd.end_ts,
        vault_usdc_ata=rd.vault_usdc_ata or DEFAULT_KEY,
        participants=list(rd.participants[:count]),
        participant_deposits=rows,
        archived_at=archived_at_ms,
    )


# ============================================
# Client Interface
# ============================================

class ArchiveClient(ABC):
    """Abstract archive store."""

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def put(self, round_id: int, record: ArchiveRecord) -> bool:
        """Store a round record. True when stored or already present."""
        pass

    @abstractmethod
    async def max_known_id(self) -> Optional[int]:
        """Highest archived round id, or None if unavailable."""
        pass

    async def aclose(self) -> None:
        pass


class FirebaseArchiveClient(ArchiveClient):
    """Firebase RTDB over REST. No service account; rules allow write-once."""

    def __init__(
        self,
        database_url: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.database_url = database_url.rstrip("/") if database_url else None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        if self.database_url:
            logger.info(f"[ARCHIVE] Connected to {self.database_url}")
        else:
            logger.warning("[ARCHIVE] FIREBASE_DATABASE_URL not set, archive disabled")

    @property
    def enabled(self) -> bool:
        return self.database_url is not None

    async def put(self, round_id: int, record: ArchiveRecord) -> bool:
        if not self.enabled:
            return False
        url = f"{self.database_url}/rounds/{round_id}.json"
        try:
            response = await self._client.put(url, json=record.to_payload())
        except httpx.HTTPError as e:
            logger.error(f"[ARCHIVE] Save round {round_id} failed: {e}")
            return False

        if response.is_success or response.status_code in ACCEPTED_REJECTIONS:
            return True

        logger.error(f"[ARCHIVE] Save round {round_id} HTTP {response.status_code}: {response.text}")
        return False

    async def max_known_id(self) -> Optional[int]:
        if not self.enabled:
            return None
        try:
            response = await self._client.get(
                f"{self.database_url}/rounds.json",
                params={"orderBy": '"$key"', "limitToLast": "1"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"[ARCHIVE] Max round lookup failed: {e}")
            return None

        if not response.is_success:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict) or not data:
            return None

        ids = [int(key) for key in data if str(key).isdigit()]
        return max(ids) if ids else None

    async def aclose(self) -> None:
        await self._client.aclose()
