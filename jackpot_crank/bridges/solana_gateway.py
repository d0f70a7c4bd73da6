"""
Jackpot Crank - Solana Ledger Gateway

LedgerGateway over Solana JSON-RPC (solana-py AsyncClient + solders).

Responsibilities:
- PDA derivation for config / round / participant / vault accounts
- batched account reads (getMultipleAccounts, capped at 100 keys per call)
- building the five crank instructions and sending them as one signed,
  confirmed transaction
- mapping program error numbers onto LedgerErrorCode
"""

import hashlib
import logging
import re
import struct
from typing import Optional, Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

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
from jackpot_crank.core.config import Settings
from jackpot_crank.models.round import ProtocolConfigSnapshot
from jackpot_crank.services.decoder import (
    AccountDecodeError,
    decode_config,
    decode_participant,
    decode_round,
)

logger = logging.getLogger(__name__)

MAX_ACCOUNTS_PER_CALL = 100

SEED_CFG = b"cfg"
SEED_ROUND = b"round"
SEED_PARTICIPANT = b"p"
SEED_IDENTITY = b"identity"

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SLOT_HASHES_SYSVAR = Pubkey.from_string("SysvarS1otHashes111111111111111111111111111")


# ============================================
# Error classification
# ============================================

# Anchor custom error numbers: 6000 + variant index in the program's ErrorCode.
PROGRAM_ERROR_CODES: dict[int, LedgerErrorCode] = {
    6003: LedgerErrorCode.ALREADY_LOCKED,          # RoundNotOpen
    6009: LedgerErrorCode.INSUFFICIENT_PARTICIPANTS,
    6010: LedgerErrorCode.INSUFFICIENT_STAKE,       # NotEnoughTickets
    6011: LedgerErrorCode.NOT_EXPIRED,              # RoundNotEnded
    6025: LedgerErrorCode.NOT_CLOSEABLE,            # RoundNotCloseable
    6032: LedgerErrorCode.PARTICIPANT_NOT_EMPTY,
    3012: LedgerErrorCode.ALREADY_CLOSED,           # Anchor AccountNotInitialized
}

PROGRAM_ERROR_NAMES: dict[str, LedgerErrorCode] = {
    "RoundNotOpen": LedgerErrorCode.ALREADY_LOCKED,
    "NotEnoughParticipants": LedgerErrorCode.INSUFFICIENT_PARTICIPANTS,
    "NotEnoughTickets": LedgerErrorCode.INSUFFICIENT_STAKE,
    "RoundNotEnded": LedgerErrorCode.NOT_EXPIRED,
    "RoundNotCloseable": LedgerErrorCode.NOT_CLOSEABLE,
    "ParticipantNotEmpty": LedgerErrorCode.PARTICIPANT_NOT_EMPTY,
    "AccountNotInitialized": LedgerErrorCode.ALREADY_CLOSED,
}

_CUSTOM_CODE_RE = re.compile(r"Custom\W{0,4}(\d+)")
_ERROR_NAME_RE = re.compile(r"Error Code: (\w+)")


def classify_program_error(text: str) -> tuple[LedgerErrorCode, Optional[int]]:
    """Map a stringified RPC/transaction error to a LedgerErrorCode."""
    if "already in use" in text:
        return LedgerErrorCode.ALREADY_EXISTS, None

    for match in _ERROR_NAME_RE.finditer(text):
        code = PROGRAM_ERROR_NAMES.get(match.group(1))
        if code is not None:
            return code, None

    match = _CUSTOM_CODE_RE.search(text)
    if match:
        number = int(match.group(1))
        return PROGRAM_ERROR_CODES.get(number, LedgerErrorCode.UNKNOWN), number

    return LedgerErrorCode.UNKNOWN, None


# ============================================
# Instruction building
# ============================================

def instruction_discriminator(name: str) -> bytes:
    """Anchor instruction tag: first 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def _round_arg(name: str, round_id: int) -> bytes:
    return instruction_discriminator(name) + struct.pack("<Q", round_id)


def _signer(key: Pubkey, writable: bool = True) -> AccountMeta:
    return AccountMeta(pubkey=key, is_signer=True, is_writable=writable)


def _writable(key: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=key, is_signer=False, is_writable=True)


def _readonly(key: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=key, is_signer=False, is_writable=False)


class SolanaLedgerGateway(LedgerGateway):
    """LedgerGateway backed by a Solana RPC node."""

    def __init__(
        self,
        settings: Settings,
        payer: Keypair,
        client: Optional[AsyncClient] = None,
    ):
        self.settings = settings
        self.payer = payer
        self.program_id = Pubkey.from_string(settings.program_id)
        self.usdc_mint = Pubkey.from_string(settings.usdc_mint)
        self.vrf_program_id = Pubkey.from_string(settings.VRF_PROGRAM_ID)
        self.oracle_queue = Pubkey.from_string(settings.VRF_ORACLE_QUEUE)
        self.client = client or AsyncClient(
            settings.rpc_url,
            commitment=Confirmed,
            timeout=settings.RPC_TIMEOUT_SEC,
        )

    # ----- PDAs -----

    def config_pda(self) -> Pubkey:
        return Pubkey.find_program_address([SEED_CFG], self.program_id)[0]

    def round_pda(self, round_id: int) -> Pubkey:
        return Pubkey.find_program_address(
            [SEED_ROUND, struct.pack("<Q", round_id)], self.program_id
        )[0]

    def participant_pda(self, round_pda: Pubkey, user: Pubkey) -> Pubkey:
        return Pubkey.find_program_address(
            [SEED_PARTICIPANT, bytes(round_pda), bytes(user)], self.program_id
        )[0]

    def identity_pda(self) -> Pubkey:
        return Pubkey.find_program_address([SEED_IDENTITY], self.program_id)[0]

    def vault_ata(self, round_pda: Pubkey) -> Pubkey:
        return Pubkey.find_program_address(
            [bytes(round_pda), bytes(TOKEN_PROGRAM_ID), bytes(self.usdc_mint)],
            ASSOCIATED_TOKEN_PROGRAM_ID,
        )[0]

    # ----- Reads -----

    async def _fetch_many(self, keys: Sequence[Pubkey]) -> list[Optional[bytes]]:
        out: list[Optional[bytes]] = []
        for i in range(0, len(keys), MAX_ACCOUNTS_PER_CALL):
            chunk = list(keys[i:i + MAX_ACCOUNTS_PER_CALL])
            try:
                resp = await self.client.get_multiple_accounts(chunk, commitment=Confirmed)
            except (SolanaRpcException, RPCException) as e:
                raise LedgerError(LedgerErrorCode.TRANSPORT, f"getMultipleAccounts failed: {e}")
            out.extend(None if acc is None else bytes(acc.data) for acc in resp.value)
        return out

    async def get_rounds_batch(self, round_ids: Sequence[int]) -> list[RoundLookup]:
        datas = await self._fetch_many([self.round_pda(rid) for rid in round_ids])
        lookups: list[RoundLookup] = []
        for rid, data in zip(round_ids, datas):
            if data is None:
                lookups.append(RoundLookup.missing(rid))
                continue
            try:
                lookups.append(RoundLookup.present(decode_round(data)))
            except AccountDecodeError as e:
                logger.debug(f"[LEDGER] Round #{rid} undecodable: {e}")
                lookups.append(RoundLookup.invalid(rid))
        return lookups

    async def get_participants(self, round_id: int, users: Sequence[str]) -> list[ParticipantLookup]:
        round_pda = self.round_pda(round_id)
        keys = [self.participant_pda(round_pda, Pubkey.from_string(u)) for u in users]
        datas = await self._fetch_many(keys)
        lookups: list[ParticipantLookup] = []
        for user, data in zip(users, datas):
            if data is None:
                lookups.append(ParticipantLookup(user=user))
                continue
            try:
                lookups.append(ParticipantLookup(user=user, participant=decode_participant(data)))
            except AccountDecodeError as e:
                lookups.append(ParticipantLookup(user=user, error=str(e)))
        return lookups

    async def get_config(self) -> Optional[ProtocolConfigSnapshot]:
        data = (await self._fetch_many([self.config_pda()]))[0]
        if data is None:
            return None
        try:
            return decode_config(data)
        except AccountDecodeError as e:
            logger.warning(f"[LEDGER] Config account undecodable: {e}")
            return None

    async def get_service_balance(self) -> int:
        try:
            resp = await self.client.get_balance(self.payer.pubkey(), commitment=Confirmed)
        except (SolanaRpcException, RPCException) as e:
            raise LedgerError(LedgerErrorCode.TRANSPORT, f"getBalance failed: {e}")
        return resp.value

    # ----- Instructions -----

    def build_instruction(self, ix: CrankInstruction) -> Instruction:
        payer = self.payer.pubkey()
        round_pda = self.round_pda(ix.round_id)

        if isinstance(ix, StartRound):
            accounts = [
                _signer(payer),
                _readonly(self.config_pda()),
                _writable(round_pda),
                _writable(self.vault_ata(round_pda)),
                _readonly(self.usdc_mint),
                _readonly(ASSOCIATED_TOKEN_PROGRAM_ID),
                _readonly(TOKEN_PROGRAM_ID),
                _readonly(SYSTEM_PROGRAM_ID),
            ]
            data = _round_arg("start_round", ix.round_id)
        elif isinstance(ix, LockRound):
            accounts = [
                _signer(payer, writable=False),
                _readonly(self.config_pda()),
                _writable(round_pda),
            ]
            data = _round_arg("lock_round", ix.round_id)
        elif isinstance(ix, RequestRandomness):
            accounts = [
                _signer(payer),
                _readonly(self.config_pda()),
                _writable(round_pda),
                _readonly(self.identity_pda()),
                _writable(self.oracle_queue),
                _readonly(self.vrf_program_id),
                _readonly(SLOT_HASHES_SYSVAR),
                _readonly(SYSTEM_PROGRAM_ID),
            ]
            data = _round_arg("request_vrf", ix.round_id)
        elif isinstance(ix, CloseParticipant):
            user = Pubkey.from_string(ix.user)
            accounts = [
                _signer(payer),
                _writable(user),
                _readonly(round_pda),
                _writable(self.participant_pda(round_pda, user)),
            ]
            data = _round_arg("close_participant", ix.round_id)
        elif isinstance(ix, CloseRound):
            recipient = Pubkey.from_string(ix.recipient) if ix.recipient else payer
            accounts = [
                _signer(payer),
                _writable(recipient),
                _writable(round_pda),
                _writable(self.vault_ata(round_pda)),
                _readonly(TOKEN_PROGRAM_ID),
                _readonly(SYSTEM_PROGRAM_ID),
            ]
            data = _round_arg("close_round", ix.round_id)
        else:
            raise TypeError(f"Unsupported instruction: {ix!r}")

        return Instruction(self.program_id, data, accounts)

    async def submit(self, instructions: Sequence[CrankInstruction]) -> str:
        # Closes skip preflight: they race with other closers and fail cheaply on-chain.
        skip_preflight = all(isinstance(ix, (CloseParticipant, CloseRound)) for ix in instructions)

        ixs = [
            set_compute_unit_limit(self.settings.COMPUTE_UNIT_LIMIT),
            set_compute_unit_price(self.settings.PRIORITY_FEE_MICROLAMPORTS),
            *(self.build_instruction(ix) for ix in instructions),
        ]

        try:
            blockhash = (await self.client.get_latest_blockhash(Confirmed)).value.blockhash
            message = Message.new_with_blockhash(ixs, self.payer.pubkey(), blockhash)
            tx = Transaction([self.payer], message, blockhash)
            resp = await self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_preflight=skip_preflight, preflight_commitment=Confirmed),
            )
            signature: Signature = resp.value
            confirmation = await self.client.confirm_transaction(signature, commitment=Confirmed)
        except RPCException as e:
            code, number = classify_program_error(str(e))
            raise LedgerError(code, str(e), program_code=number)
        except SolanaRpcException as e:
            raise LedgerError(LedgerErrorCode.TRANSPORT, str(e))

        status = confirmation.value[0] if confirmation.value else None
        if status is not None and status.err is not None:
            code, number = classify_program_error(str(status.err))
            raise LedgerError(code, f"transaction {signature} failed: {status.err}", program_code=number)

        return str(signature)

    async def aclose(self) -> None:
        await self.client.close()
