"""
Jackpot Crank - Round State Decoder

Decodes raw account bytes into typed snapshots.

Layouts (little-endian, after the 8-byte Anchor discriminator):
    Round        zero-copy, repr(C), 8240 bytes
    Participant  borsh, 87 bytes used
    Config       borsh, 130 bytes used

Any short, mis-tagged or out-of-range buffer raises AccountDecodeError.
Callers treat that as "not a valid account" for the current pass only.
"""

import hashlib
import struct
from typing import Optional

from solders.pubkey import Pubkey

from jackpot_crank.models.round import (
    ParticipantSnapshot,
    ProtocolConfigSnapshot,
    RoundSnapshot,
    RoundStatus,
)


DISC = 8
MAX_PARTICIPANTS = 200

ROUND_PARTICIPANTS_OFFSET = DISC + 168
ROUND_VRF_PAYER_OFFSET = DISC + 8176
ROUND_VRF_REIMBURSED_OFFSET = DISC + 8208
ROUND_ACCOUNT_SIZE = DISC + 8240

PARTICIPANT_ACCOUNT_MIN = DISC + 87
CONFIG_ACCOUNT_MIN = DISC + 130

_ZERO_KEY = bytes(32)


class AccountDecodeError(ValueError):
    """Account data does not match the expected layout."""
    pass


def account_discriminator(account_name: str) -> bytes:
    """Anchor account tag: first 8 bytes of sha256("account:<Name>")."""
    return hashlib.sha256(f"account:{account_name}".encode()).digest()[:8]


ROUND_DISCRIMINATOR = account_discriminator("Round")
PARTICIPANT_DISCRIMINATOR = account_discriminator("Participant")
CONFIG_DISCRIMINATOR = account_discriminator("Config")


def _check(data: bytes, min_len: int, discriminator: Optional[bytes], kind: str) -> None:
    if len(data) < min_len:
        raise AccountDecodeError(f"{kind} account too short: {len(data)} < {min_len}")
    if discriminator is not None and data[:DISC] != discriminator:
        raise AccountDecodeError(f"{kind} account discriminator mismatch")


def _u8(data: bytes, off: int) -> int:
    return data[off]


def _u16(data: bytes, off: int) -> int:
    return struct.unpack_from("<H", data, off)[0]


def _u32(data: bytes, off: int) -> int:
    return struct.unpack_from("<I", data, off)[0]


def _u64(data: bytes, off: int) -> int:
    return struct.unpack_from("<Q", data, off)[0]


def _i64(data: bytes, off: int) -> int:
    return struct.unpack_from("<q", data, off)[0]


def _key(data: bytes, off: int) -> str:
    return str(Pubkey.from_bytes(data[off:off + 32]))


def _optional_key(data: bytes, off: int) -> Optional[str]:
    raw = data[off:off + 32]
    if raw == _ZERO_KEY:
        return None
    return str(Pubkey.from_bytes(raw))


def decode_round(data: bytes, verify_discriminator: bool = True) -> RoundSnapshot:
    """Decode a Round account."""
    data = bytes(data)
    _check(
        data,
        ROUND_PARTICIPANTS_OFFSET,
        ROUND_DISCRIMINATOR if verify_discriminator else None,
        "round",
    )

    raw_status = _u8(data, DISC + 8)
    try:
        status = RoundStatus(raw_status)
    except ValueError:
        raise AccountDecodeError(f"unknown round status {raw_status}")

    participants_count = _u16(data, DISC + 88)
    if participants_count > MAX_PARTICIPANTS:
        raise AccountDecodeError(f"participants_count {participants_count} exceeds {MAX_PARTICIPANTS}")

    participants_end = ROUND_PARTICIPANTS_OFFSET + participants_count * 32
    if len(data) < participants_end:
        raise AccountDecodeError("round account truncated inside participants list")

    participants = [
        _key(data, ROUND_PARTICIPANTS_OFFSET + i * 32)
        for i in range(participants_count)
    ]

    vrf_payer = None
    vrf_reimbursed = False
    if len(data) > ROUND_VRF_REIMBURSED_OFFSET:
        vrf_payer = _optional_key(data, ROUND_VRF_PAYER_OFFSET)
        vrf_reimbursed = _u8(data, ROUND_VRF_REIMBURSED_OFFSET) != 0

    return RoundSnapshot(
        round_id=_u64(data, DISC + 0),
        status=status,
        bump=_u8(data, DISC + 9),
        start_ts=_i64(data, DISC + 16),
        end_ts=_i64(data, DISC + 24),
        first_deposit_ts=_i64(data, DISC + 32),
        vault_usdc_ata=_optional_key(data, DISC + 40),
        total_usdc=_u64(data, DISC + 72),
        total_tickets=_u64(data, DISC + 80),
        participants_count=participants_count,
        randomness=data[DISC + 96:DISC + 128],
        winning_ticket=_u64(data, DISC + 128),
        winner=_optional_key(data, DISC + 136),
        participants=participants,
        vrf_payer=vrf_payer,
        vrf_reimbursed=vrf_reimbursed,
    )


def decode_participant(data: bytes, verify_discriminator: bool = True) -> ParticipantSnapshot:
    """Decode a Participant account."""
    data = bytes(data)
    _check(
        data,
        PARTICIPANT_ACCOUNT_MIN,
        PARTICIPANT_DISCRIMINATOR if verify_discriminator else None,
        "participant",
    )
    return ParticipantSnapshot(
        round=_key(data, DISC + 0),
        user=_key(data, DISC + 32),
        index=_u16(data, DISC + 64),
        bump=_u8(data, DISC + 66),
        tickets_total=_u64(data, DISC + 67),
        usdc_total=_u64(data, DISC + 75),
        deposits_count=_u32(data, DISC + 83),
    )


def decode_config(data: bytes, verify_discriminator: bool = True) -> ProtocolConfigSnapshot:
    """Decode the global Config account."""
    data = bytes(data)
    _check(
        data,
        CONFIG_ACCOUNT_MIN,
        CONFIG_DISCRIMINATOR if verify_discriminator else None,
        "config",
    )
    return ProtocolConfigSnapshot(
        admin=_key(data, DISC + 0),
        usdc_mint=_key(data, DISC + 32),
        treasury_usdc_ata=_key(data, DISC + 64),
        fee_bps=_u16(data, DISC + 96),
        ticket_unit=_u64(data, DISC + 98),
        round_duration_sec=_u32(data, DISC + 106),
        min_participants=_u16(data, DISC + 110),
        min_total_tickets=_u64(data, DISC + 112),
        paused=_u8(data, DISC + 120) != 0,
        bump=_u8(data, DISC + 121),
        max_deposit_per_user=_u64(data, DISC + 122),
    )
