"""
Jackpot Crank - Account Decoder Tests

Buffers are built by hand at the program's field offsets.
"""

import struct

import pytest
from solders.pubkey import Pubkey

from jackpot_crank.models.round import RoundStatus
from jackpot_crank.services.decoder import (
    CONFIG_ACCOUNT_MIN,
    CONFIG_DISCRIMINATOR,
    DISC,
    PARTICIPANT_ACCOUNT_MIN,
    PARTICIPANT_DISCRIMINATOR,
    ROUND_ACCOUNT_SIZE,
    ROUND_DISCRIMINATOR,
    AccountDecodeError,
    account_discriminator,
    decode_config,
    decode_participant,
    decode_round,
)


def build_round(
    round_id=42,
    status=RoundStatus.SETTLED,
    participants=(),
    winner=None,
    vrf_payer=None,
    vrf_reimbursed=False,
    size=ROUND_ACCOUNT_SIZE,
) -> bytes:
    buf = bytearray(size)
    buf[:DISC] = ROUND_DISCRIMINATOR
    struct.pack_into("<Q", buf, DISC + 0, round_id)
    buf[DISC + 8] = int(status)
    buf[DISC + 9] = 254
    struct.pack_into("<qqq", buf, DISC + 16, 1_000, 1_060, 1_001)
    struct.pack_into("<QQ", buf, DISC + 72, 25_000_000, 2_500)
    struct.pack_into("<H", buf, DISC + 88, len(participants))
    buf[DISC + 96:DISC + 128] = bytes(range(32))
    struct.pack_into("<Q", buf, DISC + 128, 1_234)
    if winner is not None:
        buf[DISC + 136:DISC + 168] = bytes(winner)
    for i, p in enumerate(participants):
        off = DISC + 168 + i * 32
        buf[off:off + 32] = bytes(p)
    if size >= ROUND_ACCOUNT_SIZE:
        if vrf_payer is not None:
            buf[DISC + 8176:DISC + 8208] = bytes(vrf_payer)
        buf[DISC + 8208] = 1 if vrf_reimbursed else 0
    return bytes(buf)


class TestDiscriminators:
    """Anchor account tags."""

    def test_tag_is_eight_bytes_of_sha256(self):
        tag = account_discriminator("Round")
        assert len(tag) == 8
        assert tag == ROUND_DISCRIMINATOR
        assert tag != PARTICIPANT_DISCRIMINATOR


class TestDecodeRound:
    """Round account layout."""

    def test_full_round(self):
        users = [Pubkey.new_unique(), Pubkey.new_unique()]
        winner = users[1]
        payer = Pubkey.new_unique()
        rd = decode_round(build_round(participants=users, winner=winner, vrf_payer=payer, vrf_reimbursed=True))

        assert rd.round_id == 42
        assert rd.status == RoundStatus.SETTLED
        assert rd.bump == 254
        assert (rd.start_ts, rd.end_ts, rd.first_deposit_ts) == (1_000, 1_060, 1_001)
        assert rd.total_usdc == 25_000_000
        assert rd.total_tickets == 2_500
        assert rd.participants_count == 2
        assert rd.participants == [str(u) for u in users]
        assert rd.randomness == bytes(range(32))
        assert rd.winning_ticket == 1_234
        assert rd.winner == str(winner)
        assert rd.vrf_payer == str(payer)
        assert rd.vrf_reimbursed is True

    def test_zero_winner_is_absent(self):
        rd = decode_round(build_round(status=RoundStatus.OPEN))
        assert rd.winner is None
        assert rd.vault_usdc_ata is None

    def test_short_account_without_vrf_tail(self):
        users = [Pubkey.new_unique()]
        rd = decode_round(build_round(participants=users, size=DISC + 168 + 32))
        assert rd.participants == [str(users[0])]
        assert rd.vrf_payer is None
        assert rd.vrf_reimbursed is False

    def test_unknown_status_rejected(self):
        data = bytearray(build_round())
        data[DISC + 8] = 9
        with pytest.raises(AccountDecodeError):
            decode_round(bytes(data))

    def test_participant_count_over_capacity_rejected(self):
        data = bytearray(build_round())
        struct.pack_into("<H", data, DISC + 88, 201)
        with pytest.raises(AccountDecodeError):
            decode_round(bytes(data))

    def test_truncated_buffer_rejected(self):
        with pytest.raises(AccountDecodeError):
            decode_round(build_round()[:100])

    def test_wrong_discriminator_rejected(self):
        data = bytearray(build_round())
        data[:DISC] = bytes(DISC)
        with pytest.raises(AccountDecodeError):
            decode_round(bytes(data))
        assert decode_round(bytes(data), verify_discriminator=False).round_id == 42


class TestDecodeParticipant:
    """Participant account layout."""

    def test_fields(self):
        round_key, user = Pubkey.new_unique(), Pubkey.new_unique()
        buf = bytearray(PARTICIPANT_ACCOUNT_MIN)
        buf[:DISC] = PARTICIPANT_DISCRIMINATOR
        buf[DISC:DISC + 32] = bytes(round_key)
        buf[DISC + 32:DISC + 64] = bytes(user)
        struct.pack_into("<HB", buf, DISC + 64, 3, 250)
        struct.pack_into("<QQI", buf, DISC + 67, 150, 1_500_000, 2)

        p = decode_participant(bytes(buf))

        assert p.round == str(round_key)
        assert p.user == str(user)
        assert (p.index, p.bump) == (3, 250)
        assert (p.tickets_total, p.usdc_total, p.deposits_count) == (150, 1_500_000, 2)
        assert p.has_refundable_balance()

    def test_short_rejected(self):
        with pytest.raises(AccountDecodeError):
            decode_participant(PARTICIPANT_DISCRIMINATOR + bytes(10))


class TestDecodeConfig:
    """Config account layout."""

    def test_fields(self):
        admin, mint, treasury = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()
        buf = bytearray(CONFIG_ACCOUNT_MIN)
        buf[:DISC] = CONFIG_DISCRIMINATOR
        buf[DISC:DISC + 32] = bytes(admin)
        buf[DISC + 32:DISC + 64] = bytes(mint)
        buf[DISC + 64:DISC + 96] = bytes(treasury)
        struct.pack_into("<HQIHQ", buf, DISC + 96, 250, 10_000, 120, 2, 200)
        buf[DISC + 120] = 1
        buf[DISC + 121] = 253
        struct.pack_into("<Q", buf, DISC + 122, 5_000_000_000)

        cfg = decode_config(bytes(buf))

        assert cfg.admin == str(admin)
        assert cfg.usdc_mint == str(mint)
        assert cfg.treasury_usdc_ata == str(treasury)
        assert cfg.fee_bps == 250
        assert cfg.ticket_unit == 10_000
        assert cfg.round_duration_sec == 120
        assert cfg.min_participants == 2
        assert cfg.min_total_tickets == 200
        assert cfg.paused is True
        assert cfg.bump == 253
        assert cfg.max_deposit_per_user == 5_000_000_000
