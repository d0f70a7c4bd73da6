"""
Jackpot Crank - Solana Gateway Tests

Error-code mapping, instruction encoding and batched reads against a
fake RPC client. No network.
"""

import hashlib
import struct
from types import SimpleNamespace

import pytest
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from jackpot_crank.bridges.ledger import (
    CloseParticipant,
    CloseRound,
    LedgerError,
    LedgerErrorCode,
    LockRound,
    LookupKind,
    RequestRandomness,
    StartRound,
)
from jackpot_crank.bridges.solana_gateway import (
    SolanaLedgerGateway,
    classify_program_error,
    instruction_discriminator,
)
from jackpot_crank.models.round import RoundStatus
from jackpot_crank.services.decoder import DISC, ROUND_DISCRIMINATOR


class FakeRpc:
    """Just enough of AsyncClient for the gateway."""

    def __init__(self, accounts=None, send_error=None, confirm_err=None):
        self.accounts = accounts or {}
        self.batch_sizes = []
        self.sent = []
        self.send_error = send_error
        self.confirm_err = confirm_err
        self.balance = 2_500_000

    async def get_multiple_accounts(self, keys, commitment=None):
        self.batch_sizes.append(len(keys))
        return SimpleNamespace(value=[self.accounts.get(k) for k in keys])

    async def get_balance(self, pubkey, commitment=None):
        return SimpleNamespace(value=self.balance)

    async def get_latest_blockhash(self, commitment=None):
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.default()))

    async def send_raw_transaction(self, raw, opts=None):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((raw, opts))
        return SimpleNamespace(value=Signature.default())

    async def confirm_transaction(self, signature, commitment=None):
        return SimpleNamespace(value=[SimpleNamespace(err=self.confirm_err)])

    async def close(self):
        pass


def round_account(round_id: int, status: RoundStatus) -> SimpleNamespace:
    buf = bytearray(DISC + 168)
    buf[:DISC] = ROUND_DISCRIMINATOR
    struct.pack_into("<Q", buf, DISC, round_id)
    buf[DISC + 8] = int(status)
    return SimpleNamespace(data=bytes(buf))


@pytest.fixture
def payer():
    return Keypair()


def make_gateway(settings, payer, rpc):
    return SolanaLedgerGateway(settings, payer, client=rpc)


class TestClassifyProgramError:
    """Program error surface -> LedgerErrorCode."""

    @pytest.mark.parametrize("text,expected", [
        ('Status: ({"err":{"InstructionError":[2,{"Custom":6010}]}})', LedgerErrorCode.INSUFFICIENT_STAKE),
        ('Status: ({"err":{"InstructionError":[2,{"Custom":6009}]}})', LedgerErrorCode.INSUFFICIENT_PARTICIPANTS),
        ("InstructionError(2, Custom(6003))", LedgerErrorCode.ALREADY_LOCKED),
        ("InstructionError(0, Custom(6011))", LedgerErrorCode.NOT_EXPIRED),
        ("InstructionError(0, Custom(6032))", LedgerErrorCode.PARTICIPANT_NOT_EMPTY),
        ("InstructionError(0, Custom(3012))", LedgerErrorCode.ALREADY_CLOSED),
    ])
    def test_custom_numbers(self, text, expected):
        code, number = classify_program_error(text)
        assert code == expected
        assert number is not None

    def test_anchor_error_names(self):
        code, _ = classify_program_error("AnchorError occurred. Error Code: NotEnoughTickets. Error Number: 6010.")
        assert code == LedgerErrorCode.INSUFFICIENT_STAKE

    def test_account_already_in_use(self):
        code, _ = classify_program_error("Allocate: account Address { ... } already in use")
        assert code == LedgerErrorCode.ALREADY_EXISTS

    def test_unrelated_failure(self):
        assert classify_program_error("insufficient funds for fee") == (LedgerErrorCode.UNKNOWN, None)

    def test_unknown_custom_number_kept(self):
        assert classify_program_error("Custom(6999)") == (LedgerErrorCode.UNKNOWN, 6999)


class TestInstructionEncoding:
    """Anchor instruction data: tag + u64 round id."""

    def test_discriminator(self):
        expected = hashlib.sha256(b"global:lock_round").digest()[:8]
        assert instruction_discriminator("lock_round") == expected

    def test_round_id_argument(self, settings, payer):
        gateway = make_gateway(settings, payer, FakeRpc())
        ix = gateway.build_instruction(LockRound(round_id=77))
        assert bytes(ix.data) == instruction_discriminator("lock_round") + struct.pack("<Q", 77)
        assert ix.program_id == gateway.program_id
        assert ix.accounts[2].pubkey == gateway.round_pda(77)

    def test_close_round_defaults_recipient_to_payer(self, settings, payer):
        gateway = make_gateway(settings, payer, FakeRpc())
        ix = gateway.build_instruction(CloseRound(round_id=5))
        assert ix.accounts[1].pubkey == payer.pubkey()

    def test_close_participant_targets_participant_pda(self, settings, payer):
        gateway = make_gateway(settings, payer, FakeRpc())
        user = Pubkey.new_unique()
        ix = gateway.build_instruction(CloseParticipant(round_id=5, user=str(user)))
        assert ix.accounts[3].pubkey == gateway.participant_pda(gateway.round_pda(5), user)

    def test_round_pda_is_deterministic(self, settings, payer):
        gateway = make_gateway(settings, payer, FakeRpc())
        assert gateway.round_pda(1) == gateway.round_pda(1)
        assert gateway.round_pda(1) != gateway.round_pda(2)


class TestBatchedReads:
    """getMultipleAccounts chunking and lookup kinds."""

    @pytest.mark.asyncio
    async def test_reads_are_chunked_at_100(self, settings, payer):
        rpc = FakeRpc()
        gateway = make_gateway(settings, payer, rpc)
        lookups = await gateway.get_rounds_batch(list(range(1, 151)))
        assert rpc.batch_sizes == [100, 50]
        assert all(l.kind == LookupKind.MISSING for l in lookups)

    @pytest.mark.asyncio
    async def test_present_and_invalid(self, settings, payer):
        rpc = FakeRpc()
        gateway = make_gateway(settings, payer, rpc)
        rpc.accounts[gateway.round_pda(3)] = round_account(3, RoundStatus.CLAIMED)
        rpc.accounts[gateway.round_pda(4)] = SimpleNamespace(data=b"\x00" * 12)

        lookups = await gateway.get_rounds_batch([3, 4, 5])

        assert [l.kind for l in lookups] == [LookupKind.PRESENT, LookupKind.INVALID, LookupKind.MISSING]
        assert lookups[0].round.status == RoundStatus.CLAIMED


class TestSubmit:
    """Signed submission and error mapping."""

    @pytest.mark.asyncio
    async def test_success_returns_signature(self, settings, payer):
        rpc = FakeRpc()
        gateway = make_gateway(settings, payer, rpc)
        sig = await gateway.submit([StartRound(round_id=9)])
        assert sig == str(Signature.default())
        assert rpc.sent[0][1].skip_preflight is False

    @pytest.mark.asyncio
    async def test_closes_skip_preflight(self, settings, payer):
        rpc = FakeRpc()
        gateway = make_gateway(settings, payer, rpc)
        await gateway.submit([CloseRound(round_id=9)])
        assert rpc.sent[0][1].skip_preflight is True

    @pytest.mark.asyncio
    async def test_preflight_rejection_is_typed(self, settings, payer):
        rpc = FakeRpc(send_error=RPCException('{"InstructionError":[3,{"Custom":6009}]}'))
        gateway = make_gateway(settings, payer, rpc)
        with pytest.raises(LedgerError) as exc:
            await gateway.submit([LockRound(round_id=9), RequestRandomness(round_id=9)])
        assert exc.value.code == LedgerErrorCode.INSUFFICIENT_PARTICIPANTS
        assert exc.value.is_min_requirements
        assert exc.value.program_code == 6009

    @pytest.mark.asyncio
    async def test_on_chain_failure_is_typed(self, settings, payer):
        rpc = FakeRpc(confirm_err="InstructionError(2, Custom(6025))")
        gateway = make_gateway(settings, payer, rpc)
        with pytest.raises(LedgerError) as exc:
            await gateway.submit([CloseRound(round_id=9)])
        assert exc.value.code == LedgerErrorCode.NOT_CLOSEABLE


class TestServiceBalance:
    """Operator wallet balance read."""

    @pytest.mark.asyncio
    async def test_returns_lamports(self, settings, payer):
        gateway = make_gateway(settings, payer, FakeRpc())
        assert await gateway.get_service_balance() == 2_500_000
