"""
Jackpot Crank - Active Round Scanner & Startup Recovery Tests
"""

import pytest

from jackpot_crank.bridges.ledger import RoundLookup
from jackpot_crank.models.round import RoundSnapshot, RoundStatus
from jackpot_crank.services.round_scanner import (
    ScanResult,
    find_start_round,
    recover_background_rounds,
    resolve_start_round,
    scan_for_round,
    scan_start_from_hint,
)


def fake_fetch(statuses, invalid=(), calls=None):
    async def fetch(ids):
        if calls is not None:
            calls.append(list(ids))
        out = []
        for rid in ids:
            if rid in invalid:
                out.append(RoundLookup.invalid(rid))
            elif rid in statuses:
                out.append(RoundLookup.present(RoundSnapshot(round_id=rid, status=statuses[rid])))
            else:
                out.append(RoundLookup.missing(rid))
        return out
    return fetch


class TestScanForRound:
    """Frontier discovery across gaps left by closed rounds."""

    @pytest.mark.asyncio
    async def test_picks_latest_active_round(self):
        statuses = {
            80: RoundStatus.CANCELLED,
            81: RoundStatus.CLAIMED,
            82: RoundStatus.CANCELLED,
            83: RoundStatus.OPEN,
        }
        result = await scan_for_round(
            fake_fetch(statuses), scan_start=78, archived_max=82,
            max_scan=20, batch_size=5, null_streak_limit=5,
        )
        assert result.active_round_id == 83
        assert result.joinable_round_id == 83
        assert resolve_start_round(result, 82) == 83

    @pytest.mark.asyncio
    async def test_archive_high_water_mark_wins_without_active_round(self):
        """Archived ids are never reused even when their accounts are gone."""
        statuses = {80: RoundStatus.CANCELLED, 82: RoundStatus.CLAIMED}
        result = await scan_for_round(
            fake_fetch(statuses), scan_start=78, archived_max=84,
            max_scan=20, batch_size=5, null_streak_limit=5,
        )
        assert result.active_round_id is None
        assert result.max_existing == 82
        assert resolve_start_round(result, 84) == 85

    @pytest.mark.asyncio
    async def test_invalid_entries_reset_streak_but_are_not_rounds(self):
        calls = []
        statuses = {2: RoundStatus.CANCELLED, 3: RoundStatus.SETTLED}
        result = await scan_for_round(
            fake_fetch(statuses, invalid={1}, calls=calls), scan_start=1, archived_max=0,
            max_scan=30, batch_size=4, null_streak_limit=3,
        )
        assert resolve_start_round(result, 0) == 3
        assert result.joinable_round_id is None
        assert 1 <= len(calls) <= 2

    @pytest.mark.asyncio
    async def test_gap_shorter_than_limit_is_crossed(self):
        """19 missing after a known round, limit 20: the next round is found."""
        statuses = {1: RoundStatus.CANCELLED, 21: RoundStatus.OPEN}
        result = await scan_for_round(
            fake_fetch(statuses), scan_start=1, batch_size=20, null_streak_limit=20,
        )
        assert result.active_round_id == 21

    @pytest.mark.asyncio
    async def test_gap_equal_to_limit_is_crossed(self):
        """20 missing after a known round, limit 20: the next round is still found."""
        statuses = {1: RoundStatus.CANCELLED, 22: RoundStatus.OPEN}
        result = await scan_for_round(
            fake_fetch(statuses), scan_start=1, batch_size=20, null_streak_limit=20,
        )
        assert result.active_round_id == 22
        assert result.joinable_round_id == 22
        assert result.max_existing == 22

    @pytest.mark.asyncio
    async def test_gap_beyond_limit_ends_scan(self):
        """21 missing after a known round, limit 20: the scan stops before it."""
        statuses = {1: RoundStatus.CANCELLED, 23: RoundStatus.OPEN}
        result = await scan_for_round(
            fake_fetch(statuses), scan_start=1, batch_size=20, null_streak_limit=20,
        )
        assert result.active_round_id is None
        assert result.max_existing == 1

    @pytest.mark.asyncio
    async def test_leading_gap_never_ends_scan(self):
        """20 missing then one present with nothing seen yet: still discovered."""
        statuses = {21: RoundStatus.OPEN}
        result = await scan_for_round(
            fake_fetch(statuses), scan_start=1, batch_size=20, null_streak_limit=20,
        )
        assert result.active_round_id == 21

    @pytest.mark.asyncio
    async def test_empty_ledger_starts_at_one(self):
        result = await scan_for_round(fake_fetch({}), scan_start=1, max_scan=40, batch_size=20)
        assert result == ScanResult()
        assert resolve_start_round(result, None) == 1


class TestScanStart:
    """Archive hint handling."""

    def test_no_hint_starts_at_one(self):
        assert scan_start_from_hint(None) == 1
        assert scan_start_from_hint(0) == 1

    def test_hint_rewinds_two(self):
        assert scan_start_from_hint(50) == 48
        assert scan_start_from_hint(2) == 1

    @pytest.mark.asyncio
    async def test_find_start_round_uses_ledger(self, ledger, settings):
        ledger.add_round(5, RoundStatus.CLAIMED)
        ledger.add_round(6, RoundStatus.OPEN)
        assert await find_start_round(ledger, 5, settings) == 6


class TestStartupRecovery:
    """Rebuilding the cleanup backlog after a restart."""

    @pytest.mark.asyncio
    async def test_tracks_finished_rounds_behind_pointer(self, ledger, cleanup):
        ledger.add_round(7, RoundStatus.SETTLED)
        ledger.add_round(8, RoundStatus.CLAIMED)
        ledger.add_round(9, RoundStatus.CANCELLED)
        ledger.add_round(10, RoundStatus.OPEN)

        summary = await recover_background_rounds(ledger, cleanup, current_round_id=10)

        assert (summary.settled, summary.claimed, summary.cancelled) == (1, 1, 1)
        assert set(cleanup.entries) == {7, 8, 9}
        assert cleanup.observed[10].status == RoundStatus.OPEN

    @pytest.mark.asyncio
    async def test_already_tracked_rounds_are_not_counted(self, ledger, cleanup):
        ledger.add_round(3, RoundStatus.CANCELLED)
        cleanup.track(3)

        summary = await recover_background_rounds(ledger, cleanup, current_round_id=4)

        assert summary.total == 0
        assert list(cleanup.entries) == [3]

    @pytest.mark.asyncio
    async def test_window_bounds_the_scan(self, ledger, cleanup):
        ledger.add_round(10, RoundStatus.CANCELLED)
        ledger.add_round(60, RoundStatus.CANCELLED)

        summary = await recover_background_rounds(ledger, cleanup, current_round_id=70, window=50, batch_size=25)

        assert summary.scan_start == 20
        assert set(cleanup.entries) == {60}

    @pytest.mark.asyncio
    async def test_first_round_has_nothing_to_recover(self, ledger, cleanup):
        summary = await recover_background_rounds(ledger, cleanup, current_round_id=1)
        assert summary.total == 0
