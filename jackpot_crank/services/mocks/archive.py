"""
Jackpot Crank - In-Memory Archive

This is a MOCK implementation.
In production, records go to Firebase via FirebaseArchiveClient.
"""

from typing import Optional

from jackpot_crank.bridges.archive import ArchiveClient, ArchiveRecord


class InMemoryArchive(ArchiveClient):
    """Mock archive. Write-once per round id, like the production rules."""

    def __init__(self, fail_puts: int = 0, max_id_hint: Optional[int] = None):
        self.records: dict[int, ArchiveRecord] = {}
        self.put_calls: list[int] = []
        self.fail_puts = fail_puts
        self.max_id_hint = max_id_hint

    async def put(self, round_id: int, record: ArchiveRecord) -> bool:
        self.put_calls.append(round_id)
        if self.fail_puts > 0:
            self.fail_puts -= 1
            return False
        self.records.setdefault(round_id, record)
        return True

    async def max_known_id(self) -> Optional[int]:
        if self.max_id_hint is not None:
            return self.max_id_hint
        return max(self.records) if self.records else None

    def reset(self) -> None:
        self.records.clear()
        self.put_calls.clear()
