"""
Jackpot Crank - Mock collaborators for development and tests.
"""

from .archive import InMemoryArchive
from .ledger import InMemoryLedger

__all__ = ["InMemoryArchive", "InMemoryLedger"]
