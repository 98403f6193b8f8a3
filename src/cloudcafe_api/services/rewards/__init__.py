"""Stamp-card ledger services."""

from .ledger import LedgerConflictError, LedgerMutation, RewardLedgerService, RewardSnapshot
from .terminal import CustomerNotFoundError, StaffTerminal, TerminalLookup, TerminalResult

__all__ = [
    "CustomerNotFoundError",
    "LedgerConflictError",
    "LedgerMutation",
    "RewardLedgerService",
    "RewardSnapshot",
    "StaffTerminal",
    "TerminalLookup",
    "TerminalResult",
]
