"""
Sync subsystem: the transfer engine and the history ledger it consults.
"""

from ferry.sync.engine import RunSummary, TransferEngine
from ferry.sync.ledger import HistoryLedger, TaskHistory

__all__ = [
    "HistoryLedger",
    "RunSummary",
    "TaskHistory",
    "TransferEngine",
]
