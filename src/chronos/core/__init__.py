"""Chronos Core -- 基于事件日志的时间账本引擎"""

from .aggregate import aggregate, format_duration, sessions_for_day, week_stats
from .exceptions import LedgerError, MutationRejected, PersistenceError
from .ids import IdAllocator
from .ledger import Ledger
from .replay import replay

__all__ = [
    "Ledger",
    "IdAllocator",
    "replay",
    "aggregate",
    "week_stats",
    "sessions_for_day",
    "format_duration",
    "LedgerError",
    "MutationRejected",
    "PersistenceError",
]
