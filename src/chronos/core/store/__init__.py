"""Chronos Core Store -- 内存存储与 Ledger 文件编解码"""

from .entity_store import UNSET, EntityStore
from .event_log import EventLog
from .ledger_file import (
    EVENTS_MARKER,
    LedgerDocument,
    dump_ledger,
    file_fingerprint,
    load_ledger_file,
    parse_ledger,
    save_ledger_file,
)

__all__ = [
    "EntityStore",
    "EventLog",
    "UNSET",
    "EVENTS_MARKER",
    "LedgerDocument",
    "parse_ledger",
    "dump_ledger",
    "load_ledger_file",
    "save_ledger_file",
    "file_fingerprint",
]
