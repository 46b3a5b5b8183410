"""
Storage layer: abstract contracts plus the SQLite implementation.

Usage:
    from digest_anki.store import open_store

    with open_store("data/app.db") as store:
        store.upsert_fingerprint(path, fingerprint)
"""

from __future__ import annotations

from .base import CardStore, EntryStore, FileLedger, Store
from .sqlite import SQLiteStore, open_store

__all__ = [
    "FileLedger",
    "EntryStore",
    "CardStore",
    "Store",
    "SQLiteStore",
    "open_store",
]
