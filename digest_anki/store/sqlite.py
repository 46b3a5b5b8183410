"""
SQLite-backed store for files, digest entries and enriched cards.

One `SQLiteStore` handle is opened by the top-level process and shared with
every component. The connection is used from the enrichment worker threads
too, so every operation runs under one re-entrant lock and each batch write is
a single transaction.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

from digest_anki.models import DigestEntry, EnrichedCard, FileRecord
from digest_anki.store.base import Store

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS files (
    path TEXT PRIMARY KEY,
    hash TEXT NOT NULL,
    last_seen INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS digest_entries (
    word TEXT NOT NULL UNIQUE,
    book_filename TEXT NOT NULL,
    source_file TEXT NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_digest_entries_book ON digest_entries(book_filename);

CREATE TABLE IF NOT EXISTS enriched_cards (
    word TEXT NOT NULL,
    source_title TEXT NOT NULL,
    canonical_answer TEXT NOT NULL,
    canonical_answer_alt TEXT,
    part_of_speech TEXT NOT NULL,
    definition TEXT NOT NULL,
    example_sentence TEXT NOT NULL,
    hint TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    UNIQUE(word, source_title)
);
"""

_ENTRY_COLUMNS = "word, book_filename, source_file, created_at"
_CARD_COLUMNS = (
    "word, source_title, canonical_answer, canonical_answer_alt, part_of_speech, "
    "definition, example_sentence, hint, created_at, updated_at"
)

_INSERT_ENTRY_SQL = (
    f"INSERT INTO digest_entries ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?) "
    "ON CONFLICT(word) DO NOTHING"
)
_INSERT_CARD_SQL = (
    f"INSERT INTO enriched_cards ({_CARD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT(word, source_title) DO NOTHING"
)
_UPSERT_CARD_SQL = (
    f"INSERT INTO enriched_cards ({_CARD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
    """ON CONFLICT(word, source_title) DO UPDATE SET
        canonical_answer = excluded.canonical_answer,
        canonical_answer_alt = excluded.canonical_answer_alt,
        part_of_speech = excluded.part_of_speech,
        definition = excluded.definition,
        example_sentence = excluded.example_sentence,
        hint = excluded.hint,
        updated_at = excluded.updated_at"""
)


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000)


def _entry_params(entry: DigestEntry) -> tuple:
    return (entry.word, entry.book_filename, entry.source_file, _to_millis(entry.created_at))


def _card_params(card: EnrichedCard) -> tuple:
    return (
        card.word,
        card.source_title,
        card.canonical_answer,
        card.canonical_answer_alt,
        card.part_of_speech,
        card.definition,
        card.example_sentence,
        card.hint,
        _to_millis(card.created_at),
        _to_millis(card.updated_at),
    )


def _row_to_entry(row: sqlite3.Row) -> DigestEntry:
    return DigestEntry(
        word=row["word"],
        book_filename=row["book_filename"],
        source_file=row["source_file"],
        created_at=_from_millis(row["created_at"]),
    )


def _row_to_card(row: sqlite3.Row) -> EnrichedCard:
    return EnrichedCard(
        word=row["word"],
        source_title=row["source_title"],
        canonical_answer=row["canonical_answer"],
        canonical_answer_alt=row["canonical_answer_alt"],
        part_of_speech=row["part_of_speech"],
        definition=row["definition"],
        example_sentence=row["example_sentence"],
        hint=row["hint"],
        created_at=_from_millis(row["created_at"]),
        updated_at=_from_millis(row["updated_at"]),
    )


class SQLiteStore(Store):
    """Concrete store over a single SQLite connection."""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=FULL")
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()
        logger.debug("Opened store at %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # File ledger
    # ------------------------------------------------------------------

    def upsert_fingerprint(self, path: str, fingerprint: str) -> FileRecord:
        record = FileRecord(path=path, fingerprint=fingerprint, last_seen=datetime.now())
        with self._lock, self._conn:
            self._conn.execute(
                """INSERT INTO files (path, hash, last_seen) VALUES (?, ?, ?)
                   ON CONFLICT(path) DO UPDATE SET
                       hash = excluded.hash,
                       last_seen = excluded.last_seen""",
                (record.path, record.fingerprint, _to_millis(record.last_seen)),
            )
        return record

    def lookup(self, path: str) -> Optional[FileRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT path, hash, last_seen FROM files WHERE path = ?", (path,)
            ).fetchone()
        if row is None:
            return None
        return FileRecord(
            path=row["path"],
            fingerprint=row["hash"],
            last_seen=_from_millis(row["last_seen"]),
        )

    def list_files(self) -> List[FileRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT path, hash, last_seen FROM files ORDER BY path"
            ).fetchall()
        return [
            FileRecord(path=r["path"], fingerprint=r["hash"], last_seen=_from_millis(r["last_seen"]))
            for r in rows
        ]

    def clear_files(self) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM files")
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Digest entries
    # ------------------------------------------------------------------

    def insert_if_absent(self, entry: DigestEntry) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute(_INSERT_ENTRY_SQL, _entry_params(entry))
        return cursor.rowcount > 0

    def insert_many_if_absent(self, entries: Iterable[DigestEntry]) -> int:
        inserted = 0
        with self._lock, self._conn:
            for entry in entries:
                cursor = self._conn.execute(_INSERT_ENTRY_SQL, _entry_params(entry))
                inserted += cursor.rowcount
        return inserted

    def find_all_entries(self) -> List[DigestEntry]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM digest_entries ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def find_by_book(self, book_filename: str) -> List[DigestEntry]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM digest_entries WHERE book_filename = ? ORDER BY rowid",
                (book_filename,),
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def find_by_word(self, word: str) -> Optional[DigestEntry]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM digest_entries WHERE word = ?", (word,)
            ).fetchone()
        return _row_to_entry(row) if row is not None else None

    def entry_exists(self, word: str) -> bool:
        return self.find_by_word(word) is not None

    def delete_by_word(self, word: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM digest_entries WHERE word = ?", (word,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Enriched cards
    # ------------------------------------------------------------------

    def insert_card_if_absent(self, card: EnrichedCard) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute(_INSERT_CARD_SQL, _card_params(card))
        return cursor.rowcount > 0

    def insert_cards_if_absent(self, cards: Iterable[EnrichedCard]) -> int:
        inserted = 0
        with self._lock, self._conn:
            for card in cards:
                cursor = self._conn.execute(_INSERT_CARD_SQL, _card_params(card))
                inserted += cursor.rowcount
        return inserted

    def upsert_card(self, card: EnrichedCard) -> None:
        with self._lock, self._conn:
            self._conn.execute(_UPSERT_CARD_SQL, _card_params(card))

    def find_card(self, word: str, source_title: str) -> Optional[EnrichedCard]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM enriched_cards WHERE word = ? AND source_title = ?",
                (word, source_title),
            ).fetchone()
        return _row_to_card(row) if row is not None else None

    def card_exists(self, word: str, source_title: str) -> bool:
        return self.find_card(word, source_title) is not None

    def find_cards_by_source(self, source_title: str) -> List[EnrichedCard]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM enriched_cards WHERE source_title = ? "
                "ORDER BY updated_at DESC, rowid",
                (source_title,),
            ).fetchall()
        return [_row_to_card(r) for r in rows]

    def list_card_sources(self) -> List[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT source_title FROM enriched_cards ORDER BY source_title"
            ).fetchall()
        return [r["source_title"] for r in rows if r["source_title"]]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def backup(self, dest_path: Path) -> Path:
        """Write a consistent snapshot of the database to `dest_path`."""
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        target = sqlite3.connect(str(dest_path))
        try:
            with self._lock:
                self._conn.backup(target)
        finally:
            target.close()
        logger.info("Backed up %s to %s", self.db_path, dest_path)
        return dest_path


@contextmanager
def open_store(db_path: Union[str, Path]) -> Iterator[SQLiteStore]:
    """Open the shared store for the lifetime of a process run."""
    store = SQLiteStore(db_path)
    try:
        yield store
    finally:
        store.close()


__all__ = ["SQLiteStore", "open_store"]
