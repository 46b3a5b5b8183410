"""Tests for the SQLite store in digest_anki/store/sqlite.py."""

import sqlite3
import threading
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from conftest import make_card
from digest_anki.models import DigestEntry
from digest_anki.store import SQLiteStore, open_store


class TestFileLedger:
    """Tests for fingerprint bookkeeping."""

    def test_lookup_missing(self, store):
        """Unknown paths return None."""
        assert store.lookup("/nope.txt") is None

    def test_upsert_then_lookup(self, store):
        """A stored fingerprint can be read back."""
        store.upsert_fingerprint("/d/a.txt", "abc")
        record = store.lookup("/d/a.txt")
        assert record.fingerprint == "abc"
        assert not record.has_changed("abc")
        assert record.has_changed("def")

    def test_repeated_upsert_replaces(self, store):
        """Upserting the same path many times never conflicts and keeps one row."""
        for i in range(5):
            store.upsert_fingerprint("/d/a.txt", f"hash-{i}")
        assert store.lookup("/d/a.txt").fingerprint == "hash-4"
        assert len(store.list_files()) == 1

    def test_clear_files(self, store):
        """clear_files forgets every tracked path."""
        store.upsert_fingerprint("/d/a.txt", "1")
        store.upsert_fingerprint("/d/b.txt", "2")
        assert store.clear_files() == 2
        assert store.list_files() == []


class TestEntryStore:
    """Tests for the deduplicated vocabulary ledger."""

    def test_insert_if_absent(self, store):
        """Second insert of the same word is a silent no-op."""
        assert store.insert_if_absent(DigestEntry.create("swoon", "Book.epub", "a.txt"))
        assert not store.insert_if_absent(DigestEntry.create("swoon", "Book.epub", "a.txt"))
        assert store.entry_exists("swoon")

    def test_first_book_wins(self, store):
        """The word alone is the key: a later book for the same word is dropped."""
        store.insert_if_absent(DigestEntry.create("swoon", "First.epub", "a.txt"))
        inserted = store.insert_many_if_absent(
            [DigestEntry.create("swoon", "Second.epub", "b.txt")]
        )
        assert inserted == 0
        assert store.find_by_word("swoon").book_filename == "First.epub"

    def test_insert_many_counts_new_rows(self, store, sample_entries):
        """Batch insert returns only newly inserted rows, skipping duplicates."""
        assert store.insert_many_if_absent(sample_entries) == 3
        assert store.insert_many_if_absent(sample_entries) == 0
        extra = sample_entries + [DigestEntry.create("swoon", "Book.epub", "c.txt")]
        assert store.insert_many_if_absent(extra) == 0

    def test_insert_many_rolls_back_on_error(self, store):
        """A storage error other than a duplicate leaves none of the batch behind."""
        batch = [
            DigestEntry.create("swoon", "Book.epub", "a.txt"),
            DigestEntry(None, "Book.epub", "a.txt"),  # violates NOT NULL
        ]
        with pytest.raises(sqlite3.IntegrityError):
            store.insert_many_if_absent(batch)
        assert store.find_all_entries() == []

    def test_queries(self, store, sample_entries):
        """find_by_book, find_by_word and delete_by_word."""
        store.insert_many_if_absent(sample_entries)
        assert [e.word for e in store.find_by_book("Book.epub")] == ["swoon", "gloaming"]
        assert store.find_by_word("petrichor").book_filename == "Other Book.epub"
        assert store.find_by_word("missing") is None
        assert store.delete_by_word("swoon")
        assert not store.delete_by_word("swoon")
        assert not store.entry_exists("swoon")

    def test_find_all_newest_first(self, store):
        """find_all_entries returns the newest entries first."""
        base = datetime(2024, 1, 1)
        store.insert_if_absent(DigestEntry("old", "B", "a.txt", base))
        store.insert_if_absent(DigestEntry("new", "B", "a.txt", base + timedelta(days=1)))
        assert [e.word for e in store.find_all_entries()] == ["new", "old"]


class TestCardStore:
    """Tests for enriched card persistence."""

    def test_insert_card_if_absent(self, store):
        """An existing (word, source) card is never overwritten by insert."""
        assert store.insert_card_if_absent(make_card("swoon", canonical_answer="faint"))
        assert not store.insert_card_if_absent(make_card("swoon", canonical_answer="other"))
        assert store.find_card("swoon", "Book.epub").canonical_answer == "faint"

    def test_same_word_different_sources(self, store):
        """Card identity is the (word, source) pair."""
        store.insert_cards_if_absent([make_card("swoon", "A.epub"), make_card("swoon", "B.epub")])
        assert store.card_exists("swoon", "A.epub")
        assert store.card_exists("swoon", "B.epub")
        assert not store.card_exists("swoon", "C.epub")
        assert store.list_card_sources() == ["A.epub", "B.epub"]

    def test_insert_cards_counts(self, store):
        """Batch insert counts only new cards."""
        assert store.insert_cards_if_absent([make_card("a"), make_card("b")]) == 2
        assert store.insert_cards_if_absent([make_card("b"), make_card("c")]) == 1

    def test_upsert_replaces_content(self, store):
        """Upsert replaces content and updated_at while keeping created_at."""
        created = datetime(2024, 1, 1, 12, 0)
        original = replace(make_card("swoon"), created_at=created, updated_at=created)
        store.insert_card_if_absent(original)

        later = created + timedelta(hours=1)
        replacement = make_card(
            "swoon",
            canonical_answer="to faint",
            canonical_answer_alt="to swoon",
            part_of_speech="noun",
        )
        replacement = replace(replacement, created_at=later, updated_at=later)
        store.upsert_card(replacement)

        card = store.find_card("swoon", "Book.epub")
        assert card.canonical_answer == "to faint"
        assert card.canonical_answer_alt == "to swoon"
        assert card.part_of_speech == "noun"
        assert card.created_at == created
        assert card.updated_at == later

    def test_optional_alt_round_trips_as_none(self, store):
        """A missing alternate answer is stored and read back as None."""
        store.insert_card_if_absent(make_card("swoon"))
        assert store.find_card("swoon", "Book.epub").canonical_answer_alt is None


class TestLifecycle:
    """Tests for open_store, backup and thread sharing."""

    def test_open_store_persists(self, tmp_path):
        """Data written through open_store survives reopening."""
        db = tmp_path / "nested" / "digest.db"
        with open_store(db) as s:
            s.insert_if_absent(DigestEntry.create("swoon", "Book.epub", "a.txt"))
        with open_store(db) as s:
            assert s.entry_exists("swoon")

    def test_backup(self, tmp_path):
        """backup writes a readable snapshot."""
        with open_store(tmp_path / "digest.db") as s:
            s.insert_if_absent(DigestEntry.create("swoon", "Book.epub", "a.txt"))
            dest = s.backup(tmp_path / "backups" / "copy.db")
        with open_store(dest) as copy:
            assert copy.entry_exists("swoon")

    def test_shared_across_threads(self, tmp_path):
        """Concurrent batch writes from several threads all land."""
        with open_store(tmp_path / "digest.db") as s:

            def write(prefix):
                s.insert_cards_if_absent(make_card(f"{prefix}-{i}", prefix) for i in range(20))

            threads = [threading.Thread(target=write, args=(f"src{n}",)) for n in range(4)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            assert sorted(s.list_card_sources()) == ["src0", "src1", "src2", "src3"]
            assert all(len(s.find_cards_by_source(f"src{n}")) == 20 for n in range(4))

    def test_in_memory_default(self):
        """The default store lives in memory."""
        s = SQLiteStore()
        try:
            assert s.db_path == ":memory:"
            assert s.find_all_entries() == []
        finally:
            s.close()
