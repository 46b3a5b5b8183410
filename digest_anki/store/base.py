"""
Abstract store contracts.

The pipeline talks to storage only through these base classes, so tests and
alternative backends can swap the concrete store. Upsert is part of the base
contract; callers never probe for optional methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional

from digest_anki.models import DigestEntry, EnrichedCard, FileRecord


class FileLedger(ABC):
    """Last-seen content fingerprint per watched path."""

    @abstractmethod
    def upsert_fingerprint(self, path: str, fingerprint: str) -> FileRecord:
        """Insert or replace the fingerprint for `path`.

        Must never fail on a uniqueness conflict, however often it is called
        for the same path.
        """
        ...

    @abstractmethod
    def lookup(self, path: str) -> Optional[FileRecord]:
        ...

    @abstractmethod
    def list_files(self) -> List[FileRecord]:
        ...

    @abstractmethod
    def clear_files(self) -> int:
        """Forget every tracked file. Returns the number of rows removed."""
        ...


class EntryStore(ABC):
    """Deduplicated vocabulary entries keyed by word."""

    @abstractmethod
    def insert_if_absent(self, entry: DigestEntry) -> bool:
        """Insert `entry` unless its word exists. False on duplicates."""
        ...

    @abstractmethod
    def insert_many_if_absent(self, entries: Iterable[DigestEntry]) -> int:
        """Insert a batch as one unit; duplicate words are skipped.

        Any other storage failure rolls back the entire batch.
        """
        ...

    @abstractmethod
    def find_all_entries(self) -> List[DigestEntry]:
        ...

    @abstractmethod
    def find_by_book(self, book_filename: str) -> List[DigestEntry]:
        ...

    @abstractmethod
    def find_by_word(self, word: str) -> Optional[DigestEntry]:
        ...

    @abstractmethod
    def entry_exists(self, word: str) -> bool:
        ...

    @abstractmethod
    def delete_by_word(self, word: str) -> bool:
        ...


class CardStore(ABC):
    """Enriched cards keyed by (word, source_title)."""

    @abstractmethod
    def insert_card_if_absent(self, card: EnrichedCard) -> bool:
        ...

    @abstractmethod
    def insert_cards_if_absent(self, cards: Iterable[EnrichedCard]) -> int:
        """Insert a batch as one unit, never overwriting an existing pair."""
        ...

    @abstractmethod
    def upsert_card(self, card: EnrichedCard) -> None:
        """Insert, or replace every content field plus `updated_at`."""
        ...

    @abstractmethod
    def card_exists(self, word: str, source_title: str) -> bool:
        ...

    @abstractmethod
    def find_card(self, word: str, source_title: str) -> Optional[EnrichedCard]:
        ...

    @abstractmethod
    def find_cards_by_source(self, source_title: str) -> List[EnrichedCard]:
        ...

    @abstractmethod
    def list_card_sources(self) -> List[str]:
        ...


class Store(FileLedger, EntryStore, CardStore):
    """Everything the pipeline needs from one shared storage handle."""

    @abstractmethod
    def backup(self, dest_path: Path) -> Path:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


__all__ = ["FileLedger", "EntryStore", "CardStore", "Store"]
