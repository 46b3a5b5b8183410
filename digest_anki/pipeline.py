"""
Per-file-event pipeline.

fingerprint -> ledger lookup (skip when unchanged) -> ledger upsert ->
parse + ingest -> enrich (optional) -> push to Anki (optional).

Events are handled one at a time; each stage finishes before the next one
starts. `process_event` turns a failed stage into a failed event so a
long-running watcher keeps going.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from digest_anki.enrichment import EnrichmentOrchestrator, EnrichmentResult
from digest_anki.models import DigestEntry
from digest_anki.parser import parse_digest
from digest_anki.reconcile import DeckReconciler, PushResult
from digest_anki.store.base import Store

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_READ_CHUNK = 1024 * 1024


def fingerprint_file(path: PathLike, algorithm: str = "sha256") -> str:
    """Hex digest of the file's bytes."""
    digest = hashlib.new(algorithm)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass
class IngestResult:
    parsed: int = 0
    inserted: int = 0
    entries: List[DigestEntry] = field(default_factory=list)

    @property
    def duplicates(self) -> int:
        return self.parsed - self.inserted


@dataclass
class EventOutcome:
    path: str
    fingerprint: str
    skipped: bool = False
    ingest: Optional[IngestResult] = None
    enrichment: Optional[EnrichmentResult] = None
    push: Optional[PushResult] = None


class DigestPipeline:
    """Runs the stages for one file event against a shared store."""

    def __init__(
        self,
        store: Store,
        enrichment: Optional[EnrichmentOrchestrator] = None,
        reconciler: Optional[DeckReconciler] = None,
        hash_algorithm: str = "sha256",
    ):
        self.store = store
        self.enrichment = enrichment
        self.reconciler = reconciler
        self.hash_algorithm = hash_algorithm

    def ingest(self, path: PathLike) -> IngestResult:
        """Parse a digest file and add unseen words to the vocabulary ledger."""
        path_str = str(path)
        logger.info("Processing digest file: %s", path_str)
        # Undecodable bytes become U+FFFD rather than failing the whole file
        text = Path(path).read_bytes().decode("utf-8", errors="replace")
        entries = parse_digest(text, path_str)
        logger.info("Found %d digest entries", len(entries))

        inserted = 0
        if entries:
            inserted = self.store.insert_many_if_absent(entries)
            logger.info(
                "Inserted %d new entries (skipped %d duplicates)",
                inserted,
                len(entries) - inserted,
            )
        return IngestResult(parsed=len(entries), inserted=inserted, entries=entries)

    def handle_file_event(self, path: PathLike) -> EventOutcome:
        """Run every configured stage for one file event. Errors propagate."""
        path_str = str(path)
        fingerprint = fingerprint_file(path, self.hash_algorithm)
        outcome = EventOutcome(path=path_str, fingerprint=fingerprint)

        existing = self.store.lookup(path_str)
        if existing is not None and not existing.has_changed(fingerprint):
            logger.info("File unchanged: %s", path_str)
            outcome.skipped = True
            return outcome

        if existing is None:
            logger.info("New file detected: %s", path_str)
        else:
            logger.info("File content changed: %s", path_str)
        self.store.upsert_fingerprint(path_str, fingerprint)

        outcome.ingest = self.ingest(path)
        entries = outcome.ingest.entries

        if self.enrichment is not None and entries:
            outcome.enrichment = self.enrichment.execute_for_entries(entries)

        if self.reconciler is not None and entries:
            sources = list(dict.fromkeys(e.book_filename for e in entries))
            outcome.push = self.reconciler.push_for_sources(sources)

        return outcome

    def process_event(self, path: PathLike) -> Optional[EventOutcome]:
        """Handle one event; a failure is logged and affects only this event."""
        start = time.monotonic()
        try:
            outcome = self.handle_file_event(path)
        except Exception:
            logger.exception("Error processing file %s", path)
            return None
        logger.info("Finished %s in %.2fs", path, time.monotonic() - start)
        return outcome


__all__ = [
    "DigestPipeline",
    "EventOutcome",
    "IngestResult",
    "fingerprint_file",
]
