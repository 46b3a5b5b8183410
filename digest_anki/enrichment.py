"""
Enrichment orchestration: find (word, source) pairs without a card, ask the
provider for drafts in batches, and persist what comes back.

Batches that come back truncated are split in half and retried until each
piece fits. Everything committed before a hard failure stays committed.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from digest_anki.llm import chunked
from digest_anki.models import CardDraft, DigestEntry
from digest_anki.provider import EnrichmentProvider, TruncatedOutputError
from digest_anki.store.base import CardStore, EntryStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20
DEFAULT_CONCURRENCY = 2


@dataclass
class EnrichmentResult:
    requested: int = 0
    created: int = 0


@dataclass
class SourcePlan:
    """Missing words for one source, already split into batches."""

    source_title: str
    missing: List[str]
    batches: List[List[str]] = field(default_factory=list)


def group_words_by_source(entries: Iterable[DigestEntry]) -> Dict[str, List[str]]:
    """Unique words per book title, first-seen order preserved."""
    by_source: Dict[str, Dict[str, None]] = {}
    for entry in entries:
        by_source.setdefault(entry.book_filename, {})[entry.word] = None
    return {source: list(words) for source, words in by_source.items()}


def enrich_with_backoff(
    words: Sequence[str],
    enrich: Callable[[Tuple[str, ...]], List[CardDraft]],
) -> List[CardDraft]:
    """Call `enrich` on `words`, halving the batch whenever output is truncated.

    Halves are ceil/floor (3 -> 2 + 1) and the left half runs first. A
    single word that still truncates, or any other error, propagates.
    """
    results: List[CardDraft] = []
    stack: List[Tuple[str, ...]] = [tuple(words)]
    while stack:
        batch = stack.pop()
        if not batch:
            continue
        try:
            results.extend(enrich(batch))
        except TruncatedOutputError:
            if len(batch) <= 1:
                raise
            mid = (len(batch) + 1) // 2
            logger.info(
                "Output truncated for %d word(s); retrying as %d + %d",
                len(batch),
                mid,
                len(batch) - mid,
            )
            stack.append(batch[mid:])
            stack.append(batch[:mid])
    return results


class EnrichmentOrchestrator:
    """Ensure an enriched card exists for every (word, book) pair."""

    def __init__(
        self,
        card_store: CardStore,
        provider: EnrichmentProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if concurrency < 1:
            raise ValueError("concurrency must be positive")
        self.card_store = card_store
        self.provider = provider
        self.batch_size = batch_size
        self.concurrency = concurrency

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, entries: Iterable[DigestEntry]) -> List[SourcePlan]:
        plans: List[SourcePlan] = []
        by_source = group_words_by_source(entries)
        logger.info("Grouped entries into %d source(s)", len(by_source))
        for source_title, words in by_source.items():
            missing = [w for w in words if not self.card_store.card_exists(w, source_title)]
            if not missing:
                logger.info("All words for %r already enriched, skipping", source_title)
                continue
            plans.append(
                SourcePlan(
                    source_title=source_title,
                    missing=missing,
                    batches=list(chunked(missing, self.batch_size)),
                )
            )
            logger.info(
                "Found %d word(s) needing enrichment for %r (%d batch(es))",
                len(missing),
                source_title,
                len(plans[-1].batches),
            )
        return plans

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_for_entries(self, entries: Iterable[DigestEntry]) -> EnrichmentResult:
        start = time.monotonic()
        plans = self.plan(entries)
        result = EnrichmentResult(requested=sum(len(p.missing) for p in plans))
        if not plans:
            return result

        if self.concurrency == 1 or len(plans) == 1:
            for plan in plans:
                result.created += self._run_source(plan)
        else:
            result.created = self._run_sources_concurrently(plans)

        logger.info(
            "Enrichment completed in %.1fs. Requested: %d, Created: %d",
            time.monotonic() - start,
            result.requested,
            result.created,
        )
        return result

    def execute_for_store(
        self, entry_store: EntryStore, source_title: Optional[str] = None
    ) -> EnrichmentResult:
        """Enrich everything already in the vocabulary ledger."""
        if source_title:
            entries = entry_store.find_by_book(source_title)
        else:
            entries = list(reversed(entry_store.find_all_entries()))
        return self.execute_for_entries(entries)

    def reenrich(self, word: str, source_title: str) -> bool:
        """Regenerate one card, replacing its content. False when no draft came back."""
        drafts = enrich_with_backoff([word], self._enrich_call(source_title))
        if not drafts:
            return False
        existing = self.card_store.find_card(word, source_title)
        now = datetime.now()
        card = drafts[0].to_card(now)
        if existing is not None:
            card = replace(card, created_at=existing.created_at)
        self.card_store.upsert_card(card)
        return True

    def _enrich_call(self, source_title: str) -> Callable[[Tuple[str, ...]], List[CardDraft]]:
        def call(batch: Tuple[str, ...]) -> List[CardDraft]:
            return self.provider.enrich(list(batch), source_title)

        return call

    def _run_source(self, plan: SourcePlan) -> int:
        created = 0
        total = len(plan.batches)
        enrich = self._enrich_call(plan.source_title)
        for idx, batch in enumerate(plan.batches, start=1):
            preview = ", ".join(batch[:3]) + ("..." if len(batch) > 3 else "")
            logger.info(
                "Processing batch %d/%d for %r (%d words): [%s]",
                idx,
                total,
                plan.source_title,
                len(batch),
                preview,
            )
            try:
                drafts = enrich_with_backoff(batch, enrich)
                now = datetime.now()
                inserted = self.card_store.insert_cards_if_absent(d.to_card(now) for d in drafts)
            except Exception:
                logger.error("Error processing batch %d for %r", idx, plan.source_title)
                raise
            created += inserted
            logger.info(
                "Batch %d/%d for %r: %d draft(s), %d new card(s)",
                idx,
                total,
                plan.source_title,
                len(drafts),
                inserted,
            )
        return created

    def _run_sources_concurrently(self, plans: List[SourcePlan]) -> int:
        created = 0
        max_workers = min(self.concurrency, len(plans))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures: Dict[Future, str] = {
                executor.submit(self._run_source, plan): plan.source_title for plan in plans
            }
            try:
                for future in as_completed(futures):
                    created += future.result()
            except Exception:
                # Abort: drop sources that have not started; running ones finish.
                for pending in futures:
                    pending.cancel()
                raise
        return created


__all__ = [
    "EnrichmentOrchestrator",
    "EnrichmentResult",
    "SourcePlan",
    "enrich_with_backoff",
    "group_words_by_source",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CONCURRENCY",
]
