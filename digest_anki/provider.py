"""
Enrichment providers: turn a batch of words into card drafts.

The orchestrator only depends on `EnrichmentProvider`. Providers must raise
`TruncatedOutputError` when output was cut off by a size limit, and
`ProviderError` for every other hard failure, so that batch backoff can react
to truncation alone.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from itertools import count
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from digest_anki.llm import parse_response_robust
from digest_anki.llm_backends import LLMBackend, LLMConfig
from digest_anki.models import CardDraft, card_draft_from_item
from digest_anki.prompts import (
    build_system_prompt,
    build_user_prompt,
    output_token_budget,
    response_schema,
)

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Hard provider failure (quota, auth, refusal, crash)."""


class ProviderTimeoutError(ProviderError):
    """The provider call exceeded its timeout."""


class TruncatedOutputError(Exception):
    """Provider output was cut off by an output-size limit.

    Deliberately not a ProviderError: callers split the batch and retry.
    """

    def __init__(self, word_count: int, message: str = ""):
        self.word_count = word_count
        super().__init__(message or f"Output truncated for batch of {word_count} word(s)")


class EnrichmentProvider(ABC):
    """Capability boundary for card generation."""

    @abstractmethod
    def enrich(self, words: Sequence[str], source_title: str) -> List[CardDraft]:
        """Generate drafts for `words` from `source_title`.

        May return fewer drafts than words (malformed items are dropped),
        including none at all.
        """
        ...


class NoopEnrichmentProvider(EnrichmentProvider):
    """Used when enrichment is disabled. Returns no items."""

    def enrich(self, words: Sequence[str], source_title: str) -> List[CardDraft]:
        return []


class LLMEnrichmentProvider(EnrichmentProvider):
    """Enrichment through any configured LLM backend."""

    def __init__(
        self,
        backend: LLMBackend,
        config: Optional[LLMConfig] = None,
        run_dir: Optional[Path] = None,
    ):
        self.backend = backend
        self.config = config or LLMConfig()
        self.run_dir = run_dir
        self._calls = count(1)
        self._system_prompt = build_system_prompt()

    def enrich(self, words: Sequence[str], source_title: str) -> List[CardDraft]:
        if not words:
            return []

        call_idx = next(self._calls)
        label = f"_call_{call_idx:03d}"
        call_config = replace(
            self.config,
            max_output_tokens=self.config.max_output_tokens or output_token_budget(len(words)),
            output_schema=self.config.output_schema or response_schema(),
        )
        prompt = build_user_prompt(source_title, words)

        response = self.backend.generate(
            prompt,
            call_config,
            system_prompt=self._system_prompt,
            run_dir=self.run_dir,
            label=label,
        )

        if response.truncated:
            raise TruncatedOutputError(len(words))
        if response.timed_out:
            raise ProviderTimeoutError(
                f"{self.backend.name} timed out for {len(words)} word(s) from "
                f"{source_title!r}: {response.error_message}"
            )
        if not response.success:
            raise ProviderError(
                f"{self.backend.name} failed for {len(words)} word(s) from "
                f"{source_title!r}: {response.error_message}"
            )

        parsed = parse_response_robust(response.raw_text, self.run_dir, label=label)
        if parsed is None:
            return []
        items = parsed.get("items")
        if not isinstance(items, list):
            logger.warning("Response for %r has no items array; ignoring", source_title)
            return []

        return self._collect_drafts(items, words, source_title)

    @staticmethod
    def _collect_drafts(
        items: list, words: Sequence[str], source_title: str
    ) -> List[CardDraft]:
        # Match returned words back to the requested spelling: exact first,
        # then case-insensitive when only one requested word folds to it.
        exact = set(words)
        folded: Dict[str, Optional[str]] = {}
        for w in words:
            key = w.casefold()
            folded[key] = w if folded.get(key, w) == w else None
        drafts: List[CardDraft] = []
        seen = set()
        dropped = 0
        for item in items:
            draft = card_draft_from_item(item)
            if draft is None:
                dropped += 1
                continue
            if draft.word in exact:
                word: Optional[str] = draft.word
            else:
                word = folded.get(draft.word.casefold())
            if word is None or word in seen:
                dropped += 1
                continue
            seen.add(word)
            drafts.append(replace(draft, word=word, source_title=source_title))

        if dropped:
            logger.info("Dropped %d malformed or unrequested item(s) for %r", dropped, source_title)
        return drafts


__all__ = [
    "EnrichmentProvider",
    "LLMEnrichmentProvider",
    "NoopEnrichmentProvider",
    "ProviderError",
    "ProviderTimeoutError",
    "TruncatedOutputError",
]
