"""
Push enriched cards into Anki decks through AnkiConnect.

One deck per source title under a common prefix. Existing notes are matched
by deck, note type and word field; only fields that differ are rewritten,
so running a push twice makes no further field changes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from anki_connect import AnkiConnectClient, AnkiConnectError
from digest_anki.config_types import AnkiSettings
from digest_anki.models import EnrichedCard, RemoteNote
from digest_anki.store.base import CardStore

logger = logging.getLogger(__name__)


def sanitize_deck_component(name: Optional[str]) -> str:
    """Make a source title safe to use as one deck level."""
    cleaned = str(name or "Unknown").replace("::", ":")
    cleaned = re.sub(r"[\\/]", " ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or "Unknown"


def escape_query_value(value: str) -> str:
    return str(value).replace('"', '\\"')


def slugify_tag(value: Optional[str]) -> str:
    slug = re.sub(r"\s+", "_", str(value or "").lower())
    slug = re.sub(r"[^a-z0-9_:-]", "", slug)
    return slug[:63]


def deck_name_for(prefix: str, source_title: str) -> str:
    return f"{prefix}::{sanitize_deck_component(source_title)}"


@dataclass
class PushResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0

    @property
    def changed(self) -> int:
        return self.created + self.updated


class DeckReconciler:
    """Diff local cards against remote notes and apply the difference."""

    def __init__(
        self,
        client: AnkiConnectClient,
        card_store: CardStore,
        settings: Optional[AnkiSettings] = None,
    ):
        self.client = client
        self.card_store = card_store
        self.settings = settings or AnkiSettings()

    def desired_fields(self, card: EnrichedCard) -> Dict[str, str]:
        s = self.settings
        return {
            s.word_field: card.word.strip(),
            s.canonical_answer_field: card.canonical_answer or "",
            s.canonical_answer_alt_field: card.canonical_answer_alt or "",
            s.part_of_speech_field: card.part_of_speech or "",
            s.definition_field: card.definition or "",
            s.example_sentence_field: card.example_sentence or "",
            s.source_title_field: card.source_title or "",
            s.hint_field: card.hint or "",
        }

    def desired_tags(self, source_title: str) -> List[str]:
        return [*self.settings.tags, f"source:{slugify_tag(source_title)}"]

    def build_query(self, deck_name: str, word: str) -> str:
        return " ".join(
            [
                f'deck:"{escape_query_value(deck_name)}"',
                f'note:"{escape_query_value(self.settings.model_name)}"',
                f'{self.settings.word_field}:"{escape_query_value(word)}"',
            ]
        )

    def push_for_sources(self, sources: Iterable[str]) -> PushResult:
        result = PushResult()
        unique_sources = list(dict.fromkeys(s for s in sources if s))
        ensured_decks: Set[str] = set()

        for source_title in unique_sources:
            deck_name = deck_name_for(self.settings.deck_prefix, source_title)
            if deck_name not in ensured_decks:
                self.client.create_deck(deck_name)
                ensured_decks.add(deck_name)

            cards = self.card_store.find_cards_by_source(source_title)
            logger.info("Pushing %d card(s) for %r to deck %s", len(cards), source_title, deck_name)
            for card in cards:
                if not card.word.strip():
                    continue
                self._push_card(card, deck_name, result)

        logger.info(
            "Anki push completed. Created %d, Updated %d, Unchanged %d, Skipped %d",
            result.created,
            result.updated,
            result.unchanged,
            result.skipped,
        )

        if result.changed > 0 and self.settings.sync:
            try:
                logger.info("Syncing with AnkiWeb...")
                self.client.sync()
                logger.info("Sync completed")
            except (AnkiConnectError, ConnectionError) as e:
                logger.warning("Sync failed: %s", e)

        return result

    def _find_newest(self, deck_name: str, word: str) -> Optional[RemoteNote]:
        note_ids = self.client.find_notes(self.build_query(deck_name, word))
        if not note_ids:
            return None
        infos = self.client.get_notes_info(note_ids)
        notes = [RemoteNote.from_info(info) for info in infos if info]
        notes = [n for n in notes if n.note_id]
        if not notes:
            return None
        return max(notes, key=lambda n: n.mod)

    def _push_card(self, card: EnrichedCard, deck_name: str, result: PushResult) -> None:
        word = card.word.strip()
        fields = self.desired_fields(card)
        tags = self.desired_tags(card.source_title)

        try:
            existing = self._find_newest(deck_name, word)
        except (AnkiConnectError, ConnectionError) as e:
            logger.warning("Lookup failed for %r, skipping: %s", word, e)
            result.skipped += 1
            return

        if existing is None:
            note = {
                "deckName": deck_name,
                "modelName": self.settings.model_name,
                "fields": fields,
                "options": {
                    "allowDuplicate": False,
                    "duplicateScope": "deck",
                    "duplicateScopeOptions": {"deckName": deck_name, "checkChildren": False},
                },
                "tags": tags,
            }
            if self.client.add_note(note):
                result.created += 1
            else:
                logger.info("Anki rejected %r as a duplicate", word)
                result.unchanged += 1
            return

        changes = {
            name: value
            for name, value in fields.items()
            if existing.fields.get(name, "") != value
        }
        if changes:
            logger.debug("Updating %d field(s) on note %s (%r)", len(changes), existing.note_id, word)
            self.client.update_note_fields(existing.note_id, changes)
            result.updated += 1
        else:
            result.unchanged += 1

        merged = list(dict.fromkeys([*existing.tags, *tags]))
        self.client.update_note_tags(existing.note_id, merged)


__all__ = [
    "DeckReconciler",
    "PushResult",
    "deck_name_for",
    "escape_query_value",
    "sanitize_deck_component",
    "slugify_tag",
]
