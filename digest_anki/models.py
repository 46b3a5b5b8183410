"""
Shared data model for the digest pipeline.

This module owns:
- `DigestEntry` (one vocabulary word seen in a digest export)
- `FileRecord` (last-seen fingerprint of a watched file)
- `EnrichedCard` / `CardDraft` (LLM-generated card content)
- `RemoteNote` (read-only view of an Anki note)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

PARTS_OF_SPEECH = (
    "noun",
    "verb",
    "adj",
    "adv",
    "prep",
    "pron",
    "conj",
    "det",
    "interj",
    "phrase",
)


def _now() -> datetime:
    return datetime.now()


@dataclass(frozen=True)
class DigestEntry:
    """A (word, book, source-file) ingestion record.

    The ledger key is `word` alone: the first book a word is seen under wins.
    """

    word: str
    book_filename: str
    source_file: str
    created_at: datetime = field(default_factory=_now)

    @classmethod
    def create(cls, word: str, book_filename: str, source_file: str) -> "DigestEntry":
        return cls(word.strip(), book_filename.strip(), source_file)


@dataclass(frozen=True)
class FileRecord:
    path: str
    fingerprint: str
    last_seen: datetime = field(default_factory=_now)

    def has_changed(self, fingerprint: str) -> bool:
        return self.fingerprint != fingerprint


@dataclass(frozen=True)
class CardDraft:
    """Card content returned by an enrichment provider, before persistence."""

    word: str
    source_title: str
    canonical_answer: str
    part_of_speech: str
    definition: str
    example_sentence: str
    hint: str
    canonical_answer_alt: Optional[str] = None

    def to_card(self, now: Optional[datetime] = None) -> "EnrichedCard":
        stamp = now or _now()
        return EnrichedCard(
            word=self.word,
            source_title=self.source_title,
            canonical_answer=self.canonical_answer,
            canonical_answer_alt=self.canonical_answer_alt,
            part_of_speech=self.part_of_speech,
            definition=self.definition,
            example_sentence=self.example_sentence,
            hint=self.hint,
            created_at=stamp,
            updated_at=stamp,
        )


@dataclass(frozen=True)
class EnrichedCard:
    """Persisted enrichment for a (word, source_title) pair."""

    word: str
    source_title: str
    canonical_answer: str
    part_of_speech: str
    definition: str
    example_sentence: str
    hint: str
    canonical_answer_alt: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def key(self) -> tuple[str, str]:
        return (self.word, self.source_title)

    def touched(self, now: Optional[datetime] = None) -> "EnrichedCard":
        """Return a copy with `updated_at` bumped."""
        return replace(self, updated_at=now or _now())


# Provider items use PascalCase keys (the JSON schema the prompt asks for);
# snake_case is accepted as well since models drift.
_ITEM_KEYS = {
    "word": ("Word", "word"),
    "canonical_answer": ("CanonicalAnswer", "canonical_answer"),
    "canonical_answer_alt": ("CanonicalAnswerAlt", "canonical_answer_alt"),
    "part_of_speech": ("PartOfSpeech", "part_of_speech"),
    "definition": ("Definition", "definition"),
    "example_sentence": ("ExampleSentence", "example_sentence"),
    "source_title": ("SourceTitle", "source_title"),
    "hint": ("Hint", "hint"),
}

_REQUIRED_ITEM_FIELDS = (
    "word",
    "canonical_answer",
    "part_of_speech",
    "definition",
    "example_sentence",
    "source_title",
    "hint",
)


def _item_value(item: Mapping[str, Any], name: str) -> Optional[str]:
    for key in _ITEM_KEYS[name]:
        value = item.get(key)
        if value is not None:
            return str(value).strip()
    return None


def card_draft_from_item(item: Any) -> Optional[CardDraft]:
    """Validate a single provider item.

    Returns None for anything malformed: not a mapping, a required field
    missing or blank, or a part of speech outside `PARTS_OF_SPEECH`.
    """
    if not isinstance(item, Mapping):
        return None

    values: Dict[str, Optional[str]] = {
        name: _item_value(item, name) for name in _ITEM_KEYS
    }
    if any(not values[name] for name in _REQUIRED_ITEM_FIELDS):
        return None

    pos = (values["part_of_speech"] or "").lower()
    if pos not in PARTS_OF_SPEECH:
        return None

    return CardDraft(
        word=values["word"] or "",
        source_title=values["source_title"] or "",
        canonical_answer=values["canonical_answer"] or "",
        canonical_answer_alt=values["canonical_answer_alt"] or None,
        part_of_speech=pos,
        definition=values["definition"] or "",
        example_sentence=values["example_sentence"] or "",
        hint=values["hint"] or "",
    )


@dataclass
class RemoteNote:
    """A note as reported by AnkiConnect `notesInfo`."""

    note_id: int
    mod: int
    fields: Dict[str, str]
    tags: List[str]

    @classmethod
    def from_info(cls, info: Mapping[str, Any]) -> "RemoteNote":
        raw_fields = info.get("fields") or {}
        fields = {
            name: (value or {}).get("value", "") if isinstance(value, Mapping) else str(value)
            for name, value in raw_fields.items()
        }
        return cls(
            note_id=info.get("noteId") or 0,
            mod=info.get("mod") or 0,
            fields=fields,
            tags=list(info.get("tags") or []),
        )


__all__ = [
    "PARTS_OF_SPEECH",
    "DigestEntry",
    "FileRecord",
    "CardDraft",
    "EnrichedCard",
    "RemoteNote",
    "card_draft_from_item",
]
