"""Shared pytest fixtures for digest-anki tests."""

from typing import Callable, Dict, List, Optional, Sequence

import pytest

from anki_connect import AnkiConnectError
from digest_anki.models import CardDraft, DigestEntry, EnrichedCard
from digest_anki.provider import EnrichmentProvider, TruncatedOutputError
from digest_anki.store import SQLiteStore


def make_draft(word: str, source_title: str = "Book.epub", **overrides) -> CardDraft:
    values = dict(
        word=word,
        source_title=source_title,
        canonical_answer=f"meaning of {word}",
        part_of_speech="verb",
        definition=f"a short paraphrase for {word[::-1]}",
        example_sentence=f"She did it in a sentence about {word}.",
        hint=f"{word[:1]}____",
        canonical_answer_alt=None,
    )
    values.update(overrides)
    return CardDraft(**values)


def make_card(word: str, source_title: str = "Book.epub", **overrides) -> EnrichedCard:
    return make_draft(word, source_title, **overrides).to_card()


class FakeProvider(EnrichmentProvider):
    """Records every call; optionally truncates batches above a size limit."""

    def __init__(
        self,
        max_words: Optional[int] = None,
        fail_on: Optional[Callable[[Sequence[str], str], Optional[Exception]]] = None,
        drop: Sequence[str] = (),
    ):
        self.calls: List[tuple] = []
        self.max_words = max_words
        self.fail_on = fail_on
        self.drop = set(drop)

    def enrich(self, words: Sequence[str], source_title: str) -> List[CardDraft]:
        self.calls.append((tuple(words), source_title))
        if self.fail_on is not None:
            error = self.fail_on(words, source_title)
            if error is not None:
                raise error
        if self.max_words is not None and len(words) > self.max_words:
            raise TruncatedOutputError(len(words))
        return [make_draft(w, source_title) for w in words if w not in self.drop]


class FakeAnkiClient:
    """In-memory AnkiConnect stand-in covering the calls the reconciler makes."""

    def __init__(self):
        self.decks: List[str] = []
        self.notes: Dict[int, dict] = {}
        self.calls: List[tuple] = []
        self.fail_find: set = set()
        self.fail_info: set = set()
        self.fail_update = False
        self.fail_sync = False
        self.next_id = 1000

    def add_existing(self, deck: str, model: str, fields: Dict[str, str], tags=(), mod: int = 1) -> int:
        note_id = self.next_id
        self.next_id += 1
        self.notes[note_id] = {
            "noteId": note_id,
            "deckName": deck,
            "modelName": model,
            "fields": dict(fields),
            "tags": list(tags),
            "mod": mod,
        }
        return note_id

    def create_deck(self, deck: str) -> int:
        self.calls.append(("createDeck", deck))
        if deck not in self.decks:
            self.decks.append(deck)
        return 1

    def find_notes(self, query: str) -> List[int]:
        self.calls.append(("findNotes", query))
        for word in self.fail_find:
            if f':"{word}"' in query:
                raise AnkiConnectError("collection is not available")
        return [
            note_id
            for note_id, note in self.notes.items()
            if f'deck:"{note["deckName"]}"' in query
            and f'note:"{note["modelName"]}"' in query
            and any(f'{name}:"{value}"' in query for name, value in note["fields"].items())
        ]

    def get_notes_info(self, note_ids: List[int]) -> List[dict]:
        self.calls.append(("notesInfo", tuple(note_ids)))
        for note_id in note_ids:
            if self.notes[note_id]["fields"].get("Word") in self.fail_info:
                raise AnkiConnectError("collection is not available")
        infos = []
        for note_id in note_ids:
            note = self.notes[note_id]
            infos.append(
                {
                    "noteId": note_id,
                    "modelName": note["modelName"],
                    "tags": list(note["tags"]),
                    "fields": {k: {"value": v, "order": i} for i, (k, v) in enumerate(note["fields"].items())},
                    "mod": note["mod"],
                }
            )
        return infos

    def add_note(self, note: dict) -> Optional[int]:
        self.calls.append(("addNote", note))
        return self.add_existing(note["deckName"], note["modelName"], note["fields"], note["tags"])

    def update_note_fields(self, note_id: int, fields: Dict[str, str]) -> None:
        self.calls.append(("updateNoteFields", note_id, dict(fields)))
        if self.fail_update:
            raise AnkiConnectError("cannot update note")
        self.notes[note_id]["fields"].update(fields)
        self.notes[note_id]["mod"] += 1

    def update_note_tags(self, note_id: int, tags: List[str]) -> None:
        self.calls.append(("updateNoteTags", note_id, list(tags)))
        self.notes[note_id]["tags"] = list(tags)

    def sync(self) -> None:
        self.calls.append(("sync",))
        if self.fail_sync:
            raise AnkiConnectError("sync failed")

    def actions(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def store():
    """Fresh in-memory store."""
    s = SQLiteStore()
    yield s
    s.close()


@pytest.fixture
def sample_entries():
    return [
        DigestEntry.create("swoon", "Book.epub", "/digests/a.txt"),
        DigestEntry.create("gloaming", "Book.epub", "/digests/a.txt"),
        DigestEntry.create("petrichor", "Other Book.epub", "/digests/a.txt"),
    ]


@pytest.fixture
def fake_anki():
    return FakeAnkiClient()
