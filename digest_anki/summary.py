"""
Vocabulary summary report.

Collects totals, per-book word counts, the most recent entries and the
number of enriched cards per source, then renders them with rich or as JSON.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from digest_anki.models import DigestEntry
from digest_anki.store.base import CardStore, EntryStore

RECENT_LIMIT = 20


@dataclass
class BookCount:
    book: str
    words: int
    cards: int = 0


@dataclass
class RecentEntry:
    word: str
    book: str
    created_at: str


@dataclass
class DigestSummary:
    total_entries: int
    unique_words: int
    unique_books: int
    total_cards: int = 0
    books: List[BookCount] = field(default_factory=list)
    recent: List[RecentEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def summarize_entries(
    entries: Iterable[DigestEntry],
    card_counts: Optional[Dict[str, int]] = None,
    recent_limit: int = RECENT_LIMIT,
) -> DigestSummary:
    """Summarize ledger entries. `entries` is expected newest first."""
    entries = list(entries)
    card_counts = card_counts or {}
    per_book = Counter(e.book_filename for e in entries)

    books = [
        BookCount(book=book, words=count, cards=card_counts.get(book, 0))
        for book, count in sorted(per_book.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    # Cards can exist for books whose entries were since deleted.
    for book in sorted(set(card_counts) - set(per_book)):
        books.append(BookCount(book=book, words=0, cards=card_counts[book]))

    recent = [
        RecentEntry(
            word=e.word,
            book=e.book_filename,
            created_at=e.created_at.isoformat(timespec="seconds"),
        )
        for e in entries[:recent_limit]
    ]
    return DigestSummary(
        total_entries=len(entries),
        unique_words=len({e.word for e in entries}),
        unique_books=len(per_book),
        total_cards=sum(card_counts.values()),
        books=books,
        recent=recent,
    )


def summarize_store(entry_store: EntryStore, card_store: CardStore) -> DigestSummary:
    card_counts = {
        source: len(card_store.find_cards_by_source(source))
        for source in card_store.list_card_sources()
    }
    return summarize_entries(entry_store.find_all_entries(), card_counts)


def summary_json(summary: DigestSummary) -> str:
    return json.dumps(summary.to_dict(), indent=2, ensure_ascii=False)


def render_summary(summary: DigestSummary, console: Console) -> None:
    if summary.total_entries == 0 and summary.total_cards == 0:
        console.print(
            Panel(
                "[yellow]No entries found in database.[/yellow]\n\n"
                "Run [bold]digest-anki process FILE[/bold] or "
                "[bold]digest-anki watch[/bold] to ingest a digest.",
                title="Getting Started",
                border_style="yellow",
            )
        )
        return

    header = Text.assemble(
        (f"{summary.total_entries}", "cyan"),
        " entries",
        ("  |  ", "dim"),
        (f"{summary.unique_words}", "cyan"),
        " unique words",
        ("  |  ", "dim"),
        (f"{summary.unique_books}", "cyan"),
        " books",
        ("  |  ", "dim"),
        (f"{summary.total_cards}", "green"),
        " cards",
    )

    books = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    books.add_column("#", justify="right", width=4)
    books.add_column("Book", style="cyan")
    books.add_column("Words", justify="right", width=6)
    books.add_column("Cards", justify="right", style="green", width=6)
    for idx, book in enumerate(summary.books, start=1):
        books.add_row(str(idx), book.book, str(book.words), str(book.cards) if book.cards else "-")

    recent = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    recent.add_column("Word", style="cyan")
    recent.add_column("Book")
    recent.add_column("Added", style="dim")
    for entry in summary.recent:
        recent.add_row(entry.word, entry.book, entry.created_at)

    console.print()
    console.print(
        Panel(
            Group(header, Text(), books, Text("Recent entries", style="bold"), recent),
            title="Digest Vocabulary",
            border_style="blue",
            padding=(1, 2),
        )
    )
    console.print()


__all__ = [
    "BookCount",
    "DigestSummary",
    "RecentEntry",
    "render_summary",
    "summarize_entries",
    "summarize_store",
    "summary_json",
]
