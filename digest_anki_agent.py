#!/usr/bin/env python3
"""
Turn e-reader vocabulary digests into enriched Anki cards.

Workflow summary:
1. Watch a directory (or take explicit paths) for plain-text digest exports
   made of alternating headword / `[Book](link)` lines.
2. Skip files whose content fingerprint has not changed since the last run,
   otherwise parse them and record every unseen word in the SQLite ledger.
3. Ask the configured LLM backend to enrich each new (word, book) pair with
   an answer, part of speech, definition, example sentence and hint. Batches
   whose output is cut off are split in half and retried.
4. Push the enriched cards into one Anki deck per book via AnkiConnect,
   updating only fields that changed, and trigger an AnkiWeb sync.

Maintenance subcommands cover querying the ledger, backups, forgetting the
file fingerprints, and checking the AnkiConnect setup.
"""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from anki_connect import AnkiConnectClient, AnkiConnectError
from digest_anki.config_types import AppConfig, load_config
from digest_anki.enrichment import EnrichmentOrchestrator
from digest_anki.llm_backends import get_backend, list_backends
from digest_anki.pipeline import DigestPipeline
from digest_anki.provider import (
    EnrichmentProvider,
    LLMEnrichmentProvider,
    NoopEnrichmentProvider,
    ProviderError,
    TruncatedOutputError,
)
from digest_anki.reconcile import DeckReconciler
from digest_anki.store import SQLiteStore, open_store
from digest_anki.summary import render_summary, summarize_store, summary_json
from digest_anki.watch import DirectoryPoller

logger = logging.getLogger("digest_anki")

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    verbose: bool = False,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Configure the root logger once: stderr, plus a rotating file if given."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Keep HTTP client chatter out of INFO output
    for noisy in ("httpx", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ingest vocabulary digests, enrich them with an LLM, and push cards to Anki."
    )
    parser.add_argument("--db", type=Path, help="SQLite database path (overrides config).")
    parser.add_argument(
        "--llm-backend",
        choices=list_backends(),
        help="LLM backend used for enrichment (overrides config).",
    )
    parser.add_argument("--llm-model", help="Model name passed to the backend.")
    parser.add_argument("--batch-size", type=int, help="Words per enrichment call (1-100).")
    parser.add_argument(
        "--concurrency", type=int, help="Sources enriched in parallel (1-10)."
    )
    parser.add_argument("--anki-url", help="AnkiConnect endpoint URL.")
    parser.add_argument("--deck-prefix", help="Parent deck for per-book decks.")
    parser.add_argument(
        "--run-dir",
        type=Path,
        help="Directory for prompt/response artifacts of each LLM call.",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL.")
    parser.add_argument("--log-file", type=Path, help="Also log to this rotating file.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    stage_flags = argparse.ArgumentParser(add_help=False)
    stage_flags.add_argument("--no-enrich", action="store_true", help="Skip LLM enrichment.")
    stage_flags.add_argument("--no-push", action="store_true", help="Skip pushing to Anki.")

    watch = sub.add_parser("watch", parents=[stage_flags], help="Watch a directory for digests.")
    watch.add_argument("--directory", type=Path, help="Directory to watch (overrides config).")
    watch.add_argument("--pattern", help="Glob pattern for digest files (default: *.txt).")
    watch.add_argument("--interval", type=float, help="Polling interval in seconds.")
    watch.add_argument("--debounce-ms", type=int, help="Quiet period before a change is handled.")

    process = sub.add_parser("process", parents=[stage_flags], help="Process digest files once.")
    process.add_argument("files", nargs="+", type=Path, help="Digest files to process.")

    enrich = sub.add_parser("enrich", help="Enrich ledger words that have no card yet.")
    enrich.add_argument("--source", help="Only this book title.")
    enrich.add_argument(
        "--word",
        help="Regenerate the card for one word (requires --source), replacing its content.",
    )

    push = sub.add_parser("push", help="Push enriched cards to Anki.")
    push.add_argument(
        "--source",
        action="append",
        default=[],
        help="Book title to push (repeatable). Default: every book with cards.",
    )

    query = sub.add_parser("query", help="Summarize the vocabulary ledger.")
    query.add_argument("--json", action="store_true", help="Machine-readable output.")

    backup = sub.add_parser("backup", help="Snapshot the database.")
    backup.add_argument(
        "--dest",
        type=Path,
        help="Backup file path (default: <db dir>/backups/digest-YYYYmmdd-HHMMSS.db).",
    )

    sub.add_parser("reset-files", help="Forget file fingerprints so every digest is re-read.")
    sub.add_parser("check-anki", help="Verify AnkiConnect, the note type and its fields.")

    return parser.parse_args(argv)


def _apply_cli_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """CLI flags win over the config file, which wins over defaults."""
    if args.db:
        config.db_path = args.db.expanduser()
    if args.llm_backend:
        config.llm.backend = args.llm_backend
    if args.llm_model:
        config.llm.model = args.llm_model
    if args.batch_size is not None:
        config.llm.batch_size = args.batch_size
    if args.concurrency is not None:
        config.llm.concurrency = args.concurrency
    if args.anki_url:
        config.anki.url = args.anki_url
    if args.deck_prefix:
        config.anki.deck_prefix = args.deck_prefix
    if args.run_dir:
        config.run_dir = args.run_dir.expanduser()
    if args.log_level:
        config.log_level = args.log_level.upper()
    if args.log_file:
        config.log_file = args.log_file.expanduser()

    if getattr(args, "no_enrich", False):
        config.llm.enabled = False
    if getattr(args, "no_push", False):
        config.anki.enabled = False

    if args.command == "watch":
        if args.directory:
            config.watch.directory = args.directory.expanduser()
        if args.pattern:
            config.watch.pattern = args.pattern
        if args.interval is not None:
            config.watch.interval_s = args.interval
        if args.debounce_ms is not None:
            config.watch.debounce_ms = args.debounce_ms
    return config


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_provider(config: AppConfig) -> EnrichmentProvider:
    if not config.llm.enabled:
        return NoopEnrichmentProvider()
    run_dir = None
    if config.run_dir is not None:
        run_dir = config.run_dir / f"run-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
        run_dir.mkdir(parents=True, exist_ok=True)
    return LLMEnrichmentProvider(
        get_backend(config.llm.backend),
        config.llm.to_llm_config(),
        run_dir=run_dir,
    )


def build_client(config: AppConfig) -> AnkiConnectClient:
    return AnkiConnectClient(url=config.anki.url, key=config.anki.key, timeout=config.anki.timeout_s)


def build_pipeline(store: SQLiteStore, config: AppConfig) -> DigestPipeline:
    enrichment = None
    if config.llm.enabled:
        enrichment = EnrichmentOrchestrator(
            store,
            build_provider(config),
            batch_size=config.llm.batch_size,
            concurrency=config.llm.concurrency,
        )
    reconciler = None
    if config.anki.enabled:
        reconciler = DeckReconciler(build_client(config), store, config.anki)
    return DigestPipeline(
        store,
        enrichment=enrichment,
        reconciler=reconciler,
        hash_algorithm=config.hash_algorithm,
    )


def default_backup_path(db_path: Path) -> Path:
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return db_path.parent / "backups" / f"digest-{timestamp}.db"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_watch(store: SQLiteStore, config: AppConfig) -> int:
    directory = config.watch.directory
    if directory is None:
        raise SystemExit("No watch directory. Set watch.directory in the config or pass --directory.")
    if not directory.is_dir():
        raise SystemExit(f"Watch directory {directory} does not exist.")

    pipeline = build_pipeline(store, config)
    poller = DirectoryPoller(
        directory,
        pattern=config.watch.pattern,
        interval_s=config.watch.interval_s,
        debounce_ms=config.watch.debounce_ms,
    )
    print(f"Watching {directory} for {config.watch.pattern} (Ctrl-C to stop)")
    stop = threading.Event()
    try:
        poller.watch(pipeline.process_event, stop)
    except KeyboardInterrupt:
        stop.set()
        print("\nStopped.")
    return 0


def cmd_process(store: SQLiteStore, config: AppConfig, files: List[Path]) -> int:
    pipeline = build_pipeline(store, config)
    failures = 0
    for path in files:
        if not path.is_file():
            print(f"⚠️  Not a file: {path}")
            failures += 1
            continue
        outcome = pipeline.process_event(path)
        if outcome is None:
            failures += 1
            continue
        if outcome.skipped:
            print(f"{path}: unchanged, skipped")
            continue
        line = f"{path}: parsed {outcome.ingest.parsed}, new {outcome.ingest.inserted}"
        if outcome.enrichment is not None:
            line += f", cards {outcome.enrichment.created}/{outcome.enrichment.requested}"
        if outcome.push is not None:
            line += (
                f", anki +{outcome.push.created} ~{outcome.push.updated}"
                f" ={outcome.push.unchanged} skipped {outcome.push.skipped}"
            )
        print(line)
    return 1 if failures else 0


def cmd_enrich(store: SQLiteStore, config: AppConfig, source: Optional[str], word: Optional[str]) -> int:
    config.llm.enabled = True
    orchestrator = EnrichmentOrchestrator(
        store,
        build_provider(config),
        batch_size=config.llm.batch_size,
        concurrency=config.llm.concurrency,
    )
    try:
        if word:
            if not source:
                raise SystemExit("--word requires --source.")
            if orchestrator.reenrich(word, source):
                print(f"✓ Regenerated card for {word!r} ({source})")
                return 0
            print(f"⚠️  No usable card returned for {word!r}")
            return 1
        result = orchestrator.execute_for_store(store, source_title=source)
    except (ProviderError, TruncatedOutputError) as e:
        print(f"Error: {e}")
        return 1
    print(f"✓ Enrichment finished: created {result.created} of {result.requested} missing card(s)")
    return 0


def cmd_push(store: SQLiteStore, config: AppConfig, sources: List[str]) -> int:
    reconciler = DeckReconciler(build_client(config), store, config.anki)
    targets = sources or store.list_card_sources()
    if not targets:
        print("No enriched cards to push.")
        return 0
    try:
        result = reconciler.push_for_sources(targets)
    except ConnectionError as e:
        print("ANKI_CONNECT_ERROR")
        print(f"Error: {e}")
        return 1
    except AnkiConnectError as e:
        print(f"Error: AnkiConnect rejected a change: {e}")
        return 1
    print(
        f"✓ Pushed {len(targets)} source(s): created {result.created}, updated {result.updated}, "
        f"unchanged {result.unchanged}, skipped {result.skipped}"
    )
    return 0


def cmd_query(store: SQLiteStore, as_json: bool) -> int:
    summary = summarize_store(store, store)
    if as_json:
        print(summary_json(summary))
    else:
        render_summary(summary, Console())
    return 0


def cmd_check_anki(config: AppConfig) -> int:
    client = build_client(config)
    if not client.check_connection():
        print("ANKI_CONNECT_ERROR")
        print(f"Error: cannot reach AnkiConnect at {config.anki.url}")
        return 1
    print(f"✓ AnkiConnect {client.get_version()} at {config.anki.url}")

    s = config.anki
    if s.model_name not in client.get_model_names():
        print(f"⚠️  Note type {s.model_name!r} not found in Anki")
        return 1
    expected = [
        s.word_field,
        s.canonical_answer_field,
        s.canonical_answer_alt_field,
        s.part_of_speech_field,
        s.definition_field,
        s.example_sentence_field,
        s.source_title_field,
        s.hint_field,
    ]
    missing = [f for f in expected if f not in client.get_model_field_names(s.model_name)]
    if missing:
        print(f"⚠️  Note type {s.model_name!r} is missing field(s): {', '.join(missing)}")
        return 1
    decks = [d for d in client.get_deck_names() if d.startswith(f"{s.deck_prefix}::")]
    print(f"✓ Note type {s.model_name!r} has all fields; {len(decks)} deck(s) under {s.deck_prefix}")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    config = _apply_cli_overrides(load_config(), args)
    try:
        config.validate()
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}")

    configure_logging(
        config.log_level,
        config.log_file,
        verbose=args.verbose,
        max_bytes=config.log_max_bytes,
        backup_count=config.log_backup_count,
    )

    if args.command == "check-anki":
        sys.exit(cmd_check_anki(config))

    with open_store(config.db_path) as store:
        if args.command == "watch":
            code = cmd_watch(store, config)
        elif args.command == "process":
            code = cmd_process(store, config, args.files)
        elif args.command == "enrich":
            code = cmd_enrich(store, config, args.source, args.word)
        elif args.command == "push":
            code = cmd_push(store, config, args.source)
        elif args.command == "query":
            code = cmd_query(store, args.json)
        elif args.command == "backup":
            dest = args.dest.expanduser() if args.dest else default_backup_path(config.db_path)
            store.backup(dest)
            print(f"✓ Backup written to {dest}")
            code = 0
        elif args.command == "reset-files":
            removed = store.clear_files()
            print(f"✓ Forgot {removed} tracked file(s); the next run re-reads every digest")
            code = 0
        else:  # pragma: no cover - argparse restricts choices
            raise SystemExit(f"Unknown command: {args.command}")
    sys.exit(code)


if __name__ == "__main__":
    main()
