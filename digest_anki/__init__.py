"""
Core package for digest-anki.

This package provides a structured API behind the `digest_anki_agent.py`
entrypoint so the moving parts are easy to find: digest parsing, the
SQLite ledger, LLM enrichment, and reconciliation with Anki decks.
"""

__all__ = [
    "cli",
    "config_types",
    "enrichment",
    "models",
    "parser",
    "pipeline",
    "provider",
    "reconcile",
    "store",
    "summary",
    "watch",
]
