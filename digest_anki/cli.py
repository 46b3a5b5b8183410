"""
CLI entrypoint for digest-anki.

A thin wrapper over `digest_anki_agent.main`, which owns argument parsing
and wiring of the pipeline stages.
"""

from digest_anki_agent import main

__all__ = ["main"]
