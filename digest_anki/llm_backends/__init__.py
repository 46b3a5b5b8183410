"""
LLM backend abstraction layer.

This package provides pluggable backends for generating card content:
agentic CLI tools (Codex, Claude Code) and the OpenAI API, all behind one
interface.

Usage:
    from digest_anki.llm_backends import get_backend, LLMConfig

    backend = get_backend("openai")  # or "codex", "claude-code"
    config = LLMConfig(model="gpt-4o-mini", timeout_ms=60000)
    response = backend.generate(prompt, config, system_prompt=system)
"""

from __future__ import annotations

from typing import Dict, Type

from .base import (
    CommandLineBackend,
    LLMBackend,
    LLMConfig,
    LLMResponse,
    output_looks_truncated,
    run_backend,
)
from .claude_code import ClaudeCodeBackend
from .codex import CodexBackend
from .openai_api import OpenAIBackend

# Registry of available backends
BACKENDS: Dict[str, Type[LLMBackend]] = {
    "codex": CodexBackend,
    "claude-code": ClaudeCodeBackend,
    "openai": OpenAIBackend,
}


def get_backend(name: str) -> LLMBackend:
    """Get an LLM backend instance by name.

    Raises:
        ValueError: If the backend name is not recognized.
    """
    if name not in BACKENDS:
        available = ", ".join(sorted(BACKENDS.keys()))
        raise ValueError(f"Unknown backend: {name}. Available: {available}")
    return BACKENDS[name]()


def list_backends() -> list[str]:
    """Return a list of available backend names."""
    return sorted(BACKENDS.keys())


__all__ = [
    "LLMBackend",
    "CommandLineBackend",
    "LLMConfig",
    "LLMResponse",
    "run_backend",
    "output_looks_truncated",
    "get_backend",
    "list_backends",
    "CodexBackend",
    "ClaudeCodeBackend",
    "OpenAIBackend",
    "BACKENDS",
]
