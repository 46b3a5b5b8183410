"""
Base classes for LLM backend abstraction.

This module provides the abstract base class and dataclasses for
pluggable LLM backends: agentic CLIs (Codex, Claude Code) run as a
subprocess, and HTTP APIs called through their SDK.
"""

from __future__ import annotations

import os
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_TIMEOUT_MS = 60000


@dataclass
class LLMConfig:
    """Backend-agnostic configuration for LLM execution."""

    model: Optional[str] = None
    reasoning_effort: Optional[str] = None  # low/medium/high (Codex only)
    extra_args: List[str] = field(default_factory=list)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_tokens: Optional[int] = None  # API backends only
    temperature: Optional[float] = None
    output_schema: Optional[Dict[str, Any]] = None  # JSON Schema for the reply, where supported


@dataclass
class LLMResponse:
    """Standardized response from any LLM backend."""

    raw_text: str
    success: bool = True
    truncated: bool = False  # output cut off by an output-size limit
    timed_out: bool = False
    error_message: Optional[str] = None
    stdout: str = ""
    stderr: str = ""


class LLMBackend(ABC):
    """Abstract base class for anything that turns a prompt into text."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""
        ...

    @abstractmethod
    def generate(
        self,
        prompt: str,
        config: LLMConfig,
        *,
        system_prompt: Optional[str] = None,
        run_dir: Optional[Path] = None,
        label: str = "",
    ) -> LLMResponse:
        """Run one prompt and return the response.

        Backends never raise for model-side failures; they report them via
        `LLMResponse.success`, `truncated` and `timed_out`.
        """
        ...


class CommandLineBackend(LLMBackend):
    """Backend for agentic CLI tools.

    Each subclass implements the specifics of how to invoke the CLI,
    pass the prompt, and extract the response.
    """

    @abstractmethod
    def build_command(
        self,
        prompt: str,
        output_path: Path,
        config: LLMConfig,
    ) -> tuple[List[str], Optional[str]]:
        """Build the CLI command to execute.

        Args:
            prompt: The prompt text to send to the LLM.
            output_path: Path where the backend can write output (if needed).
            config: Backend configuration.

        Returns:
            Tuple of (command_args, stdin_input).
            stdin_input is None if the prompt is passed via command args.
        """
        ...

    @abstractmethod
    def extract_response(
        self, output_path: Path, proc: subprocess.CompletedProcess
    ) -> str:
        """Extract the LLM response text from command output."""
        ...

    def generate(
        self,
        prompt: str,
        config: LLMConfig,
        *,
        system_prompt: Optional[str] = None,
        run_dir: Optional[Path] = None,
        label: str = "",
    ) -> LLMResponse:
        flags = self.system_prompt_args(system_prompt) if system_prompt else None
        if flags is None:
            # No separate channel; the system instructions lead the prompt.
            if system_prompt:
                prompt = f"{system_prompt}\n\n{prompt}"
        else:
            config = replace(config, extra_args=[*flags, *config.extra_args])
        return run_backend(self, prompt, config, run_dir, label=label)

    def system_prompt_args(self, system_prompt: str) -> Optional[List[str]]:
        """CLI flags carrying the system prompt, or None to prepend it."""
        return None


def output_looks_truncated(text: str) -> bool:
    """Heuristic for backends that expose no finish reason.

    A response that opens a JSON object/array but never closes it was cut
    off mid-generation.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        cleaned = cleaned.strip()
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3].rstrip()
    if not cleaned or cleaned[0] not in "{[":
        return False
    return cleaned[-1] not in "}]"


def run_backend(
    backend: CommandLineBackend,
    prompt: str,
    config: LLMConfig,
    run_dir: Optional[Path] = None,
    label: str = "",
) -> LLMResponse:
    """Execute a prompt via the given CLI backend and return the response.

    This is the shared execution logic used by all CLI backends.

    Args:
        backend: The LLM backend to use.
        prompt: The prompt text to send.
        config: Backend configuration.
        run_dir: Directory for saving artifacts (prompts, logs, etc.).
            When None, the response file lives in a scratch directory
            and nothing is kept.
        label: Optional label for artifact filenames.

    Returns:
        LLMResponse with the result or error information.
    """
    if run_dir is None:
        with tempfile.TemporaryDirectory(prefix="digest-anki-") as scratch:
            return _run_in_dir(backend, prompt, config, Path(scratch), label, keep=False)
    run_dir.mkdir(parents=True, exist_ok=True)
    return _run_in_dir(backend, prompt, config, run_dir, label, keep=True)


def _run_in_dir(
    backend: CommandLineBackend,
    prompt: str,
    config: LLMConfig,
    run_dir: Path,
    label: str,
    keep: bool,
) -> LLMResponse:
    if keep:
        # Save prompt for debugging
        (run_dir / f"prompt{label}.txt").write_text(prompt)
    output_path = run_dir / f"response{label}.json"

    cmd, stdin_input = backend.build_command(prompt, output_path, config)

    try:
        proc = subprocess.run(
            cmd,
            input=stdin_input,
            text=True,
            capture_output=True,
            timeout=config.timeout_ms / 1000,
            cwd=os.getcwd(),
        )
    except subprocess.TimeoutExpired:
        return LLMResponse(
            raw_text="",
            success=False,
            timed_out=True,
            error_message=f"Timeout after {config.timeout_ms}ms",
        )
    except OSError as e:
        return LLMResponse(
            raw_text="",
            success=False,
            error_message=f"Could not run {cmd[0]}: {e}",
        )

    if keep:
        # Save stdout/stderr for debugging
        (run_dir / f"{backend.name}_stdout{label}.log").write_text(proc.stdout)
        (run_dir / f"{backend.name}_stderr{label}.log").write_text(proc.stderr)

    if proc.returncode != 0:
        return LLMResponse(
            raw_text="",
            success=False,
            error_message=f"Exit code {proc.returncode}: {proc.stderr[:500]}",
            stdout=proc.stdout,
            stderr=proc.stderr,
        )

    try:
        raw_text = backend.extract_response(output_path, proc)
    except Exception as e:
        return LLMResponse(
            raw_text="",
            success=False,
            error_message=f"Failed to extract response: {e}",
            stdout=proc.stdout,
            stderr=proc.stderr,
        )

    return LLMResponse(
        raw_text=raw_text,
        truncated=output_looks_truncated(raw_text),
        stdout=proc.stdout,
        stderr=proc.stderr,
    )


__all__ = [
    "LLMBackend",
    "CommandLineBackend",
    "LLMConfig",
    "LLMResponse",
    "run_backend",
    "output_looks_truncated",
    "DEFAULT_TIMEOUT_MS",
]
