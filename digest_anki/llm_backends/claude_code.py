"""
Claude Code CLI backend implementation.

Runs `claude --print` with JSON output. The system prompt travels in
`--append-system-prompt` rather than being glued onto the user prompt, and
the card text is taken from the `result` field of the JSON envelope.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import List, Optional

from .base import CommandLineBackend, LLMConfig


class ClaudeCodeBackend(CommandLineBackend):
    """Backend for the Claude Code CLI tool."""

    @property
    def name(self) -> str:
        return "claude-code"

    def system_prompt_args(self, system_prompt: str) -> Optional[List[str]]:
        return ["--append-system-prompt", system_prompt]

    def build_command(
        self,
        prompt: str,
        output_path: Path,
        config: LLMConfig,
    ) -> tuple[List[str], Optional[str]]:
        cmd = ["claude", "--print", "--output-format", "json", "-p", prompt]

        if config.model:
            cmd.extend(["--model", config.model])

        # reasoning_effort has no Claude Code equivalent and is ignored.
        cmd.extend(config.extra_args)

        return cmd, None

    def extract_response(
        self, output_path: Path, proc: subprocess.CompletedProcess
    ) -> str:
        """Return the `result` text of the envelope.

        Plain stdout is returned as-is when it is not an envelope. An
        envelope flagged `is_error` raises, which the runner reports as a
        failed response.
        """
        stdout = proc.stdout.strip()
        try:
            envelope = json.loads(stdout)
        except json.JSONDecodeError:
            return stdout
        if not isinstance(envelope, dict) or envelope.get("type") != "result":
            return stdout
        if envelope.get("is_error"):
            subtype = envelope.get("subtype", "an error")
            raise RuntimeError(f"claude reported {subtype}: {envelope.get('result', '')}")
        return str(envelope.get("result") or "").strip()


__all__ = ["ClaudeCodeBackend"]
