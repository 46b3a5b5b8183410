"""
Codex CLI backend implementation.

Runs `codex exec` non-interactively. The prompt goes in on stdin and the
final message is written to a file. When the call carries a reply schema it
is written next to that file and enforced with `--output-schema`.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import List, Optional

from .base import CommandLineBackend, LLMConfig


def schema_path_for(output_path: Path) -> Path:
    return output_path.with_name(f"{output_path.stem}.schema.json")


class CodexBackend(CommandLineBackend):
    @property
    def name(self) -> str:
        return "codex"

    def build_command(
        self,
        prompt: str,
        output_path: Path,
        config: LLMConfig,
    ) -> tuple[List[str], Optional[str]]:
        cmd = ["codex", "exec", "-", "--skip-git-repo-check"]

        if config.model:
            cmd.extend(["--model", config.model])

        if config.reasoning_effort:
            cmd.extend(["-c", f"model_reasoning_effort={config.reasoning_effort}"])

        if config.output_schema:
            schema_path = schema_path_for(output_path)
            schema_path.parent.mkdir(parents=True, exist_ok=True)
            schema_path.write_text(json.dumps(config.output_schema, indent=2))
            cmd.extend(["--output-schema", str(schema_path)])

        cmd.extend(["--output-last-message", str(output_path)])
        cmd.extend(config.extra_args)

        return cmd, prompt

    def extract_response(
        self, output_path: Path, proc: subprocess.CompletedProcess
    ) -> str:
        if not output_path.exists():
            # Older codex builds without a last-message file print it instead
            return proc.stdout.strip()
        return output_path.read_text().strip()


__all__ = ["CodexBackend", "schema_path_for"]
