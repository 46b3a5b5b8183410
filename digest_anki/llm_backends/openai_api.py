"""
OpenAI API backend implementation.

Uses the official `openai` SDK (chat completions in JSON mode). Unlike the
CLI backends this one gets a real finish reason, so truncation is exact:
`finish_reason == "length"`.

The SDK reads OPENAI_API_KEY and OPENAI_BASE_URL from the environment, which
also makes it work against OpenAI-compatible gateways.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from .base import LLMBackend, LLMConfig, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


class OpenAIBackend(LLMBackend):
    """Backend calling the OpenAI chat completions API."""

    def __init__(self, client: Optional[OpenAI] = None):
        self._client = client

    @property
    def name(self) -> str:
        return "openai"

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def generate(
        self,
        prompt: str,
        config: LLMConfig,
        *,
        system_prompt: Optional[str] = None,
        run_dir: Optional[Path] = None,
        label: str = "",
    ) -> LLMResponse:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        params: Dict[str, Any] = {
            "model": config.model or DEFAULT_OPENAI_MODEL,
            "messages": messages,
            "response_format": {"type": "json_object"},
            "timeout": config.timeout_ms / 1000,
        }
        if config.max_output_tokens:
            params["max_completion_tokens"] = config.max_output_tokens
        if config.temperature is not None:
            params["temperature"] = config.temperature

        try:
            completion = self._get_client().chat.completions.create(**params)
        except openai.APITimeoutError:
            return LLMResponse(
                raw_text="",
                success=False,
                timed_out=True,
                error_message=f"Timeout after {config.timeout_ms}ms",
            )
        except openai.OpenAIError as e:
            return LLMResponse(raw_text="", success=False, error_message=str(e)[:500])

        if not completion.choices:
            return LLMResponse(raw_text="")

        choice = completion.choices[0]
        raw_text = (choice.message.content or "").strip()

        if run_dir is not None:
            run_dir.mkdir(parents=True, exist_ok=True)
            (run_dir / f"prompt{label}.txt").write_text(prompt)
            (run_dir / f"response{label}.json").write_text(raw_text)

        truncated = choice.finish_reason == "length"
        if truncated:
            logger.debug("OpenAI response hit max output tokens (%s)", config.max_output_tokens)
        return LLMResponse(raw_text=raw_text, truncated=truncated)


__all__ = ["OpenAIBackend", "DEFAULT_OPENAI_MODEL"]
