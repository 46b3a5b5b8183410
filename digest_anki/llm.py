"""
LLM response parsing helpers.

Models wrap JSON in markdown fences, add chatter around it, or emit
almost-valid JSON. `parse_response_robust` tries progressively more lenient
strategies and gives up quietly; callers treat None as "no usable items".
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from json_repair import repair_json

logger = logging.getLogger(__name__)


def strip_markdown_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def raw_decode_first_json(text: str) -> Any:
    decoder = json.JSONDecoder()
    last_error: Optional[Exception] = None
    for start, ch in enumerate(text):
        if ch not in ("{", "["):
            continue
        try:
            obj, _ = decoder.raw_decode(text[start:])
            return obj
        except json.JSONDecodeError as e:
            last_error = e
            continue
    raise last_error or json.JSONDecodeError("No JSON object found", text, 0)


def escape_invalid_backslashes(text: str) -> str:
    """
    JSON only permits escapes for \" \\ / b f n r t uXXXX.
    Model output occasionally contains stray backslashes that need
    doubling to become valid JSON.
    """
    return re.sub(r"\\(?![\"\\/bfnrtu])", r"\\\\", text)


def parse_response_robust(
    response_text: str,
    run_dir: Optional[Path] = None,
    label: str = "",
) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of an LLM response with multiple fallback
    strategies. Returns None if all strategies fail.
    """
    if not response_text or not response_text.strip():
        return None

    cleaned = strip_markdown_fences(response_text)
    escaped = escape_invalid_backslashes(cleaned)
    raw = response_text.strip()

    strategies: List[Tuple[str, Callable[[], Any]]] = []

    # Strategy 1: Direct parse (only when the response already looks like JSON).
    if raw[:1] in ("{", "["):
        strategies.append(("Direct parse", lambda: json.loads(raw)))

    # Strategy 2: Strip markdown fences.
    strategies.append(("Markdown stripped", lambda: json.loads(cleaned)))

    # Strategy 2b: Escape invalid backslashes.
    strategies.append(("Backslash escaped", lambda: json.loads(escaped)))

    # Strategy 3: Extract a JSON value from a response with extra leading/trailing text.
    strategies.append(("JSON extracted", lambda: raw_decode_first_json(cleaned)))

    # Strategy 4: json-repair (last resort).
    strategies.append(("JSON repair", lambda: json.loads(repair_json(cleaned))))

    last_error: Optional[Exception] = None

    for strategy_name, strategy in strategies:
        try:
            result = strategy()
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            last_error = e
            continue
        if isinstance(result, dict):
            logger.debug("Parsed LLM response with strategy: %s", strategy_name)
            if run_dir is not None:
                (run_dir / f"parsed_response{label}.json").write_text(
                    json.dumps(result, indent=2, ensure_ascii=False)
                )
            return result
        # Valid JSON but not an object; a later strategy may still find one.
        logger.debug("Strategy %s parsed non-dict: %s", strategy_name, type(result).__name__)

    logger.warning("Failed to parse LLM response as JSON: %s", last_error or "no object found")
    if run_dir is not None:
        (run_dir / f"FAILED_response{label}.txt").write_text(
            f"All JSON parsing strategies failed\n\n"
            f"Strategies tried:\n"
            + "\n".join(f"- {name}" for name, _ in strategies)
            + f"\n\nFirst 1000 chars of response:\n{response_text[:1000]}\n\n"
            f"Last error: {last_error or 'Unknown'}\n"
        )
    return None


def chunked(seq: Sequence[Any], size: int) -> Iterable[List[Any]]:
    """Split a sequence into chunks of the given size."""
    for start in range(0, len(seq), size):
        yield list(seq[start : start + size])


__all__ = [
    "parse_response_robust",
    "strip_markdown_fences",
    "raw_decode_first_json",
    "chunked",
]
