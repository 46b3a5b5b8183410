"""
Prompt loading and building for card enrichment.

This module handles:
- Loading prompt templates from external files
- Building the system and user prompts for one enrichment batch
- Safe substitution of dynamic content (book titles, word lists)
"""

from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Sequence

from digest_anki.models import PARTS_OF_SPEECH

_PROMPTS_DIR = Path(__file__).parent / "prompts"

# Output budget per call: fixed overhead plus a per-word allowance.
BASE_OUTPUT_TOKENS = 200
OUTPUT_TOKENS_PER_WORD = 80

RESPONSE_CONTRACT = {
    "items": [
        {
            "Word": "string (exactly as given)",
            "CanonicalAnswer": "string",
            "CanonicalAnswerAlt": "string or null",
            "PartOfSpeech": "|".join(PARTS_OF_SPEECH),
            "Definition": "string",
            "ExampleSentence": "string",
            "SourceTitle": "string (the SourceTitle given)",
            "Hint": "string",
        }
    ]
}



def response_schema() -> dict:
    """JSON Schema for the reply, for backends that can enforce one.

    Every property is required and CanonicalAnswerAlt is nullable, which is
    the shape strict structured-output modes accept.
    """
    item_props = {name: {"type": "string"} for name in RESPONSE_CONTRACT["items"][0]}
    item_props["CanonicalAnswerAlt"] = {"type": ["string", "null"]}
    item_props["PartOfSpeech"] = {"type": "string", "enum": list(PARTS_OF_SPEECH)}
    return {
        "type": "object",
        "properties": {
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": item_props,
                    "required": list(item_props),
                    "additionalProperties": False,
                },
            }
        },
        "required": ["items"],
        "additionalProperties": False,
    }

def _load_template(name: str) -> Template:
    """Load a prompt template from the prompts directory.

    Uses string.Template for safe substitution; handles titles
    containing $ or {} without breaking.
    """
    path = _PROMPTS_DIR / f"{name}.md"
    return Template(path.read_text())


def build_system_prompt() -> str:
    template = _load_template("enrich_system")
    return template.safe_substitute(contract=json.dumps(RESPONSE_CONTRACT, indent=2))


def build_user_prompt(source_title: str, words: Sequence[str]) -> str:
    template = _load_template("enrich_user")
    return template.safe_substitute(
        source_title=json.dumps(source_title, ensure_ascii=False),
        words=json.dumps(list(words), ensure_ascii=False),
    )


def output_token_budget(word_count: int) -> int:
    return BASE_OUTPUT_TOKENS + OUTPUT_TOKENS_PER_WORD * word_count


__all__ = [
    "build_system_prompt",
    "build_user_prompt",
    "output_token_budget",
    "response_schema",
    "RESPONSE_CONTRACT",
]
