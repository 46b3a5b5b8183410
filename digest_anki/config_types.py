"""Typed configuration objects for the watcher, enrichment and push stages."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from digest_anki.llm_backends import BACKENDS, LLMConfig
from digest_anki.llm_backends.base import DEFAULT_TIMEOUT_MS

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DIGEST_ANKI_CONFIG"
CONFIG_FILENAME = "digest_anki_config.json"
HOME_CONFIG_FILENAME = ".digest_anki_config.json"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class LLMSettings:
    """Which backend generates cards, and how enrichment is batched."""

    enabled: bool = True
    backend: str = "openai"
    model: Optional[str] = None
    reasoning_effort: Optional[str] = None
    extra_args: List[str] = field(default_factory=list)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    temperature: Optional[float] = 0.2
    batch_size: int = 20
    concurrency: int = 2

    def to_llm_config(self) -> LLMConfig:
        return LLMConfig(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            extra_args=list(self.extra_args),
            timeout_ms=self.timeout_ms,
            temperature=self.temperature,
        )


@dataclass
class AnkiSettings:
    """AnkiConnect endpoint plus the note type the cards are pushed as."""

    enabled: bool = True
    url: str = "http://localhost:8765"
    key: Optional[str] = None
    timeout_s: float = 10
    deck_prefix: str = "SuperAnki"
    model_name: str = "Superanki"
    word_field: str = "Word"
    canonical_answer_field: str = "CanonicalAnswer"
    canonical_answer_alt_field: str = "CanonicalAnswerAlt"
    part_of_speech_field: str = "PartOfSpeech"
    definition_field: str = "Definition"
    example_sentence_field: str = "ExampleSentence"
    source_title_field: str = "SourceTitle"
    hint_field: str = "Hint"
    tags: List[str] = field(default_factory=lambda: ["superanki"])
    sync: bool = True


@dataclass
class WatchSettings:
    directory: Optional[Path] = None
    pattern: str = "*.txt"
    interval_s: float = 2.0
    debounce_ms: int = 500


@dataclass
class AppConfig:
    """Everything a run needs, after merging the config file and CLI flags."""

    db_path: Path = Path("data/digest.db")
    hash_algorithm: str = "sha256"
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    log_max_bytes: int = 5 * 1024 * 1024
    log_backup_count: int = 3
    run_dir: Optional[Path] = None
    llm: LLMSettings = field(default_factory=LLMSettings)
    anki: AnkiSettings = field(default_factory=AnkiSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], base_dir: Optional[Path] = None
    ) -> "AppConfig":
        """Build a config from parsed JSON.

        Unknown keys are ignored. Relative paths resolve against `base_dir`
        (the config file's directory) when given.
        """

        def resolve(value: Any) -> Optional[Path]:
            if value in (None, ""):
                return None
            path = Path(str(value)).expanduser()
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
            return path

        config = cls(
            llm=_section(LLMSettings, data.get("llm")),
            anki=_section(AnkiSettings, data.get("anki")),
            watch=_section(WatchSettings, data.get("watch")),
        )
        if data.get("db_path"):
            config.db_path = resolve(data["db_path"]) or config.db_path
        if data.get("hash_algorithm"):
            config.hash_algorithm = str(data["hash_algorithm"])
        if data.get("log_level"):
            config.log_level = str(data["log_level"]).upper()
        config.log_file = resolve(data.get("log_file"))
        if "log_max_bytes" in data:
            config.log_max_bytes = int(data["log_max_bytes"])
        if "log_backup_count" in data:
            config.log_backup_count = int(data["log_backup_count"])
        config.run_dir = resolve(data.get("run_dir"))
        config.watch.directory = resolve(config.watch.directory)
        return config

    def validate(self) -> None:
        """Raise ValueError describing the first invalid setting."""
        if not 1 <= self.llm.batch_size <= 100:
            raise ValueError(f"llm.batch_size must be between 1 and 100, got {self.llm.batch_size}")
        if not 1 <= self.llm.concurrency <= 10:
            raise ValueError(f"llm.concurrency must be between 1 and 10, got {self.llm.concurrency}")
        if self.llm.timeout_ms <= 0:
            raise ValueError("llm.timeout_ms must be positive")
        if self.llm.backend not in BACKENDS:
            available = ", ".join(sorted(BACKENDS))
            raise ValueError(f"Unknown llm.backend: {self.llm.backend}. Available: {available}")
        if self.watch.debounce_ms < 0:
            raise ValueError("watch.debounce_ms must not be negative")
        if self.watch.interval_s <= 0:
            raise ValueError("watch.interval_s must be positive")
        if self.hash_algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash_algorithm: {self.hash_algorithm}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        if not self.anki.deck_prefix.strip():
            raise ValueError("anki.deck_prefix must not be empty")


def _section(cls, raw: Any):
    if not isinstance(raw, Mapping):
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in known})


def config_candidates() -> List[Path]:
    """Config search order: env var, working directory, home directory."""
    candidates: List[Path] = []
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())
    candidates.append(Path.cwd() / CONFIG_FILENAME)
    candidates.append(Path.home() / HOME_CONFIG_FILENAME)
    return candidates


def load_config_file() -> Tuple[Dict[str, Any], Optional[Path]]:
    """Return the first readable JSON config and its path, or ({}, None)."""
    for path in config_candidates():
        if not path.is_file():
            continue
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring invalid config file (JSON parse error): %s", path)
            continue
        if not isinstance(data, dict):
            logger.warning("Ignoring config file without a JSON object: %s", path)
            continue
        return data, path
    return {}, None


def load_config() -> AppConfig:
    data, path = load_config_file()
    if path is not None:
        logger.debug("Loaded config from %s", path)
    return AppConfig.from_mapping(data, path.parent if path else None)


__all__ = [
    "AppConfig",
    "AnkiSettings",
    "LLMSettings",
    "WatchSettings",
    "config_candidates",
    "load_config",
    "load_config_file",
]
