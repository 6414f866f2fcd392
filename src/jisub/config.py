from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Mapping

from .cache import DEFAULT_MAX_CACHE_ENTRIES
from .normalize import OverlapPolicy

__all__ = [
    "AnalyzerSettings",
    "PipelineConfig",
    "RemoteSettings",
    "TokenizationMethod",
]

logger = logging.getLogger(__name__)

DEFAULT_ANALYZER_URL = "http://localhost:5000"


class TokenizationMethod(Enum):
    DICTIONARY = "dictionary"
    REMOTE = "remote"
    AUTO = "auto"
    SIMPLE = "simple"

    @classmethod
    def parse(cls, value: str | None) -> "TokenizationMethod":
        """Resolve a configured name; unknown names fall back to ``SIMPLE`` segmentation."""
        if not value:
            return cls.AUTO
        normalized = value.strip().lower()
        aliases = {"kuromoji": cls.DICTIONARY, "mecab": cls.DICTIONARY, "sudachi": cls.REMOTE}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            logger.warning("Unknown tokenizer '%s' (expected one of: %s); using simple segmentation", value, choices)
            return cls.SIMPLE


@dataclass(slots=True)
class AnalyzerSettings:
    init_attempts: int = 3
    init_retry_delay: float = 2.0
    call_retries: int = 2
    call_retry_delay: float = 1.0
    max_consecutive_errors: int = 5


@dataclass(slots=True)
class RemoteSettings:
    base_url: str = DEFAULT_ANALYZER_URL
    mode: str = "A"
    request_timeout: float = 3.0
    request_retries: int = 2
    request_retry_delay: float = 0.5
    health_interval: float = 30.0
    health_timeout: float = 1.0
    health_retries: int = 1


@dataclass(slots=True)
class PipelineConfig:
    tokenizer: TokenizationMethod = TokenizationMethod.AUTO
    analyzer: AnalyzerSettings = field(default_factory=AnalyzerSettings)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    overlap: OverlapPolicy = field(default_factory=OverlapPolicy)
    cache_size: int = DEFAULT_MAX_CACHE_ENTRIES
    unidic_dir: Path | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineConfig":
        env = os.environ if environ is None else environ
        config = cls()
        config.tokenizer = TokenizationMethod.parse(env.get("JISUB_TOKENIZER"))
        remote_url = env.get("JISUB_ANALYZER_URL")
        remote_mode = env.get("JISUB_ANALYZER_MODE")
        if remote_url or remote_mode:
            config.remote = replace(
                config.remote,
                base_url=(remote_url or config.remote.base_url).rstrip("/"),
                mode=remote_mode or config.remote.mode,
            )
        cache_size = env.get("JISUB_CACHE_SIZE")
        if cache_size:
            try:
                config.cache_size = max(1, int(cache_size))
            except ValueError as exc:
                raise ValueError(f"JISUB_CACHE_SIZE must be an integer, got '{cache_size}'") from exc
        unidic_dir = env.get("JISUB_UNIDIC_DIR")
        if unidic_dir:
            config.unidic_dir = Path(unidic_dir).expanduser()
        return config
