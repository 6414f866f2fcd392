from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from .cache import ResultCache
from .furigana import Tokenizer, make_furigana
from .models import Caption, FuriganaSegment, Token

__all__ = [
    "CaptionEnricher",
    "EnrichmentError",
    "EnrichmentResult",
    "is_japanese_language",
]

logger = logging.getLogger(__name__)

_JAPANESE_CODES = {"ja", "jp", "jpn", "japanese", "日本語"}
_UNDECLARED_CODES = {"", "unknown", "und", "none"}


class EnrichmentError(RuntimeError):
    """Raised when a caption cannot be annotated."""


@dataclass
class EnrichmentResult:
    furigana: list[FuriganaSegment] | None
    tokens: list[Token] | None

    @property
    def complete(self) -> bool:
        return self.furigana is not None and self.tokens is not None


def is_japanese_language(language: str | None) -> bool:
    """True for Japanese and for tracks that do not declare a language."""
    if language is None:
        return True
    normalized = language.strip().lower()
    if normalized in _UNDECLARED_CODES:
        return True
    return normalized in _JAPANESE_CODES or normalized.startswith("ja-")


def _preview(text: str) -> str:
    return text if len(text) <= 30 else f"{text[:30]}..."


class CaptionEnricher:
    """
    Annotates captions with furigana and tokens.

    Results are memoized per raw caption text. A failure on one caption is
    logged and leaves that caption's annotation fields empty; it never stops
    the rest of the track.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        cache: ResultCache[str, EnrichmentResult] | None = None,
    ) -> None:
        self.tokenizer = tokenizer
        self.cache: ResultCache[str, EnrichmentResult] = cache if cache is not None else ResultCache()

    async def _furigana(self, text: str) -> list[FuriganaSegment] | None:
        try:
            segments = await make_furigana(text, self.tokenizer)
        except Exception:
            logger.exception("Error generating furigana for %r", _preview(text))
            return None
        if not segments:
            logger.warning("No furigana generated for %r", _preview(text))
            return None
        return segments

    async def _tokens(self, text: str) -> list[Token] | None:
        try:
            tokens = await self.tokenizer.tokenize(text)
        except Exception:
            logger.exception("Error processing tokens for %r", _preview(text))
            return None
        return tokens or None

    async def enrich_text(self, text: str) -> EnrichmentResult:
        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Using cached enrichment for %r", _preview(text))
            return cached
        result = EnrichmentResult(
            furigana=await self._furigana(text),
            tokens=await self._tokens(text),
        )
        if result.complete:
            self.cache.put(text, result)
        return result

    async def enrich_caption(self, caption: Caption) -> bool:
        try:
            result = await self.enrich_text(caption.text)
        except Exception as exc:
            error = EnrichmentError(f"Could not enrich caption {caption.id}: {exc}")
            logger.error("%s", error, exc_info=exc)
            return False
        caption.furigana = result.furigana
        caption.tokens = result.tokens
        return result.complete

    async def enrich_captions(self, captions: Sequence[Caption], language: str | None = None) -> int:
        """
        Enrich every caption concurrently and wait for all of them to settle.

        Returns the number of fully annotated captions. Tracks declaring a
        non-Japanese language are left untouched.
        """
        if not is_japanese_language(language):
            logger.info("Skipping enrichment for %d captions (language: %s)", len(captions), language)
            return 0
        logger.info("Processing furigana for %d captions, language: %s", len(captions), language or "unknown")
        outcomes = await asyncio.gather(
            *(self.enrich_caption(caption) for caption in captions),
            return_exceptions=True,
        )
        enriched = 0
        for caption, outcome in zip(captions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Enrichment task for caption %s failed: %s", caption.id, outcome)
            elif outcome:
                enriched += 1
        logger.info("Caption processing completed: %d/%d enriched", enriched, len(captions))
        return enriched
